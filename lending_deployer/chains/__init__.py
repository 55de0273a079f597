"""Chain gateways."""

"""Deploy and configure a lending protocol on a contracts chain."""

__version__ = "0.1.0"

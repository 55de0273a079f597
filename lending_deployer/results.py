"""Pure decoding of nested call outcomes: no I/O.

A simulated contract call comes back as two nested result layers::

    {"ok": {"ok": value}}      executed, accepted
    {"ok": {"err": reason}}    executed, rejected by the contract
    {"err": fault}             did not execute

Everything above the executor works with the tagged values defined here and
never looks at the raw dicts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Accepted:
    """Inner layer: the contract accepted the operation."""

    value: Any = None


@dataclass(frozen=True)
class Rejected:
    """Inner layer: the contract declined the operation."""

    reason: str
    detail: Any = None


BusinessOutcome = Union[Accepted, Rejected]


@dataclass(frozen=True)
class Executed:
    """Outer layer: the call ran to completion."""

    outcome: BusinessOutcome


@dataclass(frozen=True)
class Faulted:
    """Outer layer: the call could not run."""

    reason: str
    detail: Any = None


CallOutcome = Union[Executed, Faulted]


def _result_branch(raw: Any) -> tuple[str, Any] | None:
    """Return ("ok"|"err", payload) when ``raw`` is a single-key result dict."""
    if not isinstance(raw, dict) or len(raw) != 1:
        return None
    key, payload = next(iter(raw.items()))
    key = str(key).lower()
    if key not in ("ok", "err"):
        return None
    return key, payload


def reason_tag(detail: Any) -> str:
    """Flatten a structured error into a stable dotted tag.

    Examples:
        "MissingRole" → "MissingRole"
        {"accessControl": "MissingRole"} → "AccessControl.MissingRole"
        {"controller": {"priceError": None}} → "Controller.PriceError"
    """
    if detail is None:
        return "Unknown"
    if isinstance(detail, str):
        return detail[:1].upper() + detail[1:] if detail else "Unknown"
    if isinstance(detail, dict) and len(detail) == 1:
        key, inner = next(iter(detail.items()))
        head = reason_tag(str(key))
        if inner is None or inner == {} or inner == []:
            return head
        return f"{head}.{reason_tag(inner)}"
    if isinstance(detail, dict) and "message" in detail:
        return str(detail["message"])
    return str(detail)


def decode_business(raw: Any) -> BusinessOutcome:
    branch = _result_branch(raw)
    if branch is None:
        return Accepted(raw)
    key, payload = branch
    if key == "ok":
        return Accepted(payload)
    return Rejected(reason_tag(payload), payload)


def decode_outcome(raw: Any) -> CallOutcome:
    """Decode both layers of a raw simulated outcome."""
    branch = _result_branch(raw)
    if branch is None:
        return Faulted("MalformedOutcome", raw)
    key, payload = branch
    if key == "err":
        return Faulted(reason_tag(payload), payload)
    return Executed(decode_business(payload))

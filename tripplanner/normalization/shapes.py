"""Lookup helpers for raw, shape-varying provider items."""

import math
from typing import Any

ENVELOPE_KEYS = ("recommendations", "results", "data", "items")

_MISSING = object()


def unwrap_results(payload: Any) -> list[Any] | None:
    """Return the result list from a bare list or a known envelope.

    Envelopes are ``{recommendations|results|data|items: [...]}``, checked in
    that order. Returns None when no list can be found.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return None


def get_path(item: Any, path: str) -> Any:
    """Dotted-path lookup through nested dicts; None when any hop is missing."""
    current = item
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return None
    return current


def as_number(value: Any) -> float | None:
    """Finite float from an int, float or numeric string; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().lstrip("$€£").replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def as_text(value: Any) -> str | None:
    """Stripped non-empty string, or None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return None


def leading_number(value: Any) -> float | None:
    """First number in strings like ``"0.8 km"`` or ``"3 hours"``."""
    number = as_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        token = value.strip().split(" ")[0]
        return as_number(token)
    return None

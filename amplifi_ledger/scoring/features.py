from __future__ import annotations

import math
from typing import Any

from amplifi_ledger.errors import InvalidRequestError

LAMPORTS_PER_SOL = 1_000_000_000
U64_MAX = 2**64 - 1


def safe_number(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float; missing, malformed, NaN and inf all collapse to ``default``."""
    try:
        if value is None:
            return default
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def to_lamports(value: Any) -> int:
    """Parse a stored lamport amount into an exact int in ``[0, U64_MAX]``.

    Values arrive as Python ints or decimal strings; floats are only
    accepted when they hold an integral value. Anything else reads as 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        amount = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return 0
        amount = int(value)
    else:
        text = str(value).strip()
        if not _is_ascii_digits(text.removeprefix("-")):
            return 0
        amount = int(text)
    if amount < 0 or amount > U64_MAX:
        return 0
    return amount


def require_lamports(value: Any, field: str = "amount") -> int:
    """Validate a lamport amount on its way into the store.

    Unlike ``to_lamports`` nothing is coerced: the value must be an exact
    integer in ``[0, U64_MAX]``, given as an int, an integral float or a
    decimal string.
    """
    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be an integer lamport amount")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, float) and math.isfinite(value) and value.is_integer():
        amount = int(value)
    elif isinstance(value, str) and _is_ascii_digits(value.strip()):
        amount = int(value.strip())
    else:
        raise InvalidRequestError(f"{field} must be an integer lamport amount")
    if amount < 0 or amount > U64_MAX:
        raise InvalidRequestError(f"{field} out of range: {amount}")
    return amount


def _is_ascii_digits(text: str) -> bool:
    return bool(text) and text.isascii() and text.isdigit()


def lamports_to_sol(lamports: int) -> float:
    # display only
    return lamports / LAMPORTS_PER_SOL


def compute_trend_pct(current: float, previous: float) -> float:
    current = safe_number(current)
    previous = safe_number(previous)
    if previous > 0:
        return (current - previous) / previous * 100
    if current > 0:
        return 100.0
    return 0.0

"""Lenient parsing of provider-supplied values."""

from __future__ import annotations

import math
from typing import Any, Optional


def to_finite_number(value: Any) -> Optional[float]:
    """Parse a provider number, tolerating strings like "1,234.5", "$10" or "0.7%".

    Returns:
        The value as float, or None if it is missing, non-numeric or not finite
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").replace("%", "")
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None

    return number if math.isfinite(number) else None


def normalize_ticker(symbol: Optional[str]) -> str:
    """Uppercase, trimmed ticker ("" when missing)."""
    if not isinstance(symbol, str):
        return ""
    return symbol.strip().upper()

"""
Common utilities for feed fetchers: backoff timing and response header parsing.
"""
from __future__ import annotations

import math
import random
from typing import Mapping, Optional

BASE_DELAY_MS = 500
MAX_DELAY_MS = 8000
JITTER_LOW = 0.85
JITTER_HIGH = 1.15


def compute_backoff_ms(attempt: int) -> float:
    """
    Exponential backoff for a zero-based attempt number.

    Args:
        attempt: Number of attempts already made (0 for the first retry)

    Returns:
        Delay in milliseconds, capped at MAX_DELAY_MS
    """
    return min(MAX_DELAY_MS, BASE_DELAY_MS * (2 ** attempt))


def jitter_ms(delay_ms: float, rng: random.Random | None = None) -> float:
    """Randomize a delay by a multiplicative factor drawn from [0.85, 1.15]."""
    uniform = (rng or random).uniform
    return delay_ms * uniform(JITTER_LOW, JITTER_HIGH)


def header_number(headers: Mapping[str, str], key: str) -> Optional[float]:
    """
    Read a numeric response header.

    Returns:
        The header as a float, or None when absent or not numeric
    """
    value = headers.get(key)
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clean_text(text: Optional[str]) -> str:
    """
    Clean and normalize text content.

    Args:
        text: Raw text string or None

    Returns:
        Cleaned text string, empty string if input is None
    """
    if not text:
        return ""
    return text.strip()

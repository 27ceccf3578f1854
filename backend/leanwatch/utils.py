"""
Shared utility functions for the community lean application.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from hashlib import sha256
from typing import Optional
from urllib.parse import urlparse

from dateutil import parser as dateparser

_COMMUNITY_URL_RE = re.compile(r"^https?://(?:www\.|old\.|new\.)?reddit\.com/r/([A-Za-z0-9_]+)", re.IGNORECASE)
_COMMUNITY_NAME_RE = re.compile(r"^(?:/?r/)?([A-Za-z0-9_]{2,21})/?$", re.IGNORECASE)


def now_utc() -> datetime:
    """
    Get current UTC datetime with timezone information.

    Returns:
        Current UTC datetime
    """
    return datetime.now(timezone.utc)


def normalize_text(text: str | None) -> str:
    """
    Normalize whitespace in text content.

    Args:
        text: Input text string (can be None)

    Returns:
        Normalized text with single spaces and trimmed edges
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def clamp(value: float, low: float, high: float) -> float:
    """Clamp a float value to the range [low, high]."""
    return max(low, min(high, value))


def sha256_hex(*parts: str) -> str:
    """
    Compute a stable SHA-256 hex digest over multiple string parts.

    Args:
        *parts: Variable number of string arguments, joined with '|'

    Returns:
        64-character hexadecimal string
    """
    key = "|".join(parts).encode("utf-8")
    return sha256(key).hexdigest()


def extract_hostname(url: str) -> Optional[str]:
    """
    Extract the lowercase hostname from an http(s) URL, without a leading 'www.'.

    No public-suffix list is consulted: the bias index matching tiers (exact hostname,
    last two labels, stored-key suffix) decide which domain a hostname belongs to.

    Args:
        url: Full URL string

    Returns:
        Hostname, or None when the URL cannot be parsed
    """
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    hostname = parsed.hostname.lower().rstrip(".")
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname or None


def root_domain(hostname: str) -> str:
    """Return the last two dot-separated labels of a hostname (edition.cnn.com -> cnn.com)."""
    return ".".join(hostname.split(".")[-2:])


def parse_community_ref(ref: str) -> str:
    """
    Normalize a community reference into its canonical 'r/<name>' form.

    Accepts a full community URL, 'r/<name>' or a bare name.

    Raises:
        ValueError: If the reference does not name a community
    """
    ref = (ref or "").strip()
    match = _COMMUNITY_URL_RE.match(ref) or _COMMUNITY_NAME_RE.match(ref)
    if not match:
        raise ValueError(f"Not a community reference: {ref!r}")
    return f"r/{match.group(1)}"


def parse_utc_datetime(date_string: Optional[str]) -> Optional[datetime]:
    """
    Parse a date string and convert to a UTC datetime.

    Args:
        date_string: Date string in various formats, or None

    Returns:
        UTC datetime, or None if input is None/empty

    Raises:
        ValueError: If the string is not a recognizable date
    """
    if not date_string:
        return None

    try:
        parsed = dateparser.parse(date_string)
    except (OverflowError, ValueError) as e:
        raise ValueError(f"Invalid date: {date_string!r}") from e
    if parsed.tzinfo:
        return parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=timezone.utc)

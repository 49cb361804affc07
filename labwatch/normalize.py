"""Canonical forms for URLs, company names and timestamps."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, date, datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset(
    {
        "ref",
        "referrer",
        "fbclid",
        "gclid",
        "mc_cid",
        "mc_eid",
        "cmpid",
        "ocid",
        "icid",
        "vero_id",
        "vero_conv",
        "igshid",
        "s",
        "spm",
        "guce_referrer",
        "guce_referrer_sig",
    }
)
TRACKING_PREFIXES = ("utm_",)
_DEFAULT_PORTS = {"http": 80, "https": 443}

_WHITESPACE = re.compile(r"\s+")
_NAME_STRIP = re.compile(r"[^a-z0-9\s&-]")


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def normalize_url(value: str | None) -> str | None:
    """Return the canonical form of an absolute http(s) URL, or None when unparsable."""
    if not value:
        return None
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in _DEFAULT_PORTS or not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    netloc = host if port in (None, _DEFAULT_PORTS[scheme]) else f"{host}:{port}"

    kept = [
        (key, item)
        for key, item in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]
    return urlunsplit((scheme, netloc, path, urlencode(kept), ""))


def get_hostname(value: str | None) -> str | None:
    """Lower-cased host without a leading `www.`."""
    if not value:
        return None
    try:
        host = urlsplit(value.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def normalize_name(value: str) -> str:
    """Alias form: lower-cased, punctuation stripped except `&` and `-`."""
    lowered = normalize_whitespace(value).lower()
    return normalize_whitespace(_NAME_STRIP.sub("", lowered))


def merge_aliases(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Order-preserving union of alias sets; incoming values are normalized first."""
    merged: list[str] = []
    seen: set[str] = set()
    for alias in existing:
        if alias and alias not in seen:
            seen.add(alias)
            merged.append(alias)
    for value in incoming:
        alias = normalize_name(value) if value else ""
        if alias and alias not in seen:
            seen.add(alias)
            merged.append(alias)
    return merged


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def latest(first: datetime | None, second: datetime | None) -> datetime | None:
    """Later of two timestamps; a present value always beats an absent one."""
    first = ensure_utc(first)
    second = ensure_utc(second)
    if first is None:
        return second
    if second is None:
        return first
    return max(first, second)


def parse_datetime(value: object) -> datetime | None:
    """Parse ISO-8601 strings (including a trailing `Z`) into aware datetimes."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in ("%a, %d %b %Y %H:%M:%S %z", "%Y-%m-%d", "%Y-%m", "%Y"):
        try:
            return ensure_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def parse_date(value: object) -> date | None:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None

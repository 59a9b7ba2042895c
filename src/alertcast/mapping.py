"""Vocabulary mapping, identifiers and ranking for normalised alerts."""

from __future__ import annotations

import hashlib
import html
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from .alerts import AlertDTO, AlertSource, Certainty, Severity, Urgency

_TAG_RE = re.compile(r"<[^>]*>")


def _vocabulary(value: Any) -> str:
    # upstream JSON occasionally carries numbers or nulls in these fields
    return "" if value is None else str(value).lower()


def make_alert_id(
    source: AlertSource | str,
    event: str | None,
    starts_at: str | None,
    ends_at: str | None,
) -> str:
    """Derive a stable id so re-fetching the same alert yields the same key."""
    provider = source.value if isinstance(source, AlertSource) else str(source)
    raw = f"{provider}:{event or ''}:{starts_at or ''}:{ends_at or ''}"
    digest = hashlib.md5(raw.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{provider}_{digest}"


def map_severity_from_openweather(value: Any) -> Severity:
    s = _vocabulary(value)
    if "extreme" in s:
        return Severity.EXTREME
    if "severe" in s:
        return Severity.SEVERE
    if "moderate" in s:
        return Severity.MODERATE
    if "minor" in s or "advisory" in s:
        return Severity.MINOR
    # event labels carry the NWS product type when severity is absent
    if "warning" in s:
        return Severity.SEVERE
    if "watch" in s:
        return Severity.MODERATE
    return Severity.MODERATE


def map_severity_from_cap(value: Any) -> Severity:
    s = _vocabulary(value).strip()
    if s.startswith("extreme"):
        return Severity.EXTREME
    if s.startswith("severe"):
        return Severity.SEVERE
    if s.startswith("moderate"):
        return Severity.MODERATE
    if s.startswith("minor"):
        return Severity.MINOR
    return Severity.MODERATE


def map_urgency(value: Any) -> Urgency:
    s = _vocabulary(value)
    if "immediate" in s:
        return Urgency.IMMEDIATE
    if "expected" in s:
        return Urgency.EXPECTED
    if "future" in s:
        return Urgency.FUTURE
    if "past" in s or "unknown" in s:
        return Urgency.PAST
    return Urgency.EXPECTED


def map_certainty(value: Any) -> Certainty:
    s = _vocabulary(value)
    if "observed" in s:
        return Certainty.OBSERVED
    if "likely" in s:
        return Certainty.LIKELY
    if "possible" in s:
        return Certainty.POSSIBLE
    return Certainty.UNKNOWN


def alert_score(alert: AlertDTO) -> float:
    """Rank an alert for sorting; higher is more important.

    Severity dominates, urgency breaks severity ties, and among equal
    severity and urgency an earlier ``endsAt`` scores slightly higher.
    """
    end_bias = 0.0
    if alert.ends_at:
        ends = parse_timestamp(alert.ends_at)
        if ends is not None:
            end_bias = ends.timestamp() * 1000 / 1e13
    return alert.severity.rank * 10 + alert.urgency.rank - end_bias


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    return html.unescape(_TAG_RE.sub("", str(value))).strip()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-8601 or RFC-822 timestamps; naive values are taken as UTC."""
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None
    parsed: datetime | None
    try:
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def to_iso(value: str | None) -> str:
    """Normalise a provider timestamp, returning ``""`` when unparseable."""
    parsed = parse_timestamp(value)
    return format_timestamp(parsed) if parsed is not None else ""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

"""CAP, Atom and RSS feed fetching and normalisation."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence, Union

import httpx

from .alerts import AlertDTO, AlertSource
from .mapping import (
    format_timestamp,
    make_alert_id,
    map_certainty,
    map_severity_from_cap,
    map_urgency,
    strip_html,
    to_iso,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

ATOM_ACCEPT = "application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.7"
RELAXED_ACCEPT = "application/xml,text/xml,*/*"
RSS_ACCEPT = "application/rss+xml,application/xml,text/xml,*/*"
CAP_CONTENT_TYPE = "application/cap+xml"
DEFAULT_EXPIRY = timedelta(hours=1)


@dataclass(slots=True)
class RawAlertInfo:
    """Fields lifted from one Atom entry, RSS item or CAP info block."""

    event: str = ""
    severity: str = ""
    urgency: str = ""
    certainty: str = ""
    area_desc: str = ""
    onset: str = ""
    expires: str = ""
    title: str = ""
    summary: str = ""
    instruction: str = ""
    cap_link: str | None = None


@dataclass(slots=True)
class AtomFeed:
    entries: list[ET.Element] = field(default_factory=list)


@dataclass(slots=True)
class RssFeed:
    items: list[ET.Element] = field(default_factory=list)


@dataclass(slots=True)
class CapDocument:
    alert: ET.Element


@dataclass(slots=True)
class UnknownDocument:
    root_tag: str


ParsedDocument = Union[AtomFeed, RssFeed, CapDocument, UnknownDocument]


@dataclass(slots=True)
class FetchResult:
    ok: bool
    status: int
    content: bytes | None = None


def feed_headers(lang: str, user_agent: str, accept: str = ATOM_ACCEPT) -> dict[str, str]:
    return {
        "Accept": accept,
        "Accept-Language": lang,
        "User-Agent": user_agent,
    }


def parse_document(xml_text: str | bytes) -> ParsedDocument:
    """Parse XML once and classify it by its namespace-stripped root tag.

    Raises ``xml.etree.ElementTree.ParseError`` on malformed input.
    """
    root = ET.fromstring(xml_text)
    tag = _local_name(root.tag).lower()
    if tag == "feed":
        return AtomFeed(entries=root.findall("{*}entry"))
    if tag == "rss":
        return RssFeed(items=root.findall("./{*}channel/{*}item"))
    if tag == "alert":
        return CapDocument(alert=root)
    return UnknownDocument(root_tag=tag)


def extract_records(document: ParsedDocument, lang: str = "en") -> list[RawAlertInfo]:
    match document:
        case AtomFeed(entries=entries):
            return [read_atom_entry(entry) for entry in entries]
        case RssFeed(items=items):
            return [read_rss_item(item) for item in items]
        case CapDocument(alert=alert):
            return [read_cap_alert(alert, lang)]
        case UnknownDocument(root_tag=tag):
            LOGGER.warning("Unrecognised XML document root: %s", tag)
            return []


def read_atom_entry(entry: ET.Element) -> RawAlertInfo:
    return RawAlertInfo(
        event=_text(entry, "event"),
        severity=_text(entry, "severity"),
        urgency=_text(entry, "urgency"),
        certainty=_text(entry, "certainty"),
        area_desc=_text(entry, "areaDesc"),
        onset=_first(entry, "onset", "effective", "sent", "published"),
        expires=_text(entry, "expires"),
        title=_text(entry, "title"),
        summary=strip_html(_text(entry, "summary")),
        instruction=strip_html(_text(entry, "instruction")),
        cap_link=_atom_cap_link(entry),
    )


def read_rss_item(item: ET.Element) -> RawAlertInfo:
    link = _text(item, "link")
    return RawAlertInfo(
        event=_text(item, "event"),
        severity=_text(item, "severity"),
        urgency=_text(item, "urgency"),
        certainty=_text(item, "certainty"),
        area_desc=_text(item, "areaDesc"),
        onset=_first(item, "onset", "effective", "sent", "pubDate"),
        expires=_text(item, "expires"),
        title=_text(item, "title"),
        summary=strip_html(_text(item, "description")),
        instruction=strip_html(_text(item, "instruction")),
        cap_link=link if ".xml" in link else None,
    )


def read_cap_alert(alert: ET.Element, lang: str = "en") -> RawAlertInfo:
    """Read a single CAP alert, preferring the info block in ``lang``."""
    infos = alert.findall("{*}info")
    prefix = (lang or "").lower()
    info = next(
        (block for block in infos if _text(block, "language").lower().startswith(prefix)),
        infos[0] if infos else None,
    )
    if info is None:
        info = ET.Element("info")
    area = info.find("{*}area")
    return RawAlertInfo(
        event=_text(info, "event"),
        severity=_text(info, "severity"),
        urgency=_text(info, "urgency"),
        certainty=_text(info, "certainty"),
        area_desc=_text(area, "areaDesc") if area is not None else "",
        onset=_text(info, "onset") or _text(info, "effective") or _text(alert, "sent"),
        expires=_text(info, "expires"),
        title=_text(info, "headline") or _text(alert, "identifier"),
        summary=strip_html(_text(info, "description")),
        instruction=strip_html(_text(info, "instruction")),
    )


def to_alert(
    source: AlertSource,
    info: RawAlertInfo,
    now: datetime | None = None,
) -> AlertDTO:
    now = now or utc_now()
    event = (info.event or info.title or "Weather Alert").strip()
    starts_at = to_iso(info.onset) or format_timestamp(now)
    ends_at = to_iso(info.expires) or format_timestamp(now + DEFAULT_EXPIRY)
    return AlertDTO(
        id=make_alert_id(source, event, starts_at, ends_at),
        source=source,
        event=event,
        severity=map_severity_from_cap(info.severity or event),
        urgency=map_urgency(info.urgency or "expected"),
        certainty=map_certainty(info.certainty or "unknown"),
        areas=[info.area_desc] if info.area_desc else [],
        starts_at=starts_at,
        ends_at=ends_at,
        headline=info.title.strip() or event,
        description=info.summary,
        instruction=info.instruction,
    )


def alerts_from_xml(
    xml_text: str | bytes,
    source: AlertSource,
    lang: str = "en",
    now: datetime | None = None,
) -> list[AlertDTO]:
    records = extract_records(parse_document(xml_text), lang)
    now = now or utc_now()
    return dedupe_by_id(to_alert(source, record, now) for record in records)


def dedupe_by_id(alerts: Iterable[AlertDTO]) -> list[AlertDTO]:
    seen: set[str] = set()
    unique: list[AlertDTO] = []
    for alert in alerts:
        if alert.id in seen:
            continue
        seen.add(alert.id)
        unique.append(alert)
    return unique


async def fetch_text(
    client: httpx.AsyncClient, url: str, headers: dict[str, str]
) -> FetchResult:
    try:
        response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        LOGGER.warning("Feed request to %s failed: %s", url, exc)
        return FetchResult(ok=False, status=0)
    if not response.is_success:
        return FetchResult(ok=False, status=response.status_code)
    # raw bytes so the XML declaration, not the HTTP charset, picks the encoding
    return FetchResult(ok=True, status=response.status_code, content=response.content)


async def fetch_cap_feeds(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    lang: str,
    source: AlertSource,
    user_agent: str,
) -> list[AlertDTO]:
    """Fetch CAP/Atom/RSS feeds and normalise them into alerts.

    A failure on one URL is logged and skipped; the remaining URLs are still
    processed.
    """
    headers = feed_headers(lang, user_agent)
    alerts: list[AlertDTO] = []
    for url in urls:
        if not url:
            continue
        result = await fetch_text(client, url, headers)
        if not result.ok:
            result = await fetch_text(
                client, url, {**headers, "Accept": RELAXED_ACCEPT}
            )
        if not result.ok or result.content is None:
            LOGGER.warning("CAP feed fetch failed (status=%s): %s", result.status, url)
            continue
        try:
            alerts.extend(alerts_from_xml(result.content, source, lang))
        except ET.ParseError as exc:
            LOGGER.warning("CAP feed %s is not valid XML: %s", url, exc)
    return dedupe_by_id(alerts)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _text(element: ET.Element | None, tag: str) -> str:
    if element is None:
        return ""
    return (element.findtext(f"{{*}}{tag}") or "").strip()


def _first(element: ET.Element, *tags: str) -> str:
    for tag in tags:
        value = _text(element, tag)
        if value:
            return value
    return ""


def _atom_cap_link(entry: ET.Element) -> str | None:
    for link in entry.findall("{*}link"):
        if link.get("type") == CAP_CONTENT_TYPE and link.get("href"):
            return link.get("href")
    return None

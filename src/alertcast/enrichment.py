"""Best-effort enrichment of feed alerts from their linked CAP documents."""

from __future__ import annotations

import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable

import httpx

from .alerts import AlertDTO
from .cache import TTLCache
from .feeds import (
    RELAXED_ACCEPT,
    CapDocument,
    feed_headers,
    fetch_text,
    parse_document,
    read_cap_alert,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CapDetails:
    description: str
    instruction: str


class CapEnricher:
    """Fetch linked CAP documents in the background and remember their text.

    ``schedule`` never waits on the network. Details found by a background
    task are applied to alerts built on later fetches through ``apply``, so
    the first response for an alert is never held back by enrichment.
    Remembered details expire after ``details_ttl_seconds``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str,
        timeout_seconds: float = 10.0,
        details_ttl_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.details_ttl_seconds = details_ttl_seconds
        self._details = TTLCache(
            sweep_interval=min(60.0, details_ttl_seconds), clock=clock
        )
        self._pending: dict[str, asyncio.Task[None]] = {}

    def apply(self, alert: AlertDTO) -> AlertDTO:
        details = self._details.get(alert.id)
        if details is None:
            return alert
        update: dict[str, str] = {}
        if details.description and len(details.description) > len(alert.description):
            update["description"] = details.description
        if details.instruction and not alert.instruction:
            update["instruction"] = details.instruction
        return alert.model_copy(update=update) if update else alert

    def schedule(self, alert_id: str, url: str, lang: str) -> None:
        if alert_id in self._details or alert_id in self._pending:
            return
        task = asyncio.get_running_loop().create_task(
            self._enrich(alert_id, url, lang), name=f"cap-enrich-{alert_id}"
        )
        self._pending[alert_id] = task
        task.add_done_callback(lambda _: self._pending.pop(alert_id, None))

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def retained(self) -> int:
        return len(self._details)

    async def drain(self) -> None:
        """Wait for in-flight enrichment tasks to settle."""
        if self._pending:
            await asyncio.gather(*self._pending.values(), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        await self.drain()

    async def _enrich(self, alert_id: str, url: str, lang: str) -> None:
        headers = feed_headers(lang, self.user_agent, accept=RELAXED_ACCEPT)
        try:
            result = await asyncio.wait_for(
                fetch_text(self.client, url, headers), self.timeout_seconds
            )
        except asyncio.TimeoutError:
            LOGGER.debug("CAP enrichment timed out for %s", url)
            return
        if not result.ok or result.content is None:
            LOGGER.debug("CAP enrichment skipped for %s (status=%s)", url, result.status)
            return
        try:
            document = parse_document(result.content)
        except ET.ParseError as exc:
            LOGGER.warning("CAP enrichment document %s is not valid XML: %s", url, exc)
            return
        if not isinstance(document, CapDocument):
            LOGGER.debug("CAP enrichment link %s is not a CAP alert", url)
            return
        info = read_cap_alert(document.alert, lang)
        self._details.set(
            alert_id,
            CapDetails(description=info.summary, instruction=info.instruction),
            self.details_ttl_seconds,
        )

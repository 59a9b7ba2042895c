import asyncio
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from alertcast.alerts import (
    AlertDTO,
    AlertSource,
    Certainty,
    Coordinates,
    Country,
    Severity,
    Urgency,
)
from alertcast.enrichment import CapEnricher
from alertcast.errors import ConfigurationError
from alertcast.feeds import RELAXED_ACCEPT, RSS_ACCEPT
from alertcast.providers import (
    MeteoalarmProvider,
    NationalFeedProvider,
    OpenWeatherProvider,
)

DATA = Path(__file__).resolve().parent / "data"
ATOM = (DATA / "meteoalarm_atom.xml").read_text(encoding="utf-8")
RSS = (DATA / "meteoalarm_rss.xml").read_text(encoding="utf-8")
CAP_HEAT = (DATA / "cap_heat.xml").read_text(encoding="utf-8")


def _unix(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_openweather_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        OpenWeatherProvider(httpx.AsyncClient(), None, "https://ow.test/onecall")


def test_openweather_maps_native_alerts() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(dict(request.url.params))
        return httpx.Response(
            200,
            json={
                "alerts": [
                    {
                        "sender_name": "NWS Tulsa",
                        "event": "Tornado Warning",
                        "start": _unix(2025, 5, 20, 21, 0),
                        "end": _unix(2025, 5, 20, 22, 0),
                        "description": "<b>Take shelter</b> now.",
                        "tags": ["Tornado", "Oklahoma"],
                    }
                ]
            },
        )

    async def run():
        async with _client(handler) as client:
            provider = OpenWeatherProvider(client, "secret", "https://ow.test/onecall")
            return await provider.fetch(Coordinates(36.15, -95.99), "de")

    (alert,) = asyncio.run(run())

    assert captured == {"lat": "36.15", "lon": "-95.99", "appid": "secret", "lang": "de"}
    assert alert.source is AlertSource.OPENWEATHER
    assert alert.severity is Severity.SEVERE
    assert alert.urgency is Urgency.EXPECTED
    assert alert.certainty is Certainty.LIKELY
    assert alert.starts_at == "2025-05-20T21:00:00Z"
    assert alert.ends_at == "2025-05-20T22:00:00Z"
    assert alert.areas == ("Tornado", "Oklahoma")
    assert alert.headline == "Tornado Warning"
    assert alert.description == "Take shelter now."
    assert alert.id.startswith("openweather_")


def test_openweather_non_success_returns_empty_list() -> None:
    async def run():
        async with _client(lambda request: httpx.Response(401, text="bad key")) as client:
            provider = OpenWeatherProvider(client, "secret", "https://ow.test/onecall")
            return await provider.fetch(Coordinates(0, 0), "en")

    assert asyncio.run(run()) == []


def test_national_feed_stamps_its_own_source() -> None:
    async def run():
        async with _client(lambda request: httpx.Response(200, text=ATOM)) as client:
            provider = NationalFeedProvider(
                AlertSource.NWS, client, "https://nws.test/us.php", "tests"
            )
            return await provider.fetch(Country("US"), "en")

    alerts = asyncio.run(run())

    assert len(alerts) == 2
    assert all(alert.source is AlertSource.NWS for alert in alerts)
    assert all(alert.id.startswith("nws_") for alert in alerts)


def test_meteoalarm_unsupported_country_skips_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    async def run():
        async with _client(handler) as client:
            provider = MeteoalarmProvider(client, "https://feeds.test/feeds", "tests")
            return await provider.fetch(Country("XX"), "en")

    assert asyncio.run(run()) == []
    assert MeteoalarmProvider.supports("de")
    assert MeteoalarmProvider.supports("UK")
    assert not MeteoalarmProvider.supports("US")


def test_meteoalarm_relaxes_accept_on_406() -> None:
    requests: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, request.headers["accept"]))
        if request.headers["accept"] == RELAXED_ACCEPT:
            return httpx.Response(200, text=ATOM)
        return httpx.Response(406)

    async def run():
        async with _client(handler) as client:
            provider = MeteoalarmProvider(client, "https://feeds.test/feeds/", "tests")
            return await provider.fetch(Country("DE"), "en")

    alerts = asyncio.run(run())

    assert len(alerts) == 2
    assert alerts[0].severity is Severity.EXTREME
    assert [path for path, _ in requests] == [
        "/feeds/meteoalarm-legacy-atom-germany",
        "/feeds/meteoalarm-legacy-atom-germany",
    ]


def test_meteoalarm_falls_back_to_rss() -> None:
    requests: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, request.headers["accept"]))
        if "rss" in request.url.path:
            return httpx.Response(200, text=RSS)
        return httpx.Response(503)

    async def run():
        async with _client(handler) as client:
            provider = MeteoalarmProvider(client, "https://feeds.test/feeds", "tests")
            return await provider.fetch(Country("IT"), "it")

    (alert,) = asyncio.run(run())

    assert alert.event == "Thunderstorm"
    assert requests == [
        ("/feeds/meteoalarm-legacy-atom-italy", "application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.7"),
        ("/feeds/meteoalarm-legacy-rss-italy", RSS_ACCEPT),
    ]


def test_meteoalarm_total_failure_returns_empty_list() -> None:
    async def run():
        async with _client(lambda request: httpx.Response(500)) as client:
            provider = MeteoalarmProvider(client, "https://feeds.test/feeds", "tests")
            return await provider.fetch(Country("FR"), "fr")

    assert asyncio.run(run()) == []


def test_cap_enrichment_applies_on_later_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(".xml"):
            return httpx.Response(200, text=CAP_HEAT)
        return httpx.Response(200, text=ATOM)

    async def run():
        async with _client(handler) as client:
            enricher = CapEnricher(client, "tests")
            provider = MeteoalarmProvider(
                client, "https://feeds.test/feeds", "tests", enricher=enricher
            )
            first = await provider.fetch(Country("DE"), "en")
            await enricher.drain()
            second = await provider.fetch(Country("DE"), "en")
            return first, second

    first, second = asyncio.run(run())

    assert first[0].instruction == ""
    assert first[0].description == "Temperatures above 38 degrees."
    assert second[0].id == first[0].id
    assert second[0].event == "Extreme Heat Warning"
    assert second[0].instruction == (
        "Avoid outdoor activity around midday and drink plenty of water."
    )
    assert second[0].description == (
        "Extreme heat with temperatures up to 39 degrees is expected in Berlin."
    )
    assert second[1].event == first[1].event
    assert second[1].instruction == ""


def test_cap_enrichment_never_blocks_primary_fetch() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(".xml"):
            await asyncio.Event().wait()
        return httpx.Response(200, text=ATOM)

    async def run():
        async with _client(handler) as client:
            enricher = CapEnricher(client, "tests", timeout_seconds=30)
            provider = MeteoalarmProvider(
                client, "https://feeds.test/feeds", "tests", enricher=enricher
            )
            alerts = await asyncio.wait_for(provider.fetch(Country("DE"), "en"), 5)
            pending = enricher.pending
            await enricher.aclose()
            return alerts, pending, enricher.pending

    alerts, pending_before, pending_after = asyncio.run(run())

    assert len(alerts) == 2
    assert pending_before == 1
    assert pending_after == 0


def test_openweather_skips_only_the_malformed_record() -> None:
    valid = {
        "event": "Flood Warning",
        "start": _unix(2025, 5, 20, 21, 0),
        "end": _unix(2025, 5, 21, 3, 0),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "alerts": [
                    valid,
                    {"event": "Odd severity", "severity": 3, "urgency": 1, "certainty": 0.5},
                    {"event": "Far future", "start": 1e20, "end": -1e20},
                    {"event": "", "tags": "not-a-list"},
                    "not-a-record",
                ]
            },
        )

    async def run():
        async with _client(handler) as client:
            provider = OpenWeatherProvider(client, "secret", "https://ow.test/onecall")
            return await provider.fetch(Coordinates(29.76, -95.37), "en")

    alerts = asyncio.run(run())

    assert [alert.event for alert in alerts] == [
        "Flood Warning",
        "Odd severity",
        "Far future",
        "Weather Alert",
    ]
    assert alerts[0].starts_at == "2025-05-20T21:00:00Z"
    assert alerts[1].severity is Severity.MODERATE
    assert alerts[1].urgency is Urgency.EXPECTED
    assert alerts[1].certainty is Certainty.UNKNOWN
    assert alerts[2].starts_at.endswith("Z")
    assert alerts[3].areas == ()


def test_enrichment_details_expire() -> None:
    class FakeClock:
        def __init__(self) -> None:
            self.now = 0.0

        def __call__(self) -> float:
            return self.now

    clock = FakeClock()
    heat = AlertDTO(
        id="meteoalarm_heat-0",
        source=AlertSource.METEOALARM,
        event="Extreme Heat Warning",
        severity=Severity.EXTREME,
        urgency=Urgency.IMMEDIATE,
        starts_at="2025-07-01T06:00:00Z",
        ends_at="2025-07-02T18:00:00Z",
        headline="Extreme Heat Warning for Berlin",
    )

    async def run():
        retained: list[int] = []
        async with _client(lambda request: httpx.Response(200, text=CAP_HEAT)) as client:
            enricher = CapEnricher(client, "tests", details_ttl_seconds=300, clock=clock)
            for index in range(20):
                enricher.schedule(f"meteoalarm_heat-{index}", "https://cap.test/heat.xml", "en")
                await enricher.drain()
                if index == 0:
                    enriched = enricher.apply(heat)
                retained.append(enricher.retained)
                clock.now += 60
            return enricher, enriched, retained

    enricher, enriched, retained = asyncio.run(run())

    assert enriched.instruction.startswith("Avoid outdoor activity")
    assert max(retained) <= 6
    assert enricher.apply(heat) is heat

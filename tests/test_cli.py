import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from alertcast import cli
from alertcast.alerts import CountryAlertsResponse, CountryMeta
from alertcast.cli import main
from alertcast.reporting import ProviderOutcome
from alertcast.settings import get_settings

DATA = Path(__file__).resolve().parent / "data"


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_parse_feed_json() -> None:
    result = CliRunner().invoke(
        main, ["parse-feed", str(DATA / "meteoalarm_atom.xml"), "--json"]
    )

    assert result.exit_code == 0, result.output
    alerts = json.loads(result.stdout)
    assert [alert["event"] for alert in alerts] == ["Extreme Heat Warning", "Wind"]
    assert alerts[0]["source"] == "meteoalarm"
    assert alerts[0]["endsAt"] == "2025-07-02T18:00:00Z"


def test_parse_feed_table_for_cap_document() -> None:
    result = CliRunner().invoke(
        main,
        ["parse-feed", str(DATA / "cap_alert.xml"), "--lang", "de", "--source", "dwd"],
    )

    assert result.exit_code == 0, result.output
    assert "Alerts in cap_alert.xml" in result.output
    assert "dwd" in result.output


def test_parse_feed_rejects_malformed_xml(tmp_path: Path) -> None:
    broken = tmp_path / "broken.xml"
    broken.write_text("<feed><entry>", encoding="utf-8")

    result = CliRunner().invoke(main, ["parse-feed", str(broken)])

    assert result.exit_code == 1
    assert "Unable to parse" in result.output


def test_coords_invalid_latitude_exits_with_usage_code(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENWEATHER_API_KEY", "test-key")

    result = CliRunner().invoke(main, ["coords", "--lat", "100", "--lon", "0"])

    assert result.exit_code == 2
    assert "Invalid query" in result.output
    assert "lat" in result.output


def test_coords_without_api_key_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENWEATHER_API_KEY", "")

    result = CliRunner().invoke(main, ["coords", "--lat", "10", "--lon", "10"])

    assert result.exit_code == 1
    assert "OPENWEATHER_API_KEY" in result.output


def test_country_report_dir_persists_provider_outcomes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def fake_run_query(query, reporter):
        reporter(ProviderOutcome(provider="meteoalarm", error=TimeoutError("slow feed")))
        return CountryAlertsResponse(
            updated_at="2025-07-01T09:30:00Z",
            meta=CountryMeta(providers=("meteoalarm",), region_supported=True),
        )

    monkeypatch.setattr(cli, "run_query", fake_run_query)
    report_dir = tmp_path / "reports"

    result = CliRunner().invoke(
        main, ["country", "--code", "DE", "--report-dir", str(report_dir)]
    )

    assert result.exit_code == 0, result.output
    assert "Saved provider report" in result.output
    (report_file,) = report_dir.glob("*.json")
    summary = json.loads(report_file.read_text())
    assert summary["providers"][0]["provider"] == "meteoalarm"
    assert summary["providers"][0]["status"] == "failed"

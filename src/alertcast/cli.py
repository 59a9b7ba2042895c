"""CLI entry point for querying and inspecting weather alerts."""

from __future__ import annotations

import asyncio
import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Awaitable, Callable, Sequence

import click
import httpx
from rich.console import Console
from rich.table import Table

from .aggregator import AlertAggregator, build_aggregator
from .alerts import AlertDTO, AlertSource, AlertsResponse
from .errors import ConfigurationError, QueryValidationError
from .feeds import alerts_from_xml
from .logging_utils import configure_logging
from .reporting import OutcomeReporter
from .settings import get_settings
from .validation import ALLOWED_LANGUAGES

LOGGER = logging.getLogger(__name__)
CONSOLE = Console()

SEVERITY_STYLES = {
    "extreme": "bold red",
    "severe": "red",
    "moderate": "yellow",
    "minor": "green",
}


async def run_query(
    query: Callable[[AlertAggregator], Awaitable[AlertsResponse]],
    reporter: OutcomeReporter | None = None,
) -> AlertsResponse:
    settings = get_settings()
    async with httpx.AsyncClient(
        timeout=settings.http_timeout_seconds, follow_redirects=True
    ) as client:
        aggregator = build_aggregator(settings, client, observer=reporter)
        try:
            return await query(aggregator)
        finally:
            await aggregator.aclose()


def render_alerts(alerts: Sequence[AlertDTO], title: str) -> None:
    if not alerts:
        CONSOLE.print("[bold green]No alerts currently available[/bold green]")
        return
    table = Table(title=title)
    table.add_column("Severity")
    table.add_column("Urgency")
    table.add_column("Event")
    table.add_column("Areas")
    table.add_column("Starts")
    table.add_column("Ends")
    table.add_column("Source")
    for alert in alerts:
        style = SEVERITY_STYLES.get(alert.severity.value, "")
        table.add_row(
            f"[{style}]{alert.severity.value}[/{style}]" if style else alert.severity.value,
            alert.urgency.value,
            alert.headline,
            ", ".join(alert.areas),
            alert.starts_at,
            alert.ends_at,
            alert.source.value,
        )
    CONSOLE.print(table)


def render_report(reporter: OutcomeReporter) -> None:
    table = Table(title="Provider Summary")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Alerts")
    table.add_column("Seconds")
    table.add_column("Error")
    for row in reporter.summary()["providers"]:
        table.add_row(
            row["provider"],
            row["status"],
            str(row["alert_count"]),
            str(row["duration_seconds"]),
            row["error"] or "",
        )
    CONSOLE.print(table)


def _emit(
    response: AlertsResponse,
    title: str,
    as_json: bool,
    reporter: OutcomeReporter | None,
    report_path: Path | None = None,
) -> None:
    if as_json:
        click.echo(json.dumps(response.to_payload(), indent=2))
    else:
        CONSOLE.print(f"Updated at [cyan]{response.updated_at}[/cyan]")
        render_alerts(response.alerts, title)
    if reporter is not None:
        render_report(reporter)
    if report_path is not None:
        CONSOLE.print(f"Saved provider report to [cyan]{report_path}[/cyan]")


def _execute(
    query: Callable[[AlertAggregator], Awaitable[AlertsResponse]],
    report: bool,
    report_dir: Path | None = None,
) -> tuple[AlertsResponse, OutcomeReporter | None, Path | None]:
    reporter = OutcomeReporter() if report or report_dir is not None else None
    if reporter is not None:
        reporter.start_run()
    try:
        response = asyncio.run(run_query(query, reporter))
    except QueryValidationError as exc:
        table = Table(title="Invalid query")
        table.add_column("Field")
        table.add_column("Message")
        for issue in exc.issues:
            table.add_row(issue["field"], issue["message"])
        CONSOLE.print(table)
        raise SystemExit(2) from exc
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc
    finally:
        if reporter is not None:
            reporter.finish_run()
    report_path = None
    if reporter is not None and report_dir is not None:
        report_path = reporter.persist(report_dir)
    return response, reporter if report else None, report_path


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Query normalised weather alerts from upstream providers."""
    configure_logging(logging.DEBUG if verbose else logging.WARNING)


@main.command()
@click.option("--lat", type=str, required=True, help="Latitude in decimal degrees")
@click.option("--lon", type=str, required=True, help="Longitude in decimal degrees")
@click.option("--lang", type=str, default="en", show_default=True)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON")
@click.option("--report", is_flag=True, default=False, help="Show per-provider outcomes")
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for persisted provider outcome summaries",
)
def coords(
    lat: str,
    lon: str,
    lang: str,
    as_json: bool,
    report: bool,
    report_dir: Path | None,
) -> None:
    """Alerts for a coordinate pair."""
    response, reporter, report_path = _execute(
        lambda aggregator: aggregator.get_alerts_by_coords(lat, lon, lang),
        report,
        report_dir,
    )
    _emit(response, f"Alerts near {lat}, {lon}", as_json, reporter, report_path)


@main.command()
@click.option("--code", type=str, required=True, help="ISO-3166 alpha-2 country code")
@click.option("--lang", type=str, default="en", show_default=True)
@click.option("--limit", type=str, default=None, help="Maximum alerts (1-500, default 120)")
@click.option("--area", type=str, default=None, help="Area name substring filter")
@click.option("--min-severity", type=str, default=None, help="minor|moderate|severe|extreme")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON")
@click.option("--report", is_flag=True, default=False, help="Show per-provider outcomes")
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for persisted provider outcome summaries",
)
def country(
    code: str,
    lang: str,
    limit: str | None,
    area: str | None,
    min_severity: str | None,
    as_json: bool,
    report: bool,
    report_dir: Path | None,
) -> None:
    """Alerts for a whole country."""
    response, reporter, report_path = _execute(
        lambda aggregator: aggregator.get_alerts_by_country(
            code, lang, limit=limit, area=area, min_severity=min_severity
        ),
        report,
        report_dir,
    )
    if not as_json:
        meta = response.meta
        providers = ", ".join(meta.providers) or "none"
        CONSOLE.print(
            f"Providers: [bold]{providers}[/bold] (region supported: {meta.region_supported})"
        )
    _emit(
        response,
        f"Alerts for {code.strip().upper()[:2]}",
        as_json,
        reporter,
        report_path,
    )


@main.command("parse-feed")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--lang",
    type=click.Choice(ALLOWED_LANGUAGES, case_sensitive=False),
    default="en",
    show_default=True,
)
@click.option(
    "--source",
    type=click.Choice([source.value for source in AlertSource]),
    default=AlertSource.METEOALARM.value,
    show_default=True,
    help="Source identity stamped on the parsed alerts",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print raw JSON")
def parse_feed(path: Path, lang: str, source: str, as_json: bool) -> None:
    """Normalise a local CAP, Atom or RSS document."""
    try:
        alerts = alerts_from_xml(path.read_bytes(), AlertSource(source), lang.lower())
    except ET.ParseError as exc:
        raise SystemExit(f"Unable to parse {path}: {exc}") from exc
    if as_json:
        click.echo(json.dumps([alert.to_payload() for alert in alerts], indent=2))
        return
    render_alerts(alerts, f"Alerts in {path.name}")


if __name__ == "__main__":  # pragma: no cover
    main()

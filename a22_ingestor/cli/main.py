"""Command line entry point for the A22 traffic ingestor."""

from __future__ import annotations

import click
from prometheus_client import start_http_server

from ..client.source_client import SourceClient
from ..exceptions import A22IngestorError, ConfigurationError, InvalidWindowError
from ..models.base import get_session_factory, reset_engine, session_scope
from ..models.repository import TrafficRepository
from ..sync.bulk import run_bulk_load
from ..sync.follower import IncrementalFollower
from ..sync.windows import SyncWindow, interval_window, month_window
from ..utils.config import GlobalSettings, WebserviceSettings, ensure_runtime_configuration
from ..utils.logging import setup_logger
from ..utils.signals import GracefulShutdown, install_signal_handlers

logger = setup_logger(__name__)


def resolve_webservice_settings(settings: GlobalSettings) -> WebserviceSettings:
    """Return web service settings, reading the credentials row when unset.

    Credentials configured through ``A22_WEBSERVICE__*`` take precedence
    over the ``webservice`` table.
    """

    if settings.webservice.has_credentials():
        return settings.webservice

    with session_scope() as session:
        record = TrafficRepository(session).webservice_credentials()
        if record is None:
            raise ConfigurationError(
                "No web service credentials: set A22_WEBSERVICE__URL, "
                "A22_WEBSERVICE__USERNAME and A22_WEBSERVICE__PASSWORD "
                "or add a row with id 1 to the webservice table"
            )
        return WebserviceSettings(
            **{
                **settings.webservice.model_dump(),
                "url": record.url,
                "username": record.username,
                "password": record.password,
            }
        )


def _prepare(ctx: click.Context) -> tuple[GlobalSettings, WebserviceSettings]:
    try:
        settings = ensure_runtime_configuration()
        webservice = resolve_webservice_settings(settings)
    except A22IngestorError as exc:
        raise click.ClickException(str(exc)) from exc

    metrics_port = ctx.obj.get("metrics_port") or settings.sync.metrics_port
    if metrics_port:
        start_http_server(metrics_port)
        logger.info("Serving Prometheus metrics on port %d", metrics_port)
    return settings, webservice


def _run_bulk(ctx: click.Context, window: SyncWindow) -> None:
    settings, webservice = _prepare(ctx)
    logger.info("Bulk load %d..%d with %d workers", window.start, window.end, settings.sync.worker_count)
    try:
        with SourceClient.open(webservice, sync=settings.sync) as client:
            report = run_bulk_load(
                window,
                client=client,
                sync=settings.sync,
                session_factory=get_session_factory(),
            )
    except A22IngestorError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        reset_engine()

    click.echo(
        f"Loaded {report.events_written} events for {report.stations} stations "
        f"({len(report.failed_workers)} of {len(report.workers)} workers failed)"
    )
    if report.failed_workers:
        ctx.exit(1)


@click.group()
@click.option(
    "--metrics-port",
    type=click.IntRange(1, 65535),
    default=None,
    help="Expose Prometheus metrics on this port.",
)
@click.pass_context
def cli(ctx: click.Context, metrics_port: int | None) -> None:
    """Synchronise A22 highway transit events into the database."""

    ctx.ensure_object(dict)
    ctx.obj["metrics_port"] = metrics_port


@cli.command()
@click.argument("year", type=int)
@click.argument("month", type=int)
@click.pass_context
def month(ctx: click.Context, year: int, month: int) -> None:
    """Load every event of one calendar month (UTC).

    Example:

        a22-ingestor month 2023 6
    """

    try:
        window = month_window(year, month)
    except InvalidWindowError as exc:
        raise click.BadParameter(str(exc), param_hint="'YEAR MONTH'") from exc
    _run_bulk(ctx, window)


@cli.command()
@click.argument("start", type=int)
@click.argument("end", type=int)
@click.pass_context
def interval(ctx: click.Context, start: int, end: int) -> None:
    """Load every event between two Unix timestamps."""

    try:
        window = interval_window(start, end)
    except InvalidWindowError as exc:
        raise click.BadParameter(str(exc), param_hint="'START END'") from exc
    _run_bulk(ctx, window)


@cli.command()
@click.pass_context
def follow(ctx: click.Context) -> None:
    """Poll the web service until SIGTERM or SIGINT."""

    settings, webservice = _prepare(ctx)
    shutdown = GracefulShutdown()
    shutdown.register_handler(reset_engine)
    install_signal_handlers(shutdown)

    follower = IncrementalFollower(webservice, sync=settings.sync)
    try:
        follower.run_forever(shutdown.stop_event)
    finally:
        shutdown.shutdown()


if __name__ == "__main__":
    cli()

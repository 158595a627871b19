"""CLI entry point for the ipscope exporter."""

import logging
import signal
import sys
import threading

import click
from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
)

from ipscope.config import DEFAULT_CONFIG_PATH, ConfigError, IpscopeConfig, load_config
from ipscope.errors import MetricsRegistrationError
from ipscope.exporter import Exporter, refresh_loop
from ipscope.geolocation import IpApiClient
from ipscope.output import FORMATS, render
from ipscope.server import serve

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    type=click.Path(exists=False),
    help="Path to YAML config file.",
)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Resolve every node once, print the results and exit.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    default="table",
    type=click.Choice(FORMATS, case_sensitive=False),
    show_default=True,
    help="Output format for --once.",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    show_default=True,
    help="Logging verbosity.",
)
def main(config_path: str, once: bool, output_format: str, log_level: str) -> None:
    """Export the datacenter location of configured nodes as Prometheus metrics."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(levelname)s: %(message)s",
    )

    try:
        cfg = load_config(config_path)
    except (ConfigError, FileNotFoundError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    logger.debug("Config loaded: %s", cfg)

    registry = build_registry()
    with IpApiClient(timeout=cfg.lookup.timeout) as resolver:
        try:
            exporter = Exporter(registry, cfg.metrics.prefix, resolver)
        except MetricsRegistrationError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

        stop = threading.Event()
        previous_handlers = _install_signal_handlers(stop)
        try:
            if once:
                _run_once(exporter, cfg, stop, output_format)
            else:
                _run_server(exporter, cfg, registry, stop)
        finally:
            stop.set()
            _restore_signal_handlers(previous_handlers)


def build_registry() -> CollectorRegistry:
    """Create a registry pre-populated with process and runtime collectors."""
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    return registry


def _run_once(
    exporter: Exporter,
    cfg: IpscopeConfig,
    stop: threading.Event,
    output_format: str,
) -> None:
    """Resolve all nodes once and print the outcome.

    Exits with status 1 if any lookup failed.
    """
    err = exporter.refresh(cfg.nodes, stop)
    render(exporter.statuses(), output_format.lower())
    if err is not None:
        logger.warning("Datacenter lookup finished with warnings: %s", err)
        sys.exit(1)


def _run_server(
    exporter: Exporter,
    cfg: IpscopeConfig,
    registry: CollectorRegistry,
    stop: threading.Event,
) -> None:
    """Initial refresh, then serve metrics with optional periodic refresh."""
    err = exporter.refresh(cfg.nodes, stop)
    if err is not None:
        logger.warning("Datacenter lookup finished with warnings: %s", err)

    refresher: threading.Thread | None = None
    interval = cfg.lookup.refresh_interval
    if interval > 0:

        def _refresh_later() -> None:
            if not stop.wait(interval):
                refresh_loop(exporter, cfg.nodes, interval, stop)

        refresher = threading.Thread(
            target=_refresh_later, name="ipscope-refresh", daemon=True
        )
        refresher.start()
        logger.info("Refreshing datacenter lookups every %gs", interval)

    try:
        serve(cfg.server.host, cfg.server.port, registry, stop)
    finally:
        stop.set()
        if refresher is not None:
            refresher.join()


def _install_signal_handlers(stop: threading.Event) -> dict:
    """Set *stop* on SIGINT/SIGTERM; return the handlers that were replaced."""

    def _handle(signum, _frame) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handle)
        except ValueError:
            # Not running in the main thread.
            logger.debug("Cannot install handler for %s", sig)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

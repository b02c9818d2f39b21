"""
tikstat entry point.

Usage:
    tikstat --cfg-dir /etc/tikstat        Poll devices and serve /metrics
    tikstat --cfg-dir /etc/tikstat show   Print resolved device profiles
    tikstat mock-device --port 18728      Fake RouterOS REST API for local testing
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path

import click

from tikstat import __version__
from tikstat.collector.base import build_registry
from tikstat.config.global_config import GLOBAL_FILE, GlobalConfig, load_global_config
from tikstat.config.loader import DEVICES_FILE, load_devices
from tikstat.config.profile import DEFAULT_ENABLEMENT, DeviceProfile, enabled_flags, resolve_profiles
from tikstat.errors import ConfigParseError
from tikstat.metrics import MetricsSink
from tikstat.orchestrator import DEFAULT_SHUTDOWN_GRACE, Orchestrator


log = logging.getLogger("tikstat")


def _load(cfg_dir: str):
    directory = Path(cfg_dir)
    global_config = load_global_config(directory / GLOBAL_FILE)
    profiles = resolve_profiles(load_devices(directory / DEVICES_FILE))
    return global_config, profiles


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="tikstat")
@click.option("--cfg-dir", default="./", show_default=True,
              help="Directory holding tikstat.conf and _tikstat.conf")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, cfg_dir: str, verbose: bool):
    """tikstat - Prometheus exporter for RouterOS devices."""
    ctx.ensure_object(dict)
    ctx.obj["cfg_dir"] = cfg_dir
    ctx.obj["verbose"] = verbose

    if ctx.invoked_subcommand is None:
        try:
            global_config, profiles = _load(cfg_dir)
        except ConfigParseError as e:
            click.echo(f"Configuration error: {e}", err=True)
            raise SystemExit(1)

        _configure_logging(verbose or global_config.verbose_mode)
        serve(global_config, list(profiles.values()))


def serve(global_config: GlobalConfig, profiles, grace: float = DEFAULT_SHUTDOWN_GRACE):
    """Start every device, expose /metrics and block until SIGINT/SIGTERM."""
    from prometheus_client import start_http_server

    try:
        host, port = global_config.listen_address
    except ConfigParseError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)

    sink = MetricsSink()
    orchestrator = Orchestrator(profiles, global_config, build_registry(), sink)

    def _on_signal(signum, _frame):
        log.info("Received signal %s, initiating shutdown...", signal.Signals(signum).name)
        orchestrator.request_stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    orchestrator.start()

    server, _thread = start_http_server(port, addr=host, registry=sink.registry)
    log.info("Serving metrics on http://%s:%d/metrics", host, port)

    try:
        orchestrator.run_forever()
    finally:
        log.info("Shutting down metrics server...")
        server.shutdown()
        orchestrator.shutdown(grace)


def _flag_cell(profile: DeviceProfile, compact: bool) -> str:
    if compact:
        flags = [
            f"{flag}={'on' if profile.is_enabled(flag) else 'off'}"
            for flag, default in DEFAULT_ENABLEMENT.items()
            if profile.is_enabled(flag) != default
        ]
        return ", ".join(flags) or "[dim]defaults[/dim]"
    return ", ".join(enabled_flags(profile))


@cli.command()
@click.pass_context
def show(ctx):
    """Print the resolved device profiles."""
    from rich.console import Console
    from rich.table import Table

    try:
        global_config, profiles = _load(ctx.obj["cfg_dir"])
    except ConfigParseError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)

    compact = global_config.compact_default_conf_values
    console = Console()

    if not profiles:
        console.print("\n[dim]No devices configured.[/dim]\n")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Device", style="cyan")
    table.add_column("Address")
    table.add_column("User")
    table.add_column("TLS", justify="center")
    table.add_column("Scheduled", justify="center")
    table.add_column("Changed metrics" if compact else "Enabled metrics")

    for name, profile in sorted(profiles.items()):
        tls = "off" if profile.use_ssl is False else (
            "verify" if profile.ssl_certificate_verify is not False else "no-verify")
        table.add_row(
            name,
            f"{profile.hostname or 'localhost'}:{profile.port or ('80' if tls == 'off' else '443')}",
            profile.username or "admin",
            tls,
            "[green]yes[/green]" if profile.scheduled else "[red]no[/red]",
            _flag_cell(profile, compact),
        )

    console.print(table)
    console.print()


@cli.command("mock-device")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=18728, show_default=True, help="Port for the fake REST API")
def mock_device(host: str, port: int):
    """Run a fake RouterOS REST API for local development."""
    from tikstat.mock.fake_routeros_server import run_fake_server

    run_fake_server(host=host, port=port)


if __name__ == "__main__":
    cli()

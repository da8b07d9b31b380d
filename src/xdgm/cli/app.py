"""Command line entry point running the monitor headless."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from .._version import __version__
from ..configuration import MonitorSettings, load_config
from ..logging.config import setup_logging
from ..monitor.alerts import AlertLog
from ..monitor.registry import NodeRegistry
from ..monitor.service import TelemetryMonitor
from ..telemetry.layouts import LayoutVersion
from ..telemetry.udp import AsyncTelemetryListener
from .errors import CliError, log_cli_error

__all__ = ["build_parser", "format_node_summary", "main", "run_cli"]


logger = logging.getLogger(__name__)

_OVERRIDE_KEYS = ("host", "port", "layout")


def _build_config_parser() -> argparse.ArgumentParser:
    config_parser = argparse.ArgumentParser(add_help=False)
    config_parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to the pyproject.toml (or its directory) holding [tool.xdgm].",
    )
    config_parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        help="Logging level (default: info).",
    )
    config_parser.add_argument(
        "--log-output",
        dest="log_output",
        default=None,
        help="Logging destination (stdout, stderr or a file path).",
    )
    config_parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=("json", "text"),
        default=None,
        help="Logging formatter (json or text).",
    )
    return config_parser


def build_parser(parents: Sequence[argparse.ArgumentParser] = ()) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xdgm",
        description="Listen for node telemetry datagrams and log liveness and warning alerts.",
        parents=list(parents),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=None, help="Address to bind (default: 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="UDP port to bind (default: 12345).")
    parser.add_argument(
        "--layout",
        choices=[member.value for member in LayoutVersion],
        default=None,
        help="Datagram layout the nodes emit (default: xdgm-v1).",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Stop after this many seconds instead of running until interrupted.",
    )
    return parser


def _resolve_settings(namespace: argparse.Namespace, config: Mapping[str, Any]) -> MonitorSettings:
    monitor_cfg = config.get("monitor", {})
    payload = dict(monitor_cfg) if isinstance(monitor_cfg, Mapping) else {}
    for key in _OVERRIDE_KEYS:
        value = getattr(namespace, key, None)
        if value is not None:
            payload[key] = value
    try:
        return MonitorSettings.from_mapping(payload)
    except ValueError as exc:
        raise CliError(
            str(exc),
            category="usage",
            context={"config_path": config.get("_config_path")},
        ) from exc


async def _run_monitor(
    monitor: TelemetryMonitor, settings: MonitorSettings, duration: float | None
) -> None:
    try:
        listener = await AsyncTelemetryListener.create(settings.host, settings.port)
    except OSError as exc:
        raise CliError(
            f"Unable to bind UDP {settings.host}:{settings.port}: {exc}",
            category="io",
            context={"host": settings.host, "port": settings.port},
        ) from exc

    host, port = listener.address
    logger.info(
        "Listening for telemetry.",
        extra={
            "event": "cli.listening",
            "host": host,
            "port": port,
            "layout": settings.layout.value,
        },
    )
    stop_event = asyncio.Event()
    timer = None
    if duration is not None:
        timer = asyncio.get_running_loop().call_later(max(duration, 0.0), stop_event.set)
    try:
        await monitor.run(listener, stop_event=stop_event, tick_interval=settings.tick_interval)
    finally:
        if timer is not None:
            timer.cancel()
        await listener.close()


def format_node_summary(registry: NodeRegistry) -> str:
    """One line per tracked node: slot, identifier, status and ledger."""

    nodes = registry.nodes()
    if not nodes:
        return "No nodes reported telemetry."
    lines = []
    for state in nodes:
        ledger = state.snapshot.ledger_seq if state.snapshot is not None else "-"
        lines.append(f"{state.slot:>2}  {state.identifier}  {state.status.label:<10}  ledger {ledger}")
    return "\n".join(lines)


def run_cli(args: Optional[Sequence[str]] = None) -> str:
    """Run the monitor and return the per-node summary printed on exit."""

    config_parser = _build_config_parser()
    preliminary, _ = config_parser.parse_known_args(args)

    config = load_config(preliminary.config_path)
    logging_table = config.get("logging", {})
    logging_config = dict(logging_table) if isinstance(logging_table, Mapping) else {}
    if preliminary.log_level is not None:
        logging_config["level"] = preliminary.log_level
    if preliminary.log_output is not None:
        logging_config["output"] = preliminary.log_output
    if preliminary.log_format is not None:
        logging_config["format"] = preliminary.log_format
    logging_config.setdefault("level", "info")
    logging_config.setdefault("output", "stderr")
    logging_config.setdefault("format", "json")
    config["logging"] = logging_config

    namespace = build_parser([config_parser]).parse_args(args)

    try:
        try:
            setup_logging(config)
        except ValueError as exc:
            raise CliError(str(exc), category="usage", context={"logging": logging_config}) from exc
        settings = _resolve_settings(namespace, config)
        registry = NodeRegistry(
            capacity=settings.capacity,
            alert_log=AlertLog(settings.alert_log_capacity),
            policy=settings.policy,
        )
        monitor = TelemetryMonitor(registry, layout=settings.layout)
        try:
            asyncio.run(_run_monitor(monitor, settings, namespace.duration))
        except KeyboardInterrupt:
            logger.info("Interrupted; shutting down.", extra={"event": "cli.interrupted"})
    except CliError as exc:
        if not exc.logged:
            log_cli_error(exc.payload, exc_info=exc)
            exc.logged = True
        message = exc.payload.message
        if message:
            sys.stdout.write(message)
            if not message.endswith("\n"):
                sys.stdout.write("\n")
        raise SystemExit(exc.status_code) from exc

    logger.info(
        "Monitor stopped.",
        extra={"event": "cli.stopped", **monitor.statistics},
    )
    result = format_node_summary(registry)
    sys.stdout.write(result)
    if not result.endswith("\n"):
        sys.stdout.write("\n")
    return result


def main() -> None:  # pragma: no cover - thin wrapper
    run_cli()


if __name__ == "__main__":  # pragma: no cover - CLI invocation guard
    main()

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import signal
import threading
from collections.abc import Sequence

from kubernetes.config.config_exception import ConfigException

from config_updater.src.config import AGENT_VERSION, UpdaterConfig, load_config
from config_updater.src.controller import SyncController, build_controller
from config_updater.src.errors import ConfigUpdaterError
from config_updater.src.health import start_health_server
from config_updater.src.kube import build_clients, load_kube_configuration
from config_updater.src.metrics import METRICS

LOGGER = logging.getLogger(__name__)

_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|access_token|api_key|password)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(/api/v1/agent/(?:restart-status|ingestion-rules)/)([^/?\s]+)"),
        r"\1[REDACTED]",
    ),
)
_STRUCTURED_FIELDS = ("kind", "operation", "object")


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation.

    ``kind``, ``operation`` and ``object`` passed through ``extra`` become
    top-level fields so pipeline failures can be filtered per workload.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = str(value)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    """Configure structured JSON logging with a level from ``LOG_LEVEL`` env var."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mw-config-updater",
        description="Middleware Kubernetes agent configuration updater",
    )
    parser.add_argument("--api-key", help="Middleware API key for your account (MW_API_KEY)")
    parser.add_argument("--target", help="Middleware target for your account (MW_TARGET)")
    parser.add_argument(
        "--config-check-interval",
        help=(
            "Duration string to periodically check for configuration updates "
            "(MW_CONFIG_CHECK_INTERVAL, default 60s). Setting the value to 0 "
            "disables polling."
        ),
    )
    parser.add_argument("--api-url-for-config-check", help=argparse.SUPPRESS)

    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser(
        "update",
        help="Watch for configuration updates and restart the agent when a change is detected",
    )
    subcommands.add_parser(
        "force-update-configmaps",
        help="Update the configmaps as per server settings and restart the agent",
    )
    return parser.parse_args(argv)


def _env_with_overrides(args: argparse.Namespace) -> dict[str, str]:
    env = dict(os.environ)
    overrides = {
        "MW_API_KEY": args.api_key,
        "MW_TARGET": args.target,
        "MW_CONFIG_CHECK_INTERVAL": args.config_check_interval,
        "MW_API_URL_FOR_CONFIG_CHECK": args.api_url_for_config_check,
    }
    env.update({name: value for name, value in overrides.items() if value is not None})
    return env


def _install_signal_handlers(shutdown_event: threading.Event) -> None:
    def _handle_signal(signum: int, frame: object) -> None:
        LOGGER.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)


def _run_update(controller: SyncController, updater_config: UpdaterConfig) -> int:
    health_server = start_health_server(
        readiness=controller.readiness, port=updater_config.health_port
    )
    shutdown_event = threading.Event()
    _install_signal_handlers(shutdown_event)
    try:
        controller.run_forever(shutdown_event=shutdown_event)
    finally:
        health_server.stop()
    return 0


def _run_force_update(controller: SyncController) -> int:
    shutdown_event = threading.Event()
    _install_signal_handlers(shutdown_event)
    results = controller.force_update(stop_event=shutdown_event)
    failed = [result for result in results if not result.applied]
    for result in failed:
        LOGGER.error(
            "Forced update of %s did not complete (step=%s)",
            result.kind.value,
            result.failed_operation,
            extra={"kind": result.kind.value, "operation": result.failed_operation},
        )
    return 1 if failed else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Updater entrypoint: load config, connect to the cluster, run the command."""
    args = _parse_args(argv)
    configure_logging()
    METRICS.build_info.info(
        {
            "version": os.getenv("MW_AGENT_VERSION", AGENT_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        updater_config = load_config(_env_with_overrides(args))
    except ConfigUpdaterError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2
    LOGGER.info("Using backend %s", updater_config.api_base_url)

    try:
        load_kube_configuration()
    except ConfigException:
        LOGGER.exception("Could not load Kubernetes credentials")
        return 1
    core_api, apps_api = build_clients()

    controller = build_controller(updater_config, core_api=core_api, apps_api=apps_api)
    try:
        if args.command == "force-update-configmaps":
            return _run_force_update(controller)
        return _run_update(controller, updater_config)
    finally:
        controller.backend.close()
        LOGGER.info("Config updater stopped")


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()

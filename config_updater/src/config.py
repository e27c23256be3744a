from __future__ import annotations

import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from config_updater.src.errors import ConfigError
from config_updater.src.target import api_url_for_config_check
from config_updater.src.workload import AgentWorkloads

AGENT_VERSION = "0.1.0"

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration (``30s``, ``1m30s``, ``500ms``) into seconds.

    A bare number is taken as seconds, so ``"0"`` disables polling.
    """
    raw = value.strip()
    if not raw:
        raise ConfigError("duration must not be empty")

    try:
        seconds = float(raw)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds) or seconds < 0:
            raise ConfigError(f"duration must be a non-negative number, got: {value!r}")
        return seconds

    position = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(raw):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(raw):
        raise ConfigError(f"invalid duration: {value!r}")
    return total


def env_float(values: Mapping[str, str], name: str, default: float, *, minimum: float) -> float:
    raw = values.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    return value


def env_int(
    values: Mapping[str, str],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = values.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


@dataclass(frozen=True)
class UpdaterConfig:
    """Immutable updater configuration resolved once at startup.

    Attributes:
        api_key:          Account API key, sent as the last path segment.
        api_base_url:     Backend origin, derived from the target unless set
                          explicitly.
        cluster_name:     Sent as both ``cluster`` and ``host_id``.
        check_interval_seconds: Poll interval; ``0`` disables polling.
    """

    api_key: str
    api_base_url: str
    cluster_name: str
    check_interval_seconds: float = 60.0
    agent_version: str = AGENT_VERSION
    request_timeout_seconds: float = 10.0
    health_port: int = 8080
    target: str = ""
    workloads: AgentWorkloads = field(default_factory=AgentWorkloads)

    @property
    def polling_enabled(self) -> bool:
        return self.check_interval_seconds > 0

    def __repr__(self) -> str:
        return (
            f"UpdaterConfig(api_base_url={self.api_base_url!r}, "
            f"cluster_name={self.cluster_name!r}, "
            f"check_interval_seconds={self.check_interval_seconds}, "
            f"agent_version={self.agent_version!r}, workloads={self.workloads!r})"
        )


def _required(values: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (values.get(name) or "").strip()
        if value:
            return value
    raise ConfigError(f"{' or '.join(names)} must be set")


def load_config(env: Mapping[str, str] | None = None) -> UpdaterConfig:
    """Load updater config from the environment.

    ``MW_API_URL_FOR_CONFIG_CHECK`` wins over the target; otherwise the
    base URL is derived from ``MW_TARGET`` (or ``TARGET``), which raises
    :class:`~config_updater.src.errors.InvalidTargetError` when malformed.
    """
    values = env if env is not None else os.environ

    api_key = _required(values, "MW_API_KEY")
    cluster_name = _required(values, "MW_KUBE_CLUSTER_NAME")

    target = (values.get("MW_TARGET") or values.get("TARGET") or "").strip()
    api_base_url = (values.get("MW_API_URL_FOR_CONFIG_CHECK") or "").strip().rstrip("/")
    if not api_base_url:
        if not target:
            raise ConfigError("MW_TARGET must be set when MW_API_URL_FOR_CONFIG_CHECK is not")
        api_base_url = api_url_for_config_check(target)

    interval = parse_duration(values.get("MW_CONFIG_CHECK_INTERVAL") or "60s")

    namespace = (values.get("MW_NAMESPACE") or "").strip() or "mw-agent-ns"
    workloads = AgentWorkloads(
        namespace=namespace,
        daemonset=(values.get("MW_DAEMONSET_NAME") or "mw-kube-agent").strip(),
        deployment=(values.get("MW_DEPLOYMENT_NAME") or "mw-kube-agent").strip(),
        daemonset_config_map=(
            values.get("MW_DAEMONSET_CONFIGMAP") or "mw-daemonset-otel-config"
        ).strip(),
        deployment_config_map=(
            values.get("MW_DEPLOYMENT_CONFIGMAP") or "mw-deployment-otel-config"
        ).strip(),
    )

    return UpdaterConfig(
        api_key=api_key,
        api_base_url=api_base_url,
        cluster_name=cluster_name,
        check_interval_seconds=interval,
        agent_version=(values.get("MW_AGENT_VERSION") or AGENT_VERSION).strip(),
        request_timeout_seconds=env_float(
            values, "MW_REQUEST_TIMEOUT_SECONDS", 10.0, minimum=0.1
        ),
        health_port=env_int(values, "HEALTH_PORT", 8080, minimum=1, maximum=65535),
        target=target,
        workloads=workloads,
    )

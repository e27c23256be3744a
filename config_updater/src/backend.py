from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

from config_updater.src.errors import (
    BackendRejectedError,
    DecodeError,
    EmptyConfigError,
    TransportError,
)
from config_updater.src.workload import WorkloadKind

LOGGER = logging.getLogger(__name__)

RESTART_STATUS_PATH = "api/v1/agent/restart-status"
INGESTION_RULES_PATH = "api/v1/agent/ingestion-rules"
PLATFORM = "k8s"


@dataclass(frozen=True)
class RestartStatus:
    """Decoded ``restart-status`` answer.

    ``success`` mirrors the body's ``status`` field. A false value is not an
    error at this layer; callers decide what to do with it.
    """

    success: bool
    restart: bool
    restart_daemonset: bool
    restart_deployment: bool
    message: str = ""

    def should_restart(self, kind: WorkloadKind) -> bool:
        if kind is WorkloadKind.DAEMONSET:
            return self.restart_daemonset
        return self.restart_deployment

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RestartStatus:
        rollout = payload.get("rollout") or {}
        if not isinstance(rollout, dict):
            raise DecodeError("restart-status 'rollout' is not an object")
        return cls(
            success=bool(payload.get("status", False)),
            restart=bool(payload.get("restart", False)),
            restart_daemonset=bool(rollout.get("daemonset", False)),
            restart_deployment=bool(rollout.get("deployment", False)),
            message=str(payload.get("message") or ""),
        )


@dataclass(frozen=True)
class ConfigBlobs:
    """Decoded ``ingestion-rules`` answer with one blob per workload kind."""

    success: bool
    config_by_kind: dict[WorkloadKind, dict[str, Any]] = field(default_factory=dict)
    message: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ConfigBlobs:
        config = payload.get("config") or {}
        if not isinstance(config, dict):
            raise DecodeError("ingestion-rules 'config' is not an object")

        by_kind: dict[WorkloadKind, dict[str, Any]] = {}
        for kind in WorkloadKind:
            blob = config.get(kind.value) or {}
            if not isinstance(blob, dict):
                raise DecodeError(f"ingestion-rules config for {kind} is not an object")
            by_kind[kind] = blob

        return cls(
            success=bool(payload.get("status", False)),
            config_by_kind=by_kind,
            message=str(payload.get("message") or ""),
        )


class BackendClient:
    """Read-only client for the agent configuration endpoints.

    Both calls are plain GETs; nothing is retried here. The polling interval
    of the sync controller is the retry policy.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        cluster_name: str,
        agent_version: str,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.cluster_name = cluster_name
        self.agent_version = agent_version
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"mw-config-updater/{agent_version}"})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}/{quote(self.api_key, safe='')}"

    def _params(self, **extra: str) -> dict[str, str]:
        params = {
            "platform": PLATFORM,
            "host_id": self.cluster_name,
            "cluster": self.cluster_name,
            "agent_version": self.agent_version,
        }
        params.update(extra)
        return params

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        # The API key is part of the URL; log the endpoint path only.
        try:
            response = self.session.get(
                self._url(path),
                params=params,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TransportError(f"GET {path} failed: {exc.__class__.__name__}") from exc

        if not 200 <= response.status_code < 300:
            raise TransportError(f"GET {path} returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodeError(f"GET {path} returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise DecodeError(f"GET {path} returned {type(payload).__name__}, expected object")
        return payload

    def check_restart_status(self) -> RestartStatus:
        """Ask the backend whether either workload kind needs new configuration."""
        payload = self._get_json(RESTART_STATUS_PATH, self._params())
        status = RestartStatus.from_payload(payload)
        LOGGER.debug(
            "Restart status: success=%s daemonset=%s deployment=%s",
            status.success,
            status.restart_daemonset,
            status.restart_deployment,
        )
        return status

    def fetch_config_blobs(self, kind: WorkloadKind) -> ConfigBlobs:
        payload = self._get_json(
            INGESTION_RULES_PATH,
            self._params(component_type=kind.value),
        )
        return ConfigBlobs.from_payload(payload)

    def fetch_config(self, kind: WorkloadKind) -> dict[str, Any]:
        """Fetch the pipeline configuration blob for *kind*.

        Raises :class:`BackendRejectedError` when the backend reports failure
        and :class:`EmptyConfigError` when there is nothing safe to write,
        either because both kinds came back empty or the requested one did.
        """
        blobs = self.fetch_config_blobs(kind)
        if not blobs.success:
            raise BackendRejectedError(
                f"ingestion-rules for {kind} rejected by backend: {blobs.message or 'no message'}"
            )

        if not any(blobs.config_by_kind.values()):
            raise EmptyConfigError("ingestion-rules returned no config for daemonset or deployment")

        blob = blobs.config_by_kind.get(kind) or {}
        if not blob:
            raise EmptyConfigError(f"ingestion-rules returned no config for {kind}")
        return blob

    def close(self) -> None:
        self.session.close()

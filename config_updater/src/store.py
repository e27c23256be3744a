from __future__ import annotations

import logging
from typing import Any

import yaml
from kubernetes.client import ApiException, CoreV1Api

from config_updater.src.kube import translate_api_exception
from config_updater.src.workload import AgentWorkloads, WorkloadKind

LOGGER = logging.getLogger(__name__)

OTEL_CONFIG_KEY = "otel-config"


def serialize_config(blob: dict[str, Any]) -> str:
    """Render a pipeline configuration blob as the YAML stored in the ConfigMap."""
    return yaml.safe_dump(blob, default_flow_style=False, sort_keys=True)


class ConfigStoreWriter:
    """Writes fetched pipeline configuration into the agent's ConfigMaps.

    Each update is a read followed by a ``replace`` that carries the read
    ``resourceVersion``, so the API server rejects the write with 409 if the
    ConfigMap changed in between. Only the ``otel-config`` key is touched.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        workloads: AgentWorkloads,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.workloads = workloads
        self.logger = logger or LOGGER

    def update_config(self, kind: WorkloadKind, blob: dict[str, Any]) -> None:
        namespace = self.workloads.namespace
        name = self.workloads.config_map_name(kind)
        rendered = serialize_config(blob)

        try:
            config_map = self.core_api.read_namespaced_config_map(name=name, namespace=namespace)
        except ApiException as exc:
            raise translate_api_exception(
                exc, kind=kind.value, operation="read_configmap", object_name=name
            ) from exc

        if config_map.data is None:
            config_map.data = {}
        config_map.data[OTEL_CONFIG_KEY] = rendered

        try:
            updated = self.core_api.replace_namespaced_config_map(
                name=name,
                namespace=namespace,
                body=config_map,
            )
        except ApiException as exc:
            raise translate_api_exception(
                exc, kind=kind.value, operation="replace_configmap", object_name=name
            ) from exc

        resource_version = getattr(getattr(updated, "metadata", None), "resource_version", None)
        self.logger.info(
            "ConfigMap %s/%s updated (resourceVersion=%s)",
            namespace,
            name,
            resource_version,
            extra={"kind": kind.value, "operation": "update_config", "object": name},
        )

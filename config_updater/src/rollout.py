from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from kubernetes.client import ApiException, AppsV1Api

from config_updater.src.kube import translate_api_exception
from config_updater.src.workload import AgentWorkloads, WorkloadKind

LOGGER = logging.getLogger(__name__)

TIMESTAMP_LABEL = "timestamp"


def unix_now() -> int:
    return int(time.time())


def next_timestamp(previous: str | None, now: int) -> str:
    """Return the label value for a new trigger.

    Kubernetes only rolls pods when the template differs, so the value must
    never repeat: if the current label is already at or past *now* it is
    bumped by one instead.
    """
    if previous is not None:
        try:
            previous_value = int(previous)
        except ValueError:
            previous_value = None
        if previous_value is not None and previous_value >= now:
            return str(previous_value + 1)
    return str(now)


class RolloutTrigger:
    """Forces a rolling restart of an agent workload.

    Sets the pod template's ``timestamp`` label and replaces the workload,
    which is the same template-diff mechanism ``kubectl rollout restart``
    relies on. Completion of the rollout is left to the cluster.
    """

    def __init__(
        self,
        apps_api: AppsV1Api,
        workloads: AgentWorkloads,
        logger: logging.Logger | None = None,
        now_fn: Callable[[], int] = unix_now,
    ) -> None:
        self.apps_api = apps_api
        self.workloads = workloads
        self.logger = logger or LOGGER
        self.now_fn = now_fn

    def _read(self, kind: WorkloadKind, name: str) -> Any:
        namespace = self.workloads.namespace
        if kind is WorkloadKind.DAEMONSET:
            return self.apps_api.read_namespaced_daemon_set(name=name, namespace=namespace)
        return self.apps_api.read_namespaced_deployment(name=name, namespace=namespace)

    def _replace(self, kind: WorkloadKind, name: str, body: Any) -> Any:
        namespace = self.workloads.namespace
        if kind is WorkloadKind.DAEMONSET:
            return self.apps_api.replace_namespaced_daemon_set(
                name=name, namespace=namespace, body=body
            )
        return self.apps_api.replace_namespaced_deployment(
            name=name, namespace=namespace, body=body
        )

    def trigger_rollout(self, kind: WorkloadKind) -> str:
        """Bump the pod template ``timestamp`` label and return the new value."""
        name = self.workloads.workload_name(kind)

        try:
            workload = self._read(kind, name)
        except ApiException as exc:
            raise translate_api_exception(
                exc, kind=kind.value, operation=f"read_{kind.value}", object_name=name
            ) from exc

        template_metadata = workload.spec.template.metadata
        if template_metadata.labels is None:
            template_metadata.labels = {}
        labels: dict[str, str] = template_metadata.labels
        timestamp = next_timestamp(labels.get(TIMESTAMP_LABEL), self.now_fn())
        labels[TIMESTAMP_LABEL] = timestamp

        try:
            self._replace(kind, name, workload)
        except ApiException as exc:
            raise translate_api_exception(
                exc, kind=kind.value, operation=f"replace_{kind.value}", object_name=name
            ) from exc

        self.logger.info(
            "Triggered rolling restart for %s %s/%s (timestamp=%s)",
            kind.value,
            self.workloads.namespace,
            name,
            timestamp,
            extra={"kind": kind.value, "operation": "trigger_rollout", "object": name},
        )
        return timestamp

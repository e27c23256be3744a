from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any

import pytest
from kubernetes.client import ApiException

from config_updater.src.workload import AgentWorkloads


def make_config_map(name: str, data: dict[str, str] | None, resource_version: str = "1") -> Any:
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, resource_version=resource_version),
        data=data,
    )


def make_workload(
    name: str, labels: dict[str, str] | None = None, resource_version: str = "1"
) -> Any:
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, resource_version=resource_version),
        spec=SimpleNamespace(
            template=SimpleNamespace(
                metadata=SimpleNamespace(labels=labels if labels is not None else {"app": name})
            )
        ),
    )


class _VersionedStore:
    """In-memory objects with resourceVersion checks like the API server."""

    def __init__(self) -> None:
        self.objects: dict[str, Any] = {}
        self.reads: list[str] = []
        self.writes: list[tuple[str, Any]] = []
        self.fail_reads: dict[str, int] = {}
        self.fail_writes: dict[str, int] = {}
        self.modify_after_read: set[str] = set()

    def read(self, name: str) -> Any:
        self.reads.append(name)
        status = self.fail_reads.get(name)
        if status is not None:
            raise ApiException(status=status, reason="injected")
        if name not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        result = copy.deepcopy(self.objects[name])
        if name in self.modify_after_read:
            self._bump(name)
        return result

    def replace(self, name: str, body: Any) -> Any:
        status = self.fail_writes.get(name)
        if status is not None:
            raise ApiException(status=status, reason="injected")
        if name not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        current = self.objects[name]
        if body.metadata.resource_version != current.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict")
        stored = copy.deepcopy(body)
        self.objects[name] = stored
        self._bump(name)
        self.writes.append((name, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def _bump(self, name: str) -> None:
        metadata = self.objects[name].metadata
        metadata.resource_version = str(int(metadata.resource_version) + 1)


class FakeCoreApi(_VersionedStore):
    def read_namespaced_config_map(self, name: str, namespace: str) -> Any:
        return self.read(name)

    def replace_namespaced_config_map(self, name: str, namespace: str, body: Any) -> Any:
        return self.replace(name, body)


class FakeAppsApi:
    def __init__(self) -> None:
        self.daemon_sets = _VersionedStore()
        self.deployments = _VersionedStore()

    def read_namespaced_daemon_set(self, name: str, namespace: str) -> Any:
        return self.daemon_sets.read(name)

    def replace_namespaced_daemon_set(self, name: str, namespace: str, body: Any) -> Any:
        return self.daemon_sets.replace(name, body)

    def read_namespaced_deployment(self, name: str, namespace: str) -> Any:
        return self.deployments.read(name)

    def replace_namespaced_deployment(self, name: str, namespace: str, body: Any) -> Any:
        return self.deployments.replace(name, body)


@pytest.fixture
def workloads() -> AgentWorkloads:
    return AgentWorkloads(
        namespace="mw-agent-ns",
        daemonset="mw-kube-agent",
        deployment="mw-kube-agent-deploy",
        daemonset_config_map="mw-daemonset-otel-config",
        deployment_config_map="mw-deployment-otel-config",
    )


@pytest.fixture
def core_api(workloads: AgentWorkloads) -> FakeCoreApi:
    api = FakeCoreApi()
    api.objects[workloads.daemonset_config_map] = make_config_map(
        workloads.daemonset_config_map,
        {"otel-config": "receivers: {}\n", "extra-key": "keep me\n"},
    )
    api.objects[workloads.deployment_config_map] = make_config_map(
        workloads.deployment_config_map,
        {"otel-config": "receivers: {}\n"},
    )
    return api


@pytest.fixture
def apps_api(workloads: AgentWorkloads) -> FakeAppsApi:
    api = FakeAppsApi()
    api.daemon_sets.objects[workloads.daemonset] = make_workload(workloads.daemonset)
    api.deployments.objects[workloads.deployment] = make_workload(workloads.deployment)
    return api

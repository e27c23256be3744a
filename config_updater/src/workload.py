from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import assert_never


class WorkloadKind(Enum):
    """The two forms the agent is deployed as.

    The value doubles as the backend's ``component_type`` and as the
    ``kind`` label on logs and metrics.
    """

    DAEMONSET = "daemonset"
    DEPLOYMENT = "deployment"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AgentWorkloads:
    """Namespace and object names of the agent's cluster resources."""

    namespace: str = "mw-agent-ns"
    daemonset: str = "mw-kube-agent"
    deployment: str = "mw-kube-agent"
    daemonset_config_map: str = "mw-daemonset-otel-config"
    deployment_config_map: str = "mw-deployment-otel-config"

    def workload_name(self, kind: WorkloadKind) -> str:
        match kind:
            case WorkloadKind.DAEMONSET:
                return self.daemonset
            case WorkloadKind.DEPLOYMENT:
                return self.deployment
            case _:
                assert_never(kind)

    def config_map_name(self, kind: WorkloadKind) -> str:
        match kind:
            case WorkloadKind.DAEMONSET:
                return self.daemonset_config_map
            case WorkloadKind.DEPLOYMENT:
                return self.deployment_config_map
            case _:
                assert_never(kind)

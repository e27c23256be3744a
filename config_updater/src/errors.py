from __future__ import annotations


class ConfigUpdaterError(Exception):
    """Base class for every failure raised by the config updater."""


class ConfigError(ConfigUpdaterError):
    """Raised when the updater configuration is invalid."""


class InvalidTargetError(ConfigUpdaterError, ValueError):
    """Raised when a target cannot be resolved to a backend URL."""

    def __init__(self, target: str) -> None:
        super().__init__(f"invalid target: {target!r}")
        self.target = target


class TransportError(ConfigUpdaterError):
    """Network failure or non-2xx response from the backend."""


class DecodeError(ConfigUpdaterError):
    """Backend response body is not the expected JSON document."""


class BackendRejectedError(ConfigUpdaterError):
    """Backend answered with ``status: false``."""


class EmptyConfigError(ConfigUpdaterError):
    """Backend returned no usable configuration blob."""


class ClusterError(ConfigUpdaterError):
    """Failure talking to the Kubernetes API about one agent object.

    Carries the workload kind and the operation so every log line for the
    failure can be attributed without parsing the message.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        operation: str,
        object_name: str,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.operation = operation
        self.object_name = object_name
        self.status = status


class NotFoundError(ClusterError):
    """Referenced ConfigMap or workload does not exist (HTTP 404)."""


class ConflictError(ClusterError):
    """Object changed between read and write (HTTP 409)."""


class ClusterAPIError(ClusterError):
    """Any other Kubernetes API failure (RBAC, server errors, ...)."""

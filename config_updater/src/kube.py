from __future__ import annotations

import logging

from kubernetes import client, config
from kubernetes.client import ApiException, AppsV1Api, CoreV1Api
from kubernetes.config.config_exception import ConfigException

from config_updater.src.errors import ClusterAPIError, ClusterError, ConflictError, NotFoundError

LOGGER = logging.getLogger(__name__)


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development. Raises ``ConfigException`` when
    neither is available.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


def build_clients() -> tuple[CoreV1Api, AppsV1Api]:
    """Return CoreV1 and AppsV1 API clients using the active kube configuration."""
    return client.CoreV1Api(), client.AppsV1Api()


def translate_api_exception(
    exc: ApiException,
    *,
    kind: str,
    operation: str,
    object_name: str,
) -> ClusterError:
    """Map a Kubernetes ``ApiException`` onto the updater's error taxonomy."""
    status = exc.status
    if status == 404:
        error_cls: type[ClusterError] = NotFoundError
        detail = "not found"
    elif status == 409:
        error_cls = ConflictError
        detail = "modified concurrently"
    else:
        error_cls = ClusterAPIError
        detail = f"API error (status={status}, reason={exc.reason})"

    return error_cls(
        f"{operation} {object_name}: {detail}",
        kind=kind,
        operation=operation,
        object_name=object_name,
        status=status,
    )

from __future__ import annotations

from typing import Any

import pytest
import requests

from config_updater.src.backend import BackendClient
from config_updater.src.errors import (
    BackendRejectedError,
    DecodeError,
    EmptyConfigError,
    TransportError,
)
from config_updater.src.workload import WorkloadKind

_NO_JSON = object()


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = _NO_JSON) -> None:
        self.status_code = status_code
        self.payload = payload

    def json(self) -> Any:
        if self.payload is _NO_JSON:
            raise ValueError("Expecting value")
        return self.payload


class FakeSession:
    def __init__(self, responses: list[Any] | None = None) -> None:
        self.headers: dict[str, str] = {}
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def get(self, url: str, params: dict[str, str], timeout: float) -> FakeResponse:
        self.calls.append({"url": url, "params": dict(params), "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def _client(*responses: Any) -> tuple[BackendClient, FakeSession]:
    session = FakeSession(list(responses))
    client = BackendClient(
        base_url="https://app.us1.example.com/",
        api_key="k1",
        cluster_name="c1",
        agent_version="1.2.3",
        timeout_seconds=5.0,
        session=session,  # type: ignore[arg-type]
    )
    return client, session


def _config_payload(
    daemonset: dict[str, Any] | None = None,
    deployment: dict[str, Any] | None = None,
    status: bool = True,
) -> dict[str, Any]:
    return {
        "status": status,
        "config": {
            "daemonset": daemonset or {},
            "deployment": deployment or {},
            "docker": {},
            "nodocker": {},
        },
        "message": "",
    }


# ---------------------------------------------------------------------------
# restart-status
# ---------------------------------------------------------------------------


def test_check_restart_status_request_shape() -> None:
    client, session = _client(
        FakeResponse(
            payload={
                "status": True,
                "restart": True,
                "rollout": {"daemonset": True, "deployment": False},
                "message": "ok",
            }
        )
    )

    status = client.check_restart_status()

    assert status.success is True
    assert status.restart is True
    assert status.restart_daemonset is True
    assert status.restart_deployment is False
    assert status.should_restart(WorkloadKind.DAEMONSET) is True
    assert status.should_restart(WorkloadKind.DEPLOYMENT) is False
    assert status.message == "ok"

    call = session.calls[0]
    assert call["url"] == "https://app.us1.example.com/api/v1/agent/restart-status/k1"
    assert call["params"] == {
        "platform": "k8s",
        "host_id": "c1",
        "cluster": "c1",
        "agent_version": "1.2.3",
    }
    assert call["timeout"] == 5.0
    assert session.headers["User-Agent"] == "mw-config-updater/1.2.3"


def test_check_restart_status_false_success_is_not_an_error() -> None:
    client, _ = _client(FakeResponse(payload={"status": False, "message": "account disabled"}))

    status = client.check_restart_status()

    assert status.success is False
    assert status.restart_daemonset is False
    assert status.restart_deployment is False
    assert status.message == "account disabled"


@pytest.mark.parametrize("status_code", [301, 401, 404, 500, 503])
def test_check_restart_status_non_2xx_is_transport_error(status_code: int) -> None:
    client, _ = _client(FakeResponse(status_code=status_code, payload={}))

    with pytest.raises(TransportError, match=str(status_code)):
        client.check_restart_status()


def test_check_restart_status_network_failure_is_transport_error() -> None:
    client, _ = _client(requests.ConnectionError("connection refused"))

    with pytest.raises(TransportError):
        client.check_restart_status()


def test_check_restart_status_invalid_json_is_decode_error() -> None:
    client, _ = _client(FakeResponse(status_code=200))

    with pytest.raises(DecodeError):
        client.check_restart_status()


@pytest.mark.parametrize("payload", [[], "text", {"status": True, "rollout": ["daemonset"]}])
def test_check_restart_status_unexpected_shape_is_decode_error(payload: Any) -> None:
    client, _ = _client(FakeResponse(payload=payload))

    with pytest.raises(DecodeError):
        client.check_restart_status()


def test_transport_error_does_not_leak_api_key() -> None:
    client, _ = _client(FakeResponse(status_code=500, payload={}))

    with pytest.raises(TransportError) as excinfo:
        client.check_restart_status()

    assert "k1" not in str(excinfo.value)


def test_api_key_is_path_escaped() -> None:
    session = FakeSession([FakeResponse(payload={"status": True})])
    client = BackendClient(
        base_url="https://app.us1.example.com",
        api_key="a/b c",
        cluster_name="c1",
        agent_version="1.2.3",
        session=session,  # type: ignore[arg-type]
    )

    client.check_restart_status()

    assert session.calls[0]["url"].endswith("/restart-status/a%2Fb%20c")


# ---------------------------------------------------------------------------
# ingestion-rules
# ---------------------------------------------------------------------------


def test_fetch_config_returns_blob_for_requested_kind() -> None:
    blob = {"receivers": {"otlp": {}}, "service": {"pipelines": {}}}
    client, session = _client(FakeResponse(payload=_config_payload(daemonset=blob)))

    assert client.fetch_config(WorkloadKind.DAEMONSET) == blob

    call = session.calls[0]
    assert call["url"] == "https://app.us1.example.com/api/v1/agent/ingestion-rules/k1"
    assert call["params"]["component_type"] == "daemonset"
    assert call["params"]["platform"] == "k8s"
    assert call["params"]["cluster"] == "c1"
    assert call["params"]["host_id"] == "c1"
    assert call["params"]["agent_version"] == "1.2.3"


def test_fetch_config_uses_deployment_component_type() -> None:
    blob = {"receivers": {"k8s_cluster": {}}}
    client, session = _client(FakeResponse(payload=_config_payload(deployment=blob)))

    assert client.fetch_config(WorkloadKind.DEPLOYMENT) == blob
    assert session.calls[0]["params"]["component_type"] == "deployment"


def test_fetch_config_both_empty_is_empty_config_error() -> None:
    client, _ = _client(FakeResponse(payload=_config_payload()))

    with pytest.raises(EmptyConfigError, match="daemonset or deployment"):
        client.fetch_config(WorkloadKind.DAEMONSET)


def test_fetch_config_missing_config_section_is_empty_config_error() -> None:
    client, _ = _client(FakeResponse(payload={"status": True}))

    with pytest.raises(EmptyConfigError):
        client.fetch_config(WorkloadKind.DEPLOYMENT)


def test_fetch_config_requested_kind_empty_is_empty_config_error() -> None:
    client, _ = _client(
        FakeResponse(payload=_config_payload(deployment={"receivers": {}}))
    )

    with pytest.raises(EmptyConfigError, match="daemonset"):
        client.fetch_config(WorkloadKind.DAEMONSET)


def test_fetch_config_rejected_by_backend() -> None:
    client, _ = _client(
        FakeResponse(payload=_config_payload(daemonset={"a": 1}, status=False))
    )

    with pytest.raises(BackendRejectedError):
        client.fetch_config(WorkloadKind.DAEMONSET)


def test_fetch_config_non_2xx_is_transport_error() -> None:
    client, _ = _client(FakeResponse(status_code=502, payload={}))

    with pytest.raises(TransportError):
        client.fetch_config(WorkloadKind.DAEMONSET)


def test_fetch_config_invalid_blob_type_is_decode_error() -> None:
    payload = _config_payload()
    payload["config"]["daemonset"] = ["not", "a", "map"]
    client, _ = _client(FakeResponse(payload=payload))

    with pytest.raises(DecodeError):
        client.fetch_config(WorkloadKind.DAEMONSET)


def test_close_closes_session() -> None:
    client, session = _client()

    client.close()

    assert session.closed is True

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

LOGGER = logging.getLogger(__name__)

# Returns (ready, reason); see SyncController.readiness.
ReadinessProbe = Callable[[], tuple[bool, str]]


class HealthServer(ThreadingHTTPServer):
    """Probe and scrape endpoints for the updater pod.

    ``/healthz`` only proves the process answers. ``/readyz`` asks the
    readiness probe, so a pod whose backend checks keep failing drops out of
    ready state while the loop keeps retrying.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(self, port: int, readiness: ReadinessProbe) -> None:
        super().__init__(("0.0.0.0", port), _ProbeHandler)  # noqa: S104
        self.readiness = readiness
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.serve_forever, name="health-server", daemon=True
        )
        self._thread.start()
        LOGGER.info("Health server listening on :%d", self.port)

    def stop(self) -> None:
        """Stop serving and release the listening socket."""
        if self._thread is not None:
            self.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self.server_close()


class _ProbeHandler(BaseHTTPRequestHandler):
    server: HealthServer

    def do_GET(self) -> None:
        route = self.path.split("?", 1)[0]
        if route == "/healthz":
            self._send(HTTPStatus.OK, b"ok")
        elif route == "/readyz":
            ready, reason = self.server.readiness()
            status = HTTPStatus.OK if ready else HTTPStatus.SERVICE_UNAVAILABLE
            self._send(status, f"ready={str(ready).lower()} reason={reason}".encode())
        elif route == "/metrics":
            self._send(HTTPStatus.OK, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._send(HTTPStatus.NOT_FOUND, b"not found")

    def _send(
        self, status: HTTPStatus, body: bytes, content_type: str = "text/plain; charset=utf-8"
    ) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: Any) -> None:
        # Probes hit these endpoints every few seconds.
        LOGGER.debug("%s " + fmt, self.address_string(), *args)


def start_health_server(readiness: ReadinessProbe, port: int) -> HealthServer:
    server = HealthServer(port=port, readiness=readiness)
    server.start()
    return server

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from kubernetes.client import AppsV1Api, CoreV1Api

from config_updater.src.backend import BackendClient
from config_updater.src.config import UpdaterConfig
from config_updater.src.errors import ClusterError, ConfigUpdaterError
from config_updater.src.metrics import METRICS
from config_updater.src.rollout import RolloutTrigger
from config_updater.src.store import ConfigStoreWriter
from config_updater.src.workload import WorkloadKind


class ControllerState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    APPLYING = "applying"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PipelineResult:
    """Immutable record of one workload kind's fetch/update/rollout run.

    ``failed_operation`` is ``None`` when the pipeline completed, and names
    the step that failed or was cancelled otherwise.
    """

    kind: WorkloadKind
    applied: bool
    failed_operation: str | None = None
    error: str | None = None


class SyncController:
    """Polls the backend for configuration changes and rolls the agent.

    Each cycle performs one restart-status check and, for every workload
    kind the backend flags, runs ``fetch_config -> update_config ->
    trigger_rollout`` in that order. The config must land before the
    restart so pods never come back on stale configuration. The kinds are
    independent: a failure in one is logged and does not stop the other,
    and nothing is retried until the next tick.

    Ticks are laid out every ``interval`` seconds from cycle start. Cycles
    run on the calling thread and never overlap; ticks that fall due while a
    cycle is still running are absorbed: at most one fires right after the
    slow cycle and the rest are dropped and counted in
    ``skipped_ticks_total``.

    Cancellation is cooperative: the stop event is checked before every
    backend or cluster call, but a call already in flight runs to completion.
    """

    def __init__(
        self,
        backend: BackendClient,
        store: ConfigStoreWriter,
        rollout: RolloutTrigger,
        interval_seconds: float,
        logger: logging.Logger | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")

        self.backend = backend
        self.store = store
        self.rollout = rollout
        self.interval_seconds = interval_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.monotonic = monotonic

        self.ready = threading.Event()
        self._external_stop = threading.Event()
        self._state = ControllerState.IDLE
        self._state_lock = threading.Lock()
        self._last_check_ok: bool | None = None

    @property
    def state(self) -> ControllerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ControllerState) -> None:
        with self._state_lock:
            self._state = state

    def readiness(self) -> tuple[bool, str]:
        """Report whether the updater can currently reach a healthy backend.

        Ready once the loop runs and the latest restart-status check
        succeeded. With polling disabled the running loop is enough.
        """
        if not self.ready.is_set():
            return False, "not-running"
        if self.interval_seconds <= 0:
            return True, "polling-disabled"
        with self._state_lock:
            last_check_ok = self._last_check_ok
        if last_check_ok is None:
            return False, "awaiting-first-check"
        if not last_check_ok:
            return False, "status-check-failing"
        return True, "ok"

    def _record_check(self, ok: bool) -> None:
        with self._state_lock:
            self._last_check_ok = ok

    def request_stop(self) -> None:
        """Ask the loop to stop; it exits after the current call returns."""
        self._external_stop.set()

    def _should_stop(self, stop_event: threading.Event | None) -> bool:
        return self._external_stop.is_set() or (stop_event is not None and stop_event.is_set())

    def _log_failure(self, kind: WorkloadKind, operation: str, exc: BaseException) -> None:
        extra = {"kind": kind.value, "operation": operation}
        if isinstance(exc, ClusterError):
            extra["object"] = exc.object_name
        self.logger.error(
            "%s pipeline failed at %s: %s",
            kind.value,
            operation,
            exc,
            extra=extra,
        )

    def apply_kind(
        self, kind: WorkloadKind, stop_event: threading.Event | None = None
    ) -> PipelineResult:
        """Run ``fetch_config -> update_config -> trigger_rollout`` for one kind."""
        self._set_state(ControllerState.APPLYING)
        steps: tuple[str, ...] = ("fetch_config", "update_config", "trigger_rollout")
        blob: dict = {}

        for operation in steps:
            if self._should_stop(stop_event):
                self.logger.info(
                    "Stop requested; abandoning %s pipeline before %s",
                    kind.value,
                    operation,
                    extra={"kind": kind.value, "operation": operation},
                )
                METRICS.pipeline_runs_total.labels(kind=kind.value, outcome="cancelled").inc()
                return PipelineResult(kind=kind, applied=False, failed_operation=operation)

            try:
                if operation == "fetch_config":
                    blob = self.backend.fetch_config(kind)
                elif operation == "update_config":
                    self.store.update_config(kind, blob)
                    METRICS.configmap_updates_total.labels(kind=kind.value).inc()
                else:
                    self.rollout.trigger_rollout(kind)
                    METRICS.rollouts_total.labels(kind=kind.value).inc()
            except ConfigUpdaterError as exc:
                self._log_failure(kind, operation, exc)
                METRICS.errors_total.labels(kind=kind.value, operation=operation).inc()
                METRICS.pipeline_runs_total.labels(kind=kind.value, outcome="failed").inc()
                return PipelineResult(
                    kind=kind, applied=False, failed_operation=operation, error=str(exc)
                )
            except Exception as exc:
                self.logger.exception(
                    "Unexpected error in %s pipeline at %s",
                    kind.value,
                    operation,
                    extra={"kind": kind.value, "operation": operation},
                )
                METRICS.errors_total.labels(kind=kind.value, operation=operation).inc()
                METRICS.pipeline_runs_total.labels(kind=kind.value, outcome="failed").inc()
                return PipelineResult(
                    kind=kind, applied=False, failed_operation=operation, error=str(exc)
                )

        METRICS.pipeline_runs_total.labels(kind=kind.value, outcome="applied").inc()
        self.logger.info(
            "Applied new configuration and restarted %s",
            kind.value,
            extra={"kind": kind.value, "operation": "apply"},
        )
        return PipelineResult(kind=kind, applied=True)

    def run_cycle(self, stop_event: threading.Event | None = None) -> list[PipelineResult]:
        """Run one check-then-apply cycle and return the per-kind results.

        Returns an empty list when the status check fails, the backend
        reports failure, or nothing is flagged.
        """
        if self._should_stop(stop_event):
            return []

        started = self.monotonic()
        self._set_state(ControllerState.POLLING)
        try:
            try:
                status = self.backend.check_restart_status()
            except ConfigUpdaterError as exc:
                METRICS.status_checks_total.labels(outcome="error").inc()
                self._record_check(False)
                self.logger.error(
                    "Restart status check failed: %s",
                    exc,
                    extra={"operation": "check_restart_status"},
                )
                return []

            if not status.success:
                METRICS.status_checks_total.labels(outcome="rejected").inc()
                self._record_check(False)
                self.logger.warning(
                    "Restart status check reported failure: %s",
                    status.message or "no message",
                    extra={"operation": "check_restart_status"},
                )
                return []

            METRICS.status_checks_total.labels(outcome="ok").inc()
            self._record_check(True)
            METRICS.last_successful_check_timestamp.set_to_current_time()

            flagged = [kind for kind in WorkloadKind if status.should_restart(kind)]
            if not flagged:
                self.logger.debug("No configuration change reported")
                return []

            self.logger.info(
                "Configuration change reported for %s",
                ", ".join(kind.value for kind in flagged),
            )
            return [self.apply_kind(kind, stop_event) for kind in flagged]
        finally:
            METRICS.cycle_duration_seconds.observe(max(0.0, self.monotonic() - started))
            self._set_state(ControllerState.IDLE)

    def force_update(self, stop_event: threading.Event | None = None) -> list[PipelineResult]:
        """Apply the backend configuration to both kinds without a status check."""
        self.logger.info("Forcing configuration update for all workload kinds")
        try:
            return [self.apply_kind(kind, stop_event) for kind in WorkloadKind]
        finally:
            self._set_state(ControllerState.IDLE)

    def _next_due(self, due_at: float) -> float:
        """Return the next tick after a cycle that was due at *due_at*.

        A tick still in the future is kept. If the cycle overran, one tick
        fires immediately and any further ones that elapsed are dropped.
        """
        next_due = due_at + self.interval_seconds
        now = self.monotonic()
        if next_due > now:
            return next_due

        dropped = int((now - next_due) // self.interval_seconds)
        if dropped:
            METRICS.skipped_ticks_total.inc(dropped)
            self.logger.warning(
                "Poll cycle overran the %.1fs interval; skipping %d tick(s)",
                self.interval_seconds,
                dropped,
            )
        return now

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Main control loop: poll at startup, then on a fixed interval until shutdown.

        With a zero interval polling is disabled; the loop never checks the
        backend and simply waits for shutdown.
        """
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()
        self.ready.set()

        if self.interval_seconds <= 0:
            self.logger.info("Config check interval is 0; polling disabled")
            while not self._should_stop(stop):
                stop.wait(timeout=1.0)
            self._set_state(ControllerState.STOPPED)
            self.ready.clear()
            return

        self.logger.info("Polling for configuration changes every %.1fs", self.interval_seconds)
        due_at = self.monotonic()
        while not self._should_stop(stop):
            remaining = due_at - self.monotonic()
            if remaining > 0:
                stop.wait(timeout=min(remaining, 1.0))
                continue

            try:
                self.run_cycle(stop)
            except Exception:
                self.logger.exception("Unexpected error during poll cycle")
            due_at = self._next_due(due_at)

        self._set_state(ControllerState.STOPPED)
        self.ready.clear()
        self.logger.info("Sync controller stopped")


def build_controller(
    updater_config: UpdaterConfig,
    core_api: CoreV1Api,
    apps_api: AppsV1Api,
    backend: BackendClient | None = None,
) -> SyncController:
    """Wire a :class:`SyncController` from resolved config and cluster clients."""
    backend = backend or BackendClient(
        base_url=updater_config.api_base_url,
        api_key=updater_config.api_key,
        cluster_name=updater_config.cluster_name,
        agent_version=updater_config.agent_version,
        timeout_seconds=updater_config.request_timeout_seconds,
    )
    return SyncController(
        backend=backend,
        store=ConfigStoreWriter(core_api=core_api, workloads=updater_config.workloads),
        rollout=RolloutTrigger(apps_api=apps_api, workloads=updater_config.workloads),
        interval_seconds=updater_config.check_interval_seconds,
    )

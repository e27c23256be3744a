from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class UpdaterMetrics:
    """Prometheus metrics exported by the config updater on ``/metrics``.

    Per-workload series carry a ``kind`` label (``daemonset``/``deployment``)
    so the two pipelines can be alerted on independently.
    """

    status_checks_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_status_checks_total",
            "Total restart-status checks against the backend",
            ["outcome"],
        )
    )
    pipeline_runs_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_pipeline_runs_total",
            "Total fetch/update/rollout pipeline runs",
            ["kind", "outcome"],
        )
    )
    errors_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_errors_total",
            "Total pipeline failures by workload kind and failing operation",
            ["kind", "operation"],
        )
    )
    configmap_updates_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_configmap_updates_total",
            "Total successful otel-config ConfigMap writes",
            ["kind"],
        )
    )
    rollouts_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_rollouts_total",
            "Total rolling restarts triggered",
            ["kind"],
        )
    )
    skipped_ticks_total: Counter = field(
        default_factory=lambda: Counter(
            "mw_config_updater_skipped_ticks_total",
            "Total poll ticks dropped because a cycle was still running",
        )
    )
    cycle_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "mw_config_updater_cycle_duration_seconds",
            "Seconds spent in one poll cycle",
            buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
        )
    )
    last_successful_check_timestamp: Gauge = field(
        default_factory=lambda: Gauge(
            "mw_config_updater_last_successful_check_timestamp_seconds",
            "Unix time of the last successful restart-status check",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "mw_config_updater",
            "Build information for the config updater",
        )
    )


METRICS = UpdaterMetrics()

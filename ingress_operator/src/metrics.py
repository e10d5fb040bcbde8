from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class OperatorMetrics:
    """Prometheus metrics exported by the operator on ``/metrics``.

    Object counters carry a ``kind`` label so a stuck DaemonSet create can be
    told apart from scaffolding churn.
    """

    reconcile_passes_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_reconcile_passes_total",
            "Total reconciliation passes by outcome",
            ["result"],
        )
    )
    reconcile_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "ingress_operator_reconcile_duration_seconds",
            "Wall-clock duration of a reconciliation pass",
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, float("inf")),
        )
    )
    declaration_failures_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_declaration_failures_total",
            "Total per-ClusterIngress failures recorded across passes",
        )
    )
    objects_created_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_objects_created_total",
            "Total objects created by the operator",
            ["kind"],
        )
    )
    objects_adopted_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_objects_adopted_total",
            "Total create calls that found the object already present",
            ["kind"],
        )
    )
    objects_deleted_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_objects_deleted_total",
            "Total objects deleted by the operator",
            ["kind"],
        )
    )
    finalizer_updates_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_finalizer_updates_total",
            "Total ClusterIngress finalizer changes persisted",
            ["action"],
        )
    )
    triggers_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_triggers_total",
            "Total reconciliation triggers by source",
            ["source"],
        )
    )
    triggers_coalesced_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_triggers_coalesced_total",
            "Total triggers folded into an already queued pass",
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "ingress_operator_watch_errors_total",
            "Total Kubernetes watch errors by source",
            ["source"],
        )
    )
    managed_declarations: Gauge = field(
        default_factory=lambda: Gauge(
            "ingress_operator_managed_declarations",
            "ClusterIngresses seen in the last successful listing",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "ingress_operator",
            "Build information for the operator",
        )
    )


METRICS = OperatorMetrics()

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

INVOCATIONS_TOTAL = Counter(
    "reqguard_invocations_total",
    "Action invocations by throttle decision.",
    ["resource", "action", "decision"],
)
OUTCOMES_TOTAL = Counter(
    "reqguard_outcomes_total",
    "Settled outcomes of admitted calls.",
    ["resource", "action", "outcome"],
)
BULK_ABORTS_TOTAL = Counter(
    "reqguard_bulk_aborts_total",
    "abort_all invocations by resource.",
    ["resource"],
)

PENDING_REQUESTS = Gauge(
    "reqguard_pending_requests",
    "Admitted calls not yet settled.",
    ["resource"],
)

CALL_DURATION_SECONDS = Histogram(
    "reqguard_call_duration_seconds",
    "Time from admission to settlement.",
    ["resource", "action", "outcome"],
)


class Telemetry:
    def record_invocation(self, resource: str, action: str, decision: str) -> None:
        INVOCATIONS_TOTAL.labels(resource=resource, action=action, decision=decision).inc()

    def record_outcome(self, resource: str, action: str, outcome: str, duration: float) -> None:
        OUTCOMES_TOTAL.labels(resource=resource, action=action, outcome=outcome).inc()
        CALL_DURATION_SECONDS.labels(
            resource=resource,
            action=action,
            outcome=outcome,
        ).observe(max(0.0, duration))

    def record_bulk_abort(self, resource: str) -> None:
        BULK_ABORTS_TOTAL.labels(resource=resource).inc()

    def set_pending(self, resource: str, count: int) -> None:
        PENDING_REQUESTS.labels(resource=resource).set(max(0, count))

    @staticmethod
    def scrape() -> tuple[bytes, str]:
        return generate_latest(), CONTENT_TYPE_LATEST

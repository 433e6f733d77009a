from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest


guard_decisions_total = Counter(
    "crmpro_guard_decisions_total",
    "Route guard decisions by state",
    ["state"],
)

masked_fields_count = Counter(
    "crmpro_masked_fields_count",
    "Total sensitive fields masked at the read boundary",
    ["role", "module"],
)

change_events_total = Counter(
    "crmpro_change_events_total",
    "Change feed events applied to a cached collection",
    ["resource_type", "kind", "outcome"],
)

cache_refetches_total = Counter(
    "crmpro_cache_refetches_total",
    "Full collection refetches by reason",
    ["resource_type", "reason"],
)

cache_load_failures_total = Counter(
    "crmpro_cache_load_failures_total",
    "Failed collection loads",
    ["resource_type"],
)

optimistic_writes_total = Counter(
    "crmpro_optimistic_writes_total",
    "Optimistic writes by operation and outcome",
    ["resource_type", "operation", "outcome"],
)

outbox_deliveries_total = Counter(
    "crmpro_outbox_deliveries_total",
    "Outbox handler deliveries by topic and outcome",
    ["topic", "outcome"],
)


def observe_guard_decision(state: str) -> None:
    guard_decisions_total.labels(state=state).inc()


def observe_masked_fields(role: str, module: str, count: int) -> None:
    if count > 0:
        masked_fields_count.labels(role=role, module=module).inc(count)


def observe_change_event(resource_type: str, kind: str, outcome: str) -> None:
    change_events_total.labels(resource_type=resource_type, kind=kind, outcome=outcome).inc()


def observe_refetch(resource_type: str, reason: str) -> None:
    cache_refetches_total.labels(resource_type=resource_type, reason=reason).inc()


def observe_load_failure(resource_type: str) -> None:
    cache_load_failures_total.labels(resource_type=resource_type).inc()


def observe_optimistic_write(resource_type: str, operation: str, outcome: str) -> None:
    optimistic_writes_total.labels(resource_type=resource_type, operation=operation, outcome=outcome).inc()


def observe_outbox_delivery(topic: str, outcome: str) -> None:
    outbox_deliveries_total.labels(topic=topic, outcome=outcome).inc()


def render_latest() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST

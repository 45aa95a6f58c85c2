from warranty_admin.observability.metrics import (
    MAX_EVENTS,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
    record_event,
    reset_metrics,
)


def test_metrics_snapshot_accumulates_counts():
    reset_metrics()
    increment_counter("test_counter")
    increment_counter("test_counter", amount=2, labels={"route": "/example"})
    observe_latency("test_latency", 100, labels={"route": "/example"})
    observe_latency("test_latency", 50, labels={"route": "/example"})

    snapshot = get_metrics_snapshot()
    counters = snapshot["counters"]["test_counter"]
    assert len(counters) == 2

    hist = snapshot["histograms"]["test_latency"][0]["stats"]
    assert hist["count"] == 2
    assert hist["max"] == 100
    assert hist["avg"] == 75


def test_event_log_is_bounded():
    for index in range(MAX_EVENTS + 5):
        record_event("warranty_definition_created", {"definition_id": index})

    events = get_metrics_snapshot()["events"]
    assert len(events) == MAX_EVENTS
    assert events[0]["payload"]["definition_id"] == 5

import json
import logging

from nightlife.observability.logging_config import JsonFormatter, RequestContextFilter
from nightlife.observability.metrics import (
    MetricsRegistry,
    increment_counter,
    set_gauge,
    observe_latency,
    record_event,
    get_metrics_snapshot,
    reset_metrics,
)


def test_snapshot_groups_series_by_labels():
    reset_metrics()
    confirm = {"route": "/api/qr/ticket/confirm"}
    increment_counter("door_scans_total")
    increment_counter("door_scans_total", amount=2, labels=confirm)
    set_gauge("sse_connections", 5)
    observe_latency("scan_latency_ms", 100, labels=confirm)
    observe_latency("scan_latency_ms", 50, labels=confirm)

    snapshot = get_metrics_snapshot()
    scans = snapshot["counters"]["door_scans_total"]
    latency = snapshot["histograms"]["scan_latency_ms"][0]["stats"]

    assert sorted(series["value"] for series in scans) == [1, 2]
    assert snapshot["gauges"]["sse_connections"][0]["value"] == 5
    assert (latency["count"], latency["max"], latency["avg"]) == (2, 100, 75)


def test_counter_labels_are_order_insensitive():
    registry = MetricsRegistry()
    registry.increment("qr_redemptions_total", labels={"kind": "ticket", "outcome": "OK"})
    registry.increment("qr_redemptions_total", labels={"outcome": "OK", "kind": "ticket"})

    assert registry.counter_value("qr_redemptions_total", {"kind": "ticket", "outcome": "OK"}) == 2
    assert registry.counter_value("qr_redemptions_total", {"kind": "menu", "outcome": "OK"}) == 0


def test_recent_events_are_bounded():
    registry = MetricsRegistry(max_events=3)
    for index in range(5):
        registry.event("checkout_fulfilled", {"index": index})

    events = registry.snapshot()["events"]
    assert [e["payload"]["index"] for e in events] == [2, 3, 4]


def test_record_event_lands_in_snapshot():
    reset_metrics()
    record_event("ticket_redeemed", {"ticket_purchase_id": "abc"})
    assert get_metrics_snapshot()["events"][0]["name"] == "ticket_redeemed"


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("nightlife.test", logging.WARNING, __file__, 1, "Checksum mismatch", (), None)
    record.wompi_tx_id = "wompi-1"
    RequestContextFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["message"] == "Checksum mismatch"
    assert payload["wompi_tx_id"] == "wompi-1"
    assert payload["request_id"] is None

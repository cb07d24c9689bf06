"""
Tests for the in-process change notification hub.
"""

from protelab.realtime import RealtimeHub


def test_filtered_delivery():
    hub = RealtimeHub()
    got = []
    hub.subscribe("audit_logs", {"entity_id": "o1"}, got.append)

    assert hub.publish("audit_logs", {"entity_id": "o1", "action": "update"}) == 1
    assert hub.publish("audit_logs", {"entity_id": "o2"}) == 0
    assert hub.publish("notifications", {"entity_id": "o1"}) == 0
    assert got == [{"entity_id": "o1", "action": "update"}]


def test_unsubscribe_stops_delivery():
    hub = RealtimeHub()
    got = []
    sub = hub.subscribe("notifications", {"user_id": "u1"}, got.append)
    assert hub.subscriber_count() == 1
    sub.unsubscribe()
    assert hub.subscriber_count() == 0
    assert hub.publish("notifications", {"user_id": "u1"}) == 0
    assert got == []


def test_failing_subscriber_does_not_block_others():
    hub = RealtimeHub()
    got = []

    def broken(row):
        raise RuntimeError("listener crashed")

    hub.subscribe("orders", {}, broken)
    hub.subscribe("orders", {}, got.append)
    assert hub.publish("orders", {"id": "o1"}) == 1
    assert got == [{"id": "o1"}]

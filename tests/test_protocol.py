from ticket_queue.mqtt_topics import (
    all_queue_events,
    engine_requests,
    engine_responses,
    queue_events,
    queue_events_wildcard,
)


def test_topic_helpers():
    ns = "demo/v0"
    assert engine_requests(ns) == "demo/v0/engine/requests"
    assert engine_responses("c1", ns) == "demo/v0/engine/responses/c1"
    assert queue_events("q1", ns) == "demo/v0/queues/q1/events"
    assert all_queue_events(ns) == "demo/v0/queues/events"
    assert queue_events_wildcard(ns) == "demo/v0/queues/+/events"


def test_default_namespace():
    assert engine_requests() == "ticketq/v0/engine/requests"

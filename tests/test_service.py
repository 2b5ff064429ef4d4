from ticket_queue.engine import QueueEngine
from ticket_queue.service import EngineService, MqttEngineService


class FakeMqtt:
    def __init__(self):
        self.subscriptions = []
        self.handlers = []
        self.published = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def publish(self, topic, message, *, qos=None):
        self.published.append((topic, message))


def _service():
    return EngineService(QueueEngine())


def test_create_admit_and_transition_over_requests():
    svc = _service()

    created = svc.handle_request(
        {"type": "create_queue", "name": "Croissants", "kind": "stocked", "stock_capacity": 4}
    )
    assert created["type"] == "queue"
    queue_id = created["queue"]["queue_id"]

    admitted = svc.handle_request(
        {"type": "admit", "queue_id": queue_id, "quantity": "2", "metadata": {"customer_name": "Bob"}}
    )
    assert admitted["type"] == "entry"
    assert admitted["entry"]["sequence_number"] == 1
    assert admitted["entry"]["metadata"] == {"customer_name": "Bob"}

    moved = svc.handle_request(
        {"type": "transition", "entry_id": admitted["entry"]["entry_id"], "status": "in_progress"}
    )
    assert moved["entry"]["status"] == "in_progress"

    listed = svc.handle_request({"type": "list_entries", "queue_id": queue_id, "status": "in_progress"})
    assert [e["entry_id"] for e in listed["entries"]] == [admitted["entry"]["entry_id"]]


def test_domain_errors_become_error_envelopes():
    svc = _service()
    queue_id = svc.handle_request(
        {"type": "create_queue", "name": "Croissants", "kind": "stocked", "stock_capacity": 1}
    )["queue"]["queue_id"]

    reply = svc.handle_request({"type": "admit", "queue_id": queue_id, "quantity": 2})

    assert reply["type"] == "error"
    assert reply["code"] == "insufficient_stock"


def test_malformed_requests_are_bad_requests():
    svc = _service()

    assert svc.handle_request({"type": "teleport"})["code"] == "bad_request"
    assert svc.handle_request({"type": "pause"})["code"] == "bad_request"
    assert svc.handle_request({"type": "adjust_stock", "queue_id": "q", "amount": "lots"})["code"] == "bad_request"
    assert svc.handle_request({"type": "get_queue", "queue_id": "nope"})["code"] == "not_found"


def test_lifecycle_requests():
    svc = _service()
    queue_id = svc.handle_request({"type": "create_queue", "name": "Counter A"})["queue"]["queue_id"]

    assert svc.handle_request({"type": "skip", "queue_id": queue_id})["queue"]["sequence_counter"] == 1
    assert svc.handle_request({"type": "pause", "queue_id": queue_id})["queue"]["status"] == "paused"
    assert svc.handle_request({"type": "skip", "queue_id": queue_id})["code"] == "queue_not_active"
    assert svc.handle_request({"type": "undo_last_entry", "queue_id": queue_id})["code"] == "not_stocked"
    assert svc.handle_request({"type": "next_entry", "queue_id": queue_id}) == {"type": "entry", "entry": None}
    assert "claim_next" in svc.operations


def test_mqtt_service_replies_with_corr_id():
    mqtt = FakeMqtt()
    service = MqttEngineService(mqtt=mqtt, engine=QueueEngine(), namespace="demo/v0")
    service.start()

    assert mqtt.subscriptions == ["demo/v0/engine/requests"]
    handler = mqtt.handlers[0]
    handler(
        "demo/v0/engine/requests",
        {"type": "create_queue", "name": "Counter A", "corr_id": "c-1", "reply_to": "demo/v0/engine/responses/x"},
    )

    topic, reply = mqtt.published[0]
    assert topic == "demo/v0/engine/responses/x"
    assert reply["corr_id"] == "c-1"
    assert reply["queue"]["name"] == "Counter A"


def test_mqtt_service_ignores_requests_without_reply_topic():
    mqtt = FakeMqtt()
    service = MqttEngineService(mqtt=mqtt, engine=QueueEngine(), namespace="demo/v0")
    service.start()

    mqtt.handlers[0]("demo/v0/engine/requests", {"type": "create_queue", "name": "A"})
    mqtt.handlers[0]("demo/v0/other", {"type": "create_queue", "name": "B", "reply_to": "r"})

    assert mqtt.published == []
    assert service.handler.engine.list_queues() == []

from __future__ import annotations

# Event sink that broadcasts engine events over MQTT.
#
# Each event goes to the queue's own stream and to the all-queues stream.
# Broadcasts use QoS 0: a missed display refresh is corrected by the next one.

from typing import Any, Protocol

from .events import Event
from .mqtt_topics import DEFAULT_NAMESPACE, all_queue_events, queue_events


class Publisher(Protocol):
    def publish(self, topic: str, message: dict[str, Any], *, qos: int | None = None) -> None: ...


class MqttEventSink:
    def __init__(self, *, mqtt: Publisher, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.mqtt = mqtt
        self.namespace = namespace

    def publish(self, event: Event) -> None:
        message = event.to_message()
        self.mqtt.publish(queue_events(event.queue_id, self.namespace), message, qos=0)
        self.mqtt.publish(all_queue_events(self.namespace), message, qos=0)

"""Small MQTT helper built on top of paho-mqtt.

paho-mqtt is callback-based. The engine service and its clients also need a
blocking request/response call, so this wrapper offers both:

- `MqttClient` manages the connection and a background network loop.
- `request()` publishes a JSON message and waits for the reply carrying the
  same `corr_id`.

All payloads are JSON objects. QoS defaults to 1 so admissions are not lost on
a flaky link; event broadcasts may use 0.
"""

from __future__ import annotations

import json
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

from .observability import get_logger

log = get_logger("mqtt")

MessageHandler = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class PendingResponse:
    corr_id: str
    q: "queue.Queue[dict[str, Any]]"


class MqttClient:
    """Thin wrapper around paho-mqtt with JSON convenience APIs."""

    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        qos: int = 1,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_message = self._on_message

        # Called with (topic, json_message) for everything that is not a reply.
        self._handlers: list[MessageHandler] = []

        # corr_id -> mailbox used by request()
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()

        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True
        log.info("mqtt_connected", client_id=self.client_id, host=self.host, port=self.port)

    def stop(self) -> None:
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=self.qos)

    def publish(self, topic: str, message: dict[str, Any], *, qos: int | None = None) -> None:
        payload = json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
        self._client.publish(topic, payload=payload, qos=self.qos if qos is None else qos)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a request and block until the correlated reply arrives.

        The caller must already be subscribed to `response_topic`.
        Raises TimeoutError if nothing arrives within `timeout` seconds.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message)
        msg["corr_id"] = corr_id
        msg["reply_to"] = response_topic

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[corr_id] = PendingResponse(corr_id=corr_id, q=q)

        self.publish(request_topic, msg)

        try:
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for corr_id={corr_id}") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- internal callbacks --------------------

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            raw = msg.payload
            payload = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError):
            log.warning("mqtt_malformed_message", topic=msg.topic)
            return
        if not isinstance(data, dict):
            log.warning("mqtt_non_object_message", topic=msg.topic)
            return

        # Replies to our own requests go to the waiting caller only.
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    log.warning("mqtt_duplicate_reply", corr_id=corr_id)
                return

        # A handler error must not kill paho's network thread.
        for h in list(self._handlers):
            try:
                h(msg.topic, data)
            except Exception:
                log.exception("mqtt_handler_failed", topic=msg.topic)

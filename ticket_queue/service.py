from __future__ import annotations

# MQTT adapter around QueueEngine, plus the `service` process entry point.
#
# Requests arrive on `<ns>/engine/requests` as JSON objects:
#   {"type": "<operation>", "corr_id": ..., "reply_to": ..., <arguments>}
# The reply goes to `reply_to` with the same corr_id. Domain failures are
# answered with the error envelope so clients can branch on `code`.

import argparse
import time
from typing import Any, Callable, TYPE_CHECKING

from .config import EngineConfig
from .domain import Queue, QueueEntry
from .engine import QueueEngine
from .errors import BadRequest, ErrorResponse, QueueError
from .mqtt_topics import DEFAULT_NAMESPACE, engine_requests
from .observability import configure_logging, get_logger

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

log = get_logger("service")

Reply = dict[str, Any]


def _str(msg: dict[str, Any], key: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str) or not value:
        raise BadRequest(f"{key} required")
    return value


def _opt_str(msg: dict[str, Any], key: str) -> str | None:
    value = msg.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequest(f"{key} must be a string")
    return value


def _opt_int(msg: dict[str, Any], key: str) -> int | None:
    value = msg.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise BadRequest(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise BadRequest(f"{key} must be an integer")


def _int(msg: dict[str, Any], key: str) -> int:
    value = _opt_int(msg, key)
    if value is None:
        raise BadRequest(f"{key} required")
    return value


def _queue_reply(queue: Queue) -> Reply:
    return {"type": "queue", "queue": queue.to_dict()}


def _entry_reply(entry: QueueEntry | None) -> Reply:
    return {"type": "entry", "entry": None if entry is None else entry.to_dict()}


def _entries_reply(entries: list[QueueEntry]) -> Reply:
    return {"type": "entries", "entries": [e.to_dict() for e in entries]}


class EngineService:
    """Translates request messages into QueueEngine calls (no MQTT here)."""

    def __init__(self, engine: QueueEngine) -> None:
        self.engine = engine
        self._ops: dict[str, Callable[[dict[str, Any]], Reply]] = {
            "create_queue": self._create_queue,
            "delete_queue": self._delete_queue,
            "get_queue": lambda m: _queue_reply(self.engine.get_queue(_str(m, "queue_id"))),
            "list_queues": lambda m: {
                "type": "queues",
                "queues": [q.to_dict() for q in self.engine.list_queues()],
            },
            "admit": self._admit,
            "transition": lambda m: _entry_reply(
                self.engine.transition(_str(m, "entry_id"), _str(m, "status"))
            ),
            "cancel": lambda m: _entry_reply(self.engine.cancel(_str(m, "entry_id"))),
            "assign_handler": lambda m: _entry_reply(
                self.engine.assign_handler(_str(m, "entry_id"), _opt_str(m, "handler"))
            ),
            "claim_next": lambda m: _entry_reply(
                self.engine.claim_next(_str(m, "queue_id"), _str(m, "handler"))
            ),
            "get_entry": lambda m: _entry_reply(self.engine.get_entry(_str(m, "entry_id"))),
            "list_entries": lambda m: _entries_reply(
                self.engine.list_entries(
                    _str(m, "queue_id"),
                    status=_opt_str(m, "status"),
                    handler=_opt_str(m, "handler"),
                )
            ),
            "next_entry": lambda m: _entry_reply(self.engine.next_entry(_str(m, "queue_id"))),
            "pause": lambda m: _queue_reply(self.engine.pause(_str(m, "queue_id"))),
            "resume": lambda m: _queue_reply(self.engine.resume(_str(m, "queue_id"))),
            "close": lambda m: _queue_reply(self.engine.close(_str(m, "queue_id"))),
            "reopen": lambda m: _queue_reply(self.engine.reopen(_str(m, "queue_id"))),
            "reset": lambda m: _queue_reply(self.engine.reset(_str(m, "queue_id"))),
            "skip": lambda m: _queue_reply(self.engine.skip(_str(m, "queue_id"))),
            "recall": lambda m: _queue_reply(self.engine.recall(_str(m, "queue_id"))),
            "adjust_stock": lambda m: _queue_reply(
                self.engine.adjust_stock(_str(m, "queue_id"), _int(m, "amount"))
            ),
            "undo_last_entry": lambda m: _entry_reply(
                self.engine.undo_last_entry(
                    _str(m, "queue_id"), expected_counter=_opt_int(m, "expected_counter")
                )
            ),
        }

    @property
    def operations(self) -> list[str]:
        return sorted(self._ops)

    def handle_request(self, msg: dict[str, Any]) -> Reply:
        """Run one request and build its reply (never raises for domain errors)."""
        mtype = msg.get("type")
        op = self._ops.get(mtype) if isinstance(mtype, str) else None
        if op is None:
            return ErrorResponse("bad_request", f"unknown request type: {mtype!r}").to_message()
        try:
            return op(msg)
        except QueueError as e:
            log.info("request_rejected", op=mtype, code=e.code, reason=str(e))
            return e.to_response().to_message()

    def _create_queue(self, msg: dict[str, Any]) -> Reply:
        kwargs: dict[str, Any] = {
            "stock_capacity": _opt_int(msg, "stock_capacity"),
            "stock_remaining": _opt_int(msg, "stock_remaining"),
        }
        if msg.get("status") is not None:
            kwargs["status"] = _str(msg, "status")
        queue = self.engine.create_queue(
            _str(msg, "name"),
            _opt_str(msg, "kind") or "plain",
            **kwargs,
        )
        return _queue_reply(queue)

    def _delete_queue(self, msg: dict[str, Any]) -> Reply:
        queue_id = _str(msg, "queue_id")
        self.engine.delete_queue(queue_id)
        return {"type": "ok", "queue_id": queue_id}

    def _admit(self, msg: dict[str, Any]) -> Reply:
        metadata = msg.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise BadRequest("metadata must be an object")
        entry = self.engine.admit(
            _str(msg, "queue_id"),
            _opt_int(msg, "quantity"),
            metadata,
            handler=_opt_str(msg, "handler"),
        )
        return _entry_reply(entry)


class MqttEngineService:
    """MQTT adapter around the EngineService request handler."""

    def __init__(
        self,
        *,
        mqtt: MqttClient,
        engine: QueueEngine,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.mqtt = mqtt
        self.namespace = namespace
        self.handler = EngineService(engine)

    def start(self) -> None:
        self.mqtt.subscribe(engine_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != engine_requests(self.namespace):
            return
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            # Fire-and-forget requests are not supported; every operation has a result.
            log.warning("request_without_reply_to", op=msg.get("type"))
            return
        try:
            reply = self.handler.handle_request(msg)
        except Exception:
            log.exception("request_failed", op=msg.get("type"))
            reply = ErrorResponse("internal_error", "request failed").to_message()
        self._reply(reply_to, corr_id, reply)


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .events import BackgroundSink
    from .mqtt_client import MqttClient
    from .mqtt_sink import MqttEventSink

    parser = argparse.ArgumentParser(description="Ticket queue engine service (MQTT)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--log-env", default="development", choices=["development", "production"])
    args = parser.parse_args()

    configure_logging(args.log_env)

    mqtt_client = MqttClient(client_id="engine", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    sink = BackgroundSink(MqttEventSink(mqtt=mqtt_client, namespace=args.namespace))
    sink.start()
    engine = QueueEngine(sink=sink, config=EngineConfig.from_env())

    service = MqttEngineService(mqtt=mqtt_client, engine=engine, namespace=args.namespace)
    service.start()

    print(f"[service] connected to MQTT {args.mqtt_host}:{args.mqtt_port}, namespace={args.namespace}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        sink.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()

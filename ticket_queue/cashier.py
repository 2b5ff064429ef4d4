from __future__ import annotations

# Cashier agent.
#
# A cashier is a long-running process bound to one queue:
# - claim the lowest queued entry (the engine assigns it and marks it in_progress)
# - mark it ready, then serving
# - "serve" it by sleeping for the computed service time
# - mark it completed
#
# Several cashiers may work the same queue; `claim_next` is atomic in the
# engine, so no entry is served twice.

import argparse
import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, engine_requests, engine_responses
from .service_time import compute_service_time_seconds


class CashierError(RuntimeError):
    def __init__(self, reply: dict[str, Any]) -> None:
        super().__init__(f"{reply.get('code')}: {reply.get('message')}")
        self.code = reply.get("code")


def _call(mqtt: MqttClient, reply_topic: str, namespace: str, message: dict[str, Any]) -> dict[str, Any]:
    resp = mqtt.request(
        request_topic=engine_requests(namespace),
        response_topic=reply_topic,
        message=message,
        timeout=5.0,
    )
    if resp.get("type") == "error":
        raise CashierError(resp)
    return resp


def run_cashier(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    queue_id: str,
    cashier_id: str,
    base_seconds: float = 1.0,
    per_item_seconds: float = 0.0,
    poll_seconds: float = 0.5,
    max_entries: int | None = None,
) -> int:
    """Serve entries until interrupted (or `max_entries` are done). Returns the served count."""
    mqtt = MqttClient(client_id=f"cashier-{cashier_id}", host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = engine_responses(f"cashier-{cashier_id}", namespace)
    mqtt.subscribe(reply_topic)

    # Fail fast on a wrong queue id.
    queue = _call(mqtt, reply_topic, namespace, {"type": "get_queue", "queue_id": queue_id})["queue"]
    print(f"[cashier {cashier_id}] serving queue {queue['name']} ({queue_id})")

    served = 0
    try:
        while max_entries is None or served < max_entries:
            claimed = _call(
                mqtt,
                reply_topic,
                namespace,
                {"type": "claim_next", "queue_id": queue_id, "handler": cashier_id},
            )
            entry = claimed.get("entry")
            if entry is None:
                time.sleep(poll_seconds)
                continue

            entry_id = entry["entry_id"]
            number = entry["sequence_number"]
            quantity = int(entry.get("quantity_allocated", 0) or 0)
            st = compute_service_time_seconds(
                quantity=quantity,
                base_seconds=base_seconds,
                per_item_seconds=per_item_seconds,
            )

            try:
                for status in ("ready", "serving"):
                    _call(
                        mqtt,
                        reply_topic,
                        namespace,
                        {"type": "transition", "entry_id": entry_id, "status": status},
                    )
                print(f"[cashier {cashier_id}] serving #{number} (quantity={quantity}, service={st:0.2f}s)")
                time.sleep(st)
                _call(
                    mqtt,
                    reply_topic,
                    namespace,
                    {"type": "transition", "entry_id": entry_id, "status": "completed"},
                )
            except CashierError as e:
                # Typically the entry was cancelled by staff while we held it.
                print(f"[cashier {cashier_id}] dropped #{number}: {e}")
                continue

            served += 1
            print(f"[cashier {cashier_id}] done #{number}")
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()
    return served


def main() -> None:
    parser = argparse.ArgumentParser(description="Cashier agent (MQTT)")
    parser.add_argument("--queue-id", required=True)
    parser.add_argument("--cashier-id", required=True)
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--base-seconds", type=float, default=1.0, help="fixed time per entry")
    parser.add_argument("--per-item-seconds", type=float, default=0.0, help="seconds per allocated unit")
    parser.add_argument("--poll-seconds", type=float, default=0.5, help="wait when nobody is queued")
    parser.add_argument("--max-entries", type=int, default=None)
    args = parser.parse_args()

    run_cashier(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        queue_id=args.queue_id,
        cashier_id=args.cashier_id,
        base_seconds=args.base_seconds,
        per_item_seconds=args.per_item_seconds,
        poll_seconds=args.poll_seconds,
        max_entries=args.max_entries,
    )


if __name__ == "__main__":
    main()

from __future__ import annotations

# One-shot engine client.
#
# Connects, sends a single request, prints the reply and exits:
#   python -m ticket_queue.client admit queue_id=<id> quantity=2
#   python -m ticket_queue.client transition entry_id=<id> status=serving
#
# Argument values are parsed as JSON when possible (numbers, objects, null),
# otherwise passed through as strings.

import argparse
import json
import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, engine_requests, engine_responses


def send_request(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    message: dict[str, Any],
    client_prefix: str = "client",
    timeout: float = 5.0,
) -> dict[str, Any]:
    # Unique client id so many clients can run concurrently.
    client_id = f"{client_prefix}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = engine_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=engine_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=timeout,
        )
    finally:
        mqtt.stop()


def parse_assignments(pairs: list[str]) -> dict[str, Any]:
    """Turn `key=value` strings into a request body."""
    body: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {pair!r}")
        try:
            body[key] = json.loads(raw)
        except ValueError:
            body[key] = raw
    return body


def main() -> None:
    parser = argparse.ArgumentParser(description="Send one request to the ticket queue engine (MQTT)")
    parser.add_argument("operation", help="request type, e.g. admit, transition, pause")
    parser.add_argument("args", nargs="*", help="key=value request arguments")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args()

    try:
        body = parse_assignments(args.args)
    except ValueError as e:
        parser.error(str(e))
    body["type"] = args.operation

    resp = send_request(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=body,
        timeout=args.timeout,
    )
    if resp.get("type") == "error":
        print(f"[client] {args.operation} failed: {resp.get('code')}: {resp.get('message')}")
        raise SystemExit(1)
    resp.pop("corr_id", None)
    print(json.dumps(resp, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()

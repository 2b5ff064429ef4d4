from __future__ import annotations

# Admission generator.
#
# Simulates customers arriving at one queue and uses the same request protocol
# as any other client. Useful for load tests: several generators against one
# stocked queue must never oversell it.

import argparse
import random
import time

from .arrival import sample_interarrival, sample_quantity
from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, engine_requests, engine_responses


def run_generator(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    queue_id: str,
    rate_per_sec: float,
    mean_quantity: float = 1.0,
    name_prefix: str = "Cust",
    max_admissions: int | None = None,
    seed: int | None = None,
    stop_when_depleted: bool = True,
) -> dict[str, int]:
    """Issue admissions until interrupted, `max_admissions` is reached or stock runs out.

    Returns counters: admitted and rejected (by error code).
    """
    rng = random.Random(seed) if seed is not None else None

    client_id = f"generator-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = engine_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    print(
        f"[generator] connected to MQTT {mqtt_host}:{mqtt_port}, namespace={namespace}, "
        f"queue={queue_id}, rate={rate_per_sec}/s"
    )

    counters: dict[str, int] = {"admitted": 0}
    i = 0
    try:
        while max_admissions is None or i < max_admissions:
            dt = sample_interarrival(rate_per_sec=rate_per_sec, rng=rng)
            time.sleep(dt)

            i += 1
            name = f"{name_prefix}{i}"
            quantity = sample_quantity(mean=mean_quantity, rng=rng)

            resp = mqtt.request(
                request_topic=engine_requests(namespace),
                response_topic=reply_topic,
                message={
                    "type": "admit",
                    "queue_id": queue_id,
                    "quantity": quantity,
                    "metadata": {"customer_name": name},
                },
                timeout=5.0,
            )

            if resp.get("type") == "entry":
                counters["admitted"] += 1
                print(
                    f"[generator] {name} qty={quantity} -> #{resp['entry']['sequence_number']} "
                    f"(dt={dt:0.2f}s)"
                )
                continue

            code = str(resp.get("code"))
            counters[code] = counters.get(code, 0) + 1
            print(f"[generator] {name} qty={quantity} -> {code}: {resp.get('message')}")
            if stop_when_depleted and code == "insufficient_stock":
                # Only stop once the pool is really empty, not on an oversized request.
                queue = mqtt.request(
                    request_topic=engine_requests(namespace),
                    response_topic=reply_topic,
                    message={"type": "get_queue", "queue_id": queue_id},
                    timeout=5.0,
                ).get("queue") or {}
                if not queue.get("stock_remaining"):
                    print("[generator] stock depleted, stopping")
                    break
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()
    return counters


def main() -> None:
    parser = argparse.ArgumentParser(description="Admission generator (Poisson arrivals over MQTT)")
    parser.add_argument("--queue-id", required=True)
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument(
        "--rate",
        type=float,
        required=True,
        help="arrival rate λ in admissions/second (Poisson process)",
    )
    parser.add_argument("--mean-quantity", type=float, default=1.0)
    parser.add_argument("--name-prefix", default="Cust")
    parser.add_argument("--max-admissions", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--keep-going",
        action="store_true",
        help="keep generating after the stock pool is empty",
    )
    args = parser.parse_args()

    counters = run_generator(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        queue_id=args.queue_id,
        rate_per_sec=args.rate,
        mean_quantity=args.mean_quantity,
        name_prefix=args.name_prefix,
        max_admissions=args.max_admissions,
        seed=args.seed,
        stop_when_depleted=not args.keep_going,
    )
    print(f"[generator] totals: {counters}")


if __name__ == "__main__":
    main()

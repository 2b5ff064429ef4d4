"""MQTT topic helpers.

Topic construction lives in one place so the service, the CLI clients and the
cashier agents agree on naming.

Topic layout under a configurable namespace (default: `ticketq/v0`):

Request/response:
- `<ns>/engine/requests`
- `<ns>/engine/responses/<client_id>`

Broadcast:
- `<ns>/queues/<queue_id>/events`
    Every event concerning one queue (display kiosks subscribe here).
- `<ns>/queues/events`
    The same events for all queues (dashboards, notification workers).

Several deployments can share a broker by using different namespaces
(e.g. `--namespace store/berlin`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "ticketq/v0"


def engine_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/engine/requests"


def engine_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/engine/responses/{client_id}"


def queue_events(queue_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Per-queue event stream."""
    return f"{namespace}/queues/{queue_id}/events"


def all_queue_events(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queues/events"


def queue_events_wildcard(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Subscription filter matching every per-queue stream."""
    return f"{namespace}/queues/+/events"

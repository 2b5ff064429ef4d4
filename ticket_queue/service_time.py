from __future__ import annotations

# How long a cashier spends on one entry:
#   service_time_seconds = base_seconds + per_item_seconds * quantity
#
# `base_seconds` covers calling the number and paying; `per_item_seconds`
# scales with the allocated quantity. Plain-queue entries have quantity 0 and
# take exactly `base_seconds`.


def compute_service_time_seconds(*, quantity: int, base_seconds: float, per_item_seconds: float) -> float:
    """Return the (non-negative) service time for one entry.

    Raises:
        ValueError: if any argument is negative.
    """
    if quantity < 0:
        raise ValueError("quantity must be >= 0")
    if base_seconds < 0:
        raise ValueError("base_seconds must be >= 0")
    if per_item_seconds < 0:
        raise ValueError("per_item_seconds must be >= 0")

    return float(base_seconds + per_item_seconds * quantity)

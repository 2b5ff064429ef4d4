"""Random models for the admission generator.

Admissions arrive as a Poisson process with rate λ (admissions/second), so the
waiting time between two admissions is Exponential(λ). Requested quantities
are Poisson-distributed around a mean, but never below 1 because stocked
queues reject empty requests.
"""

from __future__ import annotations

import math
import random


def sample_interarrival(*, rate_per_sec: float, rng: random.Random | None = None) -> float:
    """Seconds until the next admission.

    Args:
        rate_per_sec: λ, must be > 0.
        rng: optional RNG for deterministic runs.
    """
    if rate_per_sec <= 0:
        raise ValueError("rate_per_sec must be > 0")

    r = rng or random
    return float(r.expovariate(rate_per_sec))


def sample_quantity(*, mean: float, rng: random.Random | None = None) -> int:
    """Requested quantity for one admission (>= 1).

    Knuth's exact sampler for mean <= 30, a rounded Gaussian above that.
    """
    r = rng or random
    if mean <= 1:
        return 1

    if mean <= 30:
        limit = math.exp(-mean)
        k = 0
        p = 1.0
        while p > limit:
            k += 1
            p *= r.random()
        return max(1, k - 1)

    return max(1, int(round(r.gauss(mean, math.sqrt(mean)))))

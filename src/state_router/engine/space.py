"""State space: vector helpers and the static centroid table.

Every named state owns a reference vector ("centroid") in the same
ten-dimensional space the baseline mapper produces.  Ranking is plain
similarity to these centroids; everything semantic is layered on top by
the eligibility rules.

State families
--------------
=================  ==========================================================
Family             Keys
=================  ==========================================================
Macro (rankable)   grounded, engaged, connected, capable, pressured, blocked,
                   overloaded, down, exhausted, averse, detached
Deep-only          threatened, confrontational, self_critical
Sentinels          uncertain, mixed (fallback labels, never ranked)
=================  ==========================================================
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from state_router.engine.models import DIMENSIONS, RankedState, StateVector

UNCERTAIN_STATE_KEY = "uncertain"
MIXED_STATE_KEY = "mixed"

MACRO_STATE_KEYS: tuple[str, ...] = (
    "grounded",
    "exhausted",
    "connected",
    "down",
    "averse",
    "detached",
    "engaged",
    "pressured",
    "capable",
    "blocked",
    "overloaded",
)
DEEP_ONLY_STATE_KEYS: tuple[str, ...] = ("threatened", "self_critical", "confrontational")
SENTINEL_STATE_KEYS: tuple[str, ...] = (UNCERTAIN_STATE_KEY, MIXED_STATE_KEY)


# ── Vector helpers ───────────────────────────────────────────


def zero_vector() -> StateVector:
    """Neutral vector: all zeros except a light baseline certainty."""
    return StateVector()


def clamp_state(state: Mapping[str, Any] | StateVector) -> StateVector:
    """Clamp an arbitrary mapping into a valid :class:`StateVector`."""
    if isinstance(state, StateVector):
        return state
    return StateVector.model_validate(dict(state))


def accumulate(
    base: StateVector | None,
    delta: Mapping[str, float] | StateVector | None,
    weight: float = 1.0,
) -> StateVector:
    """Return ``clamp(base + weight * delta)``.

    ``delta`` is a raw per-dimension offset and may be negative; missing
    dimensions contribute nothing.
    """
    current = (base or zero_vector()).as_dict()
    patch = delta.as_dict() if isinstance(delta, StateVector) else dict(delta or {})
    for dim in DIMENSIONS:
        add = patch.get(dim, 0.0)
        if not isinstance(add, (int, float)) or not math.isfinite(add):
            add = 0.0
        current[dim] = current[dim] + weight * add
    return clamp_state(current)


def _vec(**values: float) -> StateVector:
    return StateVector(**{dim: values.get(dim, 0.0) for dim in DIMENSIONS})


# ── Centroid table ───────────────────────────────────────────
# Deliberately coarse values: a "state" is broader than an emotion.

_CENTROIDS: dict[str, StateVector] = {
    "grounded": _vec(
        valence=2.1, arousal=0.6, tension=0.2, agency=1.9, certainty=1.9,
        socialness=0.9, fatigue=0.1,
    ),
    "engaged": _vec(
        valence=1.4, arousal=1.8, tension=0.8, agency=1.4, certainty=1.4,
        socialness=1.0,
    ),
    "connected": _vec(
        valence=1.2, arousal=1.0, tension=0.5, agency=1.2, certainty=1.4,
        socialness=2.0,
    ),
    "capable": _vec(
        valence=1.0, arousal=1.3, tension=0.5, agency=2.0, certainty=1.7,
        socialness=0.9,
    ),
    "pressured": _vec(
        valence=-0.8, arousal=1.6, tension=2.1, agency=1.1, certainty=1.1,
        socialness=0.6, fatigue=0.3,
    ),
    # Deep-only: baseline ratings carry no fear signal, so it is almost never near.
    "threatened": _vec(
        valence=-2.3, arousal=2.0, tension=2.4, agency=0.2, self_blame=0.4,
        certainty=0.6, socialness=0.7, fatigue=0.2, fear_bias=2.2,
    ),
    # High fatigue implies arousal 0 in the baseline mapping.
    "overloaded": _vec(
        valence=-2.0, arousal=0.0, tension=2.3, agency=0.3, certainty=0.7,
        socialness=0.6, fatigue=1.8,
    ),
    "blocked": _vec(
        valence=-1.5, arousal=1.8, tension=2.3, agency=0.2, certainty=1.0,
        socialness=0.5, fatigue=0.1,
    ),
    "confrontational": _vec(
        valence=-2.4, arousal=2.0, tension=2.4, agency=1.8, other_blame=1.8,
        certainty=1.7, socialness=0.8, fatigue=0.2, fear_bias=0.3,
    ),
    "down": _vec(
        valence=-2.4, arousal=0.6, tension=1.1, agency=0.2, certainty=0.9,
        socialness=0.7, fatigue=1.4,
    ),
    "exhausted": _vec(
        valence=-1.4, arousal=0.2, tension=0.8, agency=0.3, certainty=0.9,
        socialness=0.4, fatigue=2.1,
    ),
    "self_critical": _vec(
        valence=-2.2, arousal=1.4, tension=1.8, agency=0.3, self_blame=1.9,
        certainty=1.3, socialness=1.0, fatigue=0.9, fear_bias=0.8,
    ),
    "detached": _vec(
        valence=-0.9, arousal=0.4, tension=0.6, agency=0.4, certainty=0.8,
        socialness=0.2, fatigue=1.4,
    ),
    "uncertain": _vec(
        valence=-0.3, arousal=1.1, tension=1.3, agency=0.8, certainty=0.7,
        socialness=0.8, fatigue=0.6,
    ),
    "averse": _vec(
        valence=-2.0, arousal=1.4, tension=1.9, agency=0.9, certainty=1.4,
        socialness=0.6, fatigue=0.1,
    ),
    # Blame and fear keep it far from anything the baseline can produce.
    "mixed": _vec(
        valence=0.0, arousal=1.2, tension=1.2, agency=0.9, self_blame=1.2,
        other_blame=1.2, certainty=1.0, socialness=0.8, fatigue=0.6, fear_bias=1.2,
    ),
}

STATE_CENTROIDS: Mapping[str, StateVector] = MappingProxyType(_CENTROIDS)

# Every centroid except the sentinels, in table order.
RANKABLE_STATE_KEYS: tuple[str, ...] = tuple(
    key for key in STATE_CENTROIDS if key not in SENTINEL_STATE_KEYS
)


def get_centroid(key: str) -> StateVector:
    return STATE_CENTROIDS[key]


# ── Similarity ───────────────────────────────────────────────


def squared_distance(state: StateVector, centroid: StateVector) -> float:
    total = 0.0
    for dim in DIMENSIONS:
        s = getattr(state, dim)
        c = getattr(centroid, dim)
        s = s if math.isfinite(s) else 0.0
        c = c if math.isfinite(c) else 0.0
        total += (s - c) ** 2
    return total


def similarity(state: StateVector, centroid: StateVector) -> float:
    """Similarity in (0, 1]: ``1 / (1 + euclidean distance)``."""
    dist = squared_distance(state, centroid)
    if not math.isfinite(dist):
        return 0.0
    return 1.0 / (1.0 + math.sqrt(dist))


def score_states(
    state: StateVector,
    keys: Iterable[str] = RANKABLE_STATE_KEYS,
) -> list[RankedState]:
    """Similarity for each key, best first.

    ``sorted`` is stable, so equal scores keep centroid-table order.
    """
    scored = [RankedState(key=key, score=similarity(state, STATE_CENTROIDS[key])) for key in keys]
    return sorted(scored, key=lambda item: item.score, reverse=True)

"""Baseline mapper: six 7-point self-report ratings → state vector.

Energy is a single bipolar axis that lands on *either* arousal (above the
midpoint) *or* fatigue (below it), never both.  Because the ratings are
integers, every mapped dimension can only take a handful of values:

=============  ===============================================
Dimension      Reachable values
=============  ===============================================
arousal        0, 0.667, 1.333, 2.0
fatigue        0, 0.733, 1.467, 2.2
tension        0, 0.4, 0.8, 1.2, 1.6, 2.0, 2.4
agency etc.    0, 0.333, 0.667, 1.0, 1.333, 1.667, 2.0
=============  ===============================================

The gate thresholds in :mod:`state_router.engine.gates` sit between these
steps.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from state_router.engine.models import (
    DIMENSIONS,
    RATING_MAX,
    RATING_MIN,
    BaselineRatings,
    StateVector,
)
from state_router.engine.space import clamp_state, zero_vector

DEFAULT_EVIDENCE_WEIGHT = 0.35

_AROUSAL_SCALE = 2.0
_FATIGUE_SCALE = 2.2
_TENSION_SCALE = 2.4
_UNIT_SCALE = 2.0  # agency, certainty, socialness
_VALENCE_SPAN = 6.0


def normalise_ratings(ratings: BaselineRatings | Mapping[str, Any] | None) -> BaselineRatings:
    """Coerce anything rating-shaped into :class:`BaselineRatings`."""
    if isinstance(ratings, BaselineRatings):
        return ratings
    return BaselineRatings.model_validate(dict(ratings or {}))


def _unit(rating: int) -> float:
    return (rating - RATING_MIN) / (RATING_MAX - RATING_MIN)


def baseline_to_vector(ratings: BaselineRatings | Mapping[str, Any] | None) -> StateVector:
    """Map baseline ratings onto the state space."""
    r = normalise_ratings(ratings)

    energy = _unit(r.energy)
    values = zero_vector().as_dict()
    values["valence"] = (_unit(r.mood) - 0.5) * _VALENCE_SPAN
    if energy >= 0.5:
        values["arousal"] = (energy - 0.5) * 2 * _AROUSAL_SCALE
    else:
        values["fatigue"] = (0.5 - energy) * 2 * _FATIGUE_SCALE
    values["tension"] = _unit(r.tension) * _TENSION_SCALE
    values["agency"] = _unit(r.control) * _UNIT_SCALE
    values["certainty"] = _unit(r.clarity) * _UNIT_SCALE
    values["socialness"] = _unit(r.social) * _UNIT_SCALE
    return clamp_state(values)


def merge_baseline_and_evidence(
    baseline: StateVector | None,
    evidence: StateVector | Mapping[str, float] | None,
    weight: float = DEFAULT_EVIDENCE_WEIGHT,
) -> StateVector:
    """Blend an absolute evidence vector into the baseline.

    The evidence is turned into a delta against the zero vector, scaled by
    ``weight`` (clamped to [0, 1]) and added before re-clamping.  Missing or
    non-finite evidence dimensions contribute nothing.
    """
    base = baseline or zero_vector()
    if evidence is None:
        return base

    weight = weight if isinstance(weight, (int, float)) and math.isfinite(weight) else DEFAULT_EVIDENCE_WEIGHT
    weight = min(1.0, max(0.0, weight))

    raw = evidence.as_dict() if isinstance(evidence, StateVector) else dict(evidence)
    zero = zero_vector().as_dict()
    merged = base.as_dict()
    for dim in DIMENSIONS:
        value = raw.get(dim)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            continue
        merged[dim] += (value - zero[dim]) * weight
    return clamp_state(merged)

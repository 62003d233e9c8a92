"""Topic-gate closure query.

An adaptive questioner asks: for this macro and the evidence gathered so
far, are the minimal topics (agency, clarity, workload, social) already
settled?  A gate closes on any of its canonical tags or, failing that,
when the matching baseline rating is informative (near either end of the
7-point scale).

:data:`TOPIC_GATE_SIGNALS` is the single table of which tags close which
gate; callers outside the engine should read it rather than keep copies.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from state_router.engine.baseline import normalise_ratings
from state_router.engine.models import BaselineRatings, TopicGateStatus

TOPIC_GATE_SIGNALS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "agency": ("sig.agency.low", "sig.agency.high", "sig.agency.mid"),
        "clarity": ("sig.clarity.low", "sig.clarity.high", "sig.clarity.mid"),
        "workload": (
            "sig.context.work.deadline",
            "sig.context.work.overcommit",
            "sig.context.work.pressure.high",
        ),
        "social": (
            "sig.social.threat",
            "sig.social.high",
            "sig.social.low",
            "sig.social.mid",
            "sig.context.social.support",
            "sig.trigger.rejection",
            "sig.trigger.conflict",
        ),
    }
)

ALWAYS_REQUIRED: tuple[str, ...] = ("agency", "clarity")
MACRO_EXTRA_GATES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "overloaded": ("workload",),
        "exhausted": ("workload",),
        "pressured": ("workload",),
        "connected": ("social",),
        "detached": ("social",),
    }
)

INFORMATIVE_LOW = 2
INFORMATIVE_HIGH = 6


def _informative(value: int) -> bool:
    return value <= INFORMATIVE_LOW or value >= INFORMATIVE_HIGH


_BASELINE_CLOSERS: Mapping[str, Callable[[BaselineRatings], bool]] = MappingProxyType(
    {
        "agency": lambda r: _informative(r.control),
        "clarity": lambda r: _informative(r.clarity),
        "workload": lambda r: r.tension >= INFORMATIVE_HIGH or r.energy <= INFORMATIVE_LOW,
        "social": lambda r: _informative(r.social),
    }
)


def required_topic_gates(macro_key: str) -> list[str]:
    return [*ALWAYS_REQUIRED, *MACRO_EXTRA_GATES.get(macro_key, ())]


def evaluate_topic_gates(
    macro_key: str,
    evidence_tags: Iterable[str] = (),
    ratings: BaselineRatings | Mapping[str, Any] | None = None,
) -> TopicGateStatus:
    """Which required topic gates are closed for ``macro_key``.

    Ratings are optional; without them only evidence can close a gate.
    """
    tags = set(evidence_tags)
    baseline = normalise_ratings(ratings) if ratings is not None else None

    required = required_topic_gates(macro_key)
    closed: dict[str, bool] = {}
    closed_by: dict[str, str] = {}
    for gate in required:
        if tags.intersection(TOPIC_GATE_SIGNALS[gate]):
            closed[gate] = True
            closed_by[gate] = "evidence"
        elif baseline is not None and _BASELINE_CLOSERS[gate](baseline):
            closed[gate] = True
            closed_by[gate] = "baseline"
        else:
            closed[gate] = False
    return TopicGateStatus(macro_key=macro_key, required=required, closed=closed, closed_by=closed_by)

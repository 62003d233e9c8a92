"""Macro flip: let strong contradicting evidence move the macro to a neighbour.

Disabled by default (``macro_flip_enabled``).  A flip needs all of:

1. the baseline decision is not high-confidence
2. evidence weight for the alternative ≥ 0.5
3. alternative score − baseline score ≥ 0.1
4. the alternative passes the semantic hard-blocks, both against the
   levels the evidence tags assert and against the current vector levels
5. the two macros are in the same or neighbouring clusters

Scores here are evidence weights: micro tags for a macro count 0.5 each,
context and trigger tags 0.2 each, capped at 1.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import structlog

from state_router.engine.decision import TIE_PRIORITY
from state_router.engine.eligibility import semantic_block_reasons
from state_router.engine.gates import levels_from_tags
from state_router.engine.models import ConfidenceBand, DecisionRecord, MacroFlipOutcome
from state_router.engine.space import MACRO_STATE_KEYS

logger = structlog.get_logger(__name__)

MACRO_CLUSTERS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "stress": ("pressured", "blocked", "overloaded"),
        "low_energy": ("exhausted", "down", "averse", "detached"),
        "positive": ("grounded", "engaged", "connected", "capable"),
    }
)

CLUSTER_NEIGHBORS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "stress": ("low_energy", "positive"),
        "low_energy": ("stress",),
        "positive": ("stress",),
    }
)

MIN_FLIP_EVIDENCE = 0.5
MIN_FLIP_SCORE_GAIN = 0.1
MICRO_TAG_WEIGHT = 0.5
CONTEXT_TAG_WEIGHT = 0.2
DECISIVE_CONTEXT_LIMIT = 3

_CONTEXT_PREFIXES = ("sig.context.", "sig.trigger.")


def cluster_of(macro_key: str) -> str | None:
    for cluster, members in MACRO_CLUSTERS.items():
        if macro_key in members:
            return cluster
    return None


def is_cluster_neighbor(macro_a: str, macro_b: str) -> bool:
    a, b = cluster_of(macro_a), cluster_of(macro_b)
    if a is None or b is None:
        return False
    return a == b or b in CLUSTER_NEIGHBORS.get(a, ())


def _micro_tags(tags: Iterable[str], macro_key: str) -> list[str]:
    prefix = f"sig.micro.{macro_key}."
    return [tag for tag in tags if tag.startswith(prefix)]


def _context_tags(tags: Iterable[str]) -> list[str]:
    return [tag for tag in tags if tag.startswith(_CONTEXT_PREFIXES)]


def evidence_weight(evidence_tags: Iterable[str], target_macro: str) -> float:
    tags = list(dict.fromkeys(evidence_tags))
    weight = len(_micro_tags(tags, target_macro)) * MICRO_TAG_WEIGHT
    weight += len(_context_tags(tags)) * CONTEXT_TAG_WEIGHT
    return min(weight, 1.0)


def is_semantically_compatible(macro_key: str, evidence_tags: Iterable[str]) -> bool:
    return not semantic_block_reasons(macro_key, levels_from_tags(evidence_tags))


def get_decisive_tags(evidence_tags: Iterable[str], target_macro: str) -> list[str]:
    """Micro tags for the target plus the first few context/trigger tags."""
    tags = list(dict.fromkeys(evidence_tags))
    return [*_micro_tags(tags, target_macro), *_context_tags(tags)[:DECISIVE_CONTEXT_LIMIT]]


def should_flip_macro(
    *,
    baseline_macro: str,
    baseline_band: ConfidenceBand,
    evidence_tags: Iterable[str],
    alternative_macro: str,
    alternative_score: float,
    baseline_score: float,
) -> MacroFlipOutcome:
    tags = list(evidence_tags)
    weight = evidence_weight(tags, alternative_macro)
    outcome = MacroFlipOutcome(from_key=baseline_macro, to_key=alternative_macro, evidence_weight=weight)

    if baseline_band == ConfidenceBand.HIGH:
        return outcome
    if weight < MIN_FLIP_EVIDENCE:
        return outcome
    if alternative_score - baseline_score < MIN_FLIP_SCORE_GAIN:
        return outcome
    if not is_semantically_compatible(alternative_macro, tags):
        return outcome
    if not is_cluster_neighbor(baseline_macro, alternative_macro):
        return outcome

    same_cluster = cluster_of(baseline_macro) == cluster_of(alternative_macro)
    return outcome.model_copy(
        update={
            "should_flip": True,
            "reason": "strong_evidence" if same_cluster else "cluster_conflict",
            "decisive_tags": get_decisive_tags(tags, alternative_macro),
        }
    )


def propose_macro_flip(decision: DecisionRecord, evidence_tags: Iterable[str]) -> MacroFlipOutcome:
    """Pick the best-evidenced alternative macro and test it for a flip.

    The alternative must also clear the semantic hard-blocks for the
    decision's own gate levels.
    """
    tags = list(dict.fromkeys(evidence_tags))
    baseline = decision.macro_key

    weights = {key: evidence_weight(tags, key) for key in MACRO_STATE_KEYS if key != baseline and _micro_tags(tags, key)}
    if not weights:
        return MacroFlipOutcome(from_key=baseline)

    best = max(weights.values())
    alternative = next(key for key in TIE_PRIORITY if weights.get(key) == best)

    outcome = should_flip_macro(
        baseline_macro=baseline,
        baseline_band=decision.confidence_band,
        evidence_tags=tags,
        alternative_macro=alternative,
        alternative_score=best,
        baseline_score=evidence_weight(tags, baseline),
    )
    if outcome.should_flip and semantic_block_reasons(alternative, decision.levels):
        logger.info("macro_flip.blocked", from_key=baseline, to_key=alternative)
        return outcome.model_copy(update={"should_flip": False, "reason": None, "decisive_tags": []})
    if outcome.should_flip:
        logger.info("macro_flip.applied", from_key=baseline, to_key=alternative, reason=outcome.reason)
    return outcome

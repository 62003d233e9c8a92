"""Tie-break & uncertainty decision layer.

Turns a :class:`RankingResult` into a :class:`DecisionRecord`.

Two outcomes are kept strictly apart:

- **Forced uncertainty**: the engine declines to name a state and returns
  the ``uncertain`` sentinel.  This needs a weak top score, no strong
  signal pattern for the winner, certainty at its floor *and* a top score
  under a very low floor.  It is deliberately rare.
- **Flagged answer**: every other weak situation still names a state but
  carries a clarity flag, a weak-match warning, a low confidence band and
  ``needs_refine``.

Ties are resolved before the uncertainty rule runs and never yield the
sentinel.  The record is validated once before it is returned;
``macro_key == "uncertain"`` if and only if ``forced_uncertain``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from state_router.engine.baseline import (
    DEFAULT_EVIDENCE_WEIGHT,
    baseline_to_vector,
    merge_baseline_and_evidence,
)
from state_router.engine.eligibility import (
    evaluate_condition,
    is_semantically_blocked,
    register_conditions,
    semantic_block_reasons,
)
from state_router.engine.errors import ContractViolation
from state_router.engine.gates import levelize_state_vec
from state_router.engine.models import (
    BaselineRatings,
    ClarityFlag,
    ConfidenceBand,
    DecisionRecord,
    DecisionValidation,
    EligibilityMode,
    GateLevels,
    MatchWarning,
    RankedState,
    RankingResult,
    SelectionSummary,
    SemanticSubstitution,
    StateVector,
    TieDiagnostics,
    UncertainReason,
    ViolationKind,
)
from state_router.engine.ranking import rank_states
from state_router.engine.space import RANKABLE_STATE_KEYS, UNCERTAIN_STATE_KEY

logger = structlog.get_logger(__name__)


class UncertaintyPolicy(BaseModel):
    """Thresholds of the uncertainty rule and the confidence band."""

    model_config = ConfigDict(frozen=True)

    # Forced uncertainty
    score_ok: float = 0.16
    accept_score: float = 0.78
    accept_delta: float = 0.01
    score_floor: float = 0.04
    certainty_extreme_low: float = 0.35  # captures certainty 0 and 0.333

    # Clarity & confidence
    clarity_medium_below: float = 0.7
    band_low_score: float = 0.12
    band_low_delta_rel: float = 0.06
    band_high_score: float = 0.18
    band_high_delta_rel: float = 0.10
    confidence_delta_scale: float = 0.06
    refine_confidence_floor: float = 0.2

    tie_eps: float = 1e-9


DEFAULT_POLICY = UncertaintyPolicy()

# ── Strong signals & tie priority ────────────────────────────

STRONG_SIGNAL_PATTERNS: Mapping[str, str] = MappingProxyType(
    {
        # tension may be high; exhausted still holds
        "exhausted": "F_high and Ar_low",
        "overloaded": "T_high and F_high and (not Ar_low or (Ag_low and Vneg))",
        "blocked": "T_high and Ag_low and not Ar_low",
        "engaged": "Vpos and Ar_high and not T_high and not F_high and not Ag_low",
        "grounded": "T_low and Ag_high and not Ar_high and not F_high and not Vneg and C_high",
    }
)
register_conditions(STRONG_SIGNAL_PATTERNS.values(), "strong_signal")

TIE_PRIORITY: tuple[str, ...] = (
    "overloaded",
    "blocked",
    "pressured",
    "exhausted",
    "down",
    "averse",
    "engaged",
    "grounded",
    "capable",
    "connected",
    "detached",
    "threatened",
    "self_critical",
    "confrontational",
)


def is_strong_signal(state_key: str, levels: GateLevels) -> bool:
    """Does ``state_key`` match its own canonical signal pattern?"""
    pattern = STRONG_SIGNAL_PATTERNS.get(state_key)
    return pattern is not None and evaluate_condition(pattern, levels)


def break_tie(tied_keys: Iterable[str], levels: GateLevels) -> str | None:
    """Pick one winner from a tied set; never the ``uncertain`` sentinel.

    Strong-signal matches win first (by priority when several match), then
    plain priority order.  Returns ``None`` only for an empty set.
    """
    candidates = [key for key in tied_keys if key != UNCERTAIN_STATE_KEY]
    if not candidates:
        return None
    ordered = [key for key in TIE_PRIORITY if key in candidates]
    for key in ordered:
        if is_strong_signal(key, levels):
            return key
    if ordered:
        return ordered[0]
    return candidates[0]


# ── Uncertainty & quality signals ────────────────────────────


def should_force_uncertain(
    *,
    levels: GateLevels,
    score1: float,
    delta: float,
    top_key: str | None,
    certainty: float,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
) -> tuple[bool, UncertainReason | None, MatchWarning | None]:
    """Apply the uncertainty rule to an untied ranking.

    Returns (force, reason, warning).
    """
    if score1 >= policy.score_ok:
        return False, None, None
    if top_key and is_strong_signal(top_key, levels):
        return False, None, None
    if score1 >= policy.accept_score and delta >= policy.accept_delta:
        return False, None, None

    if certainty <= policy.certainty_extreme_low and score1 < policy.score_floor:
        return True, UncertainReason.EXTREME_UNCERTAINTY, None
    if score1 < policy.score_floor:
        return False, None, MatchWarning.WEAK_MATCH_EXTREME
    return False, None, None


def clarity_flag_for(
    levels: GateLevels,
    certainty: float,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
) -> ClarityFlag | None:
    """Clarity quality of a named answer; never forces uncertainty."""
    if levels.C_low:
        return ClarityFlag.LOW
    if certainty < policy.clarity_medium_below:
        return ClarityFlag.MEDIUM
    return None


def confidence_band_for(
    score1: float,
    delta_rel: float,
    warning: MatchWarning | None,
    clarity: ClarityFlag | None,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
) -> ConfidenceBand:
    if (
        score1 < policy.band_low_score
        or delta_rel < policy.band_low_delta_rel
        or warning is not None
        or clarity == ClarityFlag.LOW
    ):
        return ConfidenceBand.LOW
    if score1 >= policy.band_high_score and delta_rel >= policy.band_high_delta_rel and clarity is None:
        return ConfidenceBand.HIGH
    return ConfidenceBand.MEDIUM


def _probabilities(candidates: Sequence[RankedState]) -> dict[str, float]:
    total = sum(item.score for item in candidates) or 1.0
    return {item.key: item.score / total for item in candidates}


# ── Validation ───────────────────────────────────────────────


def validate_decision(record: DecisionRecord, candidates: Sequence[RankedState]) -> DecisionValidation:
    """Single pre-return check of the record's contract."""
    is_uncertain = record.macro_key == UNCERTAIN_STATE_KEY

    if not candidates:
        return DecisionValidation(ok=False, violation=ViolationKind.EMPTY_RANKING, detail="ranking is empty")
    if is_uncertain and not record.forced_uncertain:
        return DecisionValidation(
            ok=False,
            violation=ViolationKind.UNCERTAIN_WITHOUT_FORCE,
            detail="macro_key is 'uncertain' but forced_uncertain is false",
        )
    if record.forced_uncertain and not is_uncertain:
        return DecisionValidation(
            ok=False,
            violation=ViolationKind.FORCE_WITHOUT_UNCERTAIN,
            detail=f"forced_uncertain is true but macro_key is {record.macro_key!r}",
        )
    if record.forced_uncertain != (record.uncertain_reason is not None):
        return DecisionValidation(
            ok=False,
            violation=ViolationKind.REASON_MISMATCH,
            detail="uncertain_reason must be set exactly when forced_uncertain",
        )
    if not is_uncertain:
        reasons = semantic_block_reasons(record.macro_key, record.levels)
        if reasons:
            return DecisionValidation(
                ok=False,
                violation=ViolationKind.WINNER_SEMANTICALLY_BLOCKED,
                detail=f"{record.macro_key} blocked by {', '.join(reasons)}",
            )
    return DecisionValidation(ok=True)


def _violation(kind: ViolationKind, detail: str, **context: Any) -> ContractViolation:
    logger.error("decision.contract_violation", kind=kind.value, detail=detail, **context)
    return ContractViolation(kind, detail)


# ── Decision ─────────────────────────────────────────────────


def decide(
    ranking: RankingResult,
    vector: StateVector,
    *,
    levels: GateLevels | None = None,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
) -> DecisionRecord:
    """Resolve ties, apply the uncertainty rule and re-check semantic blocks."""
    levels = levels or levelize_state_vec(vector)
    candidates = ranking.candidates
    if not candidates:
        raise _violation(ViolationKind.EMPTY_RANKING, "decision received an empty ranking")

    top1 = candidates[0]
    top2 = candidates[1] if len(candidates) > 1 else None
    score1 = top1.score
    score2 = top2.score if top2 else 0.0
    delta = score1 - score2

    forced = False
    reason: UncertainReason | None = None
    warning: MatchWarning | None = None
    tie = TieDiagnostics()

    if top2 is not None and abs(delta) <= policy.tie_eps:
        tied = [item.key for item in candidates if abs(item.score - score1) <= policy.tie_eps]
        winner = break_tie(tied, levels) or top1.key
        tie = TieDiagnostics(is_tie=True, tie_resolved=True, tie_winner=winner, tied_count=len(tied))
        dominant = winner
        secondary = top1.key if top1.key != winner else top2.key
        logger.info("decision.tie_resolved", winner=winner, tied=tied)
    else:
        forced, reason, warning = should_force_uncertain(
            levels=levels,
            score1=score1,
            delta=delta,
            top_key=top1.key,
            certainty=vector.certainty,
            policy=policy,
        )
        if forced:
            dominant = UNCERTAIN_STATE_KEY
            secondary = top1.key
            logger.info("decision.forced_uncertain", reason=reason.value, top=top1.key, score=score1)
        else:
            dominant = top1.key
            secondary = top2.key if top2 else None

    substitution: SemanticSubstitution | None = None
    if not forced:
        blocked_by = semantic_block_reasons(dominant, levels)
        if blocked_by:
            replacement = next(
                (
                    item.key
                    for item in candidates
                    if item.key != dominant and not is_semantically_blocked(item.key, levels)
                ),
                None,
            )
            if replacement is None:
                raise _violation(
                    ViolationKind.SEMANTIC_BLOCK_UNRESOLVED,
                    f"every candidate is semantically blocked (winner {dominant})",
                    levels=levels.active(),
                )
            logger.warning(
                "decision.semantic_substitution",
                blocked=dominant,
                replacement=replacement,
                reasons=blocked_by,
            )
            substitution = SemanticSubstitution(
                blocked_key=dominant, replacement_key=replacement, reasons=blocked_by
            )
            dominant = replacement
            secondary = next((item.key for item in candidates if item.key != dominant), None)

    clarity = None if forced else clarity_flag_for(levels, vector.certainty, policy)
    delta_rel = delta / score1 if score1 > 1e-6 else 0.0
    band = confidence_band_for(score1, delta_rel, warning, clarity, policy)
    needs_refine = forced or band == ConfidenceBand.LOW or warning is not None or clarity == ClarityFlag.LOW

    confidence = min(1.0, max(0.0, delta / policy.confidence_delta_scale))
    if needs_refine:
        confidence = max(confidence, policy.refine_confidence_floor)

    record = DecisionRecord(
        macro_key=dominant,
        secondary_key=secondary,
        top=[key for key in (dominant, secondary) if key],
        top1_key=top1.key,
        top2_key=top2.key if top2 else None,
        score1=score1,
        score2=score2,
        delta=delta,
        delta_rel=delta_rel,
        confidence=confidence,
        probabilities=_probabilities(candidates),
        confidence_band=band,
        clarity_flag=clarity,
        match_warning=warning,
        needs_refine=needs_refine,
        forced_uncertain=forced,
        uncertain_reason=reason,
        mode=mode,
        selection_path=ranking.selection_path,
        selection=SelectionSummary(
            selection_path=ranking.selection_path,
            strict_count=ranking.strict_count,
            hard_count=ranking.hard_count,
            rescue_used=ranking.rescue_used,
            fallback_used=ranking.fallback_used,
            last_resort_used=ranking.last_resort_used,
        ),
        tie=tie,
        semantic_substitution=substitution,
        eligibility=ranking.eligibility,
        vector=vector,
        levels=levels,
    )
    record = record.model_copy(update={"explanation": build_explanation(record)})

    validation = validate_decision(record, candidates)
    if not validation.ok:
        raise _violation(validation.violation, validation.detail, macro_key=record.macro_key)

    logger.debug(
        "decision.complete",
        macro=record.macro_key,
        path=record.selection_path.value,
        band=record.confidence_band.value,
        score1=round(score1, 4),
    )
    return record


def build_explanation(record: DecisionRecord) -> str:
    """Human-readable summary of a decision."""
    parts: list[str] = []

    if record.forced_uncertain:
        parts.append(
            f"State: uncertain ({record.uncertain_reason.value}); "
            f"closest match {record.top1_key} ({record.score1:.3f})."
        )
    else:
        parts.append(
            f"State: {record.macro_key} ({record.score1:.3f}, margin {record.delta:.3f}), "
            f"selected by the {record.selection_path.value} pass."
        )

    parts.append(f"Confidence: {record.confidence_band.value}.")

    if record.tie.is_tie:
        parts.append(f"Tie between {record.tie.tied_count} states resolved to {record.tie.tie_winner}.")
    if record.semantic_substitution:
        sub = record.semantic_substitution
        parts.append(f"{sub.blocked_key} ruled out by {', '.join(sub.reasons)}; using {sub.replacement_key}.")
    if record.clarity_flag:
        parts.append(f"Clarity: {record.clarity_flag.value}.")
    if record.match_warning:
        parts.append("Very weak match to every known state.")
    if record.needs_refine:
        parts.append("More evidence would help.")

    return " ".join(parts)


# ── Entry points ─────────────────────────────────────────────


def route_state(
    vector: StateVector,
    *,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
    keys: Iterable[str] = RANKABLE_STATE_KEYS,
    eligibility: bool = True,
    debug: bool = True,
) -> DecisionRecord:
    """Rank and decide for an already-built vector."""
    levels = levelize_state_vec(vector)
    ranking = rank_states(vector, keys, mode=mode, eligibility=eligibility, debug=debug, levels=levels)
    return decide(ranking, vector, levels=levels, mode=mode, policy=policy)


def route_state_from_baseline(
    ratings: BaselineRatings | Mapping[str, Any] | None,
    evidence_vector: StateVector | Mapping[str, float] | None = None,
    evidence_weight: float = DEFAULT_EVIDENCE_WEIGHT,
    *,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
    debug: bool = True,
) -> DecisionRecord:
    """Baseline ratings (plus optional evidence vector) → decision record."""
    vector = merge_baseline_and_evidence(baseline_to_vector(ratings), evidence_vector, evidence_weight)
    return route_state(vector, mode=mode, policy=policy, debug=debug)

"""Pydantic models for the state classification engine.

These models represent:
- The ten-dimensional state vector (always range-clamped)
- Baseline self-report ratings on the 7-point scale
- Discrete gate levels derived from a vector
- Eligibility verdicts, rankings and selection diagnostics
- The final decision record with confidence / clarity metadata
- Micro-state profiles, candidate scores and selections
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# ── Vector space ──────────────────────────────────────────────

# Dimension → (min, max).  Order is the canonical iteration order.
DIMENSION_RANGES: dict[str, tuple[float, float]] = {
    "valence": (-3.0, 3.0),
    "arousal": (0.0, 3.0),
    "tension": (0.0, 3.0),
    "agency": (0.0, 2.0),
    "self_blame": (0.0, 2.0),
    "other_blame": (0.0, 2.0),
    "certainty": (0.0, 2.0),  # clarity / understanding
    "socialness": (0.0, 2.0),
    "fatigue": (0.0, 3.0),
    "fear_bias": (0.0, 3.0),  # threat sensitivity
}

DIMENSIONS: tuple[str, ...] = tuple(DIMENSION_RANGES)

# Value a missing dimension takes.  Certainty keeps a light baseline clarity.
DIMENSION_DEFAULTS: dict[str, float] = {dim: 0.0 for dim in DIMENSIONS} | {"certainty": 1.0}

# 7-point rating scale
RATING_MIN = 1
RATING_MAX = 7
RATING_MIDPOINT = 4


def _finite_or_none(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class StateVector(BaseModel):
    """A point in the emotional state space.

    Construction always clamps every dimension into its range, so no
    instance can hold an out-of-range value.  Instances are immutable;
    arithmetic lives in :mod:`state_router.engine.space` and produces new
    vectors.
    """

    model_config = ConfigDict(frozen=True)

    valence: float = 0.0
    arousal: float = 0.0
    tension: float = 0.0
    agency: float = 0.0
    self_blame: float = 0.0
    other_blame: float = 0.0
    certainty: float = 1.0
    socialness: float = 0.0
    fatigue: float = 0.0
    fear_bias: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _clamp(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        if not isinstance(data, dict):
            return data
        clamped: dict[str, float] = {}
        for dim, (lo, hi) in DIMENSION_RANGES.items():
            value = _finite_or_none(data.get(dim))
            if value is None:
                value = DIMENSION_DEFAULTS[dim]
            clamped[dim] = min(hi, max(lo, value))
        return clamped

    def as_dict(self) -> dict[str, float]:
        return {dim: getattr(self, dim) for dim in DIMENSIONS}


class BaselineRatings(BaseModel):
    """Six self-report ratings on the 1–7 scale.

    Every field is coerced rather than rejected: missing, non-numeric or
    non-finite values become the midpoint (4), numbers are rounded half-up
    and clamped into [1, 7].
    """

    model_config = ConfigDict(populate_by_name=True)

    mood: int = Field(
        RATING_MIDPOINT,
        validation_alias=AliasChoices("mood", "valence"),
        description="Mood / valence (1=very bad, 7=very good).",
    )
    energy: int = Field(RATING_MIDPOINT, description="Energy (1=drained, 7=wired).")
    tension: int = Field(RATING_MIDPOINT, description="Tension (1=loose, 7=tight).")
    clarity: int = Field(RATING_MIDPOINT, description="Clarity (1=foggy, 7=clear).")
    control: int = Field(RATING_MIDPOINT, description="Control (1=reactive, 7=in charge).")
    social: int = Field(
        RATING_MIDPOINT,
        validation_alias=AliasChoices("social", "social_capacity"),
        description="Social capacity (1=none, 7=plenty).",
    )

    @field_validator("mood", "energy", "tension", "clarity", "control", "social", mode="before")
    @classmethod
    def _normalise(cls, value: Any) -> int:
        number = _finite_or_none(value)
        if number is None:
            return RATING_MIDPOINT
        return min(RATING_MAX, max(RATING_MIN, math.floor(number + 0.5)))


# ── Enums ─────────────────────────────────────────────────────


class EligibilityMode(str, Enum):
    """Which family of states may be ranked."""

    BASELINE = "baseline"  # deep-only states excluded
    DEEP = "deep"


class EligibilityPass(str, Enum):
    STRICT = "strict"  # requires ∧ ¬blocks
    HARD = "hard"  # blockers only


class SelectionPath(str, Enum):
    """Which fallback stage produced the ranked list."""

    STRICT = "strict"
    HARD = "hard"
    FINAL_FALLBACK = "final_fallback"
    LAST_RESORT = "last_resort"
    UNGATED = "ungated"


class ConfidenceBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClarityFlag(str, Enum):
    """Non-forcing clarity quality of a named answer."""

    LOW = "low"
    MEDIUM = "medium"


class MatchWarning(str, Enum):
    WEAK_MATCH_EXTREME = "weak_match_extreme"


class UncertainReason(str, Enum):
    EXTREME_UNCERTAINTY = "extreme_uncertainty"


class ViolationKind(str, Enum):
    """Closed set of engine contract violations."""

    EMPTY_RANKING = "empty_ranking"
    UNCERTAIN_WITHOUT_FORCE = "uncertain_without_force"
    FORCE_WITHOUT_UNCERTAIN = "force_without_uncertain"
    REASON_MISMATCH = "reason_mismatch"
    SEMANTIC_BLOCK_UNRESOLVED = "semantic_block_unresolved"
    WINNER_SEMANTICALLY_BLOCKED = "winner_semantically_blocked"


class MicroReason(str, Enum):
    MATCHED = "matched"
    NO_MICROS = "no_micros"
    NO_EVIDENCE = "no_evidence"
    NO_MATCHES_ZERO_SCORE = "no_matches_zero_score"
    BELOW_THRESHOLD_NONZERO = "below_threshold_nonzero"


# ── Gate levels ──────────────────────────────────────────────


class GateLevels(BaseModel):
    """Coarse low/mid/high predicates per dimension.

    Pure derived data: recomputed from a vector, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    Vneg: bool = False
    Vpos: bool = False
    Vmid: bool = False
    Ar_low: bool = False
    Ar_mid: bool = False
    Ar_high: bool = False
    T_low: bool = False
    T_mid: bool = False
    T_high: bool = False
    Ag_low: bool = False
    Ag_mid: bool = False
    Ag_high: bool = False
    S_low: bool = False
    S_mid: bool = False
    S_high: bool = False
    F_low: bool = False
    F_mid: bool = False
    F_high: bool = False
    C_low: bool = False
    C_mid: bool = False
    C_high: bool = False

    def active(self) -> list[str]:
        """Names of the levels that hold."""
        return [name for name, value in self.model_dump().items() if value]


# ── Eligibility & ranking ────────────────────────────────────


class EligibilityResult(BaseModel):
    eligible: bool
    reasons: list[str] = Field(default_factory=list)


class RankedState(BaseModel):
    """A (state key, similarity score) pair."""

    model_config = ConfigDict(frozen=True)

    key: str
    score: float = Field(ge=0.0, le=1.0)


class FilteredOutState(BaseModel):
    key: str
    score: float
    reasons: list[str] = Field(default_factory=list)


class EligibilityDiagnostics(BaseModel):
    """Trace of one eligibility pass over a ranked list."""

    eligibility_pass: EligibilityPass
    pre_filter_top3: list[RankedState] = Field(default_factory=list)
    filtered_out: list[FilteredOutState] = Field(default_factory=list)
    post_filter_top3: list[RankedState] = Field(default_factory=list)
    total_filtered: int = 0
    total_kept: int = 0


class RankingResult(BaseModel):
    """Ordered candidates plus the stage that produced them."""

    candidates: list[RankedState] = Field(min_length=1)
    selection_path: SelectionPath
    strict_count: int = 0
    hard_count: int = 0
    rescue_used: bool = False
    fallback_used: bool = False
    last_resort_used: bool = False
    semantic_blocks_applied: bool = False
    eligibility: EligibilityDiagnostics | None = None
    note: str = ""

    @property
    def top(self) -> RankedState:
        return self.candidates[0]


# ── Decision ─────────────────────────────────────────────────


class SelectionSummary(BaseModel):
    selection_path: SelectionPath
    strict_count: int = 0
    hard_count: int = 0
    rescue_used: bool = False
    fallback_used: bool = False
    last_resort_used: bool = False


class TieDiagnostics(BaseModel):
    is_tie: bool = False
    tie_resolved: bool = False
    tie_winner: str | None = None
    tied_count: int = 0


class SemanticSubstitution(BaseModel):
    """Record of a winner replaced because it violated a semantic hard-block."""

    blocked_key: str
    replacement_key: str
    reasons: list[str] = Field(default_factory=list)


class DecisionRecord(BaseModel):
    """Final engine output for one classification request.

    ``macro_key == "uncertain"`` holds if and only if ``forced_uncertain``.
    """

    macro_key: str
    secondary_key: str | None = None
    top: list[str] = Field(default_factory=list)
    top1_key: str | None = None
    top2_key: str | None = None

    # ── Scores
    score1: float = 0.0
    score2: float = 0.0
    delta: float = 0.0
    delta_rel: float = 0.0
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    probabilities: dict[str, float] = Field(default_factory=dict)

    # ── Quality signals
    confidence_band: ConfidenceBand = ConfidenceBand.MEDIUM
    clarity_flag: ClarityFlag | None = None
    match_warning: MatchWarning | None = None
    needs_refine: bool = False

    # ── Forced uncertainty
    forced_uncertain: bool = False
    uncertain_reason: UncertainReason | None = None

    # ── Diagnostics
    mode: EligibilityMode = EligibilityMode.BASELINE
    selection_path: SelectionPath
    selection: SelectionSummary
    tie: TieDiagnostics = Field(default_factory=TieDiagnostics)
    semantic_substitution: SemanticSubstitution | None = None
    eligibility: EligibilityDiagnostics | None = None
    vector: StateVector
    levels: GateLevels
    explanation: str = ""


class DecisionValidation(BaseModel):
    """Typed outcome of the single pre-return validation step."""

    ok: bool
    violation: ViolationKind | None = None
    detail: str = ""


# ── Micro states ─────────────────────────────────────────────


class MicroProfile(BaseModel):
    """Evidence profile for one micro state."""

    model_config = ConfigDict(frozen=True)

    micro_key: str
    must_have: tuple[str, ...] = ()
    supporting: tuple[str, ...] = ()
    optional_weights: dict[str, float] = Field(default_factory=dict)

    @property
    def macro_key(self) -> str:
        return self.micro_key.split(".", 1)[0]


class MicroCandidate(BaseModel):
    micro_key: str
    score: float = 0.0
    matched_tags: list[str] = Field(default_factory=list)


class MicroSelection(BaseModel):
    """Micro selection with diagnostics, returned even when nothing is selected."""

    macro_key: str
    selected: MicroCandidate | None = None
    top_candidate: MicroCandidate | None = None
    effective_threshold: float = 0.3
    reason: MicroReason

    @property
    def micro_key(self) -> str | None:
        return self.selected.micro_key if self.selected else None


class MicroSufficiency(BaseModel):
    sufficient: bool
    missing_must_have: list[str] = Field(default_factory=list)
    missing_supporting: list[str] = Field(default_factory=list)


# ── Topic gates & macro flip ─────────────────────────────────


class TopicGateStatus(BaseModel):
    """Closure of the minimal topic gates for the question-selection policy."""

    macro_key: str
    required: list[str] = Field(default_factory=list)
    closed: dict[str, bool] = Field(default_factory=dict)
    closed_by: dict[str, str] = Field(
        default_factory=dict,
        description="Gate → 'evidence' or 'baseline' for every closed gate.",
    )

    @property
    def all_closed(self) -> bool:
        return all(self.closed.get(gate, False) for gate in self.required)

    @property
    def open_gates(self) -> list[str]:
        return [gate for gate in self.required if not self.closed.get(gate, False)]


class MacroFlipOutcome(BaseModel):
    should_flip: bool = False
    reason: str | None = None
    from_key: str | None = None
    to_key: str | None = None
    evidence_weight: float = 0.0
    decisive_tags: list[str] = Field(default_factory=list)


class Classification(BaseModel):
    """Complete orchestrator output: macro decision plus micro refinement."""

    decision: DecisionRecord
    macro_key: str
    micro_key: str | None = None
    micro_source: str = "none"  # 'selected' | 'none'
    micro: MicroSelection
    evidence_tags: list[str] = Field(default_factory=list)
    macro_flip: MacroFlipOutcome | None = None
    topic_gates: TopicGateStatus

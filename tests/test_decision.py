"""Tests for the tie-break & uncertainty decision layer."""

from __future__ import annotations

import pytest

from state_router.engine.baseline import baseline_to_vector
from state_router.engine.decision import (
    DEFAULT_POLICY,
    STRONG_SIGNAL_PATTERNS,
    TIE_PRIORITY,
    UncertaintyPolicy,
    break_tie,
    clarity_flag_for,
    confidence_band_for,
    decide,
    is_strong_signal,
    route_state,
    route_state_from_baseline,
    should_force_uncertain,
    validate_decision,
)
from state_router.engine.errors import ContractViolation
from state_router.engine.gates import levelize_state_vec
from state_router.engine.models import (
    ClarityFlag,
    ConfidenceBand,
    GateLevels,
    MatchWarning,
    RankedState,
    RankingResult,
    SelectionPath,
    UncertainReason,
    ViolationKind,
)
from state_router.engine.space import MACRO_STATE_KEYS, zero_vector

# Any score counts as weak and below the floor.
_ALWAYS_WEAK = UncertaintyPolicy(score_ok=1.0, score_floor=1.0)


def _ranking(*pairs: tuple[str, float]) -> RankingResult:
    return RankingResult(
        candidates=[RankedState(key=key, score=score) for key, score in pairs],
        selection_path=SelectionPath.STRICT,
    )


# ── Worked examples ──────────────────────────────────────────


class TestScenarios:
    def test_scenario_a(self, scenario_a_vector):
        record = route_state(scenario_a_vector)
        assert record.macro_key == "overloaded"
        assert record.secondary_key == "down"
        assert record.top == ["overloaded", "down"]
        assert record.selection_path == SelectionPath.STRICT
        assert record.confidence_band in (ConfidenceBand.MEDIUM, ConfidenceBand.HIGH)
        assert record.clarity_flag == ClarityFlag.MEDIUM
        assert record.needs_refine is False
        assert record.forced_uncertain is False
        assert record.score1 > record.score2
        assert record.confidence == pytest.approx(1.0)

    def test_scenario_c(self, scenario_c_vector):
        record = route_state(scenario_c_vector)
        assert record.selection_path == SelectionPath.HARD
        assert record.selection.rescue_used
        assert record.macro_key == "detached"
        assert record.clarity_flag == ClarityFlag.LOW
        assert record.confidence_band == ConfidenceBand.LOW
        assert record.needs_refine
        assert record.confidence >= DEFAULT_POLICY.refine_confidence_floor
        assert not record.forced_uncertain

    def test_from_baseline_matches_vector_route(self, scenario_a_ratings, scenario_a_vector):
        direct = route_state(scenario_a_vector)
        via_ratings = route_state_from_baseline(scenario_a_ratings)
        assert via_ratings.model_dump() == direct.model_dump()

    def test_deterministic(self, scenario_a_ratings):
        first = route_state_from_baseline(scenario_a_ratings)
        second = route_state_from_baseline(scenario_a_ratings)
        assert first.model_dump_json() == second.model_dump_json()

    def test_probabilities_normalised(self, scenario_a_vector):
        record = route_state(scenario_a_vector)
        assert sum(record.probabilities.values()) == pytest.approx(1.0)

    def test_explanation(self, scenario_a_vector):
        record = route_state(scenario_a_vector)
        assert "overloaded" in record.explanation
        assert "strict" in record.explanation
        assert "Clarity: medium" in record.explanation


# ── Strong signals & ties ────────────────────────────────────


class TestTieBreak:
    def test_priority_covers_every_rankable_state(self):
        assert set(MACRO_STATE_KEYS) <= set(TIE_PRIORITY)
        assert "uncertain" not in TIE_PRIORITY

    def test_strong_patterns_are_macro_states(self):
        assert set(STRONG_SIGNAL_PATTERNS) <= set(MACRO_STATE_KEYS)

    def test_strong_signal(self, scenario_a_levels):
        assert is_strong_signal("overloaded", scenario_a_levels)
        assert is_strong_signal("exhausted", scenario_a_levels)
        assert not is_strong_signal("blocked", scenario_a_levels)
        assert not is_strong_signal("down", scenario_a_levels)

    def test_strong_signal_beats_priority(self, scenario_a_levels):
        assert break_tie(["blocked", "exhausted"], scenario_a_levels) == "exhausted"

    def test_priority_order_without_strong_signal(self):
        assert break_tie(["connected", "capable"], GateLevels()) == "capable"

    def test_never_uncertain(self, scenario_a_levels):
        assert break_tie(["uncertain"], scenario_a_levels) is None
        assert break_tie(["uncertain", "down"], scenario_a_levels) == "down"

    def test_empty(self):
        assert break_tie([], GateLevels()) is None

    def test_unknown_keys(self):
        assert break_tie(["elsewhere", "nowhere"], GateLevels()) == "elsewhere"

    def test_decide_resolves_tie(self, scenario_a_vector):
        record = decide(_ranking(("blocked", 0.5), ("exhausted", 0.5), ("detached", 0.3)), scenario_a_vector)
        assert record.macro_key == "exhausted"
        assert record.secondary_key == "blocked"
        assert record.tie.is_tie and record.tie.tie_resolved
        assert record.tie.tied_count == 2
        assert not record.forced_uncertain
        assert record.confidence_band == ConfidenceBand.LOW
        assert record.confidence == pytest.approx(DEFAULT_POLICY.refine_confidence_floor)

    def test_tie_by_priority(self):
        record = decide(_ranking(("connected", 0.4), ("capable", 0.4)), zero_vector())
        assert record.macro_key == "capable"
        assert record.secondary_key == "connected"

    def test_tie_never_forces_uncertainty(self, scenario_c_vector):
        record = decide(_ranking(("down", 0.01), ("detached", 0.01)), scenario_c_vector, policy=_ALWAYS_WEAK)
        assert record.macro_key == "down"
        assert not record.forced_uncertain


# ── Uncertainty rule ─────────────────────────────────────────


class TestShouldForceUncertain:
    def test_acceptable_score(self):
        assert should_force_uncertain(
            levels=GateLevels(), score1=0.2, delta=0.0, top_key="down", certainty=0.0
        ) == (False, None, None)

    def test_strong_signal_exempt(self, scenario_a_levels):
        assert should_force_uncertain(
            levels=scenario_a_levels, score1=0.03, delta=0.0, top_key="exhausted", certainty=0.0
        ) == (False, None, None)

    def test_forced_at_floor(self):
        force, reason, warning = should_force_uncertain(
            levels=GateLevels(), score1=0.03, delta=0.0, top_key="down", certainty=0.2
        )
        assert force
        assert reason == UncertainReason.EXTREME_UNCERTAINTY
        assert warning is None

    def test_weak_match_with_some_certainty(self):
        assert should_force_uncertain(
            levels=GateLevels(), score1=0.03, delta=0.0, top_key="down", certainty=1.0
        ) == (False, None, MatchWarning.WEAK_MATCH_EXTREME)

    def test_low_score_above_floor(self):
        assert should_force_uncertain(
            levels=GateLevels(), score1=0.1, delta=0.0, top_key="down", certainty=0.0
        ) == (False, None, None)

    def test_accept_score_override(self):
        policy = UncertaintyPolicy(score_ok=1.0)
        assert should_force_uncertain(
            levels=GateLevels(), score1=0.9, delta=0.05, top_key="down", certainty=0.0, policy=policy
        ) == (False, None, None)


class TestForcedAndFlaggedDecisions:
    def test_forced_uncertain_record(self, scenario_c_vector):
        record = route_state(scenario_c_vector, policy=_ALWAYS_WEAK)
        assert record.macro_key == "uncertain"
        assert record.forced_uncertain
        assert record.uncertain_reason == UncertainReason.EXTREME_UNCERTAINTY
        assert record.secondary_key == "detached"
        assert record.clarity_flag is None
        assert record.needs_refine
        assert "uncertain" in record.explanation

    def test_weak_match_is_flagged_not_forced(self, midpoint_ratings):
        record = route_state(baseline_to_vector(midpoint_ratings), policy=_ALWAYS_WEAK)
        assert record.macro_key == "connected"
        assert not record.forced_uncertain
        assert record.match_warning == MatchWarning.WEAK_MATCH_EXTREME
        assert record.confidence_band == ConfidenceBand.LOW
        assert record.needs_refine

    def test_default_policy_names_a_state(self, scenario_c_vector):
        assert route_state(scenario_c_vector).macro_key != "uncertain"


class TestQualitySignals:
    def test_clarity_low_from_gate(self):
        assert clarity_flag_for(GateLevels(C_low=True), 0.0) == ClarityFlag.LOW

    def test_clarity_medium(self):
        assert clarity_flag_for(GateLevels(C_mid=True), 0.5) == ClarityFlag.MEDIUM

    def test_clarity_fine(self):
        assert clarity_flag_for(GateLevels(C_mid=True), 1.0) is None

    @pytest.mark.parametrize(
        ("score1", "delta_rel", "warning", "clarity", "expected"),
        [
            (0.5, 0.3, None, None, ConfidenceBand.HIGH),
            (0.5, 0.3, None, ClarityFlag.MEDIUM, ConfidenceBand.MEDIUM),
            (0.5, 0.08, None, None, ConfidenceBand.MEDIUM),
            (0.1, 0.5, None, None, ConfidenceBand.LOW),
            (0.5, 0.03, None, None, ConfidenceBand.LOW),
            (0.5, 0.3, MatchWarning.WEAK_MATCH_EXTREME, None, ConfidenceBand.LOW),
            (0.5, 0.3, None, ClarityFlag.LOW, ConfidenceBand.LOW),
        ],
    )
    def test_confidence_band(self, score1, delta_rel, warning, clarity, expected):
        assert confidence_band_for(score1, delta_rel, warning, clarity) == expected


# ── Semantic re-check & validation ───────────────────────────


class TestSemanticRecheck:
    def test_blocked_winner_substituted(self, scenario_c_vector):
        record = decide(_ranking(("engaged", 0.5), ("detached", 0.4), ("connected", 0.3)), scenario_c_vector)
        assert record.macro_key == "detached"
        assert record.semantic_substitution is not None
        assert record.semantic_substitution.blocked_key == "engaged"
        assert record.semantic_substitution.reasons == ["not Vpos"]
        assert record.secondary_key == "engaged"

    def test_unresolvable_block_raises(self, scenario_a_vector):
        with pytest.raises(ContractViolation) as exc:
            decide(_ranking(("connected", 0.5)), scenario_a_vector)
        assert exc.value.kind == ViolationKind.SEMANTIC_BLOCK_UNRESOLVED


class TestValidateDecision:
    @pytest.fixture
    def record(self, scenario_a_vector):
        return route_state(scenario_a_vector)

    @pytest.fixture
    def candidates(self, record):
        return [RankedState(key=record.macro_key, score=record.score1)]

    def test_valid(self, record, candidates):
        assert validate_decision(record, candidates).ok

    def test_empty_ranking(self, record):
        result = validate_decision(record, [])
        assert result.violation == ViolationKind.EMPTY_RANKING

    def test_uncertain_without_force(self, record, candidates):
        bad = record.model_copy(update={"macro_key": "uncertain"})
        assert validate_decision(bad, candidates).violation == ViolationKind.UNCERTAIN_WITHOUT_FORCE

    def test_force_without_uncertain(self, record, candidates):
        bad = record.model_copy(update={"forced_uncertain": True})
        assert validate_decision(bad, candidates).violation == ViolationKind.FORCE_WITHOUT_UNCERTAIN

    def test_reason_mismatch(self, record, candidates):
        bad = record.model_copy(update={"macro_key": "uncertain", "forced_uncertain": True})
        assert validate_decision(bad, candidates).violation == ViolationKind.REASON_MISMATCH

    def test_winner_semantically_blocked(self, record, candidates):
        bad = record.model_copy(update={"macro_key": "connected"})
        result = validate_decision(bad, candidates)
        assert not result.ok
        assert result.violation == ViolationKind.WINNER_SEMANTICALLY_BLOCKED
        assert "connected" in result.detail

    def test_levels_come_from_vector(self, record, scenario_a_vector):
        assert record.levels == levelize_state_vec(scenario_a_vector)

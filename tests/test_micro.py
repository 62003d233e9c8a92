"""Tests for the micro-state catalogue and selector."""

from __future__ import annotations

import pytest

from state_router.engine.micro import (
    DEFAULT_MICRO_THRESHOLD,
    MICRO_CATALOGUE,
    all_micro_keys,
    check_micro_evidence_sufficiency,
    effective_threshold,
    get_micro_profile,
    micro_belongs_to_macro,
    micros_for_macro,
    micros_for_tag,
    score_micros,
    select_micro,
    select_micro_debug,
    should_micro_be_null,
)
from state_router.engine.models import ConfidenceBand, MicroReason
from state_router.engine.space import MACRO_STATE_KEYS

DEADLINE = "sig.context.work.deadline"
TENSION_HIGH = "sig.tension.high"


class TestCatalogue:
    def test_three_micros_per_macro(self):
        assert set(MICRO_CATALOGUE) == set(MACRO_STATE_KEYS)
        for macro in MACRO_STATE_KEYS:
            assert len(micros_for_macro(macro)) == 3

    def test_keys_belong_to_their_macro(self):
        for macro, profiles in MICRO_CATALOGUE.items():
            for profile in profiles:
                assert profile.macro_key == macro
                assert micro_belongs_to_macro(profile.micro_key, macro)

    def test_all_micro_keys(self):
        keys = all_micro_keys()
        assert len(keys) == 33
        assert len(set(keys)) == 33

    def test_rushed_profile(self):
        profile = get_micro_profile("pressured.rushed")
        assert set(profile.must_have) == {DEADLINE, TENSION_HIGH}

    def test_no_sibling_of_rushed_uses_its_tags(self):
        for tag in (DEADLINE, TENSION_HIGH):
            pressured = [key for key in micros_for_tag(tag) if key.startswith("pressured.")]
            assert pressured == ["pressured.rushed"]

    def test_unknown_lookups(self):
        assert micros_for_macro("uncertain") == ()
        assert get_micro_profile("nope.none") is None
        assert not micro_belongs_to_macro("grounded.steady", "ground")


class TestScoring:
    def test_full_must_have(self):
        scored = score_micros("pressured", [DEADLINE, TENSION_HIGH])
        top = scored[0]
        assert top.micro_key == "pressured.rushed"
        # 2 x 2.0 must-have + 0.2 deadline weight + 1 / 1.2 specificity
        assert top.score == pytest.approx(4.2 + 1 / 1.2)
        assert [c.score for c in scored[1:]] == [0.0, 0.0]

    def test_partial_must_have_and_supporting(self):
        top = score_micros("pressured", ["sig.micro.pressured.rushed", DEADLINE])[0]
        assert top.micro_key == "pressured.rushed"
        assert top.score == pytest.approx(1.5 + 1.0 + 0.2 + 1 / 1.2)

    def test_specificity_bonus_optional(self):
        with_bonus = score_micros("pressured", [DEADLINE, TENSION_HIGH])[0]
        without = score_micros("pressured", [DEADLINE, TENSION_HIGH], prefer_specific=False)[0]
        assert with_bonus.score - without.score == pytest.approx(1 / 1.2)

    def test_weight_below_one_adds(self):
        top = score_micros("grounded", [DEADLINE])[0]
        assert top.micro_key == "grounded.recovered"
        assert top.score == pytest.approx(1.0 + 0.8 + 1 / 1.1)

    def test_duplicate_tags_count_once(self):
        once = score_micros("pressured", [DEADLINE, TENSION_HIGH])
        twice = score_micros("pressured", [DEADLINE, TENSION_HIGH, DEADLINE])
        assert once == twice


class TestEffectiveThreshold:
    def test_full_must_have_lowers(self):
        assert effective_threshold("pressured.rushed", [DEADLINE, TENSION_HIGH]) == pytest.approx(0.1)

    def test_partial_relaxes(self):
        assert effective_threshold("pressured.rushed", [DEADLINE]) == pytest.approx(0.21)

    def test_no_hits_keeps_base(self):
        assert effective_threshold("pressured.rushed", []) == DEFAULT_MICRO_THRESHOLD

    def test_unknown_micro(self):
        assert effective_threshold("nope.none", [DEADLINE], 0.5) == 0.5

    def test_never_raised_above_base(self):
        assert effective_threshold("pressured.rushed", [DEADLINE, TENSION_HIGH], 0.05) == 0.05


class TestSelectMicro:
    def test_rushed_for_deadline_and_tension(self):
        selection = select_micro_debug("pressured", [DEADLINE, TENSION_HIGH])
        assert selection.reason == MicroReason.MATCHED
        assert selection.micro_key == "pressured.rushed"
        assert selection.effective_threshold == pytest.approx(0.1)

    def test_no_micros(self):
        selection = select_micro_debug("uncertain", [DEADLINE])
        assert selection.reason == MicroReason.NO_MICROS
        assert selection.selected is None
        assert selection.top_candidate is None

    def test_no_evidence(self):
        selection = select_micro_debug("pressured", [])
        assert selection.reason == MicroReason.NO_EVIDENCE
        assert selection.selected is None
        assert selection.top_candidate is not None

    def test_zero_score(self):
        selection = select_micro_debug("pressured", ["sig.body.headache"])
        assert selection.reason == MicroReason.NO_MATCHES_ZERO_SCORE
        assert selection.micro_key is None

    def test_below_threshold_nonzero(self):
        selection = select_micro_debug("pressured", ["sig.agency.mid"], threshold=5.0)
        assert selection.reason == MicroReason.BELOW_THRESHOLD_NONZERO
        assert selection.top_candidate.micro_key == "pressured.tense_functional"
        assert selection.top_candidate.score > 0
        assert selection.selected is None

    def test_tie_prefers_first_on_equal_tag_count(self):
        # steady and present have mirror-image profiles
        selection = select_micro_debug("grounded", ["sig.clarity.high"])
        assert selection.reason == MicroReason.MATCHED
        assert selection.micro_key == "grounded.steady"

    def test_select_micro_shortcut(self):
        assert select_micro("pressured", [DEADLINE, TENSION_HIGH]).micro_key == "pressured.rushed"
        assert select_micro("pressured", []) is None


class TestEvidenceHelpers:
    def test_sufficiency(self):
        result = check_micro_evidence_sufficiency("pressured.rushed", [DEADLINE])
        assert not result.sufficient
        assert result.missing_must_have == [TENSION_HIGH]
        assert result.missing_supporting == ["sig.micro.pressured.rushed"]

    def test_sufficient(self):
        assert check_micro_evidence_sufficiency("pressured.rushed", [DEADLINE, TENSION_HIGH]).sufficient

    def test_unknown_micro_insufficient(self):
        assert not check_micro_evidence_sufficiency("nope.none", [DEADLINE]).sufficient

    def test_micros_for_tag(self):
        keys = micros_for_tag("sig.trigger.rejection")
        assert set(keys) == {"down.discouraged", "averse.disgust_avoid"}

    def test_should_micro_be_null(self):
        assert should_micro_be_null("down", [], ConfidenceBand.LOW)
        assert not should_micro_be_null("down", ["sig.valence.neg"], ConfidenceBand.LOW)
        assert not should_micro_be_null("down", [], ConfidenceBand.MEDIUM)

"""Tests for the topic-gate closure query."""

from __future__ import annotations

from state_router.engine.models import BaselineRatings
from state_router.engine.topics import (
    TOPIC_GATE_SIGNALS,
    evaluate_topic_gates,
    required_topic_gates,
)


class TestRequiredGates:
    def test_always_agency_and_clarity(self):
        assert required_topic_gates("grounded") == ["agency", "clarity"]
        assert required_topic_gates("uncertain") == ["agency", "clarity"]

    def test_workload_macros(self):
        for macro in ("overloaded", "exhausted", "pressured"):
            assert required_topic_gates(macro) == ["agency", "clarity", "workload"]

    def test_social_macros(self):
        for macro in ("connected", "detached"):
            assert required_topic_gates(macro) == ["agency", "clarity", "social"]

    def test_signal_table_covers_every_gate(self):
        assert set(TOPIC_GATE_SIGNALS) == {"agency", "clarity", "workload", "social"}


class TestEvaluateTopicGates:
    def test_nothing_known(self):
        status = evaluate_topic_gates("connected")
        assert not status.all_closed
        assert status.open_gates == ["agency", "clarity", "social"]
        assert status.closed_by == {}

    def test_closed_by_evidence(self):
        status = evaluate_topic_gates("grounded", ["sig.agency.high", "sig.clarity.mid"])
        assert status.all_closed
        assert status.closed_by == {"agency": "evidence", "clarity": "evidence"}

    def test_closed_by_informative_baseline(self, scenario_a_ratings):
        status = evaluate_topic_gates("overloaded", [], scenario_a_ratings)
        # control 2 and tension 6 are informative, clarity 3 is not
        assert status.closed == {"agency": True, "clarity": False, "workload": True}
        assert status.closed_by == {"agency": "baseline", "workload": "baseline"}
        assert status.open_gates == ["clarity"]

    def test_evidence_preferred_over_baseline(self, scenario_a_ratings):
        status = evaluate_topic_gates("overloaded", ["sig.agency.low", "sig.clarity.low"], scenario_a_ratings)
        assert status.all_closed
        assert status.closed_by["agency"] == "evidence"
        assert status.closed_by["workload"] == "baseline"

    def test_workload_from_low_energy(self):
        status = evaluate_topic_gates("exhausted", [], BaselineRatings(energy=2))
        assert status.closed["workload"]

    def test_midpoint_baseline_closes_nothing(self, midpoint_ratings):
        status = evaluate_topic_gates("detached", [], midpoint_ratings)
        assert status.open_gates == ["agency", "clarity", "social"]

    def test_social_evidence(self):
        status = evaluate_topic_gates("detached", ["sig.trigger.rejection"], {"control": 7, "clarity": 1})
        assert status.all_closed
        assert status.closed_by == {"agency": "baseline", "clarity": "baseline", "social": "evidence"}

"""Classification orchestrator: ratings + evidence → macro, micro, topic gates.

:class:`StateRouter` runs, in order:

1. Baseline mapping and evidence blending
2. Gate levelling, ranking and the decision layer
3. The optional macro flip (off unless ``macro_flip_enabled``)
4. Micro selection keyed by the final macro, skipped outright for a
   low-confidence answer with no evidence tags
5. Topic-gate closure for the adaptive questioner
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from state_router.config import Settings, get_settings
from state_router.engine.baseline import baseline_to_vector, merge_baseline_and_evidence, normalise_ratings
from state_router.engine.decision import DEFAULT_POLICY, UncertaintyPolicy, route_state
from state_router.engine.macro_flip import propose_macro_flip
from state_router.engine.micro import select_micro_debug, should_micro_be_null
from state_router.engine.models import (
    BaselineRatings,
    Classification,
    EligibilityMode,
    MacroFlipOutcome,
    MicroReason,
    MicroSelection,
    StateVector,
)
from state_router.engine.topics import evaluate_topic_gates

logger = structlog.get_logger(__name__)


class StateRouter:
    """Stateless classifier configured once, safe to share between callers.

    Parameters
    ----------
    settings : Settings, optional
        Engine settings; defaults to :func:`get_settings`.
    policy : UncertaintyPolicy, optional
        Thresholds of the uncertainty rule and confidence band.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        policy: UncertaintyPolicy = DEFAULT_POLICY,
    ) -> None:
        self._settings = settings or get_settings()
        self._policy = policy

    @property
    def settings(self) -> Settings:
        return self._settings

    def classify(
        self,
        ratings: BaselineRatings | Mapping[str, Any] | None,
        evidence_tags: Iterable[str] = (),
        evidence_vector: StateVector | Mapping[str, float] | None = None,
        *,
        evidence_weight: float | None = None,
        mode: EligibilityMode | str | None = None,
        macro_flip: bool | None = None,
    ) -> Classification:
        """Classify one check-in.

        ``evidence_weight``, ``mode`` and ``macro_flip`` override the
        settings for this call only.
        """
        settings = self._settings
        mode = EligibilityMode(mode or settings.eligibility_mode)
        if evidence_weight is None:
            evidence_weight = (
                settings.deep_evidence_weight if mode == EligibilityMode.DEEP else settings.evidence_weight
            )
        flip_enabled = settings.macro_flip_enabled if macro_flip is None else macro_flip

        tags = list(dict.fromkeys(evidence_tags))
        baseline = normalise_ratings(ratings)
        vector = merge_baseline_and_evidence(baseline_to_vector(baseline), evidence_vector, evidence_weight)

        decision = route_state(vector, mode=mode, policy=self._policy, debug=settings.eligibility_debug)

        macro_key = decision.macro_key
        flip: MacroFlipOutcome | None = None
        if flip_enabled and tags:
            flip = propose_macro_flip(decision, tags)
            if flip.should_flip and flip.to_key:
                macro_key = flip.to_key

        if should_micro_be_null(macro_key, tags, decision.confidence_band):
            micro = MicroSelection(
                macro_key=macro_key,
                effective_threshold=settings.micro_threshold,
                reason=MicroReason.NO_EVIDENCE,
            )
        else:
            micro = select_micro_debug(
                macro_key,
                tags,
                threshold=settings.micro_threshold,
                prefer_specific=settings.micro_prefer_specific,
            )
        topic_gates = evaluate_topic_gates(macro_key, tags, baseline)

        logger.info(
            "pipeline.classified",
            macro=macro_key,
            micro=micro.micro_key,
            path=decision.selection_path.value,
            band=decision.confidence_band.value,
            flipped=bool(flip and flip.should_flip),
        )

        return Classification(
            decision=decision,
            macro_key=macro_key,
            micro_key=micro.micro_key,
            micro_source="selected" if micro.micro_key else "none",
            micro=micro,
            evidence_tags=tags,
            macro_flip=flip,
            topic_gates=topic_gates,
        )


def classify(
    ratings: BaselineRatings | Mapping[str, Any] | None,
    evidence_tags: Iterable[str] = (),
    evidence_vector: StateVector | Mapping[str, float] | None = None,
    **kwargs: Any,
) -> Classification:
    """Classify with a router built from the process settings."""
    return StateRouter().classify(ratings, evidence_tags, evidence_vector, **kwargs)

"""Ranking & fallback selector.

Candidates are ordered by similarity and pushed through four stages; the
first stage that leaves anything standing wins:

1. **strict**: eligible under the strict pass
2. **hard**: eligible under the hard (blockers-only) pass
3. **final_fallback**: top macro state surviving the semantic hard-blocks
4. **last_resort**: the unconditional similarity ranking, minus deep-only
   states in baseline mode

The result is never empty.  If even stage 4 has nothing to offer, the
centroid table or the key set is broken and :class:`ContractViolation` is
raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import NoReturn

import structlog

from state_router.engine.eligibility import apply_semantic_hard_blocks, filter_ranked_by_eligibility
from state_router.engine.errors import ContractViolation
from state_router.engine.gates import levelize_state_vec
from state_router.engine.models import (
    EligibilityMode,
    EligibilityPass,
    GateLevels,
    RankingResult,
    SelectionPath,
    StateVector,
    ViolationKind,
)
from state_router.engine.space import (
    DEEP_ONLY_STATE_KEYS,
    MACRO_STATE_KEYS,
    RANKABLE_STATE_KEYS,
    score_states,
)

logger = structlog.get_logger(__name__)


def rank_states(
    vector: StateVector,
    keys: Iterable[str] = RANKABLE_STATE_KEYS,
    *,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    eligibility: bool = True,
    debug: bool = True,
    fallback_keys: Iterable[str] = MACRO_STATE_KEYS,
    levels: GateLevels | None = None,
) -> RankingResult:
    """Rank ``keys`` by similarity to ``vector`` and apply the fallback stages.

    Args:
        vector: Point to classify.
        keys: Candidate state keys.  Sentinels never belong here.
        mode: ``baseline`` excludes the deep-only states.
        eligibility: When ``False`` the raw similarity list is returned
            with ``selection_path == "ungated"``.
        debug: Attach eligibility diagnostics to the result.
        fallback_keys: Subset considered by the final-fallback stage.
        levels: Precomputed gate levels for ``vector``.
    """
    scores = score_states(vector, keys)

    if not eligibility:
        if not scores:
            _empty(vector)
        return RankingResult(candidates=scores, selection_path=SelectionPath.UNGATED)

    levels = levels or levelize_state_vec(vector)

    strict, strict_diag = filter_ranked_by_eligibility(scores, levels, mode, EligibilityPass.STRICT)
    if strict:
        return RankingResult(
            candidates=strict,
            selection_path=SelectionPath.STRICT,
            strict_count=len(strict),
            eligibility=strict_diag if debug else None,
        )

    logger.info("ranking.rescue_pass", mode=mode.value, levels=levels.active())
    hard, hard_diag = filter_ranked_by_eligibility(scores, levels, mode, EligibilityPass.HARD)
    if hard:
        return RankingResult(
            candidates=hard,
            selection_path=SelectionPath.HARD,
            hard_count=len(hard),
            rescue_used=True,
            eligibility=hard_diag if debug else None,
        )

    fallback_set = set(fallback_keys)
    macro_scores = [item for item in scores if item.key in fallback_set]
    survivors = apply_semantic_hard_blocks(macro_scores, levels)
    if survivors:
        logger.info("ranking.final_fallback", winner=survivors[0].key)
        return RankingResult(
            candidates=survivors[:1],
            selection_path=SelectionPath.FINAL_FALLBACK,
            fallback_used=True,
            semantic_blocks_applied=len(survivors) < len(macro_scores),
            eligibility=hard_diag if debug else None,
            note=(
                "All states filtered by strict and hard passes. "
                "Using top macro state by similarity with semantic hard-blocks applied."
            ),
        )

    # baseline mode never surfaces a deep-only state, even here
    pool = scores
    if mode != EligibilityMode.DEEP:
        pool = [item for item in scores if item.key not in DEEP_ONLY_STATE_KEYS]
    if pool:
        logger.warning("ranking.last_resort", winner=pool[0].key, levels=levels.active())
        return RankingResult(
            candidates=pool,
            selection_path=SelectionPath.LAST_RESORT,
            last_resort_used=True,
            semantic_blocks_applied=len(survivors) < len(macro_scores),
            eligibility=hard_diag if debug else None,
            note="All states filtered including semantic hard-blocks. Using unconditional similarity ranking.",
        )

    _empty(vector)


def _empty(vector: StateVector) -> NoReturn:
    detail = f"no candidates after all fallbacks for vector {vector.as_dict()}"
    logger.error("ranking.contract_violation", kind=ViolationKind.EMPTY_RANKING.value, detail=detail)
    raise ContractViolation(ViolationKind.EMPTY_RANKING, detail)

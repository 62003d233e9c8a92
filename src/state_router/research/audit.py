"""Audit helpers: pandas-based sweeps over the baseline rating grid."""

from __future__ import annotations

import itertools
from collections.abc import Iterable
from typing import Any

import pandas as pd

from state_router.engine.decision import DEFAULT_POLICY, UncertaintyPolicy, route_state_from_baseline
from state_router.engine.eligibility import semantic_block_reasons
from state_router.engine.models import RATING_MAX, RATING_MIN, EligibilityMode
from state_router.engine.space import UNCERTAIN_STATE_KEY

RATING_FIELDS: tuple[str, ...] = ("mood", "energy", "tension", "clarity", "control", "social")


def rating_grid(values: Iterable[int] | None = None, *, step: int = 1) -> list[dict[str, int]]:
    """Every combination of ``values`` across the six rating fields.

    Without ``values`` the 7-point scale is walked with ``step``; the
    endpoints are always included.
    """
    if values is None:
        points = list(range(RATING_MIN, RATING_MAX + 1, step))
        if points[-1] != RATING_MAX:
            points.append(RATING_MAX)
    else:
        points = list(values)
    return [dict(zip(RATING_FIELDS, combo)) for combo in itertools.product(points, repeat=len(RATING_FIELDS))]


def run_audit(
    values: Iterable[int] | None = None,
    *,
    step: int = 1,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    policy: UncertaintyPolicy = DEFAULT_POLICY,
) -> pd.DataFrame:
    """Classify every point of the rating grid.

    Columns: the six ratings, ``macro``, ``secondary``, ``selection_path``,
    ``band``, ``clarity``, ``forced``, ``blocked_by``, ``score1`` and ``delta``.
    ``blocked_by`` lists the semantic hard-blocks the winner violates and
    should always be empty.
    The full 7-point grid has 117,649 rows; pass ``step`` to thin it.
    """
    records: list[dict[str, Any]] = []
    for ratings in rating_grid(values, step=step):
        decision = route_state_from_baseline(ratings, mode=mode, policy=policy, debug=False)
        records.append(
            {
                **ratings,
                "macro": decision.macro_key,
                "secondary": decision.secondary_key,
                "selection_path": decision.selection_path.value,
                "band": decision.confidence_band.value,
                "clarity": decision.clarity_flag.value if decision.clarity_flag else None,
                "forced": decision.forced_uncertain,
                "blocked_by": ", ".join(semantic_block_reasons(decision.macro_key, decision.levels)),
                "score1": decision.score1,
                "delta": decision.delta,
            }
        )
    return pd.DataFrame(records)


def count_invariant_violations(df: pd.DataFrame) -> int:
    """Rows where ``macro == 'uncertain'`` disagrees with ``forced``."""
    if df.empty:
        return 0
    is_uncertain = df["macro"] == UNCERTAIN_STATE_KEY
    return int((is_uncertain != df["forced"].astype(bool)).sum())


def count_semantic_violations(df: pd.DataFrame) -> int:
    """Rows whose winner violates one of its semantic hard-blocks."""
    if df.empty:
        return 0
    return int((df["blocked_by"] != "").sum())


def summarize_audit(df: pd.DataFrame) -> dict[str, Any]:
    """Return distribution counts for an audit DataFrame."""
    if df.empty:
        return {"count": 0}

    return {
        "count": int(len(df)),
        "macro_distribution": {k: int(v) for k, v in df["macro"].value_counts().items()},
        "selection_paths": {k: int(v) for k, v in df["selection_path"].value_counts().items()},
        "bands": {k: int(v) for k, v in df["band"].value_counts().items()},
        "clarity_flags": {k: int(v) for k, v in df["clarity"].fillna("none").value_counts().items()},
        "forced_uncertain": int(df["forced"].sum()),
        "invariant_violations": count_invariant_violations(df),
        "semantic_violations": count_semantic_violations(df),
        "score1_mean": round(float(df["score1"].mean()), 4),
        "score1_min": round(float(df["score1"].min()), 4),
    }

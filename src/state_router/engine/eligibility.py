"""Eligibility rule engine: which states may win for a given set of gate levels.

Each state has a declarative rule made of condition strings over gate-level
names (``"T_high and not Ar_low"``).  Conditions are compiled once at import
and evaluated in a namespace holding only the level booleans.

Two passes exist:

- **strict**: ``requires and not blocks``
- **hard**: ``hard_requires and not hard_blocks``, used as a rescue when
  strict filters everything.  A rule without hard-pass conditions reuses
  its strict predicate.

Separately, a small table of *semantic hard-blocks* lists vetoes that hold
even in the most degraded fallback stage.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import CodeType, MappingProxyType

import structlog
from pydantic import BaseModel, ConfigDict

from state_router.engine.gates import GATE_LEVEL_NAMES
from state_router.engine.models import (
    EligibilityDiagnostics,
    EligibilityMode,
    EligibilityPass,
    EligibilityResult,
    FilteredOutState,
    GateLevels,
    RankedState,
)
from state_router.engine.space import DEEP_ONLY_STATE_KEYS, SENTINEL_STATE_KEYS

logger = structlog.get_logger(__name__)

DIAGNOSTIC_TOP_N = 3
DIAGNOSTIC_FILTERED_LIMIT = 10


class EligibilityRule(BaseModel):
    """Declarative gate rule for one state.

    ``hard_requires`` / ``hard_blocks`` left unset on both means the hard
    pass evaluates the strict predicate.
    """

    model_config = ConfigDict(frozen=True)

    state_key: str
    requires: str | None = None
    blocks: str | None = None
    hard_requires: str | None = None
    hard_blocks: str | None = None
    deep_only: bool = False

    @property
    def has_hard_pass(self) -> bool:
        return self.hard_requires is not None or self.hard_blocks is not None

    def conditions(self) -> list[str]:
        return [
            cond
            for cond in (self.requires, self.blocks, self.hard_requires, self.hard_blocks)
            if cond is not None
        ]


# ── Rule table ───────────────────────────────────────────────

ELIGIBILITY_RULES: tuple[EligibilityRule, ...] = (
    EligibilityRule(
        state_key="grounded",
        requires="T_low and Ag_high",
        blocks="Ar_high or F_high or Vneg",
        hard_blocks="T_high or F_high or Vneg",
    ),
    EligibilityRule(
        state_key="exhausted",
        requires="F_high and Ar_low",
        # tired *and* tense reads as overloaded
        blocks="T_high",
        hard_blocks="(F_low and Ar_high) or T_high",
    ),
    EligibilityRule(
        state_key="connected",
        requires="S_high",
        blocks="F_high or T_high or Vneg",
        hard_blocks="F_high or T_high or Vneg or Ag_low",
    ),
    EligibilityRule(
        state_key="down",
        requires="Vneg and Ag_low and (F_mid or F_high or Ar_low)",
        hard_blocks="Vpos or T_high",
    ),
    EligibilityRule(
        state_key="averse",
        requires="Vneg and (T_mid or T_high)",
        blocks="Ar_low",
    ),
    EligibilityRule(
        state_key="detached",
        requires="S_low and (Ar_low or Ar_mid) and (T_low or T_mid)",
        blocks="Ar_high or Vpos",
        hard_blocks="Ar_high or Vpos",
    ),
    EligibilityRule(
        state_key="engaged",
        requires="Vpos and Ar_high",
        blocks="T_high or F_high or Ag_low",
        hard_blocks="Vneg or F_high or T_high or Ag_low",
    ),
    EligibilityRule(
        state_key="pressured",
        requires="T_high",
        blocks="Ar_low or Ag_low or F_high",
        hard_blocks="Ar_low or Ag_low or F_high",
    ),
    EligibilityRule(
        state_key="capable",
        requires="Ag_high",
        blocks="T_high or F_high or Vneg",
    ),
    EligibilityRule(
        state_key="blocked",
        requires="T_high and Ag_low",
        blocks="Ar_low or F_high",
        hard_blocks="Ar_low or F_high",
    ),
    # Baseline fatigue implies arousal 0, so Ar_low is not a blocker here.
    EligibilityRule(
        state_key="overloaded",
        requires="T_high and F_high and Ag_low and Vneg",
        blocks="Vpos or C_high",
        hard_requires="T_high and F_high",
        hard_blocks="Vpos",
    ),
    EligibilityRule(state_key="threatened", deep_only=True),
    EligibilityRule(state_key="self_critical", deep_only=True),
    EligibilityRule(state_key="confrontational", deep_only=True),
)

RULES_BY_STATE: Mapping[str, EligibilityRule] = MappingProxyType(
    {rule.state_key: rule for rule in ELIGIBILITY_RULES}
)


def _compile(condition: str, label: str) -> CodeType:
    code = compile(condition, f"<{label}>", "eval")
    unknown = set(code.co_names) - GATE_LEVEL_NAMES
    if unknown:
        raise ValueError(f"{label}: unknown gate levels {sorted(unknown)} in {condition!r}")
    return code


_COMPILED: dict[str, CodeType] = {
    cond: _compile(cond, f"rule:{rule.state_key}")
    for rule in ELIGIBILITY_RULES
    for cond in rule.conditions()
}


def register_conditions(conditions: Iterable[str], label: str) -> None:
    """Compile and validate conditions owned by another table."""
    for cond in conditions:
        _COMPILED.setdefault(cond, _compile(cond, label))


def evaluate_condition(condition: str, levels: GateLevels) -> bool:
    """Evaluate one condition string against gate levels.

    Only the level names are in scope; builtins are blocked.
    """
    code = _COMPILED.get(condition)
    if code is None:
        code = _compile(condition, "adhoc")
    return bool(eval(code, {"__builtins__": {}}, levels.model_dump()))


# ── Per-state eligibility ────────────────────────────────────


def get_eligibility(
    state_key: str,
    levels: GateLevels,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    eligibility_pass: EligibilityPass = EligibilityPass.STRICT,
) -> EligibilityResult:
    """Check one state against the rule table."""
    if state_key in SENTINEL_STATE_KEYS:
        return EligibilityResult(eligible=False, reasons=[f"{state_key} is fallback-only"])

    rule = RULES_BY_STATE.get(state_key)
    if rule is None:
        # unknown keys are not gated
        return EligibilityResult(eligible=True)

    if rule.deep_only:
        if mode == EligibilityMode.BASELINE:
            return EligibilityResult(eligible=False, reasons=["deep-only state in baseline mode"])
        return EligibilityResult(eligible=True)

    requires, blocks = rule.requires, rule.blocks
    if eligibility_pass == EligibilityPass.HARD and rule.has_hard_pass:
        requires, blocks = rule.hard_requires, rule.hard_blocks

    if requires is not None and not evaluate_condition(requires, levels):
        return EligibilityResult(eligible=False, reasons=[f"needs {requires}"])
    if blocks is not None and evaluate_condition(blocks, levels):
        return EligibilityResult(eligible=False, reasons=[f"blocked by {blocks}"])
    return EligibilityResult(eligible=True)


def filter_ranked_by_eligibility(
    ranked: list[RankedState],
    levels: GateLevels,
    mode: EligibilityMode = EligibilityMode.BASELINE,
    eligibility_pass: EligibilityPass = EligibilityPass.STRICT,
) -> tuple[list[RankedState], EligibilityDiagnostics]:
    """Keep the eligible entries of ``ranked`` (order preserved)."""
    kept: list[RankedState] = []
    dropped: list[FilteredOutState] = []
    for item in ranked:
        verdict = get_eligibility(item.key, levels, mode, eligibility_pass)
        if verdict.eligible:
            kept.append(item)
        else:
            dropped.append(FilteredOutState(key=item.key, score=item.score, reasons=verdict.reasons))

    diagnostics = EligibilityDiagnostics(
        eligibility_pass=eligibility_pass,
        pre_filter_top3=ranked[:DIAGNOSTIC_TOP_N],
        filtered_out=dropped[:DIAGNOSTIC_FILTERED_LIMIT],
        post_filter_top3=kept[:DIAGNOSTIC_TOP_N],
        total_filtered=len(dropped),
        total_kept=len(kept),
    )
    return kept, diagnostics


# ── Semantic hard-blocks ─────────────────────────────────────
# state → vetoing conditions.  Shared by the final-fallback stage, the
# post-selection re-check and the macro flip compatibility test.

SEMANTIC_HARD_BLOCKS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "connected": ("F_high", "T_high", "Vneg"),
        "engaged": ("not Vpos", "F_high", "T_high"),
        "grounded": ("T_high", "Ag_low"),
    }
)

for _key, _conds in SEMANTIC_HARD_BLOCKS.items():
    register_conditions(_conds, f"semantic:{_key}")


def semantic_block_reasons(state_key: str, levels: GateLevels) -> list[str]:
    """Triggered semantic hard-blocks for ``state_key`` (empty when allowed)."""
    return [
        cond
        for cond in SEMANTIC_HARD_BLOCKS.get(state_key, ())
        if evaluate_condition(cond, levels)
    ]


def is_semantically_blocked(state_key: str, levels: GateLevels) -> bool:
    return bool(semantic_block_reasons(state_key, levels))


def apply_semantic_hard_blocks(
    ranked: Iterable[RankedState],
    levels: GateLevels,
) -> list[RankedState]:
    """Drop every candidate vetoed by a semantic hard-block."""
    survivors: list[RankedState] = []
    for item in ranked:
        reasons = semantic_block_reasons(item.key, levels)
        if reasons:
            logger.debug("eligibility.semantic_block", state=item.key, reasons=reasons)
            continue
        survivors.append(item)
    return survivors

"""State engine: rule-gated classification of emotional check-ins.

This package turns six self-report ratings (plus optional evidence tags)
into a named macro state, an optional micro state and a calibrated
confidence signal.  It always answers, and never answers with a state its
own rules call contradictory.

Architecture
------------
1. **State space** (`space.py`, `baseline.py`)
   - Ten-dimensional clamped vectors and the static centroid table
   - 7-point ratings mapped onto the space; optional evidence blending

2. **Gates & eligibility** (`gates.py`, `eligibility.py`)
   - Low / mid / high gate levels tuned to the mapper's quantisation
   - Declarative strict / hard rule table, compiled once
   - Semantic hard-blocks that hold even in the last fallback stage

3. **Ranking & decision** (`ranking.py`, `decision.py`)
   - Four-stage fallback ranking that never comes back empty
   - Deterministic tie-break, rare forced uncertainty, clarity flag and
     confidence band; single validation step before returning

4. **Refinement** (`micro.py`, `topics.py`, `macro_flip.py`)
   - Micro-state selection from evidence tags
   - Topic-gate closure for the adaptive questioner
   - Cluster-based macro flip, disabled by default

5. **Orchestration** (`pipeline.py`)

Everything here is pure and synchronous; tables are read-only module
constants, so a single :class:`StateRouter` can be shared freely.
"""

from state_router.engine.errors import ContractViolation
from state_router.engine.models import (
    BaselineRatings,
    Classification,
    ClarityFlag,
    ConfidenceBand,
    DecisionRecord,
    EligibilityMode,
    EligibilityPass,
    GateLevels,
    MicroReason,
    MicroSelection,
    RankedState,
    RankingResult,
    SelectionPath,
    StateVector,
    TopicGateStatus,
    ViolationKind,
)
from state_router.engine.pipeline import StateRouter, classify

__all__ = [
    "BaselineRatings",
    "Classification",
    "ClarityFlag",
    "ConfidenceBand",
    "ContractViolation",
    "DecisionRecord",
    "EligibilityMode",
    "EligibilityPass",
    "GateLevels",
    "MicroReason",
    "MicroSelection",
    "RankedState",
    "RankingResult",
    "SelectionPath",
    "StateRouter",
    "StateVector",
    "TopicGateStatus",
    "ViolationKind",
    "classify",
]

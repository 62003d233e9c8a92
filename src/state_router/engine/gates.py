"""Gate levelizer: continuous vector → coarse low / mid / high booleans.

Thresholds sit between the discrete values the baseline mapper can
produce, so no reachable vector lands exactly on a boundary.  Certainty's
low gate (0.35) sits just above the 0.333 step rather than at a midpoint,
so clarity ratings 1 and 2 both read as low.
"""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType

from state_router.engine.models import GateLevels, StateVector

# ── Thresholds ────────────────────────────────────────────────

VALENCE_NEG = -0.8
VALENCE_POS = 0.8

# dimension → (level prefix, low below, high at or above)
_AXIS_THRESHOLDS: dict[str, tuple[str, float, float]] = {
    "arousal": ("Ar", 0.35, 1.7),
    "tension": ("T", 0.6, 1.8),
    "agency": ("Ag", 0.5, 1.5),
    "socialness": ("S", 0.5, 1.5),
    "fatigue": ("F", 0.35, 1.2),
    "certainty": ("C", 0.35, 1.5),
}

GATE_LEVEL_NAMES: frozenset[str] = frozenset(GateLevels.model_fields)


def levelize_state_vec(vector: StateVector) -> GateLevels:
    """Derive gate levels from a vector."""
    levels: dict[str, bool] = {
        "Vneg": vector.valence <= VALENCE_NEG,
        "Vpos": vector.valence >= VALENCE_POS,
        "Vmid": VALENCE_NEG < vector.valence < VALENCE_POS,
    }
    for dim, (prefix, low, high) in _AXIS_THRESHOLDS.items():
        value = getattr(vector, dim)
        levels[f"{prefix}_low"] = value < low
        levels[f"{prefix}_high"] = value >= high
        levels[f"{prefix}_mid"] = low <= value < high
    return GateLevels(**levels)


# ── Tag-derived levels ───────────────────────────────────────
# Canonical axis tags name the same levels, so rule tables written over
# levels can be evaluated against evidence tags too.

AXIS_TAG_LEVELS: MappingProxyType[str, str] = MappingProxyType(
    {
        "sig.valence.neg": "Vneg",
        "sig.valence.mid": "Vmid",
        "sig.valence.pos": "Vpos",
        "sig.arousal.low": "Ar_low",
        "sig.arousal.mid": "Ar_mid",
        "sig.arousal.high": "Ar_high",
        "sig.tension.low": "T_low",
        "sig.tension.mid": "T_mid",
        "sig.tension.high": "T_high",
        "sig.agency.low": "Ag_low",
        "sig.agency.mid": "Ag_mid",
        "sig.agency.high": "Ag_high",
        "sig.social.low": "S_low",
        "sig.social.mid": "S_mid",
        "sig.social.high": "S_high",
        "sig.fatigue.low": "F_low",
        "sig.fatigue.mid": "F_mid",
        "sig.fatigue.high": "F_high",
        "sig.clarity.low": "C_low",
        "sig.clarity.mid": "C_mid",
        "sig.clarity.high": "C_high",
    }
)


def levels_from_tags(tags: Iterable[str]) -> GateLevels:
    """Levels asserted by canonical axis tags; everything else is ``False``.

    Unlike :func:`levelize_state_vec` the result need not be exclusive per
    axis: contradictory tags simply set both levels.
    """
    active = {AXIS_TAG_LEVELS[tag] for tag in tags if tag in AXIS_TAG_LEVELS}
    return GateLevels(**{name: True for name in active})

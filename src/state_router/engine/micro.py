"""Micro-state selector: pick a finer sub-state inside the chosen macro.

Each rankable macro owns three micros.  A micro is scored against the
evidence tags through its profile:

=====================  ================================================
Component              Contribution
=====================  ================================================
must-have, all hit     2.0 per tag
must-have, some hit    1.5 per tag
supporting             1.0 per tag
optional prefix        ``weight - 1`` if weight >= 1, else ``weight``
specificity            ``1 / (1 + 0.1 * n_matched)``
=====================  ================================================

The acceptance threshold drops to ``min(threshold, 0.1)`` when the top
candidate has every must-have tag and to ``threshold * 0.7`` on a partial
must-have hit.  Nothing is ever fabricated: below threshold the result is
``None`` with a reason.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import structlog

from state_router.engine.models import (
    ConfidenceBand,
    MicroCandidate,
    MicroProfile,
    MicroReason,
    MicroSelection,
    MicroSufficiency,
)

logger = structlog.get_logger(__name__)

DEFAULT_MICRO_THRESHOLD = 0.3
FULL_MUST_HAVE_THRESHOLD = 0.1
PARTIAL_MUST_HAVE_FACTOR = 0.7
MICRO_TIE_TOLERANCE = 0.01

_MUST_HAVE_FULL_WEIGHT = 2.0
_MUST_HAVE_PARTIAL_WEIGHT = 1.5
_SUPPORTING_WEIGHT = 1.0
_SPECIFICITY_STEP = 0.1

# Context tags that commonly co-occur with the low-energy micros.
_STRAIN_CONTEXT = ("sig.context.health.stress", "sig.context.work.deadline", "sig.context.social.isolation")


def _p(
    micro_key: str,
    must_have: tuple[str, ...],
    supporting: tuple[str, ...],
    weights: dict[str, float],
) -> MicroProfile:
    return MicroProfile(micro_key=micro_key, must_have=must_have, supporting=supporting, optional_weights=weights)


# ── Catalogue ────────────────────────────────────────────────

_PROFILES: tuple[MicroProfile, ...] = (
    # grounded
    _p("grounded.steady", ("sig.micro.grounded.steady", "sig.clarity.high"),
       ("sig.agency.high", "sig.tension.low"), {"sig.clarity.high": 1.2}),
    _p("grounded.present", ("sig.micro.grounded.present", "sig.clarity.high"),
       ("sig.agency.high", "sig.tension.low"), {"sig.clarity.high": 1.2}),
    _p("grounded.recovered", ("sig.micro.grounded.recovered",),
       ("sig.context.work.deadline", "sig.fatigue.low"), {"sig.context.work.deadline": 0.8}),
    # engaged
    _p("engaged.focused", ("sig.micro.engaged.focused",),
       ("sig.arousal.high", "sig.agency.high"), {"sig.arousal.high": 1.1}),
    _p("engaged.curious", ("sig.micro.engaged.curious",),
       ("sig.context.work.performance", "sig.arousal.mid"), {"sig.context.work.performance": 1.1}),
    _p("engaged.inspired", ("sig.micro.engaged.inspired",),
       ("sig.arousal.high", "sig.valence.pos"), {"sig.arousal.high": 1.2}),
    # connected
    _p("connected.warm", ("sig.micro.connected.warm",),
       ("sig.context.social.support", "sig.social.high"), {"sig.context.social.support": 1.2}),
    _p("connected.social_flow", ("sig.micro.connected.social_flow",),
       ("sig.social.high", "sig.valence.pos"), {"sig.social.high": 1.1}),
    _p("connected.seen", ("sig.micro.connected.seen",),
       ("sig.context.social.support", "sig.social.mid"), {"sig.context.social.support": 1.1}),
    # capable
    _p("capable.deciding", ("sig.micro.capable.deciding",),
       ("sig.agency.high", "sig.clarity.high"), {"sig.agency.high": 1.2}),
    _p("capable.executing", ("sig.micro.capable.executing",),
       ("sig.agency.high", "sig.arousal.mid"), {"sig.agency.high": 1.1}),
    _p("capable.structured", ("sig.micro.capable.structured",),
       ("sig.clarity.high", "sig.agency.mid"), {"sig.clarity.high": 1.1}),
    # pressured: "rushed" is defined by deadline + high tension alone, and no
    # sibling references either tag.
    _p("pressured.rushed", ("sig.context.work.deadline", "sig.tension.high"),
       ("sig.micro.pressured.rushed",), {"sig.context.work.deadline": 1.2}),
    _p("pressured.performance", ("sig.micro.pressured.performance",),
       ("sig.context.work.performance", "sig.tension.mid"), {"sig.context.work.performance": 1.2}),
    _p("pressured.tense_functional", ("sig.micro.pressured.tense_functional",),
       ("sig.agency.mid", "sig.arousal.high"), {"sig.agency.mid": 1.1}),
    # blocked
    _p("blocked.stuck", ("sig.micro.blocked.stuck",),
       ("sig.cognition.rumination", "sig.agency.low"), {"sig.cognition.rumination": 1.2}),
    _p("blocked.avoidant", ("sig.micro.blocked.avoidant",),
       ("sig.trigger.uncertainty", "sig.agency.low"), {"sig.trigger.uncertainty": 1.2}),
    _p("blocked.frozen", ("sig.micro.blocked.frozen",),
       ("sig.cognition.blank", "sig.agency.low"), {"sig.cognition.blank": 1.2}),
    # overloaded
    _p("overloaded.cognitive", ("sig.micro.overloaded.cognitive",),
       ("sig.cognition.racing", "sig.tension.high", *_STRAIN_CONTEXT), {"sig.cognition.racing": 1.2}),
    _p("overloaded.too_many_tasks", ("sig.micro.overloaded.too_many_tasks",),
       ("sig.context.work.overcommit", "sig.tension.mid", *_STRAIN_CONTEXT), {"sig.context.work.overcommit": 1.2}),
    _p("overloaded.overstimulated", ("sig.micro.overloaded.overstimulated",),
       ("sig.body.headache", "sig.tension.high", *_STRAIN_CONTEXT), {"sig.body.headache": 1.1}),
    # exhausted
    _p("exhausted.drained", ("sig.micro.exhausted.drained",),
       ("sig.body.heavy_limbs", "sig.fatigue.high", *_STRAIN_CONTEXT, "sig.context.family.tension"),
       {"sig.body.heavy_limbs": 1.2}),
    _p("exhausted.sleepy_fog", ("sig.micro.exhausted.sleepy_fog",),
       ("sig.cognition.fog", "sig.fatigue.high", *_STRAIN_CONTEXT), {"sig.cognition.fog": 1.2}),
    _p("exhausted.burnout", ("sig.micro.exhausted.burnout",),
       ("sig.context.work.overcommit", "sig.fatigue.high", *_STRAIN_CONTEXT, "sig.context.family.tension"),
       {"sig.context.work.overcommit": 1.2}),
    # down
    _p("down.sad_heavy", ("sig.micro.down.sad_heavy",),
       ("sig.context.social.isolation", "sig.valence.neg", "sig.context.health.stress", "sig.context.family.tension"),
       {"sig.context.social.isolation": 1.1}),
    _p("down.discouraged", ("sig.micro.down.discouraged",),
       ("sig.trigger.rejection", "sig.valence.neg", "sig.context.health.stress", "sig.context.family.tension",
        "sig.context.social.isolation"),
       {"sig.trigger.rejection": 1.2}),
    _p("down.lonely_low", ("sig.micro.down.lonely_low",),
       ("sig.context.social.isolation", "sig.social.low", "sig.context.health.stress", "sig.context.family.tension"),
       {"sig.context.social.isolation": 1.2}),
    # averse
    _p("averse.irritated", ("sig.micro.averse.irritated",),
       ("sig.trigger.interruption", "sig.tension.mid"), {"sig.trigger.interruption": 1.2}),
    _p("averse.angry", ("sig.micro.averse.angry",),
       ("sig.trigger.conflict", "sig.tension.high"), {"sig.trigger.conflict": 1.2}),
    _p("averse.disgust_avoid", ("sig.micro.averse.disgust_avoid",),
       ("sig.trigger.rejection", "sig.valence.neg"), {"sig.trigger.rejection": 1.1}),
    # detached
    _p("detached.numb", ("sig.micro.detached.numb",),
       ("sig.cognition.blank", "sig.arousal.low", "sig.context.health.stress", "sig.context.work.deadline",
        "sig.context.family.tension"),
       {"sig.cognition.blank": 1.2}),
    _p("detached.disconnected", ("sig.micro.detached.disconnected",),
       ("sig.context.social.isolation", "sig.social.low", "sig.context.health.stress", "sig.context.work.deadline",
        "sig.context.family.tension"),
       {"sig.context.social.isolation": 1.2}),
    _p("detached.autopilot", ("sig.micro.detached.autopilot",),
       ("sig.cognition.scattered", "sig.arousal.low", "sig.context.health.stress", "sig.context.work.deadline",
        "sig.context.family.tension"),
       {"sig.cognition.scattered": 1.1}),
)


def _group(profiles: Iterable[MicroProfile]) -> dict[str, tuple[MicroProfile, ...]]:
    grouped: dict[str, list[MicroProfile]] = {}
    for profile in profiles:
        grouped.setdefault(profile.macro_key, []).append(profile)
    return {macro: tuple(items) for macro, items in grouped.items()}


MICRO_CATALOGUE: Mapping[str, tuple[MicroProfile, ...]] = MappingProxyType(_group(_PROFILES))
MICRO_PROFILES: Mapping[str, MicroProfile] = MappingProxyType({p.micro_key: p for p in _PROFILES})


# ── Lookups ──────────────────────────────────────────────────


def micros_for_macro(macro_key: str) -> tuple[MicroProfile, ...]:
    return MICRO_CATALOGUE.get(macro_key, ())


def get_micro_profile(micro_key: str) -> MicroProfile | None:
    return MICRO_PROFILES.get(micro_key)


def all_micro_keys() -> list[str]:
    return list(MICRO_PROFILES)


def micro_belongs_to_macro(micro_key: str, macro_key: str) -> bool:
    return micro_key.startswith(f"{macro_key}.")


def micros_for_tag(tag: str) -> list[str]:
    """Micro keys whose must-have or supporting set names ``tag``."""
    return [
        profile.micro_key
        for profile in _PROFILES
        if tag in profile.must_have or tag in profile.supporting
    ]


def check_micro_evidence_sufficiency(micro_key: str, evidence_tags: Iterable[str]) -> MicroSufficiency:
    """Sufficient when every must-have tag is present."""
    profile = get_micro_profile(micro_key)
    if profile is None:
        return MicroSufficiency(sufficient=False)
    tags = set(evidence_tags)
    missing_must = [tag for tag in profile.must_have if tag not in tags]
    missing_support = [tag for tag in profile.supporting if tag not in tags]
    return MicroSufficiency(
        sufficient=not missing_must,
        missing_must_have=missing_must,
        missing_supporting=missing_support,
    )


def should_micro_be_null(macro_key: str, evidence_tags: Iterable[str], band: ConfidenceBand) -> bool:
    """A low-confidence macro with no evidence at all gets no micro."""
    return band == ConfidenceBand.LOW and not list(evidence_tags)


# ── Scoring ──────────────────────────────────────────────────


def _score_profile(profile: MicroProfile, tags: list[str], prefer_specific: bool) -> MicroCandidate:
    present = set(tags)
    must_hit = [tag for tag in profile.must_have if tag in present]
    support_hit = [tag for tag in profile.supporting if tag in present]
    matched = list(dict.fromkeys(must_hit + support_hit))

    score = 0.0
    if must_hit and len(must_hit) == len(profile.must_have):
        score += len(must_hit) * _MUST_HAVE_FULL_WEIGHT
    elif must_hit:
        score += len(must_hit) * _MUST_HAVE_PARTIAL_WEIGHT
    score += len(support_hit) * _SUPPORTING_WEIGHT

    for tag in tags:
        for prefix, weight in profile.optional_weights.items():
            if tag.startswith(prefix):
                # weights under 1 still add, never penalise
                score += weight - 1.0 if weight >= 1.0 else weight
                if tag not in matched:
                    matched.append(tag)

    if prefer_specific and matched:
        score += 1.0 / (1.0 + len(matched) * _SPECIFICITY_STEP)

    return MicroCandidate(micro_key=profile.micro_key, score=score, matched_tags=matched)


def score_micros(
    macro_key: str,
    evidence_tags: Iterable[str],
    prefer_specific: bool = True,
) -> list[MicroCandidate]:
    """Score every micro of ``macro_key``, best first (catalogue order on ties)."""
    tags = list(dict.fromkeys(evidence_tags))
    scored = [_score_profile(profile, tags, prefer_specific) for profile in micros_for_macro(macro_key)]
    return sorted(scored, key=lambda c: c.score, reverse=True)


def effective_threshold(micro_key: str, evidence_tags: Iterable[str], threshold: float = DEFAULT_MICRO_THRESHOLD) -> float:
    """Acceptance threshold for ``micro_key`` given its must-have coverage."""
    profile = get_micro_profile(micro_key)
    if profile is None or not profile.must_have:
        return threshold
    tags = set(evidence_tags)
    hits = sum(1 for tag in profile.must_have if tag in tags)
    if hits == len(profile.must_have):
        return min(threshold, FULL_MUST_HAVE_THRESHOLD)
    if hits > 0:
        return threshold * PARTIAL_MUST_HAVE_FACTOR
    return threshold


def select_micro_debug(
    macro_key: str,
    evidence_tags: Iterable[str],
    threshold: float = DEFAULT_MICRO_THRESHOLD,
    prefer_specific: bool = True,
) -> MicroSelection:
    """Select a micro and explain the outcome, including the no-micro cases."""
    tags = list(dict.fromkeys(evidence_tags))

    if not micros_for_macro(macro_key):
        return MicroSelection(macro_key=macro_key, effective_threshold=threshold, reason=MicroReason.NO_MICROS)

    scored = score_micros(macro_key, tags, prefer_specific)
    top = scored[0]

    if not tags:
        return MicroSelection(
            macro_key=macro_key,
            top_candidate=top,
            effective_threshold=threshold,
            reason=MicroReason.NO_EVIDENCE,
        )

    limit = effective_threshold(top.micro_key, tags, threshold)
    if top.score < limit:
        reason = MicroReason.NO_MATCHES_ZERO_SCORE if top.score == 0 else MicroReason.BELOW_THRESHOLD_NONZERO
        logger.debug("micro.not_selected", macro=macro_key, reason=reason.value, top=top.micro_key, score=top.score)
        return MicroSelection(macro_key=macro_key, top_candidate=top, effective_threshold=limit, reason=reason)

    tied = [c for c in scored if abs(c.score - top.score) < MICRO_TIE_TOLERANCE]
    # fewer matched tags is the more economical explanation; first wins on equal counts
    selected = min(tied, key=lambda c: len(c.matched_tags)) if len(tied) > 1 else top

    logger.debug("micro.selected", macro=macro_key, micro=selected.micro_key, score=round(selected.score, 4))
    return MicroSelection(
        macro_key=macro_key,
        selected=selected,
        top_candidate=top,
        effective_threshold=limit,
        reason=MicroReason.MATCHED,
    )


def select_micro(
    macro_key: str,
    evidence_tags: Iterable[str],
    threshold: float = DEFAULT_MICRO_THRESHOLD,
    prefer_specific: bool = True,
) -> MicroCandidate | None:
    return select_micro_debug(macro_key, evidence_tags, threshold, prefer_specific).selected

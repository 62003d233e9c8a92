"""Command-line entrypoint: classify one check-in or audit the rating grid."""

from __future__ import annotations

import argparse
import json
import sys

from state_router.config import get_settings
from state_router.logger import setup_logging


def _add_rating(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    parser.add_argument(f"--{name}", type=float, default=None, help=help_text)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="state-router",
        description="Rule-gated emotional state classification engine.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── classify ──────────────────────────────────────────────
    classify_parser = sub.add_parser("classify", help="Classify one check-in and print JSON.")
    _add_rating(classify_parser, "mood", "Mood 1-7.")
    _add_rating(classify_parser, "energy", "Energy 1-7.")
    _add_rating(classify_parser, "tension", "Tension 1-7.")
    _add_rating(classify_parser, "clarity", "Clarity 1-7.")
    _add_rating(classify_parser, "control", "Control 1-7.")
    _add_rating(classify_parser, "social", "Social capacity 1-7.")
    classify_parser.add_argument("--tag", action="append", default=[], help="Canonical evidence tag (repeatable).")
    classify_parser.add_argument("--deep", action="store_true", help="Allow deep-only states.")
    classify_parser.add_argument("--evidence-weight", type=float, default=None)
    classify_parser.add_argument("--macro-flip", action="store_true", help="Enable the macro flip for this call.")

    # ── audit ─────────────────────────────────────────────────
    audit_parser = sub.add_parser("audit", help="Classify the rating grid and print a summary.")
    audit_parser.add_argument("--step", type=int, default=1, help="Grid step on the 7-point scale.")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "classify":
        from state_router.engine.pipeline import StateRouter

        ratings = {
            name: getattr(args, name)
            for name in ("mood", "energy", "tension", "clarity", "control", "social")
            if getattr(args, name) is not None
        }
        result = StateRouter(settings).classify(
            ratings,
            args.tag,
            evidence_weight=args.evidence_weight,
            mode="deep" if args.deep else None,
            macro_flip=True if args.macro_flip else None,
        )
        print(result.model_dump_json(indent=2))
    elif args.command == "audit":
        if args.step < 1:
            parser.error("--step must be at least 1")
        from state_router.research.audit import run_audit, summarize_audit

        print(json.dumps(summarize_audit(run_audit(step=args.step)), indent=2))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from pathlib import Path

from app.errors import ValidationError

from ..core import rate_items
from ..io import dump_result_file, load_rating_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="risk-score",
        description="Score likelihood/impact pairs and route optional treatment decisions offline.",
    )
    parser.add_argument("input", help="JSON file: a list of {likelihood, impact, decision?, id?} objects")
    parser.add_argument(
        "--out",
        default="output/risk_scores.json",
        help="Output JSON file path (default: output/risk_scores.json)",
    )
    parser.add_argument("--stdout", action="store_true", help="Print the result JSON instead of writing --out")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    input_path = Path(args.input).resolve()

    if not input_path.is_file():
        print(f"error: input file not found: {input_path}", file=sys.stderr)
        return 2

    try:
        results = rate_items(load_rating_file(input_path))
    except (ValueError, ValidationError) as exc:
        print(f"error: invalid input: {exc}", file=sys.stderr)
        return 2

    levels = Counter(r.level for r in results)
    payload = {
        "results": [r.to_payload() for r in results],
        "by_level": dict(sorted(levels.items())),
    }
    if args.stdout:
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    output_path = Path(args.out).resolve()
    dump_result_file(output_path, payload)
    print(f"rated={len(results)} " + " ".join(f"{k}={v}" for k, v in sorted(levels.items())))
    print(f"wrote={output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

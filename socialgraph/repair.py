from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from socialgraph.core.settings import S
from socialgraph.services.checker import run_repair_job


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m socialgraph.repair",
        description="Recompute derived graph/engagement state and report discrepancies.",
    )
    parser.add_argument("kind", choices=("actors", "content"))
    parser.add_argument("--sample", type=int, default=None, help="check a random sample of N documents")
    parser.add_argument("--repair", action="store_true", help="write fixes (requires REPAIR_MODE_ENABLED=1)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.repair and not S.repair_mode_enabled:
        print("refusing to repair: REPAIR_MODE_ENABLED is off", file=sys.stderr)
        return 2
    summary = run_repair_job(args.kind, sample=args.sample, repair=args.repair)
    print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    return 1 if summary["mismatches"] and not args.repair else 0


if __name__ == "__main__":
    sys.exit(main())

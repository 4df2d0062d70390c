"""
Manual matching trigger — runs a single loan matching run from the command line.

Usage:
    python scripts/run_matching.py
    python scripts/run_matching.py --batch-size 20 --as-of 2026-01-01T00:00:00Z
    python scripts/run_matching.py --application <uuid> --offer <uuid>

Useful for testing the matcher without waiting for the Celery beat schedule.
"""

import argparse
import asyncio
import json
import logging

from lendmatch.matching_engine.engine import matching_engine
from lendmatch.matching_engine.reporter import report_to_dict


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the loan matcher once.")
    parser.add_argument("--as-of", dest="as_of_date", help="valuation instant (ISO 8601)")
    parser.add_argument("--batch-size", type=int, help="applications per page")
    parser.add_argument("--application", dest="target_application_id", help="match only this application")
    parser.add_argument("--offer", dest="target_offer_id", help="match only against this offer")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> dict:
    fields = ("as_of_date", "batch_size", "target_application_id", "target_offer_id")
    return {name: getattr(args, name) for name in fields if getattr(args, name) is not None}


async def main(argv=None):
    """Run a single matching run and print the report."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    print("Starting manual loan matching run...")
    report = await matching_engine.run_matching(build_request(args))
    result = report_to_dict(report)

    print("\n=== Loan Matching Report ===")
    print(json.dumps(result, indent=2, default=str))
    print(f"\nApplications processed: {result['processed_applications']}")
    print(f"Matches created: {result['matched_pairs']}")
    print(f"Errors: {len(result['errors'])}")


if __name__ == "__main__":
    asyncio.run(main())

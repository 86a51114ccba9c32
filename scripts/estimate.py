"""
estimate.py: Price a free-text NFL hypothetical from the command line.

Usage
-----
  python scripts/estimate.py "Josh Allen rushes for 1,000 yards this season"
  python scripts/estimate.py "Chiefs win the Super Bowl" --json
  python scripts/estimate.py "Bills before Lions" --as-of 2025-09-01 --offline
  python scripts/estimate.py --watch < prompts.txt

Without --offline the roster index is refreshed from the live feed first
and live market lines are used when THE_ODDS_API_KEY is set.

--watch keeps one engine alive and prices one prompt per stdin line while
the roster and market refresh jobs run in the background.
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Ensure the project root (one level up from scripts/) is on sys.path so that
# `from scenario_odds.xxx import ...` resolves when the script is run directly.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _as_of(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an ISO date (YYYY-MM-DD)")


async def _run(prompt: str, as_of, offline: bool):
    from scenario_odds.engine import ScenarioEngine

    engine = ScenarioEngine(as_of=as_of, offline=offline)
    if not offline:
        await engine.roster.refresh_async()
    return await engine.estimate_async(prompt)


async def _watch(as_of, offline: bool, as_json: bool) -> None:
    from scenario_odds.engine import ScenarioEngine

    engine = ScenarioEngine(as_of=as_of, offline=offline)
    if not offline:
        await engine.roster.refresh_async()
        await engine.markets.refresh()
    engine.start_refresh()
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            prompt = line.strip()
            if prompt:
                _print(await engine.estimate_async(prompt), as_json)
    finally:
        engine.stop_refresh()


def _print(result, as_json: bool) -> None:
    if as_json:
        print(result.model_dump_json(indent=2))
        return

    if result.declined:
        print(f"{result.odds}  declined ({result.source_type})")
        print(f"  {result.reason}")
        return

    print(f"{result.odds}  ({result.implied_probability:.1f}%)  {result.label}")
    print(f"  confidence: {result.confidence}   source: {result.source_type}")
    if result.rationale:
        print(f"  {result.rationale}")


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Estimate American odds for an NFL hypothetical."
    )
    parser.add_argument("prompt", nargs="?", help="Scenario text, quoted.")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON.")
    parser.add_argument("--as-of", type=_as_of, default=None, help="Pricing date, YYYY-MM-DD.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use the bundled roster and per-market baselines only.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Price one prompt per stdin line with background refresh running.",
    )
    args = parser.parse_args()
    if args.prompt is None and not args.watch:
        parser.error("a prompt is required unless --watch is given")

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.watch:
        asyncio.run(_watch(args.as_of, args.offline, args.json))
        return

    _print(asyncio.run(_run(args.prompt, args.as_of, args.offline)), args.json)


if __name__ == "__main__":
    main()

"""Command line entry point for scheduled and manual carryover runs.

Meant to be called from cron once a day, shortly after midnight UTC::

    5 0 * * *  kidsafe-carryover run

``run`` closes out yesterday unless ``--date`` is given; ``--through``
backfills a range one day at a time. ``preview`` prints what a run would
do without changing anything.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, timedelta, timezone

from kidsafe.database import async_session, engine
from kidsafe.services.carryover import preview_carryover, run_batch_carryover

logger = logging.getLogger("kidsafe.cli")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def _yesterday() -> date:
    return datetime.now(timezone.utc).date() - timedelta(days=1)


def _days(start: date, end: date | None) -> list[date]:
    end = end or start
    return [start + timedelta(days=n) for n in range((end - start).days + 1)]


async def _run(start: date, through: date | None) -> int:
    failed = 0
    async with async_session() as db:
        for day in _days(start, through):
            result = await run_batch_carryover(db, day)
            print(
                f"{result.date} -> {result.next_date}: "
                f"{result.found} found, {result.carried} carried over, {result.failed} failed"
            )
            failed += result.failed
    await engine.dispose()
    return 1 if failed else 0


async def _preview(day: date) -> int:
    async with async_session() as db:
        candidates = await preview_carryover(db, day)
    await engine.dispose()

    print(f"{day}: {len(candidates)} unwatched videos would be carried over")
    for item in candidates:
        marker = " (carried over)" if item["carried_over"] else ""
        print(
            f"  {item['child_name']}: {item['video_title']} "
            f"[since {item['original_date']}]{marker}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kidsafe-carryover",
        description="Carry unwatched scheduled videos over to the next day",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Close out a day (default: yesterday, UTC)")
    run.add_argument("--date", type=_parse_date, default=None, help="Day to close out")
    run.add_argument(
        "--through", type=_parse_date, default=None,
        help="Also close out every following day up to and including this one",
    )

    preview = sub.add_parser("preview", help="Show what a run would carry over")
    preview.add_argument("--date", type=_parse_date, default=None, help="Day to inspect")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt)

    day = args.date or _yesterday()
    if args.command == "run":
        if args.through is not None and args.through < day:
            parser.error("--through must not be before --date")
        return asyncio.run(_run(day, args.through))
    return asyncio.run(_preview(day))


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json

from app.db.session import close_engine, get_session_factory
from app.logging_config import configure_logging, parse_redact_fields
from app.services.credits import ledger
from app.settings import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Open the next credit period for every expired ledger row.")
    parser.add_argument(
        "--period-days",
        type=int,
        default=settings.credit_period_days,
        help="Length of each new period in days.",
    )
    return parser


async def _run(*, period_days: int) -> dict:
    session_factory = get_session_factory()
    try:
        async with session_factory() as db_session:
            opened = await ledger.rollover_expired_periods(db_session, period_days=period_days)
            await db_session.commit()
    finally:
        await close_engine()
    return {"status": "ok", "opened": opened}


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        redact_fields=parse_redact_fields(settings.log_redact_fields),
        include_uvicorn_access=False,
    )

    try:
        report = asyncio.run(_run(period_days=args.period_days))
    except Exception as exc:
        print(json.dumps({"status": "failed", "error": str(exc)}, indent=2))
        return 1

    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

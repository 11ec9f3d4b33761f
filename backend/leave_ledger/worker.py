"""Worker process for ledger reconciliation.

Runs once with ``--once`` (for cron or a manual repair), otherwise loops
and reconciles every tenant every ``reconciliation_interval_seconds``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from leave_ledger.config import get_settings
from leave_ledger.db import dispose_engine, session_scope
from leave_ledger.services.reconciliation import ReconciliationRunResult, run_reconciliation

logger = logging.getLogger(__name__)


async def run_once(company_id: uuid.UUID | None = None, employee_id: uuid.UUID | None = None) -> ReconciliationRunResult:
    """Run a single reconciliation pass in its own session."""
    async with session_scope() as session:
        result = await run_reconciliation(session, company_id=company_id, employee_id=employee_id)
    for detail in result.details:
        logger.info("Backfilled %s", detail)
    return result


async def run_reconciliation_loop(company_id: uuid.UUID | None = None) -> None:
    """Reconcile on a fixed interval until the process is stopped."""
    logger.info("Reconciliation worker started")
    while True:
        try:
            await run_once(company_id)
        except Exception:
            logger.exception("Reconciliation run failed")
        await asyncio.sleep(get_settings().reconciliation_interval_seconds)


async def _main(args: argparse.Namespace) -> int:
    try:
        if args.once:
            result = await run_once(args.company_id, args.employee_id)
            return 1 if result.errors else 0
        await run_reconciliation_loop(args.company_id)
        return 0
    finally:
        await dispose_engine()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leave_ledger.worker", description="Backfill missing leave ledger entries.")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument("--company-id", type=uuid.UUID, default=None, help="limit the run to one company")
    parser.add_argument("--employee-id", type=uuid.UUID, default=None, help="limit a single pass to one employee")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the worker process."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())

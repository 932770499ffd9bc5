"""Scheduled risk sweep over every linked trading account.

Run from system cron, e.g. every two minutes:

    python -m apps.worker.app.sweep --workers 4
"""
import argparse
import logging
import sys

from apps.api.app.core.logging import configure_logging
from apps.api.app.db.session import Base, engine
from apps.worker.app.engine.risk_runtime import (
    build_account_gateway,
    build_alert_dispatcher,
    run_risk_check_all,
)

logger = logging.getLogger("apps.worker.sweep")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the risk check for all linked accounts.")
    parser.add_argument("--workers", type=int, default=None, help="parallel accounts (default: RISK_SWEEP_MAX_WORKERS)")
    args = parser.parse_args(argv)

    configure_logging()
    Base.metadata.create_all(bind=engine)

    gateway = build_account_gateway()
    if gateway is None:
        logger.error("METATRADERAPI_API_KEY not set, nothing to do")
        return 2

    result = run_risk_check_all(
        gateway=gateway,
        dispatcher=build_alert_dispatcher(),
        max_workers=args.workers,
    )
    failed = [r for r in result.results if not r.ok]
    logger.info(
        "Risk sweep done: %d accounts, %d failed, %d findings",
        result.accounts_checked,
        len(failed),
        sum(r.findings_count for r in result.results),
    )
    for r in failed:
        logger.warning("  %s (user %s): %s", r.account_ref, r.user_ref, r.error)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())

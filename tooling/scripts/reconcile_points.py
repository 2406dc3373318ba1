"""Rebuild points balances from the settled transaction history.

Intended usage: run after a failed compensation alert or as a manual
audit when balances look out of line with transaction history.

Example:
    python tooling/scripts/reconcile_points.py --user-id 42
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile points balances against transaction records")
    parser.add_argument(
        "--user-id",
        type=int,
        default=None,
        help="Limit the pass to a single customer. Defaults to every customer with history or a balance.",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Override the retry cap applied when a settlement races the overwrite.",
    )
    return parser.parse_args()


async def _run(user_id: int | None, max_attempts: int | None) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from settlement_api.core.settings import settings  # type: ignore import-position
    from settlement_api.db.session import async_session, engine  # type: ignore import-position
    from settlement_api.services.settlement import PointsLedgerReconciler  # type: ignore import-position

    try:
        async with async_session() as session:
            reconciler = PointsLedgerReconciler(
                session,
                max_attempts=max_attempts or settings.balance_update_max_attempts,
            )
            if user_id is None:
                report = await reconciler.reconcile_all()
            else:
                report = await reconciler.reconcile_user(user_id)
        return report.as_dict()
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.user_id, args.max_attempts))
    for entry in summary["balances"]:  # type: ignore[union-attr]
        if entry["corrected"]:
            logger.warning("Balance corrected", **entry)
    logger.success(
        "Points reconciliation completed",
        checked=summary["checked"],
        corrected=summary["corrected"],
        user_id=args.user_id,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

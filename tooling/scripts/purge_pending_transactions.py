"""Drop expired pending transactions once.

Only meaningful for the database backend; redis keys expire on their own
and the in-memory store lives inside the API process.

Example:
    python tooling/scripts/purge_pending_transactions.py --backend database
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Purge expired pending transactions")
    parser.add_argument(
        "--backend",
        choices=("database", "redis"),
        default=None,
        help="Pending store backend to sweep. Defaults to the configured backend.",
    )
    return parser.parse_args()


async def _run(backend: str | None) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from settlement_api.db.session import async_session, engine  # type: ignore import-position
    from settlement_api.jobs.settlement import purge_expired_pending_transactions  # type: ignore import-position
    from settlement_api.services.settlement import build_pending_store  # type: ignore import-position

    store = build_pending_store(backend, session_factory=async_session)
    try:
        return await purge_expired_pending_transactions(session_factory=async_session, pending_store=store)
    finally:
        await store.close()
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.backend))
    logger.success("Pending transaction purge completed", **summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())

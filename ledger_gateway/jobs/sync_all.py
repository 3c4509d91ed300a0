"""Batch job: sync every active ledger connection, one user at a time

Usage:
    python -m ledger_gateway.jobs.sync_all
"""

import asyncio
import logging
from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_gateway.config import settings
from ledger_gateway.domain.exceptions import LedgerConnectionError
from ledger_gateway.infrastructure.database.repositories import ConnectionRepository
from ledger_gateway.infrastructure.database.session import SessionLocal
from ledger_gateway.infrastructure.observability.logging import setup_logging
from ledger_gateway.services.connections import ConnectionResolver
from ledger_gateway.services.sync import SyncOrchestrator, run_sync_with_timeout

logger = logging.getLogger(__name__)


async def sync_all(
    session_factory: async_sessionmaker = SessionLocal,
    resolver_factory: Callable[[AsyncSession], ConnectionResolver] = ConnectionResolver,
    **orchestrator_options,
) -> Dict[str, str]:
    """
    Sync each user with an active connection and return user_id -> result.

    A failing user never stops the batch.
    """
    async with session_factory() as db:
        user_ids = sorted({c.user_id for c in await ConnectionRepository(db).list_active()})

    results: Dict[str, str] = {}
    for user_id in user_ids:
        async with session_factory() as db:
            orchestrator = SyncOrchestrator(db, resolver_factory(db), **orchestrator_options)
            try:
                report = await run_sync_with_timeout(orchestrator, user_id)
                results[user_id] = "success" if report.success else "partial"
            except LedgerConnectionError as e:
                logger.warning(f"Skipping user, connection unusable: {e}", extra={"user_id": user_id})
                results[user_id] = "connection_error"
            except asyncio.TimeoutError:
                results[user_id] = "timeout"

    logger.info("Batch sync finished", extra={"users": len(user_ids), "results": results})
    return results


def main() -> None:
    setup_logging(settings.log_level)
    asyncio.run(sync_all())


if __name__ == "__main__":
    main()

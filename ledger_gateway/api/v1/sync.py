"""/v1/sync - Trigger a ledger sync and inspect past runs"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.api.dependencies import get_connection_resolver, get_current_user_id, get_gates, get_request_id
from ledger_gateway.api.v1.schemas import SyncFailureSchema, SyncResponse, SyncStatusResponse, SyncStatusSchema
from ledger_gateway.domain.exceptions import AuthExpiredError, ConnectionNotFoundError, TokenRefreshError
from ledger_gateway.infrastructure.clients.paging import TenantGateRegistry
from ledger_gateway.infrastructure.database.repositories import SyncStatusRepository
from ledger_gateway.infrastructure.database.session import get_db
from ledger_gateway.services.connections import ConnectionResolver
from ledger_gateway.services.sync import SyncOrchestrator, run_sync_with_timeout

router = APIRouter()


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    resolver: ConnectionResolver = Depends(get_connection_resolver),
    gates: TenantGateRegistry = Depends(get_gates),
):
    """
    Mirror the caller's ledger tenant and recompute customer history.

    Record-level failures do not fail the request; they are listed in the
    response and the rest of the mirror is kept.
    """
    request_id = get_request_id(request)
    orchestrator = SyncOrchestrator(db, resolver, gates=gates)

    try:
        report = await run_sync_with_timeout(orchestrator, user_id)

    except ConnectionNotFoundError as e:
        logging.warning(f"Sync without connection: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(status_code=404, detail="No active ledger connection")

    except AuthExpiredError as e:
        logging.warning(f"Ledger authorisation expired: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(status_code=401, detail="Ledger authorisation expired, reconnect required")

    except TokenRefreshError as e:
        logging.error(f"Token refresh failed: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(status_code=502, detail="Ledger token refresh failed")

    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Sync timed out")

    return SyncResponse(
        success=report.success,
        tenant_id=report.tenant_id,
        counts=report.counts(),
        failures=[SyncFailureSchema(**failure) for failure in report.failures],
    )


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Last attempt, success and failure per connected tenant"""
    statuses = await SyncStatusRepository(db, user_id).list()
    return SyncStatusResponse(
        statuses=[
            SyncStatusSchema(
                tenant_id=s.tenant_id,
                last_attempt_at=s.last_attempt_at,
                last_success_at=s.last_success_at,
                last_failure_at=s.last_failure_at,
                record_counts=s.record_counts,
                last_error=s.last_error,
            )
            for s in statuses
        ]
    )

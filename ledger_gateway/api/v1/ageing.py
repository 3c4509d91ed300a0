"""GET /v1/ageing-report - Receivables ageing computed live from the mirror"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.api.dependencies import get_current_user_id
from ledger_gateway.api.v1.schemas import (
    AgeingBucketSchema,
    AgeingReportResponse,
    AgeingSummary,
    ContactAgeingSchema,
    ContactBucketsSchema,
)
from ledger_gateway.domain.ageing import build_ageing_report
from ledger_gateway.infrastructure.database.repositories import MirrorRepository
from ledger_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/ageing-report", response_model=AgeingReportResponse)
async def get_ageing_report(
    as_of: Optional[date] = Query(None, alias="asOf", description="Reference date, defaults to today"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Bucket every open, overdue receivable by days past due.

    Bucket membership always depends on asOf, never on stored data.
    """
    as_of = as_of or date.today()
    entries = await MirrorRepository(db, user_id).list_receivables_due(as_of)
    report = build_ageing_report(entries, as_of)

    return AgeingReportResponse(
        as_of=report.as_of,
        summary=AgeingSummary(
            total_outstanding=float(report.total_outstanding),
            invoice_count=report.invoice_count,
            contact_count=report.contact_count,
        ),
        buckets=[
            AgeingBucketSchema(
                label=b.label,
                min_days=b.min_days,
                max_days=b.max_days,
                total_outstanding=float(b.total_outstanding),
                invoice_count=b.invoice_count,
            )
            for b in report.buckets
        ],
        contacts=[
            ContactAgeingSchema(
                contact_id=str(c.contact_id),
                contact_name=c.contact_name,
                total_outstanding=float(c.total_outstanding),
                invoice_count=c.invoice_count,
                buckets=ContactBucketsSchema(
                    current=float(c.buckets.current),
                    thirty_days=float(c.buckets.thirty_days),
                    sixty_days=float(c.buckets.sixty_days),
                    ninety_plus=float(c.buckets.ninety_plus),
                ),
                oldest_invoice_days=c.oldest_invoice_days,
            )
            for c in report.contacts
        ],
    )

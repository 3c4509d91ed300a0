"""GET /v1/customers/{contact_id}/history - Stored payment behaviour snapshot"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.api.dependencies import get_current_user_id
from ledger_gateway.api.v1.schemas import CustomerHistoryResponse, CustomerHistorySchema
from ledger_gateway.infrastructure.database.repositories import CustomerHistoryRepository
from ledger_gateway.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/customers/{contact_id}/history", response_model=CustomerHistoryResponse)
async def get_customer_history(
    contact_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the contact's risk level and the snapshot computed by the last sync.

    history is null until a sync has run for the contact.
    """
    found = await CustomerHistoryRepository(db, user_id).get(contact_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    contact, history = found

    snapshot = None
    if history is not None:
        snapshot = CustomerHistorySchema(
            window_start=history.window_start,
            window_end=history.window_end,
            num_invoices=history.num_invoices,
            num_late_payments=history.num_late_payments,
            avg_days_late=history.avg_days_late,
            max_days_late=history.max_days_late,
            percent_invoices_90_plus=history.percent_invoices_90_plus,
            total_outstanding=float(history.total_outstanding),
            max_invoice_outstanding=float(history.max_invoice_outstanding),
            total_billed_last_12_months=float(history.total_billed_last_12_months),
            last_payment_date=history.last_payment_date,
            credit_terms_days=history.credit_terms_days,
            risk_score=history.risk_score,
            computed_at=history.computed_at,
        )

    return CustomerHistoryResponse(
        contact_id=str(contact.id),
        contact_name=contact.name,
        risk_level=contact.risk_level,
        bank_details_changed=contact.bank_details_changed,
        history=snapshot,
    )

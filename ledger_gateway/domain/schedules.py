"""Payment run validation, totals and status lifecycle"""

from decimal import Decimal
from typing import Dict, List
from uuid import UUID

from ledger_gateway.domain.exceptions import InvalidRequestError, InvalidScheduleTransitionError
from ledger_gateway.domain.forecast import bill_amount_due
from ledger_gateway.domain.models import ZERO, EntryView, ScheduleDraft, ScheduleRequest

CENT = Decimal("0.01")
RISK_LEVELS = ("critical", "high", "medium", "low")

# draft -> confirmed -> cancelled, or draft -> cancelled
ALLOWED_TRANSITIONS: Dict[str, set] = {
    "draft": {"confirmed", "cancelled"},
    "confirmed": {"cancelled"},
    "cancelled": set(),
}


def _unique(ids: List[UUID]) -> List[UUID]:
    seen = set()
    ordered = []
    for bill_id in ids:
        if bill_id not in seen:
            seen.add(bill_id)
            ordered.append(bill_id)
    return ordered


def prepare_schedule(request: ScheduleRequest, bills: List[EntryView]) -> ScheduleDraft:
    """
    Validate a payment run against the requester's bills and compute its snapshot.

    Args:
        request: Requested run (name, date, bills, optional per-bill items)
        bills: Bills found for the requester among request.bill_ids

    Raises:
        InvalidRequestError: Missing fields, foreign bills, bad allocations or
            a claimed total that does not match the allocations
    """
    if not request.name or not request.name.strip():
        raise InvalidRequestError("name is required")
    if request.scheduled_date is None:
        raise InvalidRequestError("scheduledDate is required")

    bill_ids = _unique(request.bill_ids)
    if not bill_ids:
        raise InvalidRequestError("billIds must contain at least one bill")

    bills_by_id = {bill.id: bill for bill in bills}
    missing = [str(bill_id) for bill_id in bill_ids if bill_id not in bills_by_id]
    if missing:
        raise InvalidRequestError(f"Bills not found: {', '.join(missing)}")

    item_amounts: Dict[UUID, Decimal] = {}
    for item in request.items:
        if item.bill_id not in bills_by_id or item.bill_id not in bill_ids:
            raise InvalidRequestError(f"Item references bill {item.bill_id} outside billIds")
        if item.bill_id in item_amounts:
            raise InvalidRequestError(f"Duplicate item for bill {item.bill_id}")
        if item.amount <= 0:
            raise InvalidRequestError(f"Allocation for bill {item.bill_id} must be positive")
        if item.amount > bill_amount_due(bills_by_id[item.bill_id]):
            raise InvalidRequestError(f"Allocation for bill {item.bill_id} exceeds amount due")
        item_amounts[item.bill_id] = item.amount

    total = ZERO
    risk_summary = {level: 0 for level in RISK_LEVELS}
    for bill_id in bill_ids:
        bill = bills_by_id[bill_id]
        total += item_amounts.get(bill_id, bill_amount_due(bill))
        level = bill.risk_level if bill.risk_level in risk_summary else "low"
        risk_summary[level] += 1

    total = total.quantize(CENT)
    if request.total_amount is not None and abs(request.total_amount - total) > CENT:
        raise InvalidRequestError(f"totalAmount {request.total_amount} does not match allocations {total}")

    return ScheduleDraft(
        name=request.name.strip(),
        scheduled_date=request.scheduled_date,
        bill_ids=bill_ids,
        items=list(request.items),
        total_amount=total,
        bill_count=len(bill_ids),
        risk_summary=risk_summary,
        notes=request.notes,
    )


def validate_transition(current: str, target: str) -> None:
    """Raise unless current -> target is a legal status change"""
    if target not in ALLOWED_TRANSITIONS:
        raise InvalidRequestError(f"Unknown schedule status: {target}")
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidScheduleTransitionError(f"Cannot move schedule from {current} to {target}")

"""Payables cash-flow forecast netted against existing payment runs"""

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List
from uuid import UUID

from ledger_gateway.domain.models import (
    ZERO,
    EntryView,
    ForecastBill,
    ForecastDay,
    PaymentForecast,
    ScheduleView,
)
from ledger_gateway.utils.date_utils import generate_date_range

CLOSED_BILL_STATUSES = {"paid", "voided", "cancelled"}
ALLOCATING_SCHEDULE_STATUSES = {"draft", "confirmed"}


def bill_amount_due(bill: EntryView) -> Decimal:
    return bill.total - bill.amount_paid


def allocated_amounts(schedules: Iterable[ScheduleView], bills: Iterable[EntryView]) -> Dict[UUID, Decimal]:
    """
    Sum amounts already committed to each bill by live payment runs.

    - A bill with an explicit item is allocated exactly the item amount
    - Any other listed bill is allocated its full current amount due
    - Cancelled schedules allocate nothing
    """
    due_by_bill = {bill.id: bill_amount_due(bill) for bill in bills}
    allocations: Dict[UUID, Decimal] = {}

    for schedule in schedules:
        if schedule.status not in ALLOCATING_SCHEDULE_STATUSES:
            continue
        item_amounts = {item.bill_id: item.amount for item in schedule.items}
        for bill_id in schedule.bill_ids:
            if bill_id in item_amounts:
                amount = item_amounts[bill_id]
            elif bill_id in due_by_bill:
                amount = due_by_bill[bill_id]
            else:
                continue
            allocations[bill_id] = allocations.get(bill_id, ZERO) + amount

    return allocations


def build_payment_forecast(
    bills: Iterable[EntryView],
    allocations: Dict[UUID, Decimal],
    start: date,
    end: date,
) -> PaymentForecast:
    """
    Build a day-by-day forecast of bills falling due in [start, end].

    Each day reports the amount still schedulable (amount due minus already
    allocated), and a running cumulative total across the whole window.
    """
    bills_by_date: Dict[date, List[ForecastBill]] = {}
    total_scheduled = ZERO

    for bill in sorted(bills, key=lambda b: b.due_date):
        if bill.status in CLOSED_BILL_STATUSES:
            continue
        if bill.due_date < start or bill.due_date > end:
            continue

        amount_due = bill_amount_due(bill)
        # Double-booked drafts can over-allocate; never schedule more than is due
        scheduled = min(allocations.get(bill.id, ZERO), max(amount_due, ZERO))
        total_scheduled += scheduled

        bills_by_date.setdefault(bill.due_date, []).append(
            ForecastBill(
                bill=bill,
                amount_due=amount_due,
                scheduled_amount=scheduled,
                available_amount=amount_due - scheduled,
            )
        )

    forecast: List[ForecastDay] = []
    cumulative = ZERO
    for day in generate_date_range(start, end):
        day_bills = bills_by_date.get(day, [])
        amount_due = sum((b.available_amount for b in day_bills), ZERO)
        cumulative += amount_due
        forecast.append(
            ForecastDay(
                date=day,
                bills_due=len(day_bills),
                amount_due=amount_due,
                cumulative_amount=cumulative,
            )
        )

    return PaymentForecast(
        start_date=start,
        end_date=end,
        bills_by_date=bills_by_date,
        forecast=forecast,
        total_bills=sum(len(v) for v in bills_by_date.values()),
        total_amount=cumulative,
        total_scheduled=total_scheduled,
    )

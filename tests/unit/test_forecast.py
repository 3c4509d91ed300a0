"""Unit tests for the payables cash-flow forecast"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

from ledger_gateway.domain.forecast import allocated_amounts, build_payment_forecast
from ledger_gateway.domain.models import PAYABLE, ScheduleItem, ScheduleView

START = date(2025, 7, 1)
END = date(2025, 7, 10)


def _schedule(bill_ids, status="draft", items=None):
    return ScheduleView(
        id=uuid.uuid4(),
        name="Run",
        scheduled_date=START,
        bill_ids=list(bill_ids),
        status=status,
        total_amount=Decimal("0"),
        items=items or [],
    )


def test_two_bills_due_on_same_day(make_entry):
    """500 + 300 due on day 5 of 10: day 5 carries both, cumulative holds afterwards"""
    day5 = START + timedelta(days=4)
    bills = [
        make_entry("500.00", day5, entry_type=PAYABLE),
        make_entry("300.00", day5, entry_type=PAYABLE),
    ]

    forecast = build_payment_forecast(bills, {}, START, END)

    assert len(forecast.forecast) == 10
    day = forecast.forecast[4]
    assert day.date == day5
    assert day.bills_due == 2
    assert day.amount_due == Decimal("800.00")
    assert [d.cumulative_amount for d in forecast.forecast[:4]] == [Decimal("0")] * 4
    assert all(d.cumulative_amount == Decimal("800.00") for d in forecast.forecast[4:])
    assert forecast.total_bills == 2
    assert list(forecast.bills_by_date) == [day5]


def test_daily_amounts_sum_to_final_cumulative(make_entry):
    bills = [
        make_entry("120.50", START, entry_type=PAYABLE),
        make_entry("80.25", START + timedelta(days=3), paid="20.25", entry_type=PAYABLE),
        make_entry("999.99", END, entry_type=PAYABLE),
    ]

    forecast = build_payment_forecast(bills, {}, START, END)

    assert sum(d.amount_due for d in forecast.forecast) == forecast.forecast[-1].cumulative_amount
    assert forecast.total_amount == Decimal("1180.49")


def test_partial_draft_allocation_reduces_available(make_entry):
    """A draft allocating 200 of a 500 bill leaves 300 to schedule"""
    bill = make_entry("500.00", START + timedelta(days=2), entry_type=PAYABLE)
    draft = _schedule([bill.id], items=[ScheduleItem(bill_id=bill.id, amount=Decimal("200.00"))])

    allocations = allocated_amounts([draft], [bill])
    forecast = build_payment_forecast([bill], allocations, START, END)

    [entry] = forecast.bills_by_date[bill.due_date]
    assert entry.amount_due == Decimal("500.00")
    assert entry.scheduled_amount == Decimal("200.00")
    assert entry.available_amount == Decimal("300.00")
    assert forecast.total_scheduled == Decimal("200.00")
    assert forecast.forecast[2].amount_due == Decimal("300.00")


def test_schedule_without_items_allocates_full_amount_due(make_entry):
    bill = make_entry("400.00", START, paid="100.00", entry_type=PAYABLE)

    allocations = allocated_amounts([_schedule([bill.id], status="confirmed")], [bill])

    assert allocations == {bill.id: Decimal("300.00")}


def test_listed_bill_without_item_allocates_full_amount_due(make_entry):
    partial = make_entry("500.00", START, entry_type=PAYABLE)
    whole = make_entry("300.00", START, entry_type=PAYABLE)
    run = _schedule([partial.id, whole.id], items=[ScheduleItem(partial.id, Decimal("200.00"))])

    allocations = allocated_amounts([run], [partial, whole])

    assert allocations == {partial.id: Decimal("200.00"), whole.id: Decimal("300.00")}


def test_cancelled_schedules_allocate_nothing(make_entry):
    bill = make_entry("400.00", START, entry_type=PAYABLE)
    cancelled = _schedule([bill.id], status="cancelled", items=[ScheduleItem(bill.id, Decimal("50"))])

    assert allocated_amounts([cancelled], [bill]) == {}


def test_overlapping_drafts_never_schedule_more_than_due(make_entry):
    """Drafts are not locked against each other; the forecast caps at amount due"""
    bill = make_entry("500.00", START, entry_type=PAYABLE)
    drafts = [
        _schedule([bill.id], items=[ScheduleItem(bill.id, Decimal("400.00"))]),
        _schedule([bill.id], items=[ScheduleItem(bill.id, Decimal("300.00"))]),
    ]

    forecast = build_payment_forecast([bill], allocated_amounts(drafts, [bill]), START, END)

    [entry] = forecast.bills_by_date[START]
    assert entry.scheduled_amount == Decimal("500.00")
    assert entry.available_amount == Decimal("0.00")


def test_closed_and_out_of_window_bills_are_excluded(make_entry):
    bills = [
        make_entry("100.00", START, status="paid", entry_type=PAYABLE),
        make_entry("100.00", START, status="voided", entry_type=PAYABLE),
        make_entry("100.00", START - timedelta(days=1), entry_type=PAYABLE),
        make_entry("100.00", END + timedelta(days=1), entry_type=PAYABLE),
    ]

    forecast = build_payment_forecast(bills, {}, START, END)

    assert forecast.total_bills == 0
    assert forecast.total_amount == Decimal("0")

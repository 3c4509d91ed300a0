"""Unit tests for customer risk scoring logic"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from ledger_gateway.domain.models import CustomerHistoryStats, EntryView, PaymentView
from ledger_gateway.domain.scoring import (
    analyze_customer_history,
    calculate_risk_score,
    determine_risk_level,
    infer_credit_terms,
)

AS_OF = date(2025, 6, 30)


def _history(make_entry, late_payments: int, outstanding: str):
    """10 monthly invoices of 1,500; `late_payments` settled 20 days late, the rest on time"""
    contact_id = uuid.uuid4()
    invoices, payments = [], []
    for i in range(10):
        due = AS_OF - timedelta(days=30 * (i + 1))
        invoice = make_entry("1500.00", due, paid="1500.00", status="paid", contact_id=contact_id)
        invoices.append(invoice)
        paid_on = due + timedelta(days=20) if i < late_payments else due - timedelta(days=2)
        payments.append(PaymentView(entry_id=invoice.id, amount=Decimal("1500.00"), paid_on=paid_on))

    if Decimal(outstanding) > 0:
        # Open invoice carrying the outstanding balance, not yet due
        invoices[-1] = make_entry(outstanding, AS_OF + timedelta(days=10), contact_id=contact_id)
        payments.pop()
    return invoices, payments


def test_late_payer_with_outstanding_scores_higher(make_entry):
    """3 late payments and 12,000 outstanding beats a clean customer"""
    risky = analyze_customer_history(*_history(make_entry, late_payments=3, outstanding="12000.00"), AS_OF)
    clean = analyze_customer_history(*_history(make_entry, late_payments=0, outstanding="0"), AS_OF)

    assert risky.num_late_payments == 3
    assert risky.avg_days_late == 20
    assert risky.total_outstanding == Decimal("12000.00")
    assert clean.num_late_payments == 0
    assert clean.total_outstanding == Decimal("0")
    assert risky.risk_score > clean.risk_score


def test_history_metrics():
    """Counts, largest outstanding, last payment and 90+ share"""
    contact_id = uuid.uuid4()

    def entry(total, paid, issued, due, status="awaiting_payment"):
        total, paid = Decimal(total), Decimal(paid)
        return EntryView(
            id=uuid.uuid4(),
            contact_id=contact_id,
            contact_name="Bluegum Cafe",
            number="INV",
            issue_date=issued,
            due_date=due,
            total=total,
            amount_paid=paid,
            amount_outstanding=total - paid,
            status=status,
        )

    paid_late = entry("400", "400", date(2025, 1, 1), date(2025, 1, 31), status="paid")
    very_old = entry("900", "0", date(2024, 12, 1), date(2024, 12, 31))
    recent = entry("200", "50", date(2025, 6, 1), date(2025, 7, 1))
    voided = entry("5000", "0", date(2025, 5, 1), date(2025, 5, 31), status="voided")
    payments = [
        PaymentView(entry_id=paid_late.id, amount=Decimal("400"), paid_on=date(2025, 2, 15)),
        PaymentView(entry_id=recent.id, amount=Decimal("50"), paid_on=date(2025, 6, 10)),
    ]

    stats = analyze_customer_history([paid_late, very_old, recent, voided], payments, AS_OF)

    assert stats.num_invoices == 3
    assert stats.num_late_payments == 1
    assert stats.avg_days_late == 15
    assert stats.max_days_late == (AS_OF - date(2024, 12, 31)).days
    assert stats.total_outstanding == Decimal("1050")
    assert stats.max_invoice_outstanding == Decimal("900")
    assert stats.last_payment_date == date(2025, 6, 10)
    assert stats.percent_invoices_90_plus == pytest.approx(100 / 3)
    assert stats.credit_terms_days == 30


def test_infer_credit_terms_uses_median(make_entry):
    due = date(2025, 5, 1)
    invoices = [
        make_entry("1", due, issue_date=due - timedelta(days=7)),
        make_entry("1", due, issue_date=due - timedelta(days=14)),
        make_entry("1", due, issue_date=due - timedelta(days=60)),
    ]
    assert infer_credit_terms(invoices) == 14
    assert infer_credit_terms([]) == 30


def test_risk_score_without_invoices_is_zero():
    stats = CustomerHistoryStats(
        num_invoices=0,
        num_late_payments=0,
        avg_days_late=0.0,
        max_days_late=0,
        percent_invoices_90_plus=0.0,
        total_outstanding=Decimal("0"),
        max_invoice_outstanding=Decimal("0"),
        total_billed_last_12_months=Decimal("0"),
        last_payment_date=None,
        credit_terms_days=30,
    )
    assert calculate_risk_score(stats, AS_OF) == 0.0


def test_risk_score_worst_case_is_one():
    stats = CustomerHistoryStats(
        num_invoices=4,
        num_late_payments=4,
        avg_days_late=120.0,
        max_days_late=200,
        percent_invoices_90_plus=100.0,
        total_outstanding=Decimal("8000"),
        max_invoice_outstanding=Decimal("2000"),
        total_billed_last_12_months=Decimal("4000"),
        last_payment_date=None,
        credit_terms_days=7,
    )
    assert calculate_risk_score(stats, AS_OF) == 1.0


@pytest.mark.parametrize(
    "score,level",
    [(0.0, "low"), (0.249, "low"), (0.25, "medium"), (0.5, "high"), (0.749, "high"), (0.75, "critical"), (1.0, "critical")],
)
def test_determine_risk_level(score, level):
    assert determine_risk_level(score) == level

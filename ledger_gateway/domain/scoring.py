"""Customer risk scoring - payment behaviour analysis over mirrored receivables"""

from datetime import date
from statistics import median
from typing import Dict, List
from uuid import UUID

from ledger_gateway.domain.ageing import classify_ageing_bucket, days_overdue
from ledger_gateway.domain.models import ZERO, CustomerHistoryStats, EntryView, PaymentView
from ledger_gateway.utils.date_utils import subtract_months

DEFAULT_CREDIT_TERMS_DAYS = 30
_EXCLUDED_STATUSES = {"voided", "cancelled"}


def infer_credit_terms(invoices: List[EntryView]) -> int:
    """Typical gap between issue and due date; falls back to 30 days"""
    terms = [(inv.due_date - inv.issue_date).days for inv in invoices if inv.due_date >= inv.issue_date]
    if not terms:
        return DEFAULT_CREDIT_TERMS_DAYS
    return int(median(terms))


def analyze_customer_history(
    invoices: List[EntryView],
    payments: List[PaymentView],
    as_of: date,
) -> CustomerHistoryStats:
    """
    Derive payment behaviour metrics for one customer.

    Requirements:
    - Late payment: fully settled invoice whose latest payment is after the due date
    - Unpaid overdue invoices count toward max days late, not late payments
    - 90+ share recomputed against as_of, never read from stored data
    """
    invoices = [inv for inv in invoices if inv.status not in _EXCLUDED_STATUSES]
    twelve_months_ago = subtract_months(as_of, 12)

    payments_by_entry: Dict[UUID, List[PaymentView]] = {}
    for payment in payments:
        payments_by_entry.setdefault(payment.entry_id, []).append(payment)

    last_payment_date = max((p.paid_on for p in payments), default=None)

    num_late_payments = 0
    total_days_late = 0
    max_days_late = 0
    total_outstanding = ZERO
    max_invoice_outstanding = ZERO
    total_billed = ZERO
    count_90_plus = 0

    for invoice in invoices:
        outstanding = invoice.amount_outstanding
        total_outstanding += outstanding
        max_invoice_outstanding = max(max_invoice_outstanding, outstanding)

        if invoice.issue_date > twelve_months_ago:
            total_billed += invoice.total

        if classify_ageing_bucket(invoice.due_date, outstanding, as_of) == "90+":
            count_90_plus += 1

        invoice_payments = payments_by_entry.get(invoice.id, [])
        if outstanding <= 0 and invoice_payments:
            settled_on = max(p.paid_on for p in invoice_payments)
            days_late = days_overdue(invoice.due_date, settled_on)
            if days_late > 0:
                num_late_payments += 1
                total_days_late += days_late
                max_days_late = max(max_days_late, days_late)
        elif outstanding > 0:
            # Still open: current lateness is relevant even though not yet a "late payment"
            max_days_late = max(max_days_late, days_overdue(invoice.due_date, as_of))

    num_invoices = len(invoices)
    stats = CustomerHistoryStats(
        num_invoices=num_invoices,
        num_late_payments=num_late_payments,
        avg_days_late=total_days_late / num_late_payments if num_late_payments else 0.0,
        max_days_late=max_days_late,
        percent_invoices_90_plus=(count_90_plus / num_invoices) * 100 if num_invoices else 0.0,
        total_outstanding=total_outstanding,
        max_invoice_outstanding=max_invoice_outstanding,
        total_billed_last_12_months=total_billed,
        last_payment_date=last_payment_date,
        credit_terms_days=infer_credit_terms(invoices),
    )
    stats.risk_score = calculate_risk_score(stats, as_of)
    return stats


def calculate_risk_score(stats: CustomerHistoryStats, as_of: date) -> float:
    """
    Calculate risk score from 0.0 (lowest risk) to 1.0 (highest risk).

    Scoring weights:
    - 30%: Late payment rate (late payments / invoices)
    - 20%: Average days late, capped at 90
    - 10%: Max days late, capped at 120
    - 20%: Share of invoices 90+ days overdue
    - 5%:  Credit terms (<14 days = 1.0, 14-30 = 0.5, longer = 0.0)
    - 5%:  Days since last payment, capped at 60 (no payment at all = 1.0)
    - 10%: Outstanding over amount billed in the last 12 months, capped at 1.0

    A customer with no invoices has no history and scores 0.0.
    """
    if stats.num_invoices == 0:
        return 0.0

    late_rate = stats.num_late_payments / stats.num_invoices
    avg_late_score = min(stats.avg_days_late, 90) / 90
    max_late_score = min(stats.max_days_late, 120) / 120
    percent_90_score = stats.percent_invoices_90_plus / 100

    if stats.credit_terms_days < 14:
        terms_score = 1.0
    elif stats.credit_terms_days <= 30:
        terms_score = 0.5
    else:
        terms_score = 0.0

    if stats.last_payment_date is not None:
        since = max((as_of - stats.last_payment_date).days, 0)
        last_payment_score = min(since, 60) / 60
    else:
        last_payment_score = 1.0

    if stats.total_billed_last_12_months > 0:
        outstanding_score = min(float(stats.total_outstanding / stats.total_billed_last_12_months), 1.0)
        outstanding_score = max(outstanding_score, 0.0)
    elif stats.total_outstanding > 0:
        outstanding_score = 1.0
    else:
        outstanding_score = 0.0

    score = (
        0.3 * late_rate
        + 0.2 * avg_late_score
        + 0.1 * max_late_score
        + 0.2 * percent_90_score
        + 0.05 * terms_score
        + 0.05 * last_payment_score
        + 0.1 * outstanding_score
    )

    return round(score, 3)


def determine_risk_level(score: float) -> str:
    """
    Map risk score to a contact risk classification.

    Score bands:
    - 0.0  - 0.25: low
    - 0.25 - 0.5:  medium
    - 0.5  - 0.75: high
    - 0.75+:       critical
    """
    if score < 0.25:
        return "low"
    elif score < 0.5:
        return "medium"
    elif score < 0.75:
        return "high"
    else:
        return "critical"

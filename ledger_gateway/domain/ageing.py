"""Receivables ageing - bucket classification and report aggregation"""

from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from ledger_gateway.domain.models import (
    ZERO,
    AgeingBucket,
    AgeingReport,
    ContactAgeing,
    EntryView,
)

# (key, report label, min days, max days); max None means open-ended
BUCKETS = [
    ("0-30", "0-30 days", 0, 30),
    ("31-60", "31-60 days", 31, 60),
    ("61-90", "61-90 days", 61, 90),
    ("90+", "90+ days", 91, None),
]

_CONTACT_BUCKET_FIELDS = {
    "0-30": "current",
    "31-60": "thirty_days",
    "61-90": "sixty_days",
    "90+": "ninety_plus",
}


def days_overdue(due_date: date, as_of: date) -> int:
    """Whole days between due date and reference date (negative if not yet due)"""
    return (as_of - due_date).days


def classify_ageing_bucket(due_date: date, amount_outstanding: Decimal, as_of: date) -> Optional[str]:
    """
    Classify an outstanding entry into an ageing bucket.

    Buckets are disjoint and cover every daysOverdue >= 0:
    - 0-30, 31-60, 61-90, 90+

    Returns None for settled entries (outstanding <= 0) and entries not yet due.
    """
    if amount_outstanding <= 0:
        return None

    overdue = days_overdue(due_date, as_of)
    if overdue < 0:
        return None
    if overdue <= 30:
        return "0-30"
    if overdue <= 60:
        return "31-60"
    if overdue <= 90:
        return "61-90"
    return "90+"


def build_ageing_report(entries: Iterable[EntryView], as_of: date) -> AgeingReport:
    """
    Aggregate outstanding receivables by counterparty and ageing bucket.

    Contacts are sorted by total outstanding, largest first.
    """
    buckets: Dict[str, AgeingBucket] = {
        key: AgeingBucket(label=label, min_days=lo, max_days=hi) for key, label, lo, hi in BUCKETS
    }
    contacts: Dict[UUID, ContactAgeing] = {}

    for entry in entries:
        bucket_key = classify_ageing_bucket(entry.due_date, entry.amount_outstanding, as_of)
        if bucket_key is None:
            continue

        outstanding = entry.amount_outstanding
        contact = contacts.get(entry.contact_id)
        if contact is None:
            contact = ContactAgeing(contact_id=entry.contact_id, contact_name=entry.contact_name)
            contacts[entry.contact_id] = contact

        contact.total_outstanding += outstanding
        contact.invoice_count += 1
        contact.oldest_invoice_days = max(contact.oldest_invoice_days, days_overdue(entry.due_date, as_of))

        field_name = _CONTACT_BUCKET_FIELDS[bucket_key]
        setattr(contact.buckets, field_name, getattr(contact.buckets, field_name) + outstanding)

        buckets[bucket_key].total_outstanding += outstanding
        buckets[bucket_key].invoice_count += 1

    ordered: List[ContactAgeing] = sorted(contacts.values(), key=lambda c: c.total_outstanding, reverse=True)

    return AgeingReport(
        as_of=as_of,
        total_outstanding=sum((c.total_outstanding for c in ordered), ZERO),
        invoice_count=sum(c.invoice_count for c in ordered),
        contact_count=len(ordered),
        buckets=[buckets[key] for key, _, _, _ in BUCKETS],
        contacts=ordered,
    )

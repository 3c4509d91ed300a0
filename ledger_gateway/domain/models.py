"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

ZERO = Decimal("0")

RECEIVABLE = "ACCREC"  # Invoice raised to a customer
PAYABLE = "ACCPAY"  # Bill received from a supplier


# --- Records mapped from the ledger platform ---


@dataclass
class ContactRecord:
    """Customer or supplier as reported by the ledger platform"""

    external_ref: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_number: Optional[str] = None
    is_customer: bool = False
    is_supplier: bool = False
    status: str = "active"
    bank_account_details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LedgerEntryRecord:
    """Invoice (ACCREC) or bill (ACCPAY) as reported by the ledger platform"""

    external_ref: str
    entry_type: str
    contact_ref: str
    number: str
    issue_date: date
    due_date: date
    total: Decimal
    amount_paid: Decimal = ZERO
    amount_credited: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    currency: str = "AUD"
    status: str = "awaiting_payment"
    reference: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount_outstanding(self) -> Decimal:
        # Not clamped: rounding on the platform side can leave small negatives
        return self.total - self.amount_paid - self.amount_credited


@dataclass
class PaymentRecord:
    """Payment applied to a single invoice or bill"""

    external_ref: str
    entry_ref: str
    amount: Decimal
    paid_on: date
    method: Optional[str] = None
    reference: Optional[str] = None
    entry_type: Optional[str] = None  # ACCREC | ACCPAY when the payload says
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Allocation:
    """Part of a credit note, overpayment or prepayment applied to an entry"""

    entry_ref: str
    amount: Decimal
    allocated_on: Optional[date] = None
    entry_type: Optional[str] = None


@dataclass
class AdjustmentRecord:
    """Credit note, overpayment or prepayment"""

    kind: str  # credit_note | overpayment | prepayment
    external_ref: str
    contact_ref: Optional[str]
    issue_date: date
    total: Decimal
    remaining_credit: Decimal
    allocations: List[Allocation] = field(default_factory=list)
    number: Optional[str] = None
    currency: str = "AUD"
    status: str = "authorised"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount_allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)


# --- Read models consumed by the analytics engine ---


@dataclass
class EntryView:
    """Mirrored ledger entry joined with its contact"""

    id: UUID
    contact_id: UUID
    contact_name: str
    number: str
    issue_date: date
    due_date: date
    total: Decimal
    amount_paid: Decimal
    amount_outstanding: Decimal
    status: str
    entry_type: str = RECEIVABLE
    risk_level: str = "low"


@dataclass
class PaymentView:
    """Mirrored payment"""

    entry_id: UUID
    amount: Decimal
    paid_on: date


@dataclass
class ScheduleItem:
    """Partial allocation of a payment run to one bill"""

    bill_id: UUID
    amount: Decimal


@dataclass
class ScheduleView:
    """Stored payment run as seen by the forecast engine"""

    id: UUID
    name: str
    scheduled_date: date
    bill_ids: List[UUID]
    status: str
    total_amount: Decimal
    items: List[ScheduleItem] = field(default_factory=list)


# --- Ageing ---


@dataclass
class AgeingBucket:
    """Portfolio-wide total for one day range"""

    label: str
    min_days: int
    max_days: Optional[int]
    total_outstanding: Decimal = ZERO
    invoice_count: int = 0


@dataclass
class ContactBuckets:
    current: Decimal = ZERO  # 0-30 days
    thirty_days: Decimal = ZERO  # 31-60 days
    sixty_days: Decimal = ZERO  # 61-90 days
    ninety_plus: Decimal = ZERO  # 90+ days


@dataclass
class ContactAgeing:
    """Outstanding receivables of a single counterparty"""

    contact_id: UUID
    contact_name: str
    total_outstanding: Decimal = ZERO
    invoice_count: int = 0
    buckets: ContactBuckets = field(default_factory=ContactBuckets)
    oldest_invoice_days: int = 0


@dataclass
class AgeingReport:
    as_of: date
    total_outstanding: Decimal
    invoice_count: int
    contact_count: int
    buckets: List[AgeingBucket]
    contacts: List[ContactAgeing]


# --- Customer history ---


@dataclass
class CustomerHistoryStats:
    """Payment behaviour metrics used for risk scoring"""

    num_invoices: int
    num_late_payments: int
    avg_days_late: float
    max_days_late: int
    percent_invoices_90_plus: float
    total_outstanding: Decimal
    max_invoice_outstanding: Decimal
    total_billed_last_12_months: Decimal
    last_payment_date: Optional[date]
    credit_terms_days: int
    risk_score: float = 0.0


# --- Payables forecast ---


@dataclass
class ForecastBill:
    """Bill within the forecast window with its schedulable remainder"""

    bill: EntryView
    amount_due: Decimal
    scheduled_amount: Decimal
    available_amount: Decimal


@dataclass
class ForecastDay:
    date: date
    bills_due: int
    amount_due: Decimal
    cumulative_amount: Decimal


@dataclass
class PaymentForecast:
    start_date: date
    end_date: date
    bills_by_date: Dict[date, List[ForecastBill]]
    forecast: List[ForecastDay]
    total_bills: int
    total_amount: Decimal
    total_scheduled: Decimal


# --- Payment schedules ---


@dataclass
class ScheduleRequest:
    """User request to create a payment run"""

    name: str
    scheduled_date: Optional[date]
    bill_ids: List[UUID]
    items: List[ScheduleItem] = field(default_factory=list)
    notes: Optional[str] = None
    total_amount: Optional[Decimal] = None


@dataclass
class ScheduleDraft:
    """Validated payment run ready to persist"""

    name: str
    scheduled_date: date
    bill_ids: List[UUID]
    items: List[ScheduleItem]
    total_amount: Decimal
    bill_count: int
    risk_summary: Dict[str, int]
    notes: Optional[str] = None


# --- Sync reporting ---


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RecordOutcome:
    stage: str
    external_ref: Optional[str]
    outcome: UpsertOutcome
    error: Optional[str] = None


@dataclass
class StageReport:
    """Fold of every record outcome within one sync stage"""

    stage: str
    outcomes: List[RecordOutcome] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, outcome: UpsertOutcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    def counts(self) -> Dict[str, int]:
        return {o.value: self.count(o) for o in UpsertOutcome}


@dataclass
class SyncReport:
    user_id: str
    tenant_id: str
    stages: List[StageReport] = field(default_factory=list)

    @property
    def failures(self) -> List[Dict[str, Optional[str]]]:
        failures: List[Dict[str, Optional[str]]] = []
        for stage in self.stages:
            if stage.error:
                failures.append({"stage": stage.stage, "externalRef": None, "error": stage.error})
            for o in stage.outcomes:
                if o.outcome == UpsertOutcome.FAILED:
                    failures.append({"stage": stage.stage, "externalRef": o.external_ref, "error": o.error})
        return failures

    @property
    def success(self) -> bool:
        return not self.failures

    def counts(self) -> Dict[str, Dict[str, int]]:
        return {stage.stage: stage.counts() for stage in self.stages}

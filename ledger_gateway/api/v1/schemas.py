"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either spelling on input"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Ageing ---


class AgeingBucketSchema(CamelModel):
    label: str
    min_days: int
    max_days: Optional[int] = None
    total_outstanding: float
    invoice_count: int


class ContactBucketsSchema(CamelModel):
    current: float
    thirty_days: float
    sixty_days: float
    ninety_plus: float


class ContactAgeingSchema(CamelModel):
    contact_id: str
    contact_name: str
    total_outstanding: float
    invoice_count: int
    buckets: ContactBucketsSchema
    oldest_invoice_days: int


class AgeingSummary(CamelModel):
    total_outstanding: float
    invoice_count: int
    contact_count: int


class AgeingReportResponse(CamelModel):
    """Response for GET /v1/ageing-report"""

    as_of: date
    summary: AgeingSummary
    buckets: List[AgeingBucketSchema]
    contacts: List[ContactAgeingSchema]


# --- Payment schedules ---


class ScheduleItemSchema(CamelModel):
    """Partial allocation of a payment run to one bill"""

    bill_id: UUID
    amount: Decimal


class ScheduleItemOut(CamelModel):
    bill_id: str
    amount: float


class ScheduleCreateRequest(CamelModel):
    """Request body for POST /v1/payment-schedule"""

    name: str = Field(..., description="Payment run name")
    scheduled_date: date
    bill_ids: List[UUID]
    items: List[ScheduleItemSchema] = Field(default_factory=list)
    notes: Optional[str] = None
    total_amount: Optional[Decimal] = None


class ScheduleStatusRequest(CamelModel):
    """Request body for POST /v1/payment-schedule/{id}/status"""

    status: str


class ScheduleResponse(CamelModel):
    id: str
    name: str
    scheduled_date: date
    bill_ids: List[str]
    items: List[ScheduleItemOut] = Field(default_factory=list)
    total_amount: float
    bill_count: int
    risk_summary: Dict[str, int] = Field(default_factory=dict)
    notes: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class ForecastBillSchema(CamelModel):
    id: str
    number: str
    contact_id: str
    contact_name: str
    due_date: date
    status: str
    risk_level: str
    amount: float
    scheduled_amount: float
    available_amount: float


class ForecastDaySchema(CamelModel):
    day: date = Field(..., alias="date")
    bills_due: int
    amount_due: float
    cumulative_amount: float


class ForecastSummary(CamelModel):
    start_date: date
    end_date: date
    total_bills: int
    total_amount: float
    total_scheduled: float


class PaymentScheduleResponse(CamelModel):
    """Response for GET /v1/payment-schedule"""

    bills_by_date: Dict[str, List[ForecastBillSchema]]
    forecast: List[ForecastDaySchema]
    schedules: List[ScheduleResponse]
    summary: ForecastSummary


# --- Sync ---


class SyncFailureSchema(CamelModel):
    stage: str
    external_ref: Optional[str] = None
    error: Optional[str] = None


class SyncResponse(CamelModel):
    """Response for POST /v1/sync"""

    success: bool
    tenant_id: str
    counts: Dict[str, Dict[str, int]]
    failures: List[SyncFailureSchema]


class SyncStatusSchema(CamelModel):
    tenant_id: str
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    record_counts: Optional[Dict[str, Dict[str, int]]] = None
    last_error: Optional[str] = None


class SyncStatusResponse(CamelModel):
    """Response for GET /v1/sync/status"""

    statuses: List[SyncStatusSchema]


# --- Customers ---


class CustomerHistorySchema(CamelModel):
    window_start: date
    window_end: date
    num_invoices: int
    num_late_payments: int
    avg_days_late: float
    max_days_late: int
    percent_invoices_90_plus: float
    total_outstanding: float
    max_invoice_outstanding: float
    total_billed_last_12_months: float
    last_payment_date: Optional[date] = None
    credit_terms_days: int
    risk_score: float
    computed_at: datetime


class CustomerHistoryResponse(CamelModel):
    """Response for GET /v1/customers/{contact_id}/history"""

    contact_id: str
    contact_name: str
    risk_level: str
    bank_details_changed: bool
    history: Optional[CustomerHistorySchema] = None

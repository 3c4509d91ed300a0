"""SQLAlchemy ORM models for the ledger mirror, derived analytics and payment runs"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, declared_attr, relationship
from sqlalchemy.sql import func

Base = declarative_base()

Money = Numeric(14, 2)


class LedgerConnection(Base):
    """Link between a local user and one ledger platform tenant"""

    __tablename__ = "ledger_connection"
    __table_args__ = (UniqueConstraint("user_id", "tenant_id", name="uq_connection_user_tenant"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    tenant_id = Column(Text, nullable=False)
    tenant_name = Column(Text, nullable=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Contact(Base):
    """Customer or supplier mirrored from the ledger platform"""

    __tablename__ = "contact"
    __table_args__ = (UniqueConstraint("owner_id", "external_ref", name="uq_contact_owner_ref"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    external_ref = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    tax_number = Column(String(50), nullable=True)
    is_customer = Column(Boolean, nullable=False, default=False)
    is_supplier = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="active")
    risk_level = Column(String(20), nullable=False, default="low")  # low, medium, high, critical
    bank_account_details = Column(Text, nullable=True)
    bank_details_changed = Column(Boolean, nullable=False, default=False)
    extra_data = Column("metadata", JSON, nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    entries = relationship("LedgerEntry", back_populates="contact")


class LedgerEntry(Base):
    """Invoice (ACCREC) or bill (ACCPAY)"""

    __tablename__ = "ledger_entry"
    __table_args__ = (
        UniqueConstraint("owner_id", "entry_type", "external_ref", name="uq_ledger_entry_owner_type_ref"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    entry_type = Column(String(10), nullable=False)
    external_ref = Column(String(255), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contact.id"), nullable=False, index=True)
    number = Column(String(50), nullable=False)
    reference = Column(String(255), nullable=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="AUD")
    subtotal = Column(Money, nullable=False, default=0)
    tax = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False)
    amount_paid = Column(Money, nullable=False, default=0)
    amount_credited = Column(Money, nullable=False, default=0)
    amount_outstanding = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="awaiting_payment", index=True)
    extra_data = Column("metadata", JSON, nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    contact = relationship("Contact", back_populates="entries")


class Payment(Base):
    """Payment against a ledger entry; immutable once recorded"""

    __tablename__ = "payment"
    __table_args__ = (UniqueConstraint("owner_id", "external_ref", name="uq_payment_owner_ref"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    external_ref = Column(String(255), nullable=False)
    entry_id = Column(Uuid, ForeignKey("ledger_entry.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Uuid, ForeignKey("contact.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    paid_on = Column(Date, nullable=False)
    method = Column(String(50), nullable=True)
    reference = Column(String(255), nullable=True)
    extra_data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AdjustmentMixin:
    """Shared shape of credit notes, overpayments and prepayments"""

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    external_ref = Column(String(255), nullable=False)
    number = Column(String(50), nullable=True)
    issue_date = Column(Date, nullable=False)
    currency = Column(String(3), nullable=False, default="AUD")
    total = Column(Money, nullable=False)
    amount_allocated = Column(Money, nullable=False, default=0)
    remaining_credit = Column(Money, nullable=False, default=0)
    status = Column(String(20), nullable=False)
    extra_data = Column("metadata", JSON, nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @declared_attr
    def contact_id(cls):
        return Column(Uuid, ForeignKey("contact.id"), nullable=True)

    @declared_attr
    def entry_id(cls):
        # First mirrored entry the adjustment is allocated to
        return Column(Uuid, ForeignKey("ledger_entry.id", ondelete="CASCADE"), nullable=False, index=True)

    @declared_attr
    def __table_args__(cls):
        return (UniqueConstraint("owner_id", "external_ref", name=f"uq_{cls.__tablename__}_owner_ref"),)


class CreditNote(AdjustmentMixin, Base):
    __tablename__ = "credit_note"


class Overpayment(AdjustmentMixin, Base):
    __tablename__ = "overpayment"


class Prepayment(AdjustmentMixin, Base):
    __tablename__ = "prepayment"


class CustomerHistory(Base):
    """Per-contact payment behaviour snapshot, recomputed every sync"""

    __tablename__ = "customer_history"
    __table_args__ = (UniqueConstraint("owner_id", "contact_id", name="uq_customer_history_owner_contact"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    contact_id = Column(Uuid, ForeignKey("contact.id", ondelete="CASCADE"), nullable=False)
    window_start = Column(Date, nullable=False)
    window_end = Column(Date, nullable=False)
    num_invoices = Column(Integer, nullable=False, default=0)
    num_late_payments = Column(Integer, nullable=False, default=0)
    avg_days_late = Column(Float, nullable=False, default=0.0)
    max_days_late = Column(Integer, nullable=False, default=0)
    percent_invoices_90_plus = Column(Float, nullable=False, default=0.0)
    total_outstanding = Column(Money, nullable=False, default=0)
    max_invoice_outstanding = Column(Money, nullable=False, default=0)
    total_billed_last_12_months = Column(Money, nullable=False, default=0)
    last_payment_date = Column(Date, nullable=True)
    credit_terms_days = Column(Integer, nullable=False, default=30)
    risk_score = Column(Float, nullable=False, default=0.0)
    computed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentSchedule(Base):
    """User-authored payment run over one or more bills"""

    __tablename__ = "payment_schedule"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    bill_ids = Column(JSON, nullable=False)  # ["<uuid>", ...]
    items = Column(JSON, nullable=True)  # [{"billId": "<uuid>", "amount": "200.00"}]
    total_amount = Column(Money, nullable=False)
    bill_count = Column(Integer, nullable=False)
    risk_summary = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class SyncStatus(Base):
    """Last sync attempt per tenant; observability only"""

    __tablename__ = "sync_status"
    __table_args__ = (UniqueConstraint("owner_id", "tenant_id", name="uq_sync_status_owner_tenant"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    tenant_id = Column(Text, nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_failure_at = Column(DateTime(timezone=True), nullable=True)
    record_counts = Column(JSON, nullable=True)
    last_error = Column(Text, nullable=True)

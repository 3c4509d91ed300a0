"""Data access layer for the ledger mirror, analytics snapshots and payment runs"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Table, and_, case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.domain.models import (
    PAYABLE,
    RECEIVABLE,
    AdjustmentRecord,
    ContactRecord,
    CustomerHistoryStats,
    EntryView,
    LedgerEntryRecord,
    PaymentRecord,
    PaymentView,
    ScheduleDraft,
    ScheduleItem,
    ScheduleView,
    UpsertOutcome,
)
from ledger_gateway.infrastructure.clients.oauth import TokenSet
from ledger_gateway.infrastructure.database.models import (
    Contact,
    CreditNote,
    CustomerHistory,
    LedgerConnection,
    LedgerEntry,
    Overpayment,
    Payment,
    PaymentSchedule,
    Prepayment,
    SyncStatus,
)
from ledger_gateway.utils.date_utils import utcnow

CLOSED_STATUSES = ("paid", "voided", "cancelled")

ADJUSTMENT_MODELS = {
    "credit_note": CreditNote,
    "overpayment": Overpayment,
    "prepayment": Prepayment,
}


def dialect_insert(db: AsyncSession, table: Table):
    """INSERT construct supporting ON CONFLICT for the bound dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


def _outcome(revision: int) -> UpsertOutcome:
    return UpsertOutcome.CREATED if revision == 1 else UpsertOutcome.UPDATED


class MirrorRepository:
    """Atomic upserts of platform records, keyed by (owner, external reference)"""

    def __init__(self, db: AsyncSession, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    async def upsert_contact(self, record: ContactRecord) -> Tuple[uuid.UUID, UpsertOutcome]:
        """Insert-or-update; flags (never clears) a bank detail change"""
        table = Contact.__table__
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(),
            owner_id=self.owner_id,
            external_ref=record.external_ref,
            name=record.name,
            email=record.email,
            phone=record.phone,
            tax_number=record.tax_number,
            is_customer=record.is_customer,
            is_supplier=record.is_supplier,
            status=record.status,
            risk_level="low",
            bank_account_details=record.bank_account_details,
            bank_details_changed=False,
            metadata=record.metadata,
            revision=1,
        )
        excluded = stmt.excluded
        bank_changed = case(
            (
                and_(
                    table.c.bank_account_details.is_not(None),
                    excluded["bank_account_details"].is_not(None),
                    table.c.bank_account_details != excluded["bank_account_details"],
                ),
                True,
            ),
            else_=table.c.bank_details_changed,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.owner_id, table.c.external_ref],
            set_={
                "name": excluded["name"],
                "email": excluded["email"],
                "phone": excluded["phone"],
                "tax_number": excluded["tax_number"],
                "is_customer": excluded["is_customer"],
                "is_supplier": excluded["is_supplier"],
                "status": excluded["status"],
                "bank_details_changed": bank_changed,
                "bank_account_details": excluded["bank_account_details"],
                "metadata": excluded["metadata"],
                "revision": table.c.revision + 1,
                "updated_at": func.now(),
            },
        ).returning(table.c.id, table.c.revision)

        row = (await self.db.execute(stmt)).one()
        return row.id, _outcome(row.revision)

    async def upsert_ledger_entry(
        self, record: LedgerEntryRecord, contact_id: uuid.UUID
    ) -> Tuple[uuid.UUID, UpsertOutcome]:
        """Insert-or-update; identity fields are only written on first sight"""
        table = LedgerEntry.__table__
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(),
            owner_id=self.owner_id,
            entry_type=record.entry_type,
            external_ref=record.external_ref,
            contact_id=contact_id,
            number=record.number,
            reference=record.reference,
            issue_date=record.issue_date,
            due_date=record.due_date,
            currency=record.currency,
            subtotal=record.subtotal,
            tax=record.tax,
            total=record.total,
            amount_paid=record.amount_paid,
            amount_credited=record.amount_credited,
            amount_outstanding=record.amount_outstanding,
            status=record.status,
            metadata=record.metadata,
            revision=1,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.owner_id, table.c.entry_type, table.c.external_ref],
            set_={
                "reference": excluded["reference"],
                "due_date": excluded["due_date"],
                "subtotal": excluded["subtotal"],
                "tax": excluded["tax"],
                "total": excluded["total"],
                "amount_paid": excluded["amount_paid"],
                "amount_credited": excluded["amount_credited"],
                "amount_outstanding": excluded["amount_outstanding"],
                "status": excluded["status"],
                "metadata": excluded["metadata"],
                "revision": table.c.revision + 1,
                "updated_at": func.now(),
            },
        ).returning(table.c.id, table.c.revision)

        row = (await self.db.execute(stmt)).one()
        return row.id, _outcome(row.revision)

    async def insert_payment(
        self, record: PaymentRecord, entry_id: uuid.UUID, contact_id: uuid.UUID
    ) -> Tuple[Optional[uuid.UUID], UpsertOutcome]:
        """Insert-or-ignore; payments are immutable facts"""
        table = Payment.__table__
        stmt = (
            dialect_insert(self.db, table)
            .values(
                id=uuid.uuid4(),
                owner_id=self.owner_id,
                external_ref=record.external_ref,
                entry_id=entry_id,
                contact_id=contact_id,
                amount=record.amount,
                paid_on=record.paid_on,
                method=record.method,
                reference=record.reference,
                metadata=record.metadata,
            )
            .on_conflict_do_nothing(index_elements=[table.c.owner_id, table.c.external_ref])
            .returning(table.c.id)
        )

        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None, UpsertOutcome.SKIPPED
        return row.id, UpsertOutcome.CREATED

    async def upsert_adjustment(
        self,
        record: AdjustmentRecord,
        entry_id: uuid.UUID,
        contact_id: Optional[uuid.UUID],
    ) -> Tuple[uuid.UUID, UpsertOutcome]:
        """Insert-or-update a credit note, overpayment or prepayment"""
        table = ADJUSTMENT_MODELS[record.kind].__table__
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(),
            owner_id=self.owner_id,
            external_ref=record.external_ref,
            contact_id=contact_id,
            entry_id=entry_id,
            number=record.number,
            issue_date=record.issue_date,
            currency=record.currency,
            total=record.total,
            amount_allocated=record.amount_allocated,
            remaining_credit=record.remaining_credit,
            status=record.status,
            metadata=record.metadata,
            revision=1,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.owner_id, table.c.external_ref],
            set_={
                "total": excluded["total"],
                "amount_allocated": excluded["amount_allocated"],
                "remaining_credit": excluded["remaining_credit"],
                "status": excluded["status"],
                "metadata": excluded["metadata"],
                "revision": table.c.revision + 1,
                "updated_at": func.now(),
            },
        ).returning(table.c.id, table.c.revision)

        row = (await self.db.execute(stmt)).one()
        return row.id, _outcome(row.revision)

    async def contact_ref_map(self) -> Dict[str, uuid.UUID]:
        """External contact reference -> local contact id"""
        result = await self.db.execute(
            select(Contact.external_ref, Contact.id).where(Contact.owner_id == self.owner_id)
        )
        return {ref: contact_id for ref, contact_id in result.all()}

    async def entry_ref_map(self) -> Dict[Tuple[str, str], Tuple[uuid.UUID, uuid.UUID]]:
        """(entry type, external reference) -> (local entry id, local contact id)"""
        result = await self.db.execute(
            select(LedgerEntry.entry_type, LedgerEntry.external_ref, LedgerEntry.id, LedgerEntry.contact_id).where(
                LedgerEntry.owner_id == self.owner_id
            )
        )
        return {
            (entry_type, ref): (entry_id, contact_id) for entry_type, ref, entry_id, contact_id in result.all()
        }

    async def list_contacts(self) -> List[Contact]:
        result = await self.db.execute(
            select(Contact).where(Contact.owner_id == self.owner_id).order_by(Contact.name)
        )
        return list(result.scalars().all())

    # --- Read models for analytics ---

    def _entry_query(self, entry_type: str):
        return (
            select(LedgerEntry, Contact)
            .join(Contact, LedgerEntry.contact_id == Contact.id)
            .where(LedgerEntry.owner_id == self.owner_id, LedgerEntry.entry_type == entry_type)
        )

    @staticmethod
    def _to_view(entry: LedgerEntry, contact: Contact) -> EntryView:
        return EntryView(
            id=entry.id,
            contact_id=contact.id,
            contact_name=contact.name,
            number=entry.number,
            issue_date=entry.issue_date,
            due_date=entry.due_date,
            total=entry.total,
            amount_paid=entry.amount_paid,
            amount_outstanding=entry.amount_outstanding,
            status=entry.status,
            entry_type=entry.entry_type,
            risk_level=contact.risk_level,
        )

    async def list_receivables_due(self, as_of: date) -> List[EntryView]:
        """Open invoices due on or before as_of"""
        stmt = self._entry_query(RECEIVABLE).where(
            LedgerEntry.status.not_in(CLOSED_STATUSES + ("draft",)),
            LedgerEntry.due_date <= as_of,
        )
        result = await self.db.execute(stmt.order_by(LedgerEntry.due_date))
        return [self._to_view(entry, contact) for entry, contact in result.all()]

    async def list_bills_due(self, start: date, end: date) -> List[EntryView]:
        """Unpaid, uncancelled bills due within [start, end]"""
        stmt = self._entry_query(PAYABLE).where(
            LedgerEntry.status.not_in(CLOSED_STATUSES),
            LedgerEntry.due_date >= start,
            LedgerEntry.due_date <= end,
        )
        result = await self.db.execute(stmt.order_by(LedgerEntry.due_date))
        return [self._to_view(entry, contact) for entry, contact in result.all()]

    async def get_bills(self, bill_ids: Iterable[uuid.UUID]) -> List[EntryView]:
        """Requester's bills among bill_ids; foreign or unknown ids are simply absent"""
        ids = list(bill_ids)
        if not ids:
            return []
        stmt = self._entry_query(PAYABLE).where(LedgerEntry.id.in_(ids))
        result = await self.db.execute(stmt)
        return [self._to_view(entry, contact) for entry, contact in result.all()]

    async def receivables_by_contact(self) -> Dict[uuid.UUID, List[EntryView]]:
        result = await self.db.execute(self._entry_query(RECEIVABLE))
        grouped: Dict[uuid.UUID, List[EntryView]] = {}
        for entry, contact in result.all():
            grouped.setdefault(contact.id, []).append(self._to_view(entry, contact))
        return grouped

    async def payments_by_contact(self) -> Dict[uuid.UUID, List[PaymentView]]:
        result = await self.db.execute(select(Payment).where(Payment.owner_id == self.owner_id))
        grouped: Dict[uuid.UUID, List[PaymentView]] = {}
        for payment in result.scalars().all():
            grouped.setdefault(payment.contact_id, []).append(
                PaymentView(entry_id=payment.entry_id, amount=payment.amount, paid_on=payment.paid_on)
            )
        return grouped


class CustomerHistoryRepository:
    """Repository for per-contact history snapshots"""

    def __init__(self, db: AsyncSession, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    async def upsert(
        self,
        contact_id: uuid.UUID,
        stats: CustomerHistoryStats,
        window_start: date,
        window_end: date,
        risk_level: str,
    ) -> None:
        """Replace the contact's snapshot and refresh its risk classification"""
        table = CustomerHistory.__table__
        values = {
            "window_start": window_start,
            "window_end": window_end,
            "num_invoices": stats.num_invoices,
            "num_late_payments": stats.num_late_payments,
            "avg_days_late": stats.avg_days_late,
            "max_days_late": stats.max_days_late,
            "percent_invoices_90_plus": stats.percent_invoices_90_plus,
            "total_outstanding": stats.total_outstanding,
            "max_invoice_outstanding": stats.max_invoice_outstanding,
            "total_billed_last_12_months": stats.total_billed_last_12_months,
            "last_payment_date": stats.last_payment_date,
            "credit_terms_days": stats.credit_terms_days,
            "risk_score": stats.risk_score,
            "computed_at": utcnow(),
        }
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(), owner_id=self.owner_id, contact_id=contact_id, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.owner_id, table.c.contact_id],
            set_={key: stmt.excluded[key] for key in values},
        )
        await self.db.execute(stmt)
        await self.db.execute(
            update(Contact)
            .where(Contact.id == contact_id, Contact.owner_id == self.owner_id)
            .values(risk_level=risk_level)
        )

    async def contact_ids(self) -> set:
        """Contacts that already have a snapshot"""
        result = await self.db.execute(
            select(CustomerHistory.contact_id).where(CustomerHistory.owner_id == self.owner_id)
        )
        return set(result.scalars().all())

    async def get(self, contact_id: uuid.UUID) -> Optional[Tuple[Contact, Optional[CustomerHistory]]]:
        """Contact with its latest snapshot, or None for an unknown contact"""
        result = await self.db.execute(
            select(Contact, CustomerHistory)
            .outerjoin(CustomerHistory, CustomerHistory.contact_id == Contact.id)
            .where(Contact.id == contact_id, Contact.owner_id == self.owner_id)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]


class ScheduleRepository:
    """Repository for payment runs"""

    def __init__(self, db: AsyncSession, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    async def create(self, draft: ScheduleDraft) -> PaymentSchedule:
        """Persist a validated payment run as a draft"""
        schedule = PaymentSchedule(
            owner_id=self.owner_id,
            name=draft.name,
            scheduled_date=draft.scheduled_date,
            bill_ids=[str(bill_id) for bill_id in draft.bill_ids],
            items=[{"billId": str(i.bill_id), "amount": str(i.amount)} for i in draft.items] or None,
            total_amount=draft.total_amount,
            bill_count=draft.bill_count,
            risk_summary=draft.risk_summary,
            notes=draft.notes,
            status="draft",
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        self.db.add(schedule)
        await self.db.flush()
        return schedule

    async def get(self, schedule_id: uuid.UUID) -> Optional[PaymentSchedule]:
        result = await self.db.execute(
            select(PaymentSchedule).where(
                PaymentSchedule.id == schedule_id, PaymentSchedule.owner_id == self.owner_id
            )
        )
        return result.scalars().first()

    async def list(self, statuses: Optional[Iterable[str]] = None) -> List[PaymentSchedule]:
        stmt = select(PaymentSchedule).where(PaymentSchedule.owner_id == self.owner_id)
        if statuses is not None:
            stmt = stmt.where(PaymentSchedule.status.in_(list(statuses)))
        result = await self.db.execute(stmt.order_by(PaymentSchedule.scheduled_date))
        return list(result.scalars().all())

    async def set_status(self, schedule: PaymentSchedule, status: str) -> PaymentSchedule:
        schedule.status = status
        schedule.updated_at = utcnow()
        await self.db.flush()
        return schedule

    @staticmethod
    def to_view(schedule: PaymentSchedule) -> ScheduleView:
        return ScheduleView(
            id=schedule.id,
            name=schedule.name,
            scheduled_date=schedule.scheduled_date,
            bill_ids=[uuid.UUID(bill_id) for bill_id in schedule.bill_ids],
            status=schedule.status,
            total_amount=schedule.total_amount,
            items=[
                ScheduleItem(bill_id=uuid.UUID(item["billId"]), amount=Decimal(str(item["amount"])))
                for item in (schedule.items or [])
            ],
        )


class SyncStatusRepository:
    """Per-tenant record of the last sync attempt"""

    def __init__(self, db: AsyncSession, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    async def _upsert(self, tenant_id: str, **values) -> None:
        table = SyncStatus.__table__
        stmt = dialect_insert(self.db, table).values(
            id=uuid.uuid4(), owner_id=self.owner_id, tenant_id=tenant_id, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.owner_id, table.c.tenant_id],
            set_={key: stmt.excluded[key] for key in values},
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def record_attempt(self, tenant_id: str) -> None:
        await self._upsert(tenant_id, last_attempt_at=utcnow())

    async def record_success(self, tenant_id: str, counts: Dict[str, Dict[str, int]]) -> None:
        await self._upsert(tenant_id, last_success_at=utcnow(), record_counts=counts, last_error=None)

    async def record_failure(
        self, tenant_id: str, error: str, counts: Optional[Dict[str, Dict[str, int]]] = None
    ) -> None:
        values = {"last_failure_at": utcnow(), "last_error": error}
        if counts is not None:
            values["record_counts"] = counts
        await self._upsert(tenant_id, **values)

    async def list(self) -> List[SyncStatus]:
        result = await self.db.execute(select(SyncStatus).where(SyncStatus.owner_id == self.owner_id))
        return list(result.scalars().all())


class ConnectionRepository:
    """Repository for ledger platform connections"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active(self, user_id: str) -> Optional[LedgerConnection]:
        """Most recently updated active connection for a user"""
        result = await self.db.execute(
            select(LedgerConnection)
            .where(LedgerConnection.user_id == user_id, LedgerConnection.is_active.is_(True))
            .order_by(LedgerConnection.updated_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def list_active(self) -> List[LedgerConnection]:
        result = await self.db.execute(select(LedgerConnection).where(LedgerConnection.is_active.is_(True)))
        return list(result.scalars().all())

    async def connect(
        self, user_id: str, tenant_id: str, tokens: TokenSet, tenant_name: Optional[str] = None
    ) -> LedgerConnection:
        """Create, or reactivate with fresh tokens, the user's link to a tenant"""
        result = await self.db.execute(
            select(LedgerConnection).where(
                LedgerConnection.user_id == user_id, LedgerConnection.tenant_id == tenant_id
            )
        )
        connection = result.scalars().first()
        if connection is None:
            connection = LedgerConnection(user_id=user_id, tenant_id=tenant_id)
            self.db.add(connection)
        connection.tenant_name = tenant_name
        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token
        connection.expires_at = tokens.expires_at
        connection.is_active = True
        connection.updated_at = utcnow()
        await self.db.commit()
        return connection

    async def save_tokens(self, connection: LedgerConnection, tokens: TokenSet) -> None:
        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token
        connection.expires_at = tokens.expires_at
        connection.updated_at = utcnow()
        await self.db.commit()

    async def deactivate(self, connection: LedgerConnection) -> None:
        connection.is_active = False
        connection.updated_at = utcnow()
        await self.db.commit()

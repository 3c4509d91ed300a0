"""Sync orchestrator - mirrors one user's ledger tenant stage by stage"""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.config import settings
from ledger_gateway.domain.exceptions import FetchError
from ledger_gateway.domain.mapping import map_adjustment, map_contact, map_ledger_entry, map_payment
from ledger_gateway.domain.models import RecordOutcome, StageReport, SyncReport, UpsertOutcome
from ledger_gateway.domain.scoring import analyze_customer_history, determine_risk_level
from ledger_gateway.infrastructure.clients import ledger
from ledger_gateway.infrastructure.clients.paging import TenantGateRegistry, default_gates, fetch_all_pages
from ledger_gateway.infrastructure.database.repositories import (
    CustomerHistoryRepository,
    MirrorRepository,
    SyncStatusRepository,
)
from ledger_gateway.infrastructure.observability.logging import log_record_failure, log_sync_complete
from ledger_gateway.infrastructure.observability.metrics import (
    record_stage_outcomes,
    sync_duration_histogram,
    sync_runs_counter,
)
from ledger_gateway.services.connections import ConnectionHandle, ConnectionResolver
from ledger_gateway.utils.date_utils import subtract_months

logger = logging.getLogger(__name__)

CONTACTS = "contacts"
LEDGER_ENTRIES = "ledger_entries"
PAYMENTS = "payments"
CREDIT_NOTES = "credit_notes"
OVERPAYMENTS = "overpayments"
PREPAYMENTS = "prepayments"
CUSTOMER_HISTORY = "customer_history"

STAGES = (CONTACTS, LEDGER_ENTRIES, PAYMENTS, CREDIT_NOTES, OVERPAYMENTS, PREPAYMENTS, CUSTOMER_HISTORY)

# stage -> (adjustment kind, listing endpoint, id key in the payload)
ADJUSTMENT_STAGES = {
    CREDIT_NOTES: ("credit_note", ledger.CREDIT_NOTES, "CreditNoteID"),
    OVERPAYMENTS: ("overpayment", ledger.OVERPAYMENTS, "OverpaymentID"),
    PREPAYMENTS: ("prepayment", ledger.PREPAYMENTS, "PrepaymentID"),
}


def window_filter(window_start: date) -> str:
    """Server-side lower bound on document date"""
    return f"Date >= DateTime({window_start.year}, {window_start.month:02d}, {window_start.day:02d})"


class SyncOrchestrator:
    """
    Runs the fixed sync pipeline for one user.

    contacts -> ledger entries (trailing window) -> payments ->
    credit notes / overpayments / prepayments -> customer history

    Every record write is committed on its own, so a failing record never
    rolls back the records mirrored before it.
    """

    def __init__(
        self,
        db: AsyncSession,
        resolver: ConnectionResolver,
        gates: Optional[TenantGateRegistry] = None,
        page_size: Optional[int] = None,
        window_months: Optional[int] = None,
        as_of: Optional[date] = None,
    ):
        self.db = db
        self.resolver = resolver
        self.gates = gates or default_gates
        self.page_size = page_size or settings.page_size
        self.window_months = window_months or settings.sync_window_months
        self.as_of = as_of
        self.tenant_id: Optional[str] = None

    async def run(self, user_id: str) -> SyncReport:
        """
        Sync every stage for the user's active tenant.

        Raises:
            LedgerConnectionError: No usable connection; nothing is fetched
        """
        handle = await self.resolver.resolve(user_id)
        self.tenant_id = handle.tenant_id
        status = SyncStatusRepository(self.db, user_id)
        await status.record_attempt(handle.tenant_id)

        as_of = self.as_of or date.today()
        window_start = subtract_months(as_of, self.window_months)
        run = _SyncRun(self, handle, user_id, as_of, window_start)
        report = SyncReport(user_id=user_id, tenant_id=handle.tenant_id)

        start_time = time.time()
        logger.info(
            "Sync started",
            extra={"user_id": user_id, "tenant_id": handle.tenant_id, "window_start": window_start.isoformat()},
        )

        for stage in STAGES:
            stage_report = StageReport(stage=stage)
            report.stages.append(stage_report)
            try:
                await run.execute(stage, stage_report)
            except FetchError as e:
                stage_report.error = str(e)
                logger.error(
                    f"Fetch failed, aborting remaining stages: {e}",
                    extra={"user_id": user_id, "tenant_id": handle.tenant_id, "stage": stage},
                )
                break
            finally:
                record_stage_outcomes(stage, stage_report.counts())

        duration = time.time() - start_time
        sync_duration_histogram.observe(duration)
        counts = report.counts()
        failures = report.failures

        if report.success:
            sync_runs_counter.labels(result="success").inc()
            await status.record_success(handle.tenant_id, counts)
        else:
            aborted = any(stage.error for stage in report.stages)
            sync_runs_counter.labels(result="failed" if aborted else "partial").inc()
            await status.record_failure(handle.tenant_id, failures[0]["error"] or "Sync failed", counts)

        log_sync_complete(user_id, handle.tenant_id, counts, len(failures), duration * 1000)
        return report


class _SyncRun:
    """State of one run: resolved handle, window and reference maps"""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        handle: ConnectionHandle,
        user_id: str,
        as_of: date,
        window_start: date,
    ):
        self.db = orchestrator.db
        self.gates = orchestrator.gates
        self.page_size = orchestrator.page_size
        self.handle = handle
        self.user_id = user_id
        self.as_of = as_of
        self.window_start = window_start
        self.mirror = MirrorRepository(self.db, user_id)
        self.contact_refs: Dict[str, UUID] = {}
        # external ref -> {entry type -> (entry id, contact id)}
        self.entry_refs: Dict[str, Dict[str, Tuple[UUID, UUID]]] = {}

    async def execute(self, stage: str, report: StageReport) -> None:
        if stage == CONTACTS:
            await self._sync_contacts(report)
        elif stage == LEDGER_ENTRIES:
            await self._sync_ledger_entries(report)
        elif stage == PAYMENTS:
            await self._sync_payments(report)
        elif stage in ADJUSTMENT_STAGES:
            await self._sync_adjustments(stage, report)
        elif stage == CUSTOMER_HISTORY:
            await self._recompute_customer_history(report)

    async def _fetch(self, endpoint: str, where: Optional[str] = None) -> List[Dict[str, Any]]:
        return await fetch_all_pages(
            self.handle.client.page_fetcher(endpoint, where=where),
            tenant_id=self.handle.tenant_id,
            gates=self.gates,
            page_size=self.page_size,
        )

    async def _apply(
        self,
        report: StageReport,
        external_ref: Optional[str],
        write: Callable[..., Awaitable[UpsertOutcome]],
        *args: Any,
    ) -> None:
        """Run one record write in its own transaction and fold its outcome"""
        try:
            outcome = await write(*args)
            await self.db.commit()
            report.outcomes.append(RecordOutcome(report.stage, external_ref, outcome))
        except IntegrityError as e:
            # A concurrent sync wrote the same row first
            await self.db.rollback()
            logger.info(
                f"Record already written by a concurrent sync: {e.orig}",
                extra={"user_id": self.user_id, "stage": report.stage, "external_ref": external_ref},
            )
            report.outcomes.append(RecordOutcome(report.stage, external_ref, UpsertOutcome.SKIPPED))
        except Exception as e:
            await self.db.rollback()
            log_record_failure(report.stage, external_ref, self.user_id, e)
            report.outcomes.append(RecordOutcome(report.stage, external_ref, UpsertOutcome.FAILED, str(e)))

    async def _load_entry_refs(self) -> None:
        self.entry_refs = {}
        for (entry_type, ref), parent in (await self.mirror.entry_ref_map()).items():
            self.entry_refs.setdefault(ref, {})[entry_type] = parent

    def _entry_candidates(self, entry_ref: str, entry_type: Optional[str]) -> List[Tuple[UUID, UUID]]:
        """Mirrored entries a reference can point at; an invoice and a bill may share one"""
        by_type = self.entry_refs.get(entry_ref, {})
        if entry_type is not None:
            return [by_type[entry_type]] if entry_type in by_type else []
        return list(by_type.values())

    def _skip(self, stage: str, external_ref: str, reason: str) -> UpsertOutcome:
        logger.info(
            f"Skipping record: {reason}",
            extra={"user_id": self.user_id, "stage": stage, "external_ref": external_ref},
        )
        return UpsertOutcome.SKIPPED

    # --- Stages ---

    async def _sync_contacts(self, report: StageReport) -> None:
        for payload in await self._fetch(ledger.CONTACTS):
            await self._apply(report, payload.get("ContactID"), self._write_contact, payload)

    async def _write_contact(self, payload: Dict[str, Any]) -> UpsertOutcome:
        _, outcome = await self.mirror.upsert_contact(map_contact(payload))
        return outcome

    async def _sync_ledger_entries(self, report: StageReport) -> None:
        self.contact_refs = await self.mirror.contact_ref_map()
        for payload in await self._fetch(ledger.INVOICES, where=window_filter(self.window_start)):
            await self._apply(report, payload.get("InvoiceID"), self._write_ledger_entry, payload)
        await self._load_entry_refs()

    async def _write_ledger_entry(self, payload: Dict[str, Any]) -> UpsertOutcome:
        record = map_ledger_entry(payload)
        contact_id = self.contact_refs.get(record.contact_ref)
        if contact_id is None:
            return self._skip(LEDGER_ENTRIES, record.external_ref, f"contact {record.contact_ref} not mirrored")
        _, outcome = await self.mirror.upsert_ledger_entry(record, contact_id)
        return outcome

    async def _sync_payments(self, report: StageReport) -> None:
        await self._load_entry_refs()
        for payload in await self._fetch(ledger.PAYMENTS, where=window_filter(self.window_start)):
            await self._apply(report, payload.get("PaymentID"), self._write_payment, payload)

    async def _write_payment(self, payload: Dict[str, Any]) -> UpsertOutcome:
        record = map_payment(payload)
        candidates = self._entry_candidates(record.entry_ref, record.entry_type)
        if not candidates:
            return self._skip(PAYMENTS, record.external_ref, f"entry {record.entry_ref} not mirrored")
        if len(candidates) > 1:
            return self._skip(
                PAYMENTS, record.external_ref, f"entry {record.entry_ref} is ambiguous without an invoice type"
            )
        entry_id, contact_id = candidates[0]
        _, outcome = await self.mirror.insert_payment(record, entry_id, contact_id)
        return outcome

    async def _sync_adjustments(self, stage: str, report: StageReport) -> None:
        kind, endpoint, id_key = ADJUSTMENT_STAGES[stage]
        for payload in await self._fetch(endpoint):
            await self._apply(report, payload.get(id_key), self._write_adjustment, stage, kind, payload)

    async def _write_adjustment(self, stage: str, kind: str, payload: Dict[str, Any]) -> UpsertOutcome:
        record = map_adjustment(kind, payload)
        # Ambiguous allocations are passed over
        parent = next(
            (
                candidates[0]
                for candidates in (self._entry_candidates(a.entry_ref, a.entry_type) for a in record.allocations)
                if len(candidates) == 1
            ),
            None,
        )
        if parent is None:
            return self._skip(stage, record.external_ref, "not allocated to a mirrored entry")
        entry_id, entry_contact_id = parent
        contact_id = self.contact_refs.get(record.contact_ref) if record.contact_ref else None
        _, outcome = await self.mirror.upsert_adjustment(record, entry_id, contact_id or entry_contact_id)
        return outcome

    async def _recompute_customer_history(self, report: StageReport) -> None:
        history = CustomerHistoryRepository(self.db, self.user_id)
        known = await history.contact_ids()
        invoices = await self.mirror.receivables_by_contact()
        payments = await self.mirror.payments_by_contact()

        # Plain values: a rollback expires loaded ORM instances
        contacts = [(c.id, c.external_ref, c.is_customer) for c in await self.mirror.list_contacts()]

        for contact_id, external_ref, is_customer in contacts:
            if not is_customer and contact_id not in invoices:
                continue
            await self._apply(
                report,
                external_ref,
                self._write_history,
                history,
                contact_id,
                invoices.get(contact_id, []),
                payments.get(contact_id, []),
                contact_id in known,
            )

    async def _write_history(self, history, contact_id, invoices, payments, existed) -> UpsertOutcome:
        stats = analyze_customer_history(invoices, payments, self.as_of)
        await history.upsert(
            contact_id,
            stats,
            window_start=self.window_start,
            window_end=self.as_of,
            risk_level=determine_risk_level(stats.risk_score),
        )
        return UpsertOutcome.UPDATED if existed else UpsertOutcome.CREATED


async def run_sync_with_timeout(
    orchestrator: SyncOrchestrator, user_id: str, timeout: Optional[float] = None
) -> SyncReport:
    """
    Run a sync bounded by a wall-clock timeout.

    On expiry the mirror keeps every record committed so far and the failure
    is recorded against the tenant before asyncio.TimeoutError is re-raised.
    """
    timeout = timeout or settings.sync_timeout_seconds
    try:
        return await asyncio.wait_for(orchestrator.run(user_id), timeout=timeout)
    except asyncio.TimeoutError:
        sync_runs_counter.labels(result="timeout").inc()
        logger.error(f"Sync timed out after {timeout}s", extra={"user_id": user_id})
        await orchestrator.db.rollback()
        if orchestrator.tenant_id is not None:
            await SyncStatusRepository(orchestrator.db, user_id).record_failure(
                orchestrator.tenant_id, f"Sync timed out after {timeout}s"
            )
        raise

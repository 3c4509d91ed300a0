"""Translate ledger platform payloads into domain records"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ledger_gateway.domain.exceptions import RecordError
from ledger_gateway.domain.models import (
    PAYABLE,
    RECEIVABLE,
    ZERO,
    AdjustmentRecord,
    Allocation,
    ContactRecord,
    LedgerEntryRecord,
    PaymentRecord,
)
from ledger_gateway.utils.date_utils import parse_ledger_date

_ENTRY_STATUSES = {
    "DRAFT": "draft",
    "SUBMITTED": "submitted",
    "AUTHORISED": "awaiting_payment",
    "PAID": "paid",
    "VOIDED": "voided",
    "DELETED": "cancelled",
}


def map_entry_status(status: Optional[str]) -> str:
    """Map platform invoice status to local status"""
    if not status:
        return "unknown"
    return _ENTRY_STATUSES.get(status.upper(), status.lower())


def _amount(payload: Dict[str, Any], key: str) -> Decimal:
    value = payload.get(key)
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise RecordError(f"Invalid amount in {key}: {value!r}") from e


def _required(payload: Dict[str, Any], key: str, ref: Optional[str] = None) -> Any:
    value = payload.get(key)
    if value in (None, ""):
        raise RecordError(f"Missing {key}", external_ref=ref)
    return value


def _entry_type(invoice: Dict[str, Any]) -> Optional[str]:
    """Invoice type of a nested invoice reference, None when absent or unknown"""
    entry_type = invoice.get("Type")
    return entry_type if entry_type in (RECEIVABLE, PAYABLE) else None


def map_contact(payload: Dict[str, Any]) -> ContactRecord:
    ref = _required(payload, "ContactID")
    phones = payload.get("Phones") or []
    phone = next((p.get("PhoneNumber") for p in phones if p.get("PhoneNumber")), None)
    return ContactRecord(
        external_ref=ref,
        name=payload.get("Name") or "Unknown",
        email=payload.get("EmailAddress") or None,
        phone=phone,
        tax_number=payload.get("TaxNumber") or None,
        is_customer=bool(payload.get("IsCustomer", False)),
        is_supplier=bool(payload.get("IsSupplier", False)),
        status="active" if payload.get("ContactStatus", "ACTIVE") == "ACTIVE" else "inactive",
        bank_account_details=payload.get("BankAccountDetails") or None,
        metadata={"updatedDateUTC": payload.get("UpdatedDateUTC")},
    )


def map_ledger_entry(payload: Dict[str, Any]) -> LedgerEntryRecord:
    ref = _required(payload, "InvoiceID")
    try:
        entry_type = payload.get("Type") or RECEIVABLE
        if entry_type not in (RECEIVABLE, PAYABLE):
            raise RecordError(f"Unsupported invoice type {entry_type}", external_ref=ref)

        contact_ref = _required(payload.get("Contact") or {}, "ContactID", ref)
        issue_date = parse_ledger_date(payload.get("Date"))
        if issue_date is None:
            raise RecordError("Missing Date", external_ref=ref)
        due_date = parse_ledger_date(payload.get("DueDate")) or issue_date

        return LedgerEntryRecord(
            external_ref=ref,
            entry_type=entry_type,
            contact_ref=contact_ref,
            number=payload.get("InvoiceNumber") or ref,
            reference=payload.get("Reference") or None,
            issue_date=issue_date,
            due_date=due_date,
            currency=payload.get("CurrencyCode") or "AUD",
            subtotal=_amount(payload, "SubTotal"),
            tax=_amount(payload, "TotalTax"),
            total=_amount(payload, "Total"),
            amount_paid=_amount(payload, "AmountPaid"),
            amount_credited=_amount(payload, "AmountCredited"),
            status=map_entry_status(payload.get("Status")),
            metadata={"amountDue": payload.get("AmountDue"), "updatedDateUTC": payload.get("UpdatedDateUTC")},
        )
    except (ValueError, TypeError) as e:
        raise RecordError(f"Invalid invoice data: {e}", external_ref=ref) from e


def map_payment(payload: Dict[str, Any]) -> PaymentRecord:
    ref = _required(payload, "PaymentID")
    try:
        entry_ref = _required(payload.get("Invoice") or {}, "InvoiceID", ref)
        paid_on = parse_ledger_date(payload.get("Date"))
        if paid_on is None:
            raise RecordError("Missing Date", external_ref=ref)
        return PaymentRecord(
            external_ref=ref,
            entry_ref=entry_ref,
            amount=_amount(payload, "Amount"),
            paid_on=paid_on,
            method=payload.get("PaymentType") or None,
            reference=payload.get("Reference") or None,
            entry_type=_entry_type(payload.get("Invoice") or {}),
            metadata={"status": payload.get("Status")},
        )
    except (ValueError, TypeError) as e:
        raise RecordError(f"Invalid payment data: {e}", external_ref=ref) from e


_ADJUSTMENT_KEYS = {
    "credit_note": ("CreditNoteID", "CreditNoteNumber"),
    "overpayment": ("OverpaymentID", None),
    "prepayment": ("PrepaymentID", None),
}


def map_adjustment(kind: str, payload: Dict[str, Any]) -> AdjustmentRecord:
    """Map a credit note, overpayment or prepayment payload"""
    id_key, number_key = _ADJUSTMENT_KEYS[kind]
    ref = _required(payload, id_key)
    try:
        issue_date = parse_ledger_date(payload.get("Date"))
        if issue_date is None:
            raise RecordError("Missing Date", external_ref=ref)

        allocations = []
        for alloc in payload.get("Allocations") or []:
            invoice = alloc.get("Invoice") or {}
            invoice_ref = invoice.get("InvoiceID")
            if not invoice_ref:
                continue
            allocations.append(
                Allocation(
                    entry_ref=invoice_ref,
                    amount=_amount(alloc, "Amount"),
                    allocated_on=parse_ledger_date(alloc.get("Date")),
                    entry_type=_entry_type(invoice),
                )
            )

        return AdjustmentRecord(
            kind=kind,
            external_ref=ref,
            contact_ref=(payload.get("Contact") or {}).get("ContactID"),
            number=payload.get(number_key) if number_key else None,
            issue_date=issue_date,
            currency=payload.get("CurrencyCode") or "AUD",
            total=_amount(payload, "Total"),
            remaining_credit=_amount(payload, "RemainingCredit"),
            allocations=allocations,
            status=(payload.get("Status") or "AUTHORISED").lower(),
        )
    except (ValueError, TypeError) as e:
        raise RecordError(f"Invalid {kind} data: {e}", external_ref=ref) from e

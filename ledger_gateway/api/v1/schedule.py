"""/v1/payment-schedule - Payables forecast and payment runs"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.api.dependencies import get_current_user_id, get_request_id
from ledger_gateway.api.v1.schemas import (
    ForecastBillSchema,
    ForecastDaySchema,
    ForecastSummary,
    PaymentScheduleResponse,
    ScheduleCreateRequest,
    ScheduleItemOut,
    ScheduleResponse,
    ScheduleStatusRequest,
)
from ledger_gateway.domain.exceptions import InvalidRequestError, InvalidScheduleTransitionError
from ledger_gateway.domain.forecast import ALLOCATING_SCHEDULE_STATUSES, allocated_amounts, build_payment_forecast
from ledger_gateway.domain.models import ScheduleItem, ScheduleRequest
from ledger_gateway.domain.schedules import prepare_schedule, validate_transition
from ledger_gateway.infrastructure.database.models import PaymentSchedule
from ledger_gateway.infrastructure.database.repositories import MirrorRepository, ScheduleRepository
from ledger_gateway.infrastructure.database.session import get_db

router = APIRouter()


def to_schedule_response(schedule: PaymentSchedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=str(schedule.id),
        name=schedule.name,
        scheduled_date=schedule.scheduled_date,
        bill_ids=list(schedule.bill_ids),
        items=[ScheduleItemOut(bill_id=i["billId"], amount=float(i["amount"])) for i in (schedule.items or [])],
        total_amount=float(schedule.total_amount),
        bill_count=schedule.bill_count,
        risk_summary=schedule.risk_summary or {},
        notes=schedule.notes,
        status=schedule.status,
        created_at=schedule.created_at,
    )


@router.get("/payment-schedule", response_model=PaymentScheduleResponse)
async def get_payment_schedule(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Forecast bills falling due in [startDate, endDate].

    Each bill reports its amount due, the part already allocated by draft or
    confirmed payment runs, and what is still available to schedule.
    """
    if start_date is None or end_date is None:
        raise HTTPException(status_code=400, detail="startDate and endDate are required")
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")

    bills = await MirrorRepository(db, user_id).list_bills_due(start_date, end_date)
    schedule_repo = ScheduleRepository(db, user_id)
    schedules = await schedule_repo.list(statuses=ALLOCATING_SCHEDULE_STATUSES)

    allocations = allocated_amounts([ScheduleRepository.to_view(s) for s in schedules], bills)
    forecast = build_payment_forecast(bills, allocations, start_date, end_date)

    bills_by_date = {
        day.isoformat(): [
            ForecastBillSchema(
                id=str(fb.bill.id),
                number=fb.bill.number,
                contact_id=str(fb.bill.contact_id),
                contact_name=fb.bill.contact_name,
                due_date=fb.bill.due_date,
                status=fb.bill.status,
                risk_level=fb.bill.risk_level,
                amount=float(fb.amount_due),
                scheduled_amount=float(fb.scheduled_amount),
                available_amount=float(fb.available_amount),
            )
            for fb in day_bills
        ]
        for day, day_bills in forecast.bills_by_date.items()
    }

    return PaymentScheduleResponse(
        bills_by_date=bills_by_date,
        forecast=[
            ForecastDaySchema(
                day=d.date,
                bills_due=d.bills_due,
                amount_due=float(d.amount_due),
                cumulative_amount=float(d.cumulative_amount),
            )
            for d in forecast.forecast
        ],
        schedules=[
            to_schedule_response(s) for s in schedules if start_date <= s.scheduled_date <= end_date
        ],
        summary=ForecastSummary(
            start_date=forecast.start_date,
            end_date=forecast.end_date,
            total_bills=forecast.total_bills,
            total_amount=float(forecast.total_amount),
            total_scheduled=float(forecast.total_scheduled),
        ),
    )


@router.post("/payment-schedule", response_model=ScheduleResponse, status_code=201)
async def create_payment_schedule(
    request_body: ScheduleCreateRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a draft payment run.

    A bill may sit in several drafts at once; availability is only netted
    at read time.
    """
    request_id = get_request_id(request)
    bills = await MirrorRepository(db, user_id).get_bills(request_body.bill_ids)

    try:
        draft = prepare_schedule(
            ScheduleRequest(
                name=request_body.name,
                scheduled_date=request_body.scheduled_date,
                bill_ids=list(request_body.bill_ids),
                items=[ScheduleItem(bill_id=i.bill_id, amount=i.amount) for i in request_body.items],
                notes=request_body.notes,
                total_amount=request_body.total_amount,
            ),
            bills,
        )
    except InvalidRequestError as e:
        logging.warning(f"Invalid payment schedule: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(status_code=400, detail=str(e))

    schedule = await ScheduleRepository(db, user_id).create(draft)
    await db.commit()
    logging.info(
        "Payment schedule created",
        extra={"request_id": request_id, "user_id": user_id, "schedule_id": str(schedule.id)},
    )
    return to_schedule_response(schedule)


@router.post("/payment-schedule/{schedule_id}/status", response_model=ScheduleResponse)
async def update_payment_schedule_status(
    schedule_id: UUID,
    request_body: ScheduleStatusRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Move a payment run along draft -> confirmed -> cancelled"""
    schedule_repo = ScheduleRepository(db, user_id)
    schedule = await schedule_repo.get(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Payment schedule not found")

    try:
        validate_transition(schedule.status, request_body.status)
    except InvalidScheduleTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await schedule_repo.set_status(schedule, request_body.status)
    await db.commit()
    return to_schedule_response(schedule)

"""Leave router — leave types, balances, accruals, requests, calendar, overview.

Callers are authenticated upstream; the acting user arrives in ``X-Actor-Id``.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_service.common.constants import LeaveStatus
from leave_service.common.pagination import PaginatedResponse, PaginationParams
from leave_service.common.rate_limit import limiter
from leave_service.database import get_db
from leave_service.dependencies import get_actor_id
from leave_service.leave.accrual import AccrualService
from leave_service.leave.balances import BalanceStore
from leave_service.leave.ledger import AdjustmentLedger
from leave_service.leave.schemas import (
    AccrualPostRequest,
    BalanceAdjustmentOut,
    BalanceAdjustRequest,
    CarryOverRequest,
    LeaveBalanceOut,
    LeaveCalendarOut,
    LeaveOverviewOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveTypeOut,
)
from leave_service.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    is_active: Optional[bool] = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """List leave types (active only by default)."""
    return await LeaveService.get_leave_types(db, is_active=is_active)


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def list_balances(
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    negative_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Admin balance listing."""
    return await BalanceStore.list_balances(
        db,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        negative_only=negative_only,
    )


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def get_employee_balances(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Per leave type balances for one employee."""
    return await BalanceStore.get_employee_balances(db, employee_id)


# ── PUT /balances/{employee_id} ─────────────────────────────────────

@router.put("/balances/{employee_id}", response_model=LeaveBalanceOut)
async def adjust_balance(
    employee_id: uuid.UUID,
    body: BalanceAdjustRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Manual credit / debit with a mandatory reason."""
    return await BalanceStore.adjust(
        db, employee_id, body.leave_type_id, body.amount, body.reason, actor_id,
    )


# ── GET /balances/{employee_id}/{leave_type_id}/history ─────────────

@router.get(
    "/balances/{employee_id}/{leave_type_id}/history",
    response_model=list[BalanceAdjustmentOut],
)
async def balance_history(
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Ledger entries for one balance, oldest first."""
    await BalanceStore.get_balance(db, employee_id, leave_type_id)
    return await AdjustmentLedger.history(db, employee_id, leave_type_id)


# ── POST /accruals ──────────────────────────────────────────────────

@router.post("/accruals", response_model=LeaveBalanceOut, status_code=201)
async def post_accrual(
    body: AccrualPostRequest,
    db: AsyncSession = Depends(get_db),
):
    """Scheduled accrual for one period."""
    return await AccrualService.post_accrual(
        db, body.employee_id, body.leave_type_id, body.period, body.hours_worked,
    )


# ── POST /carry-over ────────────────────────────────────────────────

@router.post("/carry-over", response_model=LeaveBalanceOut)
async def apply_carry_over(
    body: CarryOverRequest,
    db: AsyncSession = Depends(get_db),
):
    """Cap the balance at the leave type's carry-over limit."""
    return await AccrualService.apply_carry_over(
        db, body.employee_id, body.leave_type_id, body.cycle,
    )


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def list_requests(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[LeaveStatus] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Leave requests, newest first, paginated."""
    return await LeaveService.list_requests(
        db,
        employee_id=employee_id,
        status=status,
        leave_type_id=leave_type_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, request_id)


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
@limiter.limit("30/minute")
async def submit_request(
    request: Request,
    body: LeaveRequestCreate,
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request. Reserves the days against the balance."""
    return await LeaveService.submit(
        db,
        body.employee_id,
        body.leave_type_id,
        body.start_date,
        body.end_date,
        body.is_partial_day,
        body.partial_hours,
        body.reason,
        attachment_url=body.attachment_url,
        approver_ids=body.approver_ids,
    )


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_request(
    request_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending request. Moves its days to taken."""
    return await LeaveService.approve(db, request_id, actor_id)


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending request. Reason is mandatory."""
    return await LeaveService.reject(db, request_id, actor_id, body.reason)


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending request."""
    return await LeaveService.cancel(db, request_id, actor_id)


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar", response_model=LeaveCalendarOut)
async def leave_calendar(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000, le=2100),
    db: AsyncSession = Depends(get_db),
):
    """Approved leave overlapping the month."""
    return await LeaveService.get_calendar(db, year, month)


# ── GET /overview ───────────────────────────────────────────────────

@router.get("/overview", response_model=LeaveOverviewOut)
async def leave_overview(
    today: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Dashboard counts and upcoming leave."""
    return await LeaveService.get_overview(db, today)

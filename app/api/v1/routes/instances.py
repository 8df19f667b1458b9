# app/api/v1/routes/instances.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import date
import uuid

from app.schemas.instance import ExpenseInstanceRead, InstanceToggleRequest, InstanceToggleResult, MonthSummary
from app.crud.expense import get_expenses_for_user
from app.crud.expense_instance import get_instances_in_range
from app.core.database import get_async_session
from app.api.deps import get_current_user_id
from app.utils.instance_toggle import toggle_instance_paid
from app.utils.projection import month_end, month_start, project_month, sort_instances
from app.utils.summary import summarize_month

router = APIRouter(prefix="/instances", tags=["instances"])

async def _project_month_for_user(month: date, user_id: uuid.UUID, db: AsyncSession) -> List[ExpenseInstanceRead]:
    expenses = await get_expenses_for_user(user_id, db)
    persisted = await get_instances_in_range(user_id, month_start(month), month_end(month), db)
    return sort_instances(project_month(month, expenses, persisted))

@router.get("", response_model=List[ExpenseInstanceRead])
async def read_month_instances(
    month: Optional[date] = Query(None, description="Any day of the month to show, defaults to today"),
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Expense occurrences due in the requested month, with their paid status."""
    return await _project_month_for_user(month or date.today(), user_id, db)

@router.get("/summary", response_model=MonthSummary)
async def read_month_summary(
    month: Optional[date] = Query(None, description="Any day of the month to summarize, defaults to today"),
    today: Optional[date] = Query(None, description="Reference date for overdue instances"),
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    month = month or date.today()
    instances = await _project_month_for_user(month, user_id, db)
    return summarize_month(month, instances, today or date.today())

@router.post("/toggle", response_model=InstanceToggleResult)
async def toggle_instance(
    toggle_in: InstanceToggleRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Flip the paid status of one occurrence, materializing it on first use."""
    return await toggle_instance_paid(toggle_in, user_id, db)

"""Pytest configuration and fixtures."""

import uuid
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.crud.expense import create_expense_for_user
from app.models import expense, payment_transaction  # noqa: F401
from app.schemas.expense import ExpenseCreate


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database with every table created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def create_expense(db, user_id):
    """Persist an expense through the CRUD layer, the way the API does."""

    async def _create(**fields):
        fields.setdefault("title", "Test expense")
        fields.setdefault("due_date", date(2024, 1, 15))
        return await create_expense_for_user(user_id, ExpenseCreate(**fields), db)

    return _create


def make_record(**overrides):
    """Plain expense record for the pure projection tests."""
    record = SimpleNamespace(
        id=uuid.uuid4(),
        title="Record",
        amount=100.0,
        due_date=date(2024, 1, 15),
        is_paid=False,
        paid_at=None,
        is_recurring=False,
        recurring_start_date=None,
        recurring_end_date=None,
        installments=None,
        current_installment=None,
        is_financing=False,
        financing_total_amount=None,
        financing_months_total=None,
        financing_paid_amount=0.0,
        financing_discount_amount=0.0,
        financing_months_paid=0,
        early_payment_discount_rate=0.0,
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


def make_persisted(record, instance_date, instance_type, installment_number=None, is_paid=True, amount=None):
    """Plain persisted instance row."""
    return SimpleNamespace(
        id=uuid.uuid4(),
        expense_id=record.id,
        instance_date=instance_date,
        instance_type=instance_type,
        installment_number=installment_number,
        amount=record.amount if amount is None else amount,
        is_paid=is_paid,
        paid_at=None,
    )

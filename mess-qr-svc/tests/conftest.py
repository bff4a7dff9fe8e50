"""Shared fixtures: a throwaway SQLite database, seed helpers and an API client.

Settings are read once at import time, so the environment is prepared before
anything under ``app`` is imported.
"""

from __future__ import annotations

import os
import tempfile
import uuid
from datetime import date
from typing import AsyncIterator

_TMP_DIR = tempfile.mkdtemp(prefix="mess-qr-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/mess_qr.db"
os.environ["QR_SECRET"] = "test-qr-secret-0123456789abcdefghijklmnopqrstuvwxyz"
os.environ["RL_ENABLED"] = "false"
os.environ["NATS_ENABLED"] = "false"
os.environ["MESS_TIMEZONE"] = "UTC"
os.environ["LOG_LEVEL"] = "DEBUG"

import pytest
import pytest_asyncio
from fastapi import Header, HTTPException, status
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db import async_session_maker, engine
from app.deps import get_claims
from app.main import app
from app.models import (
    Base,
    LeaveStatus,
    MealPlan,
    Member,
    MembershipStatus,
    MessMembership,
    MessProfile,
    UserLeave,
)


async def _test_claims(authorization: str | None = Header(default=None)):
    # the bearer token is the subject itself
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return {"sub": authorization.split(" ", 1)[1].strip(), "role": "user"}


@pytest.fixture
def secret() -> str:
    return get_settings().qr_secret_effective


@pytest_asyncio.fixture
async def db_engine():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    # pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine) -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as session:
        yield session


class Seed:
    """Writes rows owned by other services (members, plans, subscriptions, leaves)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def mess(self, owner_id: uuid.UUID | None = None, name: str = "Annapurna Mess") -> uuid.UUID:
        mess = MessProfile(owner_id=owner_id or uuid.uuid4(), name=name, location="Block C")
        self.db.add(mess)
        await self.db.commit()
        return mess.id

    async def member(self, name: str = "Ravi Kumar", email: str | None = "ravi@example.com") -> uuid.UUID:
        member = Member(name=name, email=email)
        self.db.add(member)
        await self.db.commit()
        return member.id

    async def plan(self, mess_id: uuid.UUID, name: str = "Lunch") -> uuid.UUID:
        plan = MealPlan(mess_id=mess_id, name=name)
        self.db.add(plan)
        await self.db.commit()
        return plan.id

    async def subscribe(
        self,
        member_id: uuid.UUID,
        mess_id: uuid.UUID,
        *,
        start: date | None,
        end: date | None,
        plan_name: str = "Lunch",
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> uuid.UUID:
        plan_id = await self.plan(mess_id, plan_name)
        self.db.add(MessMembership(
            user_id=member_id,
            mess_id=mess_id,
            meal_plan_id=plan_id,
            status=status,
            join_date=start or date(2024, 1, 1),
            subscription_start_date=start,
            subscription_end_date=end,
        ))
        await self.db.commit()
        return plan_id

    async def leave(
        self,
        member_id: uuid.UUID,
        mess_id: uuid.UUID,
        *,
        start: date,
        end: date,
        plan_ids: list[uuid.UUID] | None = None,
        status: LeaveStatus = LeaveStatus.APPROVED,
        extend: bool = True,
        extension_days: int = 0,
    ) -> None:
        self.db.add(UserLeave(
            user_id=member_id,
            mess_id=mess_id,
            meal_plan_ids=[str(p) for p in plan_ids or []],
            start_date=start,
            end_date=end,
            status=status,
            extend_subscription=extend,
            extension_days=extension_days,
        ))
        await self.db.commit()


@pytest_asyncio.fixture
async def seed(db) -> Seed:
    return Seed(db)


@pytest_asyncio.fixture
async def api(db_engine) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_claims] = _test_claims
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

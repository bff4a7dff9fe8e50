from __future__ import annotations

import uuid

import pytest

from app.db import engine_options, get_session
from app.models import MessProfile


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite+aiosqlite:///./mess_qr.db", {}),
        ("postgresql+asyncpg://user:pw@db:5432/mess", {"pool_pre_ping": True, "pool_recycle": 1800}),
    ],
)
def test_engine_options(url: str, expected: dict) -> None:
    assert engine_options(url) == expected


@pytest.mark.asyncio
async def test_failed_request_rolls_back(db_engine, db) -> None:
    sessions = get_session()
    session = await sessions.__anext__()
    mess_id = uuid.uuid4()
    session.add(MessProfile(id=mess_id, owner_id=uuid.uuid4(), name="Half-written Mess"))
    await session.flush()

    with pytest.raises(RuntimeError):
        await sessions.athrow(RuntimeError("handler failed"))

    assert await db.get(MessProfile, mess_id) is None

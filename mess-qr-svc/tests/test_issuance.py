from __future__ import annotations

import base64
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core import qr
from app.core.errors import AuthorizationError, NotFound
from app.models import MessProfile
from app.services.issuance import delete_mess_qr, generate_mess_qr, get_owner_mess
from app.services.verification import check_token, verify_by_member_scan

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


async def _scan(db, token, member_id, secret):
    return await verify_by_member_scan(
        db, token=token, member_id=member_id, now=datetime.now(timezone.utc), secret=secret, tz_name="UTC"
    )


@pytest.mark.asyncio
async def test_first_generation_issues_a_signed_code(db, seed, secret) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)

    issued = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)

    assert issued.is_new
    assert issued.generated_at is not None
    decoded = qr.decode(issued.data)
    assert isinstance(decoded, qr.DecodedToken)
    assert decoded.mess_id == mess_id
    assert qr.verify(decoded, secret)

    prefix = "data:image/png;base64,"
    assert issued.image.startswith(prefix)
    assert base64.b64decode(issued.image[len(prefix):]).startswith(PNG_MAGIC)

    mess = await db.get(MessProfile, mess_id)
    assert mess.qr_data == issued.data
    assert mess.qr_nonce == decoded.nonce


@pytest.mark.asyncio
async def test_generation_is_idempotent(db, seed, secret) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)

    first = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)
    second = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)

    assert not second.is_new
    assert second.data == first.data
    assert second.image == first.image


@pytest.mark.asyncio
async def test_code_signed_with_previous_key_is_reissued(db, seed) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    old_key, new_key = "A" * 48, "B" * 48

    first = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=old_key)
    second = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=new_key)

    assert second.is_new
    assert second.data != first.data
    mess, _ = await check_token(db, second.data, secret=new_key, now=datetime.now(timezone.utc))
    assert mess.id == mess_id

    third = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=new_key)
    assert not third.is_new
    assert third.data == second.data


@pytest.mark.asyncio
async def test_code_with_stale_nonce_is_reissued(db, seed, secret) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    first = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)

    mess = await db.get(MessProfile, mess_id)
    mess.qr_nonce = qr.new_nonce()
    await db.commit()

    second = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)
    assert second.is_new
    assert second.data != first.data


@pytest.mark.asyncio
async def test_rotation_invalidates_previous_code(db, seed, secret) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    member_id = await seed.member()
    today = datetime.now(timezone.utc).date()
    await seed.subscribe(member_id, mess_id, start=today - timedelta(days=5), end=today + timedelta(days=5))

    old = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)
    assert (await _scan(db, old.data, member_id, secret)).is_valid

    new = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret, force_regenerate=True)
    assert new.is_new
    assert new.data != old.data

    rejected = await _scan(db, old.data, member_id, secret)
    assert not rejected.is_valid
    assert rejected.message.startswith("Invalid QR code")
    assert (await _scan(db, new.data, member_id, secret)).is_valid


@pytest.mark.asyncio
async def test_delete_clears_record_and_invalidates_code(db, seed, secret) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner)
    member_id = await seed.member()
    await seed.subscribe(member_id, mess_id, start=date(2000, 1, 1), end=date(2999, 12, 31))
    issued = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)

    message = await delete_mess_qr(db, mess_id=mess_id, requester_id=owner)

    assert message == "QR code deleted successfully"
    mess = await db.get(MessProfile, mess_id)
    assert (mess.qr_data, mess.qr_image, mess.qr_nonce, mess.qr_generated_at) == (None, None, None, None)
    assert not (await _scan(db, issued.data, member_id, secret)).is_valid

    again = await generate_mess_qr(db, mess_id=mess_id, requester_id=owner, secret=secret)
    assert again.is_new
    assert again.data != issued.data


@pytest.mark.asyncio
async def test_only_the_owner_may_manage_the_code(db, seed, secret) -> None:
    mess_id = await seed.mess(uuid.uuid4())

    with pytest.raises(AuthorizationError):
        await generate_mess_qr(db, mess_id=mess_id, requester_id=uuid.uuid4(), secret=secret)
    with pytest.raises(AuthorizationError):
        await delete_mess_qr(db, mess_id=mess_id, requester_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_unknown_mess(db_engine, db, secret) -> None:
    with pytest.raises(NotFound):
        await generate_mess_qr(db, mess_id=uuid.uuid4(), requester_id=uuid.uuid4(), secret=secret)


@pytest.mark.asyncio
async def test_get_owner_mess(db, seed) -> None:
    owner = uuid.uuid4()
    mess_id = await seed.mess(owner, name="Sunrise Mess")

    mess = await get_owner_mess(db, owner_id=owner)
    assert mess.id == mess_id
    assert mess.name == "Sunrise Mess"

    with pytest.raises(NotFound, match="No mess profile found"):
        await get_owner_mess(db, owner_id=uuid.uuid4())

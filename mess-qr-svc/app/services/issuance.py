from __future__ import annotations
import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..core import qr
from ..core.errors import AuthorizationError, NotFound
from ..core.qr_render import render_data_url
from ..models import MessProfile

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class IssuedQR:
    image: str
    data: str
    generated_at: datetime | None
    is_new: bool

def _now():
    return datetime.now(timezone.utc)

def _reusable(mess: MessProfile, secret: str) -> bool:
    """Stored code still verifies under the current key and nonce pointer."""
    if not (mess.qr_data and mess.qr_image and mess.qr_nonce):
        return False
    decoded = qr.decode(mess.qr_data)
    if not isinstance(decoded, qr.DecodedToken) or decoded.mess_id != mess.id:
        return False
    return qr.verify(decoded, secret) and hmac.compare_digest(decoded.nonce.encode(), mess.qr_nonce.encode())

async def get_owned_mess(
    db: AsyncSession, *, mess_id: uuid.UUID, owner_id: uuid.UUID, for_update: bool = False
) -> MessProfile:
    stmt = select(MessProfile).where(MessProfile.id == mess_id)
    if for_update:
        stmt = stmt.with_for_update()
    mess = (await db.execute(stmt)).scalar_one_or_none()
    if mess is None:
        raise NotFound("Mess not found")
    if mess.owner_id != owner_id:
        raise AuthorizationError("You do not have permission to manage this mess")
    return mess

async def generate_mess_qr(
    db: AsyncSession,
    *,
    mess_id: uuid.UUID,
    requester_id: uuid.UUID,
    secret: str,
    force_regenerate: bool = False,
    box_size: int = 10,
    border: int = 2,
) -> IssuedQR:
    """Return the mess's verification QR, issuing one if needed.

    Without ``force_regenerate`` an existing code is returned untouched so
    printed copies keep working, unless it no longer verifies under ``secret``
    (key rotated, or an ephemeral key from an earlier process). Rotation draws
    a fresh nonce and replaces the whole record in one row update; the previous
    code stops verifying as soon as it commits.
    """
    mess = await get_owned_mess(db, mess_id=mess_id, owner_id=requester_id, for_update=True)

    if not force_regenerate:
        if _reusable(mess, secret):
            existing = IssuedQR(image=mess.qr_image, data=mess.qr_data, generated_at=mess.qr_generated_at, is_new=False)
            logger.debug("reusing QR for mess %s generated at %s", mess.id, existing.generated_at)
            await db.commit()  # nothing changed; ends the transaction and its row lock
            return existing
        if mess.qr_data:
            logger.warning("stored QR for mess %s no longer verifies; issuing a new one", mess.id)

    now = _now()
    nonce = qr.new_nonce()
    data = qr.encode(mess.id, nonce, int(now.timestamp()), secret)
    image = render_data_url(data, box_size=box_size, border=border)

    mess.qr_nonce = nonce
    mess.qr_data = data
    mess.qr_image = image
    mess.qr_generated_at = now
    await db.commit()
    logger.info("issued QR for mess %s (rotation=%s)", mess.id, force_regenerate)
    return IssuedQR(image=image, data=data, generated_at=now, is_new=True)

async def delete_mess_qr(db: AsyncSession, *, mess_id: uuid.UUID, requester_id: uuid.UUID) -> str:
    mess = await get_owned_mess(db, mess_id=mess_id, owner_id=requester_id, for_update=True)
    mess.qr_nonce = None
    mess.qr_data = None
    mess.qr_image = None
    mess.qr_generated_at = None
    await db.commit()
    logger.info("deleted QR for mess %s", mess.id)
    return "QR code deleted successfully"

async def get_owner_mess(db: AsyncSession, *, owner_id: uuid.UUID) -> MessProfile:
    mess = (await db.execute(
        select(MessProfile).where(MessProfile.owner_id == owner_id).order_by(MessProfile.created_at.asc()).limit(1)
    )).scalar_one_or_none()
    if mess is None:
        raise NotFound("No mess profile found. Please create a mess profile first.")
    return mess

from __future__ import annotations
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from ..core import qr
from ..core.errors import (
    INVALID_CODE_MESSAGE,
    ExpiredToken,
    InvalidToken,
    NoActiveMembership,
    SignatureMismatch,
    UnknownMess,
    invalid_token,
)
from ..core.nats import publish_verification
from ..models import Member, MessProfile, VerificationEvent, VerificationMethod, utcnow
from .entitlements import ActivePlan, MembershipEntitlement, local_today, resolve_entitlement, resolve_mess_entitlements
from .issuance import get_owned_mess

logger = logging.getLogger(__name__)

STATS_WINDOWS: dict[str, timedelta] = {
    "last_24h": timedelta(hours=24),
    "last_7d": timedelta(days=7),
}

@dataclass(frozen=True)
class MemberSummary:
    user_id: uuid.UUID
    mess_id: uuid.UUID
    name: str
    email: str | None
    member_since: date | None
    is_active: bool
    active_plans: list[ActivePlan] = field(default_factory=list)

@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    message: str
    member: MemberSummary | None = None

@dataclass(frozen=True)
class WindowCounts:
    successful: int = 0
    failed: int = 0

@dataclass(frozen=True)
class VerificationStats:
    total_members: int
    active_members: int
    expiring_soon: int
    recent_verifications: int
    windows: dict[str, WindowCounts]

# --- token checks

async def check_token(
    db: AsyncSession, token: str, *, secret: str, now: datetime, max_age_days: int | None = None
) -> tuple[MessProfile, qr.DecodedToken]:
    """Decode and authenticate a scanned payload, returning the issuing mess.

    Raises a subclass of :class:`InvalidToken`. The signature is checked before
    the mess is looked up, so an unsigned payload never touches the database.
    """
    decoded = qr.decode(token)
    if not isinstance(decoded, qr.DecodedToken):
        raise invalid_token(decoded)
    if not qr.verify(decoded, secret):
        raise SignatureMismatch()
    if qr.is_expired(decoded, now=now, max_age_days=max_age_days):
        raise ExpiredToken()

    mess = await db.get(MessProfile, decoded.mess_id)
    if mess is None:
        raise UnknownMess()
    # rotated or deleted codes carry a nonce that is no longer current
    if not mess.qr_nonce or not hmac.compare_digest(mess.qr_nonce.encode(), decoded.nonce.encode()):
        raise SignatureMismatch()
    return mess, decoded

async def check_membership(
    db: AsyncSession, *, member_id: uuid.UUID, mess_id: uuid.UUID, now: datetime, tz_name: str
) -> MembershipEntitlement:
    ent = await resolve_entitlement(db, member_id=member_id, mess_id=mess_id, now=now, tz_name=tz_name)
    if not ent.is_active:
        raise NoActiveMembership("No active membership")
    return ent

# --- bookkeeping

async def _member_summary(db: AsyncSession, ent: MembershipEntitlement) -> MemberSummary:
    member = await db.get(Member, ent.member_id)
    return MemberSummary(
        user_id=ent.member_id,
        mess_id=ent.mess_id,
        name=member.name if member else "Member",
        email=member.email if member else None,
        member_since=ent.member_since,
        is_active=ent.is_active,
        active_plans=list(ent.active_plans),
    )

async def _record(
    db: AsyncSession,
    *,
    mess_id: uuid.UUID,
    member_id: uuid.UUID,
    method: VerificationMethod,
    success: bool,
    verified_by: uuid.UUID | None = None,
):
    evt = VerificationEvent(
        mess_id=mess_id, member_id=member_id, method=method, success=success, verified_by=verified_by,
        verified_at=utcnow(),
    )
    db.add(evt)
    await db.commit()
    try:
        await publish_verification({
            "mess_id": str(mess_id),
            "member_id": str(member_id),
            "method": method.value,
            "success": success,
            "verified_at": evt.verified_at.isoformat(),
        })
    except Exception as exc:
        # the verification already happened; a missed event only affects downstream consumers
        logger.warning("could not publish verification event for mess %s: %s", mess_id, exc)

# --- entry points

async def verify_by_member_scan(
    db: AsyncSession,
    *,
    token: str,
    member_id: uuid.UUID,
    now: datetime,
    secret: str,
    tz_name: str,
    max_age_days: int | None = None,
    source: VerificationMethod = VerificationMethod.CAMERA,
) -> VerificationResult:
    try:
        mess, _ = await check_token(db, token, secret=secret, now=now, max_age_days=max_age_days)
    except InvalidToken as e:
        logger.info("rejected scan from member %s: %s", member_id, e.reason.value)
        return VerificationResult(is_valid=False, message=INVALID_CODE_MESSAGE)

    mess_id, mess_name = mess.id, mess.name
    try:
        ent = await check_membership(db, member_id=member_id, mess_id=mess_id, now=now, tz_name=tz_name)
    except NoActiveMembership:
        await _record(db, mess_id=mess_id, member_id=member_id, method=source, success=False)
        return VerificationResult(
            is_valid=False, message=f"You do not have an active membership at {mess_name}"
        )

    summary = await _member_summary(db, ent)
    await _record(db, mess_id=mess_id, member_id=member_id, method=source, success=True)
    logger.info("member %s verified at mess %s with %d plan(s)", member_id, mess_id, len(ent.active_plans))
    return VerificationResult(
        is_valid=True,
        message=f"Welcome {summary.name}! You have {len(summary.active_plans)} active plan(s).",
        member=summary,
    )

async def verify_by_owner(
    db: AsyncSession,
    *,
    mess_id: uuid.UUID,
    owner_id: uuid.UUID,
    target_member_id: uuid.UUID,
    now: datetime,
    tz_name: str,
) -> VerificationResult:
    # raises AuthorizationError / NotFound; those are never folded into the result
    await get_owned_mess(db, mess_id=mess_id, owner_id=owner_id)
    try:
        ent = await check_membership(db, member_id=target_member_id, mess_id=mess_id, now=now, tz_name=tz_name)
    except NoActiveMembership:
        await _record(
            db, mess_id=mess_id, member_id=target_member_id, method=VerificationMethod.OWNER,
            success=False, verified_by=owner_id,
        )
        return VerificationResult(is_valid=False, message="User does not have an active membership")

    summary = await _member_summary(db, ent)
    await _record(
        db, mess_id=mess_id, member_id=target_member_id, method=VerificationMethod.OWNER,
        success=True, verified_by=owner_id,
    )
    return VerificationResult(is_valid=True, message=f"Member verified: {summary.name}", member=summary)

async def _window_counts(db: AsyncSession, *, mess_id: uuid.UUID, since: datetime) -> WindowCounts:
    rows = (await db.execute(
        select(VerificationEvent.success, func.count())
        .where(VerificationEvent.mess_id == mess_id, VerificationEvent.verified_at >= since)
        .group_by(VerificationEvent.success)
    )).all()
    counts = {bool(success): int(n) for success, n in rows}
    return WindowCounts(successful=counts.get(True, 0), failed=counts.get(False, 0))

async def verification_stats(
    db: AsyncSession,
    *,
    mess_id: uuid.UUID,
    owner_id: uuid.UUID,
    now: datetime,
    tz_name: str,
    expiring_soon_days: int = 30,
) -> VerificationStats:
    await get_owned_mess(db, mess_id=mess_id, owner_id=owner_id)

    ents = await resolve_mess_entitlements(db, mess_id=mess_id, now=now, tz_name=tz_name)
    horizon = local_today(now, tz_name) + timedelta(days=expiring_soon_days)
    active = [e for e in ents.values() if e.is_active]
    expiring = [e for e in active if max(p.end_date for p in e.active_plans) <= horizon]

    windows = {
        name: await _window_counts(db, mess_id=mess_id, since=now - span)
        for name, span in STATS_WINDOWS.items()
    }
    last_day = windows["last_24h"]
    return VerificationStats(
        total_members=len(ents),
        active_members=len(active),
        expiring_soon=len(expiring),
        recent_verifications=last_day.successful + last_day.failed,
        windows=windows,
    )

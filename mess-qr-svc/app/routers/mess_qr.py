from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_user_id
from ..core.config import get_settings
from ..core.errors import AuthorizationError, MessQRError, NotFound
from ..core.redis import allow_request
from ..models import VerificationMethod
from ..schemas import (
    Envelope,
    MemberRead,
    MembershipScanRequest,
    MessQRRecordRead,
    MyMessRead,
    OwnerVerifyRequest,
    QRCodeRead,
    QRDeleteRequest,
    QRGenerateRequest,
    StatsRead,
)
from ..services.issuance import delete_mess_qr, generate_mess_qr, get_owner_mess
from ..services.verification import VerificationResult, verification_stats, verify_by_member_scan, verify_by_owner

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/mess-qr", tags=["mess-qr"])

def _now():
    return datetime.now(timezone.utc)

def _http_error(exc: MessQRError) -> HTTPException:
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

def _require(value, detail: str):
    if value is None or value == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    return value

def _result_envelope(result: VerificationResult) -> Envelope[MemberRead]:
    member = MemberRead.model_validate(result.member) if result.member else None
    return Envelope[MemberRead](success=result.is_valid, message=result.message, data=member)

# --- 1) Owner generates (or fetches) the mess verification QR
@router.post("/generate", response_model=Envelope[QRCodeRead])
async def generate_qr(
    payload: QRGenerateRequest,
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    mess_id = _require(payload.mess_id, "Mess ID is required")
    try:
        issued = await generate_mess_qr(
            db,
            mess_id=mess_id,
            requester_id=user_id,
            secret=settings.qr_secret_effective,
            force_regenerate=payload.force_regenerate,
            box_size=settings.qr_image_box_size,
            border=settings.qr_image_border,
        )
    except MessQRError as e:
        raise _http_error(e)
    return Envelope[QRCodeRead](
        success=True,
        message="New QR code generated successfully" if issued.is_new else "Existing QR code retrieved",
        data=QRCodeRead.model_validate(issued),
    )

# --- 2) Owner deletes the QR; printed copies stop verifying
@router.delete("/delete", response_model=Envelope[None])
async def delete_qr(
    payload: QRDeleteRequest,
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    mess_id = _require(payload.mess_id, "Mess ID is required")
    try:
        message = await delete_mess_qr(db, mess_id=mess_id, requester_id=user_id)
    except MessQRError as e:
        raise _http_error(e)
    return Envelope[None](success=True, message=message)

# --- 3) Member scans the mess QR to prove membership
@router.post("/verify-membership", response_model=Envelope[MemberRead])
async def verify_membership(
    payload: MembershipScanRequest,
    request: Request,
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "mess-qr.verify-membership"):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many requests")
    token = _require(payload.qr_code_data, "QR code data is required")

    result = await verify_by_member_scan(
        db,
        token=token,
        member_id=user_id,
        now=_now(),
        secret=settings.qr_secret_effective,
        tz_name=settings.mess_timezone,
        max_age_days=settings.qr_max_age_days,
        source=VerificationMethod(payload.source),
    )
    return _result_envelope(result)

# --- 4) Owner verifies a named member directly (no QR involved)
@router.post("/verify-user", response_model=Envelope[MemberRead])
async def verify_user(
    payload: OwnerVerifyRequest,
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    if payload.mess_id is None or payload.target_user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mess ID and Target User ID are required")
    try:
        result = await verify_by_owner(
            db,
            mess_id=payload.mess_id,
            owner_id=user_id,
            target_member_id=payload.target_user_id,
            now=_now(),
            tz_name=settings.mess_timezone,
        )
    except MessQRError as e:
        raise _http_error(e)
    return _result_envelope(result)

# --- 5) Owner statistics
@router.get("/stats", response_model=Envelope[StatsRead])
async def stats(
    mess_id: uuid.UUID | None = Query(default=None),
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    mess_id = _require(mess_id, "Mess ID is required")
    try:
        s = await verification_stats(
            db,
            mess_id=mess_id,
            owner_id=user_id,
            now=_now(),
            tz_name=settings.mess_timezone,
            expiring_soon_days=settings.stats_expiring_soon_days,
        )
    except MessQRError as e:
        raise _http_error(e)
    return Envelope[StatsRead](success=True, message="Statistics retrieved successfully", data=StatsRead.model_validate(s))

# --- 6) Owner's mess, for the QR screen
@router.get("/my-mess", response_model=Envelope[MyMessRead])
async def my_mess(
    user_id: uuid.UUID = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        mess = await get_owner_mess(db, owner_id=user_id)
    except MessQRError as e:
        raise _http_error(e)
    qr_code = None
    if mess.qr_data and mess.qr_image:
        qr_code = MessQRRecordRead(image=mess.qr_image, data=mess.qr_data, generated_at=mess.qr_generated_at)
    return Envelope[MyMessRead](
        success=True,
        message="Mess profile retrieved successfully",
        data=MyMessRead(id=mess.id, name=mess.name, location=mess.location, qr_code=qr_code),
    )

from __future__ import annotations
from typing import Generic, Literal, TypeVar
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import date, datetime

T = TypeVar("T")

class Envelope(BaseModel, Generic[T]):
    success: bool
    message: str
    data: T | None = None

# --- requests

class QRGenerateRequest(BaseModel):
    mess_id: UUID | None = None
    force_regenerate: bool = False

class QRDeleteRequest(BaseModel):
    mess_id: UUID | None = None

class MembershipScanRequest(BaseModel):
    qr_code_data: str | None = Field(default=None, max_length=4096)
    # owner checks go through /verify-user
    source: Literal["camera", "manual"] = "camera"

class OwnerVerifyRequest(BaseModel):
    mess_id: UUID | None = None
    target_user_id: UUID | None = None

# --- responses

class ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

class QRCodeRead(ReadModel):
    image: str
    data: str
    generated_at: datetime | None = None
    is_new: bool

class ActivePlanRead(ReadModel):
    plan_name: str
    start_date: date
    end_date: date
    status: str

class MemberRead(ReadModel):
    user_id: UUID
    mess_id: UUID
    name: str
    email: str | None = None
    member_since: date | None = None
    is_active: bool
    active_plans: list[ActivePlanRead]

class WindowCountsRead(ReadModel):
    successful: int
    failed: int

class StatsRead(ReadModel):
    total_members: int
    active_members: int
    expiring_soon: int
    recent_verifications: int
    windows: dict[str, WindowCountsRead]

class MessQRRecordRead(ReadModel):
    image: str
    data: str
    generated_at: datetime | None = None

class MyMessRead(ReadModel):
    id: UUID
    name: str
    location: str | None = None
    qr_code: MessQRRecordRead | None = None

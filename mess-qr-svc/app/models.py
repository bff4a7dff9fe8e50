from __future__ import annotations
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Enum as SqlEnum, Index, JSON
from sqlalchemy.types import Boolean, Date, DateTime, Integer, String, Text

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class MembershipStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"

class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXTENDED = "extended"
    CANCELLED = "cancelled"

class VerificationMethod(str, Enum):
    CAMERA = "camera"
    MANUAL = "manual"
    OWNER = "owner"

# --- owned by this service

class MessProfile(Base):
    __tablename__ = "mess_profiles"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))

    # current QR record; qr_nonce is the only nonce that verifies
    qr_image: Mapped[str | None] = mapped_column(Text)
    qr_data: Mapped[str | None] = mapped_column(Text)
    qr_nonce: Mapped[str | None] = mapped_column(String(64))
    qr_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class VerificationEvent(Base):
    __tablename__ = "verification_events"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    mess_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    member_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    method: Mapped[VerificationMethod] = mapped_column(SqlEnum(VerificationMethod), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # owner id for owner lookups
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_verification_events_mess_time", "mess_id", "verified_at"),
    )

# --- read-only projections of tables owned by the membership / leave services

class Member(Base):
    __tablename__ = "members"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))

class MealPlan(Base):
    __tablename__ = "meal_plans"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    mess_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

class MessMembership(Base):
    __tablename__ = "mess_memberships"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    mess_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    meal_plan_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    status: Mapped[MembershipStatus] = mapped_column(SqlEnum(MembershipStatus), default=MembershipStatus.PENDING, nullable=False)
    join_date: Mapped[date] = mapped_column(Date, nullable=False, default=lambda: utcnow().date())
    subscription_start_date: Mapped[date | None] = mapped_column(Date)
    subscription_end_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        Index("ix_mess_memberships_user_mess", "user_id", "mess_id"),
        Index("ix_mess_memberships_mess_status", "mess_id", "status"),
    )

class UserLeave(Base):
    __tablename__ = "user_leaves"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    mess_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    meal_plan_ids: Mapped[list[str]] = mapped_column(JSON, default=list)  # empty = every plan at the mess
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(SqlEnum(LeaveStatus), default=LeaveStatus.PENDING, nullable=False)
    extend_subscription: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    extension_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_user_leaves_user_mess", "user_id", "mess_id"),
    )

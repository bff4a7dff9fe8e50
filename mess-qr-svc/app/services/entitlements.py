from __future__ import annotations
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..models import MealPlan, MembershipStatus, MessMembership, LeaveStatus, UserLeave

# never activated, or blocked by the mess owner; dates alone don't grant access
_EXCLUDED_STATUSES = {MembershipStatus.PENDING, MembershipStatus.SUSPENDED}
_APPROVED_LEAVES = {LeaveStatus.APPROVED, LeaveStatus.EXTENDED}

@dataclass(frozen=True)
class Subscription:
    member_id: uuid.UUID
    plan_id: uuid.UUID
    plan_name: str
    status: MembershipStatus
    join_date: date
    start_date: date | None
    end_date: date | None

@dataclass(frozen=True)
class ActivePlan:
    plan_name: str
    start_date: date
    end_date: date  # effective end, leave extensions included
    status: str = "active"

@dataclass(frozen=True)
class MembershipEntitlement:
    member_id: uuid.UUID
    mess_id: uuid.UUID
    is_active: bool
    active_plans: list[ActivePlan] = field(default_factory=list)
    member_since: date | None = None

def local_today(now: datetime, tz_name: str) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()

def base_window(sub: Subscription) -> tuple[date, date] | None:
    if sub.end_date is None:
        return None
    return sub.start_date or sub.join_date, sub.end_date

def overlap_days(leave: UserLeave, start: date, end: date) -> int:
    """Inclusive number of leave days falling inside ``start``..``end``."""
    first, last = max(leave.start_date, start), min(leave.end_date, end)
    return max(0, (last - first).days + 1)

def _leave_covers(leave: UserLeave, sub: Subscription) -> bool:
    if leave.status not in _APPROVED_LEAVES or not leave.extend_subscription:
        return False
    if sub.status in _EXCLUDED_STATUSES:
        return False
    plan_ids = leave.meal_plan_ids or []
    if plan_ids and str(sub.plan_id) not in {str(p) for p in plan_ids}:
        return False
    window = base_window(sub)
    return window is not None and overlap_days(leave, *window) > 0

def extension_days(subscriptions: Sequence[Subscription], leaves: Iterable[UserLeave]) -> list[int]:
    """Days of leave extension owed to each subscription, in input order.

    A leave counts only for the plans it names (all plans when it names none)
    and only where it overlaps the plan's own window. A stored
    ``extension_days`` is the total over every plan the leave covered, so it is
    shared out between them; without it each plan gets its overlapping days.
    """
    extra = [0] * len(subscriptions)
    for leave in leaves:
        covered = [i for i, sub in enumerate(subscriptions) if _leave_covers(leave, sub)]
        if not covered:
            continue
        total = max(0, int(leave.extension_days or 0))
        for i in covered:
            if total:
                extra[i] += -(-total // len(covered))
            else:
                extra[i] += overlap_days(leave, *base_window(subscriptions[i]))
    return extra

def effective_windows(
    subscriptions: Sequence[Subscription], leaves: Iterable[UserLeave]
) -> list[tuple[date, date] | None]:
    """Subscription windows with approved leave extensions added to the end.

    Extensions are additive and never move the end earlier. A subscription with
    no end date covers nothing.
    """
    extra = extension_days(subscriptions, list(leaves))
    windows: list[tuple[date, date] | None] = []
    for sub, days in zip(subscriptions, extra):
        window = base_window(sub)
        windows.append(None if window is None else (window[0], window[1] + timedelta(days=days)))
    return windows

def effective_window(sub: Subscription, leaves: Iterable[UserLeave]) -> tuple[date, date] | None:
    return effective_windows([sub], leaves)[0]

def compute_entitlement(
    *,
    member_id: uuid.UUID,
    mess_id: uuid.UUID,
    subscriptions: Sequence[Subscription],
    leaves: Sequence[UserLeave],
    today: date,
) -> MembershipEntitlement:
    active: list[ActivePlan] = []
    for sub, window in zip(subscriptions, effective_windows(subscriptions, leaves)):
        if sub.status in _EXCLUDED_STATUSES:
            continue
        if window is None:
            continue
        start, end = window
        if start <= today <= end:
            active.append(ActivePlan(plan_name=sub.plan_name, start_date=start, end_date=end))
    # stable sort keeps overlapping plans with equal starts in record order
    active.sort(key=lambda p: p.start_date)

    starts = [s.start_date or s.join_date for s in subscriptions if s.status not in _EXCLUDED_STATUSES]
    return MembershipEntitlement(
        member_id=member_id,
        mess_id=mess_id,
        is_active=bool(active),
        active_plans=active,
        member_since=min(starts) if starts else None,
    )

# --- data access

def _subscription_query():
    return (
        select(MessMembership, MealPlan.name)
        .outerjoin(MealPlan, MealPlan.id == MessMembership.meal_plan_id)
    )

def _to_subscription(m: MessMembership, plan_name: str | None) -> Subscription:
    return Subscription(
        member_id=m.user_id,
        plan_id=m.meal_plan_id,
        plan_name=plan_name or "Unknown Plan",
        status=m.status,
        join_date=m.join_date,
        start_date=m.subscription_start_date,
        end_date=m.subscription_end_date,
    )

async def fetch_subscriptions(db: AsyncSession, *, member_id: uuid.UUID, mess_id: uuid.UUID) -> list[Subscription]:
    rows = (await db.execute(
        _subscription_query().where(MessMembership.user_id == member_id, MessMembership.mess_id == mess_id)
    )).all()
    return [_to_subscription(m, name) for m, name in rows]

async def fetch_leaves(db: AsyncSession, *, member_id: uuid.UUID, mess_id: uuid.UUID) -> list[UserLeave]:
    return list((await db.execute(
        select(UserLeave).where(UserLeave.user_id == member_id, UserLeave.mess_id == mess_id)
    )).scalars().all())

async def resolve_entitlement(
    db: AsyncSession,
    *,
    member_id: uuid.UUID,
    mess_id: uuid.UUID,
    now: datetime,
    tz_name: str,
) -> MembershipEntitlement:
    # always read through; leave approvals and plan edits apply on the next scan
    subs = await fetch_subscriptions(db, member_id=member_id, mess_id=mess_id)
    leaves = await fetch_leaves(db, member_id=member_id, mess_id=mess_id) if subs else []
    return compute_entitlement(
        member_id=member_id,
        mess_id=mess_id,
        subscriptions=subs,
        leaves=leaves,
        today=local_today(now, tz_name),
    )

async def resolve_mess_entitlements(
    db: AsyncSession, *, mess_id: uuid.UUID, now: datetime, tz_name: str
) -> dict[uuid.UUID, MembershipEntitlement]:
    """Entitlement of every member holding any subscription at the mess."""
    rows = (await db.execute(_subscription_query().where(MessMembership.mess_id == mess_id))).all()
    leaves = (await db.execute(select(UserLeave).where(UserLeave.mess_id == mess_id))).scalars().all()

    subs_by_member: dict[uuid.UUID, list[Subscription]] = defaultdict(list)
    for m, name in rows:
        subs_by_member[m.user_id].append(_to_subscription(m, name))
    leaves_by_member: dict[uuid.UUID, list[UserLeave]] = defaultdict(list)
    for l in leaves:
        leaves_by_member[l.user_id].append(l)

    today = local_today(now, tz_name)
    return {
        member_id: compute_entitlement(
            member_id=member_id,
            mess_id=mess_id,
            subscriptions=subs,
            leaves=leaves_by_member.get(member_id, []),
            today=today,
        )
        for member_id, subs in subs_by_member.items()
    }

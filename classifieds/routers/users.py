from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import get_password_hash, require_admin
from ..database import get_db, get_sessionmaker
from ..errors import Conflict, NotFound
from ..models import Ad, User
from ..queries import (
    PageParams,
    ad_listing,
    ad_ordering,
    build_pagination,
    fetch_page,
    user_counts,
    user_filters,
    user_listing,
)
from ..schemas import (
    PasswordReset,
    UserAccount,
    UserAdmin,
    UserCounts,
    UserPublic,
    UserUpdate,
    ok,
)
from .ads import ad_summary

router = APIRouter(prefix="/users", tags=["users"])


def user_admin(user: User, ads: int, sent: int, received: int) -> UserAdmin:
    account = UserAccount.model_validate(user)
    return UserAdmin(
        **account.model_dump(),
        counts=UserCounts(ads=ads, sent_messages=sent, received_messages=received),
    )


async def load_public_user(db: AsyncSession, user_id: int) -> UserPublic:
    active_ads = (
        select(func.count(Ad.id))
        .where(Ad.user_id == User.id, Ad.is_active.is_(True))
        .correlate(User)
        .scalar_subquery()
    )
    result = await db.execute(select(User, active_ads).where(User.id == user_id))
    row = result.one_or_none()
    if row is None:
        raise NotFound("User not found")
    user, count = row
    return UserPublic(
        id=user.id,
        name=user.name,
        phone=user.phone,
        created_at=user.created_at,
        active_ads=count,
    )


async def get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


@router.get("")
async def get_users(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    role: Optional[str] = None,
    isActive: Optional[str] = None,
    admin: User = Depends(require_admin),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    params = PageParams.from_query(page, limit)
    page_stmt, count_stmt = user_listing(user_filters(search, role, isActive), params)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)
    return ok({
        "users": [user_admin(*row) for row in rows],
        "pagination": build_pagination(params, total),
    })


@router.get("/stats")
async def get_user_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    now = datetime.now(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_month = start_of_day.replace(day=1)
    thirty_days_ago = start_of_day - timedelta(days=30)

    def count(*filters):
        return select(func.count(User.id)).where(*filters).scalar_subquery()

    result = await db.execute(
        select(
            count(),
            count(User.is_active.is_(True)),
            count(User.role == "ADMIN"),
            count(User.created_at >= start_of_day),
            count(User.created_at >= start_of_month),
        )
    )
    total, active, admins, today, this_month = result.one()

    day = func.date(User.created_at)
    trend = await db.execute(
        select(day.label("day"), func.count(User.id))
        .where(User.created_at >= thirty_days_ago)
        .group_by(day)
        .order_by(day)
    )

    return ok({
        "totalUsers": total,
        "activeUsers": active,
        "inactiveUsers": total - active,
        "adminUsers": admins,
        "regularUsers": total - admins,
        "usersToday": today,
        "usersThisMonth": this_month,
        "registrationTrend": [
            {"date": str(date), "count": registered} for date, registered in trend.all()
        ],
    })


@router.get("/{user_id}")
async def get_user_by_id(user_id: int, db: AsyncSession = Depends(get_db)):
    return ok({"user": await load_public_user(db, user_id)})


@router.get("/{user_id}/profile")
async def get_user_profile(
    user_id: int,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    user = await load_public_user(db, user_id)

    params = PageParams.from_query(page, limit, default_limit=12)
    filters = [Ad.user_id == user_id, Ad.is_active.is_(True)]
    page_stmt, count_stmt = ad_listing(filters, ad_ordering("createdAt", "desc"), params)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)
    return ok({
        "user": user,
        "ads": [ad_summary(ad, favorites, views, main_only=True) for ad, favorites, views in rows],
        "pagination": build_pagination(params, total),
    })


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    body: UserUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_or_404(db, user_id)

    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in update_data:
        update_data["email"] = update_data["email"].lower()
        if update_data["email"] != user.email:
            result = await db.execute(select(User).where(User.email == update_data["email"]))
            if result.scalar_one_or_none():
                raise Conflict("Email already in use")

    for field, value in update_data.items():
        setattr(user, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already in use")
    await db.refresh(user)
    return ok({"user": UserAccount.model_validate(user)}, "User updated successfully")


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User, *user_counts()).where(User.id == user_id))
    row = result.one_or_none()
    if row is None:
        raise NotFound("User not found")
    user, ads, sent, received = row

    if ads:
        raise Conflict("Cannot delete user with existing ads. Deactivate ads first.")
    if sent or received:
        raise Conflict("Cannot delete user with message history. Consider deactivating instead.")

    await db.delete(user)
    await db.commit()
    return ok(message="User deleted successfully")


@router.put("/{user_id}/toggle-status")
async def toggle_user_status(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_or_404(db, user_id)
    user.is_active = not user.is_active
    await db.commit()
    await db.refresh(user)

    state = "activated" if user.is_active else "deactivated"
    return ok({"user": UserAccount.model_validate(user)}, f"User {state} successfully")


@router.put("/{user_id}/reset-password")
async def reset_user_password(
    user_id: int,
    body: PasswordReset,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_or_404(db, user_id)
    user.password = get_password_hash(body.new_password)
    await db.commit()
    return ok(message="Password reset successfully")

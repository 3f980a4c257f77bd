import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased, selectinload

from ..auth import ensure_owner_or_admin, get_current_user, get_optional_user
from ..database import get_db, get_sessionmaker
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Ad, AdImage, AdView, Category, Favorite, Message, User
from ..queries import (
    PageParams,
    ad_filters,
    ad_listing,
    ad_ordering,
    build_pagination,
    favorite_count,
    favorites_listing,
    fetch_page,
    view_count,
)
from ..schemas import (
    AdCounts,
    AdCreate,
    AdDetail,
    AdOwner,
    AdSummary,
    AdUpdate,
    CategoryRef,
    CategoryWithParent,
    ImageOut,
    UserContact,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ads", tags=["ads"])


def ad_summary(ad: Ad, favorites: int = 0, views: int = 0, main_only: bool = False) -> AdSummary:
    images = [image for image in ad.images if image.is_main] if main_only else ad.images
    return AdSummary(
        id=ad.id,
        title=ad.title,
        description=ad.description,
        price=ad.price,
        location=ad.location,
        condition=ad.condition,
        category_id=ad.category_id,
        user_id=ad.user_id,
        is_active=ad.is_active,
        created_at=ad.created_at,
        user=UserContact.model_validate(ad.user),
        category=CategoryRef.model_validate(ad.category),
        images=[ImageOut.model_validate(image) for image in images[: 1 if main_only else None]],
        counts=AdCounts(favorites=favorites, views=views),
    )


async def load_ad(db: AsyncSession, ad_id: int) -> Optional[Ad]:
    result = await db.execute(
        select(Ad)
        .options(
            selectinload(Ad.user),
            selectinload(Ad.category),
            selectinload(Ad.images),
        )
        .where(Ad.id == ad_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_owned_ad(db: AsyncSession, ad_id: int, current_user: User, action: str) -> Ad:
    """Fetch an ad for mutation: 404 if missing, 403 unless owner or admin."""
    ad = await load_ad(db, ad_id)
    if not ad:
        raise NotFound("Ad not found")
    ensure_owner_or_admin(ad.user_id, current_user, f"Not authorized to {action} this ad")
    return ad


async def record_view(
    sessionmaker: async_sessionmaker[AsyncSession],
    ad_id: int,
    user_id: Optional[int],
    ip_address: Optional[str],
) -> None:
    """Store one AdView row. Runs after the response; failures are only logged."""
    try:
        async with sessionmaker() as session:
            session.add(AdView(ad_id=ad_id, user_id=user_id, ip_address=ip_address))
            await session.commit()
    except Exception:
        logger.exception("Failed to record view for ad %s", ad_id)


@router.get("")
async def get_ads(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    categoryId: Optional[str] = None,
    location: Optional[str] = None,
    minPrice: Optional[str] = None,
    maxPrice: Optional[str] = None,
    condition: Optional[str] = None,
    sortBy: Optional[str] = None,
    sortOrder: Optional[str] = None,
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    params = PageParams.from_query(page, limit)
    filters = ad_filters(search, categoryId, location, minPrice, maxPrice, condition)
    page_stmt, count_stmt = ad_listing(filters, ad_ordering(sortBy, sortOrder), params)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)
    return ok({
        "ads": [ad_summary(ad, favorites, views) for ad, favorites, views in rows],
        "pagination": build_pagination(params, total),
    })


@router.get("/my-ads")
async def get_my_ads(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    ad_status: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    params = PageParams.from_query(page, limit)
    filters = [Ad.user_id == current_user.id]
    if ad_status:
        filters.append(Ad.is_active.is_(ad_status == "active"))
    page_stmt, count_stmt = ad_listing(filters, ad_ordering("createdAt", "desc"), params)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)
    return ok({
        "ads": [ad_summary(ad, favorites, views, main_only=True) for ad, favorites, views in rows],
        "pagination": build_pagination(params, total),
    })


@router.get("/favorites")
async def get_favorites(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    params = PageParams.from_query(page, limit)
    page_stmt, count_stmt = favorites_listing(current_user.id, params)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)
    return ok({
        "favorites": [ad_summary(ad, favorites, views, main_only=True) for ad, favorites, views in rows],
        "pagination": build_pagination(params, total),
    })


@router.get("/{ad_id}")
async def get_ad_by_id(
    ad_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
    current_user: Optional[User] = Depends(get_optional_user),
):
    owner_ads = aliased(Ad)
    owner_ad_count = (
        select(func.count(owner_ads.id))
        .where(owner_ads.user_id == Ad.user_id)
        .correlate(Ad)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Ad, favorite_count(), view_count(), owner_ad_count)
        .options(
            selectinload(Ad.user),
            selectinload(Ad.category).selectinload(Category.parent),
            selectinload(Ad.images),
        )
        .where(Ad.id == ad_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound("Ad not found")
    ad, favorites, views, total_ads = row

    if current_user is None or current_user.id != ad.user_id:
        background_tasks.add_task(
            record_view,
            sessionmaker,
            ad.id,
            current_user.id if current_user else None,
            request.client.host if request.client else None,
        )

    summary = ad_summary(ad, favorites, views)
    owner = ad.user
    category = ad.category
    detail = AdDetail(
        **summary.model_dump(exclude={"user", "category"}),
        user=AdOwner(
            id=owner.id,
            name=owner.name,
            phone=owner.phone,
            created_at=owner.created_at,
            total_ads=total_ads,
        ),
        category=CategoryWithParent(
            id=category.id,
            name=category.name,
            parent=CategoryRef.model_validate(category.parent) if category.parent else None,
        ),
    )
    return ok({"ad": detail})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ad(
    body: AdCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    category = await db.get(Category, body.category_id)
    if not category:
        raise ValidationFailed("Invalid category ID")

    flagged = [index for index, image in enumerate(body.images) if image.is_main]
    main_index = flagged[0] if flagged else 0
    ad = Ad(
        title=body.title,
        description=body.description,
        price=body.price,
        category_id=body.category_id,
        location=body.location,
        condition=body.condition,
        user_id=current_user.id,
        images=[
            AdImage(url=image.url, is_main=index == main_index)
            for index, image in enumerate(body.images)
        ],
    )
    db.add(ad)
    await db.commit()

    logger.info("User %s created ad %s", current_user.id, ad.id)
    ad = await load_ad(db, ad.id)
    return ok({"ad": ad_summary(ad)}, "Ad created successfully")


@router.put("/{ad_id}")
async def update_ad(
    ad_id: int,
    body: AdUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ad = await get_owned_ad(db, ad_id, current_user, "update")

    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "category_id" in update_data and update_data["category_id"] != ad.category_id:
        if not await db.get(Category, update_data["category_id"]):
            raise ValidationFailed("Invalid category ID")
    for field, value in update_data.items():
        setattr(ad, field, value)
    await db.commit()

    ad = await load_ad(db, ad_id)
    return ok({"ad": ad_summary(ad)}, "Ad updated successfully")


@router.delete("/{ad_id}")
async def delete_ad(
    ad_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ad = await get_owned_ad(db, ad_id, current_user, "delete")

    # Images, favorites and views go with the ORM cascade; messages stay.
    await db.execute(update(Message).where(Message.ad_id == ad_id).values(ad_id=None))
    await db.delete(ad)
    await db.commit()

    logger.info("Ad %s deleted by user %s", ad_id, current_user.id)
    return ok(message="Ad deleted successfully")


@router.post("/{ad_id}/favorite")
async def toggle_favorite(
    ad_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not await db.get(Ad, ad_id):
        raise NotFound("Ad not found")

    result = await db.execute(
        select(Favorite).where(Favorite.user_id == current_user.id, Favorite.ad_id == ad_id)
    )
    existing = result.scalar_one_or_none()

    if existing:
        # Removes nothing if a concurrent toggle already deleted the row.
        await db.execute(delete(Favorite).where(Favorite.id == existing.id))
        await db.commit()
        return ok({"isFavorited": False}, "Removed from favorites")

    db.add(Favorite(user_id=current_user.id, ad_id=ad_id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Ad is already in favorites")
    return ok({"isFavorited": True}, "Added to favorites")


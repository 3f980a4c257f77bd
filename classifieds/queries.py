"""Listing query builders.

Every listing endpoint turns loosely-typed query string values into a filter
predicate plus an offset/limit/order clause, then issues one page read and one
count read concurrently.  Query parameters arrive as raw strings so that a
malformed number degrades to "filter absent" instead of a 4xx/5xx.
"""
import asyncio
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import Select, and_, false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .config import get_settings
from .models import CONDITIONS, ROLES, Ad, AdView, Category, Favorite, Message, User
from .schemas import Pagination

# Largest offset every supported driver can bind.
MAX_OFFSET = 2**31 - 1

AD_SORT_FIELDS = {
    "createdAt": Ad.created_at,
    "price": Ad.price,
    "title": Ad.title,
}


def parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = str(value).strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return None


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_query(
        cls, page: Optional[str], limit: Optional[str], default_limit: Optional[int] = None
    ) -> "PageParams":
        settings = get_settings()
        if default_limit is None:
            default_limit = settings.DEFAULT_PAGE_SIZE
        page_size = parse_int(limit)
        if page_size is None or page_size < 1:
            page_size = default_limit
        page_size = min(page_size, settings.MAX_PAGE_SIZE)
        page_number = parse_int(page)
        if page_number is None or page_number < 1 or (page_number - 1) * page_size > MAX_OFFSET:
            page_number = 1
        return cls(page=page_number, limit=page_size)


def build_pagination(params: PageParams, total: int) -> Pagination:
    total_pages = math.ceil(total / params.limit) if params.limit else 0
    return Pagination(
        current_page=params.page,
        total_pages=total_pages,
        total_items=total,
        items_per_page=params.limit,
        has_next=params.page < total_pages,
        has_prev=params.page > 1,
    )


async def fetch_page(
    sessionmaker: async_sessionmaker[AsyncSession],
    page_stmt: Select,
    count_stmt: Select,
) -> Tuple[List[Any], int]:
    """Run the page read and the count read concurrently on separate sessions."""

    async def _rows():
        async with sessionmaker() as session:
            result = await session.execute(page_stmt)
            return list(result.all())

    async def _total():
        async with sessionmaker() as session:
            result = await session.execute(count_stmt)
            return result.scalar_one()

    rows, total = await asyncio.gather(_rows(), _total())
    return rows, total


def contains(column, term: str):
    return column.icontains(term, autoescape=True)


# Ads

def favorite_count():
    return (
        select(func.count(Favorite.id))
        .where(Favorite.ad_id == Ad.id)
        .correlate(Ad)
        .scalar_subquery()
    )


def view_count():
    return (
        select(func.count(AdView.id))
        .where(AdView.ad_id == Ad.id)
        .correlate(Ad)
        .scalar_subquery()
    )


def ad_filters(
    search: Optional[str] = None,
    category_id: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    condition: Optional[str] = None,
) -> list:
    filters = [Ad.is_active.is_(True)]
    if search:
        filters.append(or_(contains(Ad.title, search), contains(Ad.description, search)))
    category = parse_int(category_id)
    if category is not None:
        filters.append(Ad.category_id == category)
    if location:
        filters.append(contains(Ad.location, location))
    low = parse_float(min_price)
    if low is not None:
        filters.append(Ad.price >= low)
    high = parse_float(max_price)
    if high is not None:
        filters.append(Ad.price <= high)
    if condition in CONDITIONS:
        filters.append(Ad.condition == condition)
    return filters


def ad_ordering(sort_by: Optional[str], sort_order: Optional[str]) -> list:
    column = AD_SORT_FIELDS.get(sort_by or "", Ad.created_at)
    if (sort_order or "").lower() == "asc":
        return [column.asc(), Ad.id.asc()]
    return [column.desc(), Ad.id.desc()]


def ad_listing(filters: Sequence, order_by: Sequence, params: PageParams) -> Tuple[Select, Select]:
    page_stmt = (
        select(Ad, favorite_count().label("favorites"), view_count().label("views"))
        .options(
            selectinload(Ad.user),
            selectinload(Ad.category),
            selectinload(Ad.images),
        )
        .where(*filters)
        .order_by(*order_by)
        .offset(params.offset)
        .limit(params.limit)
    )
    count_stmt = select(func.count(Ad.id)).where(*filters)
    return page_stmt, count_stmt


def favorites_listing(user_id: int, params: PageParams) -> Tuple[Select, Select]:
    page_stmt = (
        select(Ad, favorite_count().label("favorites"), view_count().label("views"))
        .join(Favorite, and_(Favorite.ad_id == Ad.id, Favorite.user_id == user_id))
        .options(
            selectinload(Ad.user),
            selectinload(Ad.category),
            selectinload(Ad.images),
        )
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .offset(params.offset)
        .limit(params.limit)
    )
    count_stmt = select(func.count(Favorite.id)).where(Favorite.user_id == user_id)
    return page_stmt, count_stmt


# Users

def user_filters(
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[str] = None,
) -> list:
    filters = []
    if search:
        filters.append(or_(contains(User.name, search), contains(User.email, search)))
    if role:
        # An unknown role matches nobody rather than everybody.
        filters.append(User.role == role if role in ROLES else false())
    active = parse_bool(is_active)
    if active is not None:
        filters.append(User.is_active.is_(active))
    return filters


def user_counts():
    ads = (
        select(func.count(Ad.id)).where(Ad.user_id == User.id).correlate(User).scalar_subquery()
    )
    sent = (
        select(func.count(Message.id))
        .where(Message.sender_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    received = (
        select(func.count(Message.id))
        .where(Message.receiver_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    return ads.label("ads"), sent.label("sent_messages"), received.label("received_messages")


def user_listing(filters: Sequence, params: PageParams) -> Tuple[Select, Select]:
    page_stmt = (
        select(User, *user_counts())
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset(params.offset)
        .limit(params.limit)
    )
    count_stmt = select(func.count(User.id)).where(*filters)
    return page_stmt, count_stmt


# Categories

def active_ad_count():
    return (
        select(func.count(Ad.id))
        .where(Ad.category_id == Category.id, Ad.is_active.is_(True))
        .correlate(Category)
        .scalar_subquery()
    )

from collections import defaultdict
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from ..auth import require_admin
from ..database import get_db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Ad, Category, User
from ..queries import active_ad_count, parse_bool
from ..schemas import (
    CategoryCreate,
    CategoryNode,
    CategoryRef,
    CategoryStat,
    CategoryUpdate,
    ok,
)

router = APIRouter(prefix="/categories", tags=["categories"])


def category_node(category: Category, active_ads: int, **extra) -> CategoryNode:
    return CategoryNode(
        id=category.id,
        name=category.name,
        description=category.description,
        icon=category.icon,
        parent_id=category.parent_id,
        is_active=category.is_active,
        active_ads=active_ads,
        **extra,
    )


async def load_active_children(db: AsyncSession, parent_id: int) -> List[CategoryNode]:
    result = await db.execute(
        select(Category, active_ad_count())
        .where(Category.parent_id == parent_id, Category.is_active.is_(True))
        .order_by(Category.name)
    )
    return [category_node(child, count) for child, count in result.all()]


async def find_sibling(
    db: AsyncSession, name: str, parent_id: Optional[int], exclude_id: Optional[int] = None
) -> Optional[Category]:
    """Case-insensitive name lookup among categories sharing ``parent_id``."""
    stmt = select(Category).where(func.lower(Category.name) == name.lower())
    if parent_id is None:
        stmt = stmt.where(Category.parent_id.is_(None))
    else:
        stmt = stmt.where(Category.parent_id == parent_id)
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def validate_parent(db: AsyncSession, parent_id: int) -> Category:
    parent = await db.get(Category, parent_id)
    if not parent:
        raise ValidationFailed("Parent category not found")
    # Two levels only: a parent must itself be a root.
    if parent.parent_id is not None:
        raise ValidationFailed("Subcategories cannot have their own subcategories")
    return parent


async def category_detail(db: AsyncSession, category_id: int) -> CategoryNode:
    result = await db.execute(
        select(Category, active_ad_count())
        .options(selectinload(Category.parent))
        .where(Category.id == category_id)
        .execution_options(populate_existing=True)
    )
    category, count = result.one()
    parent = CategoryRef.model_validate(category.parent) if category.parent else None
    return category_node(
        category,
        count,
        parent=parent,
        subcategories=await load_active_children(db, category.id),
    )


@router.get("")
async def get_categories(
    includeSubcategories: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    include_children = parse_bool(includeSubcategories) is not False
    result = await db.execute(
        select(Category, active_ad_count())
        .where(Category.is_active.is_(True))
        .order_by(Category.name)
    )
    rows = result.all()

    children: Dict[int, List[CategoryNode]] = defaultdict(list)
    for category, count in rows:
        if category.parent_id is not None:
            children[category.parent_id].append(category_node(category, count))

    roots = [
        category_node(
            category,
            count,
            subcategories=children.get(category.id, []) if include_children else None,
        )
        for category, count in rows
        if category.parent_id is None
    ]
    return ok({"categories": roots})


@router.get("/stats")
async def get_category_stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    child = aliased(Category)
    active_children = (
        select(func.count(child.id))
        .where(child.parent_id == Category.id, child.is_active.is_(True))
        .correlate(Category)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Category, active_ad_count(), active_children)
        .where(Category.is_active.is_(True))
        .order_by(Category.name)
    )
    stats = [
        CategoryStat(
            id=category.id,
            name=category.name,
            parent_id=category.parent_id,
            active_ads=ads,
            active_subcategories=subcategories,
        )
        for category, ads, subcategories in result.all()
    ]
    roots = [stat for stat in stats if stat.parent_id is None]
    return ok({
        "totalCategories": len(stats),
        "totalAds": sum(stat.active_ads for stat in stats),
        "parentCategoriesCount": len(roots),
        "subcategoriesCount": len(stats) - len(roots),
        "categories": stats,
    })


@router.get("/{category_id}")
async def get_category_by_id(category_id: int, db: AsyncSession = Depends(get_db)):
    category = await db.get(Category, category_id)
    if not category or not category.is_active:
        raise NotFound("Category not found")
    return ok({"category": await category_detail(db, category_id)})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if body.parent_id is not None:
        await validate_parent(db, body.parent_id)

    if await find_sibling(db, body.name, body.parent_id):
        raise Conflict("Category with this name already exists at this level")

    category = Category(
        name=body.name,
        description=body.description or None,
        parent_id=body.parent_id,
        icon=body.icon or None,
    )
    db.add(category)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Category with this name already exists at this level")

    return ok({"category": await category_detail(db, category.id)}, "Category created successfully")


@router.put("/{category_id}")
async def update_category(
    category_id: int,
    body: CategoryUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    category = await db.get(Category, category_id)
    if not category:
        raise NotFound("Category not found")

    update_data = body.model_dump(exclude_unset=True)
    for key in ("name", "is_active"):
        if update_data.get(key) is None:
            update_data.pop(key, None)

    parent_id = update_data.get("parent_id", category.parent_id)
    parent_changed = parent_id != category.parent_id
    if parent_changed and parent_id is not None:
        if parent_id == category_id:
            raise ValidationFailed("Category cannot be its own parent")
        await validate_parent(db, parent_id)
        has_children = await db.scalar(
            select(func.count(Category.id)).where(Category.parent_id == category_id)
        )
        if has_children:
            raise ValidationFailed("A category with subcategories cannot become a subcategory")

    # Moving to another level is checked against the new siblings too.
    name = update_data.get("name", category.name)
    if parent_changed or name != category.name:
        if await find_sibling(db, name, parent_id, exclude_id=category_id):
            raise Conflict("Category with this name already exists at this level")

    for field, value in update_data.items():
        setattr(category, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Category with this name already exists at this level")

    return ok({"category": await category_detail(db, category_id)}, "Category updated successfully")


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    category = await db.get(Category, category_id)
    if not category:
        raise NotFound("Category not found")

    subcategories = await db.scalar(
        select(func.count(Category.id)).where(Category.parent_id == category_id)
    )
    if subcategories:
        raise Conflict("Cannot delete category with subcategories. Delete subcategories first.")

    ads = await db.scalar(select(func.count(Ad.id)).where(Ad.category_id == category_id))
    if ads:
        raise Conflict("Cannot delete category with existing ads. Move or delete ads first.")

    await db.delete(category)
    await db.commit()
    return ok(message="Category deleted successfully")

"""System categories and subcategory helpers.

The category tree is reference data shared by every user. It is seeded
from ``data/categories.yml`` on startup; seeding only inserts missing
rows so edits made through the API survive restarts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import NotFoundError, ValidationError
from ledgerly.models.tables import Category, Subcategory
from ledgerly.utils.helpers import slugify

logger = logging.getLogger(__name__)

CATEGORIES_FILE = Path(__file__).resolve().parents[1] / "data" / "categories.yml"


def load_category_definitions(path: Path = CATEGORIES_FILE) -> Dict[str, Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


SYSTEM_CATEGORIES: Dict[str, Dict[str, Any]] = load_category_definitions()


async def seed_system_categories(db: AsyncSession) -> int:
    """Insert missing system categories and subcategories; returns rows created."""
    existing = {c.slug: c for c in (await db.execute(select(Category))).scalars().all()}
    existing_subs = {s.slug for s in (await db.execute(select(Subcategory))).scalars().all()}
    created = 0

    for order, (slug, attrs) in enumerate(SYSTEM_CATEGORIES.items()):
        category = existing.get(slug)
        if category is None:
            category = Category(
                name=slug.replace("_", " ").title(),
                slug=slug,
                icon=attrs.get("icon"),
                color=attrs.get("color"),
                description=attrs.get("description"),
                is_system=True,
            )
            db.add(category)
            await db.flush()
            created += 1

        for position, sub in enumerate(attrs.get("subcategories") or [], start=1):
            if sub["slug"] in existing_subs:
                continue
            db.add(
                Subcategory(
                    category_id=category.id,
                    name=sub["name"],
                    slug=sub["slug"],
                    keywords=list(sub.get("keywords") or []),
                    is_default=bool(sub.get("default", False)),
                    display_order=position,
                )
            )
            created += 1

    await db.flush()
    if created:
        logger.info("Seeded %d category rows", created)
    return created


class CategoryService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_categories(self) -> List[Category]:
        result = await self.db.execute(select(Category).order_by(Category.is_system.desc(), Category.name))
        return list(result.scalars().all())

    async def get(self, category_id: int) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def list_subcategories(self, category_id: int) -> List[Subcategory]:
        await self.get(category_id)
        result = await self.db.execute(
            select(Subcategory)
            .where(Subcategory.category_id == category_id)
            .order_by(Subcategory.display_order, Subcategory.name)
        )
        return list(result.scalars().all())

    async def create_category(
        self,
        name: str,
        parent_id: Optional[int] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Category:
        if parent_id is not None:
            await self.get(parent_id)
        category = Category(
            name=name,
            slug=slugify(name),
            parent_id=parent_id,
            icon=icon,
            color=color,
            description=description,
            is_system=False,
        )
        self.db.add(category)
        await self.db.flush()
        return category

    async def create_subcategory(
        self, category_id: int, name: str, keywords: Optional[List[str]] = None, is_default: bool = False
    ) -> Subcategory:
        category = await self.get(category_id)
        subcategory = Subcategory(
            category_id=category.id,
            name=name,
            slug=f"{category.slug}-{slugify(name)}",
            keywords=[k.strip().lower() for k in (keywords or []) if k.strip()],
            is_default=is_default,
        )
        self.db.add(subcategory)
        await self.db.flush()
        return subcategory

    async def validate_subcategory(self, category_id: Optional[int], subcategory_id: Optional[int]) -> None:
        """Raise when ``subcategory_id`` does not belong to ``category_id``."""
        if subcategory_id is None:
            return
        subcategory = await self.db.get(Subcategory, subcategory_id) if category_id is not None else None
        if subcategory is None or subcategory.category_id != category_id:
            raise ValidationError("Subcategory does not belong to the selected category")

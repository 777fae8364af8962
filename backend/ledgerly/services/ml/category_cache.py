"""Category and subcategory lookups for the categorisation pipeline.

Categorising a statement touches the category table once per
transaction. The cache keeps plain snapshots of every category and
subcategory in process, backed by a Redis JSON copy so that API
processes and dramatiq workers share one load. Snapshots are detached
from any session, so they can be reused across requests.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.models.tables import Category, Subcategory
from ledgerly.services.cache import CATEGORY_CACHE_KEY, cache_delete, cache_get_json, cache_set_json

logger = logging.getLogger(__name__)


@dataclass
class CachedCategory:
    id: int
    slug: str
    name: str
    parent_id: Optional[int] = None


@dataclass
class CachedSubcategory:
    id: int
    category_id: int
    slug: str
    name: str
    keywords: List[str] = field(default_factory=list)
    is_default: bool = False


class CategoryCache:
    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or settings.CATEGORY_CACHE_TTL_SECONDS
        self._by_slug: Dict[str, CachedCategory] = {}
        self._by_id: Dict[int, CachedCategory] = {}
        self._sub_by_slug: Dict[str, CachedSubcategory] = {}
        self._sub_by_category: Dict[int, List[CachedSubcategory]] = {}
        self._loaded_at: Optional[float] = None

    @property
    def stale(self) -> bool:
        return self._loaded_at is None or time.monotonic() - self._loaded_at > self.ttl_seconds

    async def ensure_loaded(self, session: AsyncSession) -> None:
        if not self.stale:
            return
        payload = await cache_get_json(CATEGORY_CACHE_KEY)
        if payload is None:
            payload = await self._load_payload(session)
            await cache_set_json(CATEGORY_CACHE_KEY, payload, self.ttl_seconds)
        self._populate(payload)

    async def refresh(self, session: AsyncSession) -> None:
        """Reload from the database and overwrite the shared Redis copy."""
        await cache_delete(CATEGORY_CACHE_KEY)
        self._loaded_at = None
        await self.ensure_loaded(session)

    def clear(self) -> None:
        self._by_slug.clear()
        self._by_id.clear()
        self._sub_by_slug.clear()
        self._sub_by_category.clear()
        self._loaded_at = None

    async def _load_payload(self, session: AsyncSession) -> Dict[str, list]:
        categories = (await session.execute(select(Category))).scalars().all()
        subcategories = (
            await session.execute(select(Subcategory).order_by(Subcategory.display_order, Subcategory.name))
        ).scalars().all()
        return {
            "categories": [
                asdict(CachedCategory(id=c.id, slug=c.slug, name=c.name, parent_id=c.parent_id))
                for c in categories
            ],
            "subcategories": [
                asdict(
                    CachedSubcategory(
                        id=s.id,
                        category_id=s.category_id,
                        slug=s.slug,
                        name=s.name,
                        keywords=list(s.keywords or []),
                        is_default=bool(s.is_default),
                    )
                )
                for s in subcategories
            ],
        }

    def _populate(self, payload: Dict[str, list]) -> None:
        self.clear()
        for row in payload.get("categories", []):
            cat = CachedCategory(**row)
            self._by_slug[cat.slug.lower()] = cat
            self._by_id[cat.id] = cat
        for row in payload.get("subcategories", []):
            sub = CachedSubcategory(**row)
            self._sub_by_slug[sub.slug.lower()] = sub
            self._sub_by_category.setdefault(sub.category_id, []).append(sub)
        self._loaded_at = time.monotonic()
        logger.info(
            "Category cache loaded %d categories, %d subcategories",
            len(self._by_id),
            len(self._sub_by_slug),
        )

    # Lookups -----------------------------------------------------------

    def find_by_slug(self, slug: Optional[str]) -> Optional[CachedCategory]:
        return self._by_slug.get((slug or "").lower())

    def find_by_id(self, category_id: Optional[int]) -> Optional[CachedCategory]:
        if category_id is None:
            return None
        return self._by_id.get(int(category_id))

    def all(self) -> List[CachedCategory]:
        return list(self._by_id.values())

    def subcategory_by_slug(self, slug: Optional[str]) -> Optional[CachedSubcategory]:
        return self._sub_by_slug.get((slug or "").lower())

    def subcategories_for(self, category_id: int) -> List[CachedSubcategory]:
        return list(self._sub_by_category.get(category_id, []))

    def default_subcategory(self, category_id: int) -> Optional[CachedSubcategory]:
        return next((s for s in self._sub_by_category.get(category_id, []) if s.is_default), None)

    def find_subcategory(self, category_id: Optional[int], keywords: Iterable[str]) -> Optional[CachedSubcategory]:
        """First subcategory whose keywords appear in ``keywords``, else the default."""
        if category_id is None:
            return None
        text = " ".join(keywords).lower()
        for sub in self._sub_by_category.get(category_id, []):
            if any(str(kw).lower() in text for kw in sub.keywords):
                return sub
        return self.default_subcategory(category_id)

    def resolve_subcategory(self, category_id: Optional[int], slug: Optional[str]) -> Optional[CachedSubcategory]:
        """Resolve a subcategory slug, accepting both ``food-delivery`` and ``delivery``."""
        if category_id is None or not slug:
            return None
        category = self.find_by_id(category_id)
        candidates = [slug.lower()]
        if category:
            candidates.append(f"{category.slug}-{slug.lower()}")
        for candidate in candidates:
            sub = self._sub_by_slug.get(candidate)
            if sub and sub.category_id == category_id:
                return sub
        return None

    def stats(self) -> Dict[str, object]:
        return {"size": len(self._by_id), "subcategories": len(self._sub_by_slug), "stale": self.stale}


category_cache = CategoryCache()

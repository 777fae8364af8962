"""API routes for categories and subcategories."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session
from ledgerly.models.schemas import CategoryCreate, CategoryRead, SubcategoryCreate, SubcategoryRead
from ledgerly.models.tables import User
from ledgerly.services.categories import CategoryService
from ledgerly.services.ml.category_cache import category_cache

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=List[CategoryRead])
async def list_categories(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[CategoryRead]:
    categories = await CategoryService(db).list_categories()
    return [CategoryRead.model_validate(c, from_attributes=True) for c in categories]


@router.post("", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> CategoryRead:
    category = await CategoryService(db).create_category(**payload.model_dump())
    await db.commit()
    await db.refresh(category)
    await category_cache.refresh(db)
    return CategoryRead.model_validate(category, from_attributes=True)


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> CategoryRead:
    category = await CategoryService(db).get(category_id)
    return CategoryRead.model_validate(category, from_attributes=True)


@router.get("/{category_id}/subcategories", response_model=List[SubcategoryRead])
async def list_subcategories(
    category_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[SubcategoryRead]:
    subcategories = await CategoryService(db).list_subcategories(category_id)
    return [SubcategoryRead.model_validate(s, from_attributes=True) for s in subcategories]


@router.post(
    "/{category_id}/subcategories", response_model=SubcategoryRead, status_code=status.HTTP_201_CREATED
)
async def create_subcategory(
    category_id: int,
    payload: SubcategoryCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> SubcategoryRead:
    subcategory = await CategoryService(db).create_subcategory(category_id, **payload.model_dump())
    await db.commit()
    await db.refresh(subcategory)
    await category_cache.refresh(db)
    return SubcategoryRead.model_validate(subcategory, from_attributes=True)

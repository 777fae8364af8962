"""API routes for managing per-user categorisation rules."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session
from ledgerly.models.enums import RuleSource
from ledgerly.models.schemas import UserRuleCreate, UserRuleRead, UserRuleUpdate
from ledgerly.models.tables import User, UserRule
from ledgerly.services.categories import CategoryService

router = APIRouter(prefix="/user-rules", tags=["user-rules"])


async def _owned_rule(db: AsyncSession, rule_id: int, user: User) -> UserRule:
    rule = await db.get(UserRule, rule_id)
    if not rule or rule.user_id != user.id:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("", response_model=List[UserRuleRead])
async def list_rules(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[UserRuleRead]:
    """List the current user's rules, highest priority first."""
    query = (
        select(UserRule)
        .where(UserRule.user_id == user.id)
        .order_by(UserRule.priority.desc(), UserRule.match_count.desc(), UserRule.id)
    )
    rules = (await db.execute(query)).scalars().unique().all()
    return [UserRuleRead.model_validate(rule, from_attributes=True) for rule in rules]


@router.post("", response_model=UserRuleRead, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: UserRuleCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> UserRuleRead:
    categories = CategoryService(db)
    await categories.get(payload.category_id)
    await categories.validate_subcategory(payload.category_id, payload.subcategory_id)

    rule = UserRule(
        user_id=user.id,
        pattern=payload.pattern,
        pattern_type=payload.pattern_type.value,
        match_field=payload.match_field.value,
        category_id=payload.category_id,
        subcategory_id=payload.subcategory_id,
        amount_min=payload.amount_min,
        amount_max=payload.amount_max,
        priority=payload.priority,
        source=RuleSource.MANUAL.value,
    )
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    return UserRuleRead.model_validate(rule, from_attributes=True)


@router.get("/{rule_id}", response_model=UserRuleRead)
async def get_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> UserRuleRead:
    return UserRuleRead.model_validate(await _owned_rule(db, rule_id, user), from_attributes=True)


@router.put("/{rule_id}", response_model=UserRuleRead)
async def update_rule(
    rule_id: int,
    payload: UserRuleUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> UserRuleRead:
    rule = await _owned_rule(db, rule_id, user)
    if payload.category_id is not None:
        await CategoryService(db).get(payload.category_id)
        rule.category_id = payload.category_id
        # Subcategory of the old category no longer applies.
        rule.subcategory_id = None
    if payload.subcategory_id is not None:
        await CategoryService(db).validate_subcategory(rule.category_id, payload.subcategory_id)
        rule.subcategory_id = payload.subcategory_id
    if payload.priority is not None:
        rule.priority = payload.priority
    if payload.is_active is not None:
        rule.is_active = payload.is_active
    await db.commit()
    await db.refresh(rule)
    return UserRuleRead.model_validate(rule, from_attributes=True)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    rule = await _owned_rule(db, rule_id, user)
    await db.delete(rule)
    await db.commit()

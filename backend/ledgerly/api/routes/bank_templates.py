"""API routes for bank statement templates (read-only)."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session
from ledgerly.models.schemas import BankTemplateGroup, BankTemplateRead
from ledgerly.models.tables import User
from ledgerly.services.bank_templates import BankTemplateService

router = APIRouter(prefix="/bank-templates", tags=["bank_templates"])


@router.get("", response_model=List[BankTemplateRead])
async def list_bank_templates(
    bank_code: Optional[str] = None,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[BankTemplateRead]:
    templates = await BankTemplateService(db).list_active(bank_code)
    return [BankTemplateRead.model_validate(t, from_attributes=True) for t in templates]


@router.get("/grouped", response_model=List[BankTemplateGroup])
async def grouped_bank_templates(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[BankTemplateGroup]:
    """Templates grouped by bank, for the upload form's bank picker."""
    groups = await BankTemplateService(db).grouped_by_bank()
    return [
        BankTemplateGroup(
            bank_code=g["bank_code"],
            bank_name=g["bank_name"],
            templates=[BankTemplateRead.model_validate(t, from_attributes=True) for t in g["templates"]],
        )
        for g in groups
    ]


@router.get("/{template_id}", response_model=BankTemplateRead)
async def get_bank_template(
    template_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> BankTemplateRead:
    template = await BankTemplateService(db).get(template_id)
    return BankTemplateRead.model_validate(template, from_attributes=True)

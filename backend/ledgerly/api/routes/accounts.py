"""API routes for bank accounts."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session, get_workspace_id
from ledgerly.models.schemas import AccountCreate, AccountRead
from ledgerly.models.tables import Account, User
from ledgerly.services.transactions import AccountService

router = APIRouter(prefix="/accounts", tags=["accounts"])


async def _read(service: AccountService, account: Account) -> AccountRead:
    read = AccountRead.model_validate(account, from_attributes=True)
    read.current_balance = await service.current_balance(account)
    return read


@router.get("", response_model=List[AccountRead])
async def list_accounts(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[AccountRead]:
    service = AccountService(db)
    return [await _read(service, a) for a in await service.list(user.id)]


@router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
async def create_account(
    payload: AccountCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    workspace_id: Optional[int] = Depends(get_workspace_id),
) -> AccountRead:
    service = AccountService(db)
    account = await service.create(user.id, payload.model_dump(mode="json"), workspace_id)
    return await _read(service, account)


@router.get("/{account_id}", response_model=AccountRead)
async def get_account(
    account_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> AccountRead:
    service = AccountService(db)
    return await _read(service, await service.get(account_id, user.id))

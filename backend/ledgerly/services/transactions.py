"""Transaction lookup and manual edits."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import NotFoundError, ValidationError
from ledgerly.models.enums import CategorizationStatus
from ledgerly.models.tables import Account, Transaction
from ledgerly.services.categories import CategoryService

logger = logging.getLogger(__name__)


@dataclass
class TransactionFilters:
    statement_id: Optional[int] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    transaction_type: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    search: Optional[str] = None
    uncategorized: Optional[bool] = None

    def conditions(self, user_id: int) -> list:
        clauses = [Transaction.user_id == user_id]
        if self.statement_id is not None:
            clauses.append(Transaction.statement_id == self.statement_id)
        if self.account_id is not None:
            clauses.append(Transaction.account_id == self.account_id)
        if self.category_id is not None:
            clauses.append(Transaction.category_id == self.category_id)
        if self.transaction_type:
            clauses.append(Transaction.transaction_type == self.transaction_type)
        if self.start_date:
            clauses.append(Transaction.transaction_date >= self.start_date)
        if self.end_date:
            clauses.append(Transaction.transaction_date <= self.end_date)
        if self.search:
            like = f"%{self.search.strip()}%"
            clauses.append(or_(Transaction.description.ilike(like), Transaction.counterparty_name.ilike(like)))
        if self.uncategorized is True:
            clauses.append(Transaction.category_id.is_(None))
        elif self.uncategorized is False:
            clauses.append(Transaction.category_id.is_not(None))
        return clauses


class TransactionService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, transaction_id: int, user_id: int) -> Transaction:
        transaction = (
            await self.db.execute(
                select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
            )
        ).scalar_one_or_none()
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    async def list(self, user_id: int, filters: Optional[TransactionFilters] = None) -> List[Transaction]:
        filters = filters or TransactionFilters()
        query = (
            select(Transaction)
            .where(*filters.conditions(user_id))
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        return list((await self.db.execute(query)).scalars().unique().all())

    async def create(self, user_id: int, data: Dict[str, Any], workspace_id: Optional[int] = None) -> Transaction:
        if data.get("account_id") is not None:
            account = await self.db.get(Account, data["account_id"])
            if account is None or account.user_id != user_id:
                raise ValidationError(f"Account {data['account_id']} does not exist")
        if data.get("category_id") is not None:
            await CategoryService(self.db).validate_subcategory(data["category_id"], data.get("subcategory_id"))
        elif data.get("subcategory_id") is not None:
            raise ValidationError("subcategory_id requires category_id")
        transaction = Transaction(user_id=user_id, workspace_id=workspace_id, **data)
        if transaction.category_id is not None:
            transaction.categorization_status = CategorizationStatus.COMPLETED.value
            transaction.is_reviewed = True
        self.db.add(transaction)
        await self.db.commit()
        await self.db.refresh(transaction)
        return transaction

    async def update(self, transaction: Transaction, changes: Dict[str, Any]) -> Transaction:
        """Apply a manual edit; a category change counts as a review."""
        category_id = changes.get("category_id", transaction.category_id)
        subcategory_id = changes.get("subcategory_id", transaction.subcategory_id)
        if "category_id" in changes and "subcategory_id" not in changes and category_id != transaction.category_id:
            subcategory_id = None
        if category_id is not None:
            await CategoryService(self.db).validate_subcategory(category_id, subcategory_id)
        elif subcategory_id is not None:
            raise ValidationError("subcategory_id requires category_id")

        if "description" in changes and changes["description"]:
            transaction.description = " ".join(str(changes["description"]).split())
        if "tx_kind" in changes:
            transaction.tx_kind = changes["tx_kind"]
        if category_id != transaction.category_id or subcategory_id != transaction.subcategory_id:
            transaction.category_id = category_id
            transaction.subcategory_id = subcategory_id
            transaction.is_reviewed = True
        if "is_reviewed" in changes and changes["is_reviewed"] is not None:
            transaction.is_reviewed = changes["is_reviewed"]
        await self.db.commit()
        await self.db.refresh(transaction)
        return transaction

    async def delete(self, transaction: Transaction) -> None:
        await self.db.delete(transaction)
        await self.db.commit()


class AccountService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, user_id: int, data: Dict[str, Any], workspace_id: Optional[int] = None) -> Account:
        account = Account(user_id=user_id, workspace_id=workspace_id, **data)
        self.db.add(account)
        await self.db.commit()
        await self.db.refresh(account)
        return account

    async def get(self, account_id: int, user_id: int) -> Account:
        account = (
            await self.db.execute(select(Account).where(Account.id == account_id, Account.user_id == user_id))
        ).scalar_one_or_none()
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    async def list(self, user_id: int) -> List[Account]:
        query = select(Account).where(Account.user_id == user_id).order_by(Account.bank_name, Account.name)
        return list((await self.db.execute(query)).scalars().all())

    async def current_balance(self, account: Account) -> Optional[float]:
        """Balance column of the latest transaction that carries one."""
        balance = (
            await self.db.execute(
                select(Transaction.balance)
                .where(Transaction.account_id == account.id, Transaction.balance.is_not(None))
                .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        return float(balance) if balance is not None else None

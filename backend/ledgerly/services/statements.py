"""Statement bookkeeping: registration, lookup and derived totals."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core import dispatch
from ledgerly.core.errors import NotFoundError, ValidationError
from ledgerly.models.enums import StatementStatus, TransactionType
from ledgerly.models.tables import Account, BankTemplate, Statement, Transaction

logger = logging.getLogger(__name__)


class StatementService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(
        self,
        user_id: int,
        file_name: str,
        file_type: str,
        content: bytes,
        bank_template_id: Optional[int] = None,
        account_id: Optional[int] = None,
        workspace_id: Optional[int] = None,
    ) -> Statement:
        if bank_template_id is not None and await self.db.get(BankTemplate, bank_template_id) is None:
            raise ValidationError(f"Bank template {bank_template_id} does not exist")
        if account_id is not None:
            account = await self.db.get(Account, account_id)
            if account is None or account.user_id != user_id:
                raise ValidationError(f"Account {account_id} does not exist")
        statement = Statement(
            user_id=user_id,
            workspace_id=workspace_id,
            file_name=file_name,
            file_type=file_type,
            content=content,
            bank_template_id=bank_template_id,
            account_id=account_id,
            status=StatementStatus.PENDING.value,
            meta={},
        )
        self.db.add(statement)
        await self.db.commit()
        await self.db.refresh(statement)
        return statement

    async def get(self, statement_id: int, user_id: int) -> Statement:
        statement = (
            await self.db.execute(
                select(Statement).where(Statement.id == statement_id, Statement.user_id == user_id)
            )
        ).scalar_one_or_none()
        if statement is None:
            raise NotFoundError(f"Statement {statement_id} not found")
        return statement

    async def list(self, user_id: int, status: Optional[str] = None) -> List[Statement]:
        query = select(Statement).where(Statement.user_id == user_id)
        if status:
            query = query.where(Statement.status == status)
        query = query.order_by(Statement.created_at.desc())
        return list((await self.db.execute(query)).scalars().unique().all())

    async def delete(self, statement_id: int, user_id: int) -> None:
        statement = await self.get(statement_id, user_id)
        await self.db.execute(delete(Transaction).where(Transaction.statement_id == statement.id))
        await self.db.delete(statement)
        await self.db.commit()

    async def queue_parse(self, statement: Statement) -> Optional[str]:
        if statement.status == StatementStatus.PROCESSING.value:
            raise ValidationError("Statement is already being parsed")
        return dispatch.enqueue("parse_statement", statement.id)

    async def reset_for_reparse(self, statement: Statement) -> None:
        """Drop previously imported rows so a re-parse does not duplicate them."""
        await self.db.execute(delete(Transaction).where(Transaction.statement_id == statement.id))
        statement.status = StatementStatus.PENDING.value
        statement.error_message = None
        statement.parsed_at = None
        statement.meta = {k: v for k, v in (statement.meta or {}).items() if k != "parsing_progress"}
        await self.db.commit()

    async def summary(self, statement: Statement) -> Dict[str, Any]:
        row = (
            await self.db.execute(
                select(
                    func.count(Transaction.id),
                    func.coalesce(
                        func.sum(Transaction.amount).filter(
                            Transaction.transaction_type == TransactionType.DEBIT.value
                        ),
                        0,
                    ),
                    func.coalesce(
                        func.sum(Transaction.amount).filter(
                            Transaction.transaction_type == TransactionType.CREDIT.value
                        ),
                        0,
                    ),
                    func.min(Transaction.transaction_date),
                    func.max(Transaction.transaction_date),
                ).where(Transaction.statement_id == statement.id)
            )
        ).one()
        count, debits, credits, start, end = row
        debits = round(abs(float(debits or 0)), 2)
        credits = round(float(credits or 0), 2)
        is_credit_card = statement.is_credit_card
        return {
            "statement_id": statement.id,
            "transaction_count": int(count or 0),
            "total_debits": debits,
            "total_credits": credits,
            "period_start": start,
            "period_end": end,
            "is_credit_card": is_credit_card,
            "outstanding_balance": round(max(debits - credits, 0.0), 2) if is_credit_card else 0.0,
        }

"""Built-in workflow steps.

A step receives the execution, its ``WorkflowStep`` row and a copy of the
run context. ``execute`` returns a JSON-able dict stored as the step log
output; values passed to :meth:`BaseStep.add_to_context` are merged into
the context of the following steps.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.core.errors import StepError, StopWorkflow
from ledgerly.models.enums import CategorizationStatus, InvoiceStatus
from ledgerly.models.tables import Invoice, Notification, Transaction, Workflow, WorkflowExecution, WorkflowStep
from ledgerly.services.workflows.conditions import OPERATORS, ConditionEvaluator
from ledgerly.utils.helpers import dig, humanize, utcnow_iso

logger = logging.getLogger(__name__)

_TEMPLATE_VAR = re.compile(r"\{\{([^}]+)\}\}")


class BaseStep:
    display_name: Optional[str] = None
    description = ""
    category = "general"
    icon = "play"
    config_schema: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    def __init__(
        self,
        db: AsyncSession,
        execution: WorkflowExecution,
        workflow: Workflow,
        step: WorkflowStep,
        context: Dict[str, Any],
    ):
        self.db = db
        self.execution = execution
        self.workflow = workflow
        self.step = step
        self.context = dict(context)
        self.context_updates: Dict[str, Any] = {}

    @classmethod
    def name(cls) -> str:
        if cls.display_name:
            return cls.display_name
        return humanize(re.sub(r"(?<!^)(?=[A-Z])", "_", cls.__name__.replace("Step", "")).lower())

    @classmethod
    def metadata(cls, step_type: str) -> Dict[str, Any]:
        return {
            "type": step_type,
            "name": cls.name(),
            "description": cls.description,
            "category": cls.category,
            "icon": cls.icon,
            "config_schema": cls.config_schema,
        }

    async def execute(self) -> Dict[str, Any]:
        raise NotImplementedError

    @property
    def config(self) -> Dict[str, Any]:
        return dict(self.step.config or {})

    @property
    def trigger_data(self) -> Dict[str, Any]:
        return self.context.get("trigger_data") or {}

    def add_to_context(self, key: str, value: Any) -> None:
        self.context_updates[str(key)] = value
        self.context[str(key)] = value

    def interpolate(self, template: Any) -> Any:
        """Replace ``{{dot.path}}`` placeholders with context values."""
        if not isinstance(template, str):
            return template

        def _sub(match: re.Match) -> str:
            value = dig(self.context, match.group(1).strip())
            return "" if value is None else str(value)

        return _TEMPLATE_VAR.sub(_sub, template)

    def log(self, message: str, *args: Any) -> None:
        logger.info("[Workflow %s] [Step %s] " + message, self.workflow.id, self.step.id, *args)


class ConditionStep(BaseStep):
    display_name = "Condition"
    description = "Evaluate a condition and store the result for subsequent steps"
    category = "logic"
    icon = "git-branch"
    config_schema = {
        "type": "object",
        "properties": {
            "condition_name": {"type": "string", "title": "Condition Name", "default": "condition_result"},
            "rules": {
                "type": "array",
                "title": "Rules",
                "items": {
                    "type": "object",
                    "properties": {
                        "field": {"type": "string", "title": "Field"},
                        "operator": {"type": "string", "title": "Operator", "enum": list(OPERATORS)},
                        "value": {"title": "Value"},
                    },
                    "required": ["field", "operator"],
                },
            },
            "combinator": {"type": "string", "enum": ["and", "or"], "default": "and"},
            "stop_if_false": {"type": "boolean", "title": "Stop Workflow if False", "default": False},
        },
        "required": ["rules"],
    }

    async def execute(self) -> Dict[str, Any]:
        config = self.config
        name = config.get("condition_name") or "condition_result"
        rules = config.get("rules") or []
        combinator = config.get("combinator") or "and"
        result = ConditionEvaluator({"rules": rules, "combinator": combinator}, self.context).evaluate()
        self.log("Condition '%s' evaluated to: %s", name, result)

        self.add_to_context(name, result)
        self.add_to_context("last_condition_result", result)
        if config.get("stop_if_false") and not result:
            raise StopWorkflow(f"Condition '{name}' was false, stopping workflow")
        return {"condition_name": name, "result": result, "rules_count": len(rules), "combinator": combinator}


class DelayStep(BaseStep):
    display_name = "Delay"
    description = "Wait for a specified duration before continuing"
    category = "utility"
    icon = "clock"
    config_schema = {
        "type": "object",
        "properties": {
            "duration": {"type": "integer", "minimum": 1, "maximum": 60, "default": 5},
            "unit": {"type": "string", "enum": ["seconds", "minutes"], "default": "seconds"},
        },
        "required": ["duration", "unit"],
    }

    async def execute(self) -> Dict[str, Any]:
        config = self.config
        try:
            duration = float(config.get("duration") or 5)
        except (TypeError, ValueError) as exc:
            raise StepError(f"Invalid delay duration: {config.get('duration')!r}") from exc
        seconds = duration * 60 if config.get("unit") == "minutes" else duration
        seconds = max(0.0, min(seconds, float(settings.WORKFLOW_MAX_DELAY_SECONDS)))

        self.log("Delaying for %s seconds", seconds)
        await asyncio.sleep(seconds)
        completed_at = utcnow_iso()
        self.add_to_context("last_delay", {"duration": seconds, "completed_at": completed_at})
        return {"delayed_seconds": seconds, "completed_at": completed_at}


class SendNotificationStep(BaseStep):
    display_name = "Send Notification"
    description = "Send an in-app notification to the workflow owner"
    category = "notification"
    icon = "bell"
    config_schema = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "maxLength": 100},
            "message": {"type": "string", "maxLength": 500},
            "notification_type": {
                "type": "string",
                "enum": ["info", "success", "warning", "error"],
                "default": "info",
            },
        },
        "required": ["title", "message"],
    }

    async def execute(self) -> Dict[str, Any]:
        config = self.config
        title = self.interpolate(config.get("title") or "Workflow Notification")
        message = self.interpolate(config.get("message") or "")
        notification_type = config.get("notification_type") or "info"

        notification = Notification(
            user_id=self.workflow.user_id,
            workspace_id=self.workflow.workspace_id,
            title=title[:100],
            message=message[:500],
            notification_type=notification_type,
            data={"source": "workflow", "source_id": self.workflow.id, "execution_id": self.execution.id},
        )
        self.db.add(notification)
        await self.db.flush()
        self.log("Notification sent: %s", title)

        self.add_to_context(
            "last_notification",
            {"id": notification.id, "title": title, "message": message, "notification_type": notification_type},
        )
        return {"notification_sent": True, "notification_id": notification.id, "title": title, "type": notification_type}


class CategorizeTransactionsStep(BaseStep):
    display_name = "Categorize Transactions"
    description = "Run categorization over the owner's pending transactions"
    category = "finance"
    icon = "tags"
    config_schema = {
        "type": "object",
        "properties": {
            "limit": {"type": "integer", "minimum": 1, "maximum": 1000, "default": 200},
            "enable_llm": {"type": "boolean", "default": False},
        },
        "required": [],
    }

    async def execute(self) -> Dict[str, Any]:
        from ledgerly.services.ml.categorization_service import CategorizationService

        config = self.config
        limit = int(config.get("limit") or 200)
        transactions = (
            await self.db.execute(
                select(Transaction)
                .where(
                    Transaction.user_id == self.workflow.user_id,
                    Transaction.category_id.is_(None),
                    Transaction.categorization_status != CategorizationStatus.PROCESSING.value,
                )
                .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
                .limit(limit)
            )
        ).scalars().unique().all()

        service = CategorizationService(self.db, enable_llm=bool(config.get("enable_llm", False)))
        outcome = await service.categorize_batch(transactions)
        categorized = sum(1 for _, result in outcome if result.matched)
        self.log("Categorized %d of %d transactions", categorized, len(outcome))
        self.add_to_context("categorized_count", categorized)
        return {"processed": len(outcome), "categorized": categorized}


class MatchInvoicesStep(BaseStep):
    display_name = "Match Invoices"
    description = "Match the owner's extracted invoices against bank transactions"
    category = "finance"
    icon = "link"
    config_schema = {
        "type": "object",
        "properties": {"limit": {"type": "integer", "minimum": 1, "maximum": 500, "default": 50}},
        "required": [],
    }

    async def execute(self) -> Dict[str, Any]:
        from ledgerly.services.matching.service import InvoiceMatchingService

        limit = int(self.config.get("limit") or 50)
        invoices = (
            await self.db.execute(
                select(Invoice)
                .where(
                    Invoice.user_id == self.workflow.user_id,
                    Invoice.status == InvoiceStatus.EXTRACTED.value,
                    Invoice.total_amount.is_not(None),
                )
                .order_by(Invoice.id)
                .limit(limit)
            )
        ).scalars().all()

        service = InvoiceMatchingService(self.db)
        matched = 0
        for invoice in invoices:
            result = await service.match(invoice)
            matched += 1 if result["matched"] else 0
            await self.db.flush()
        self.log("Matched %d of %d invoices", matched, len(invoices))
        self.add_to_context("matched_invoices_count", matched)
        return {"processed": len(invoices), "matched": matched, "unmatched": len(invoices) - matched}

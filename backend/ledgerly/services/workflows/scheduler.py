"""Trigger scheduled workflows whose cron expression is due.

Expressions are standard five-field cron parsed by ``croniter``: lists,
ranges, steps and month/day names (``MON-FRI``, ``JAN``). When both day
fields are restricted a day matches if either does, as in Vixie cron.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import LedgerlyError
from ledgerly.models.enums import TriggerType, WorkflowStatus
from ledgerly.models.tables import Workflow, WorkflowExecution
from ledgerly.services.workflows.engine import WorkflowEngine
from ledgerly.utils.helpers import is_valid_cron, utcnow

logger = logging.getLogger(__name__)

RECENT_RUN_WINDOW = dt.timedelta(minutes=2)


class CronError(ValueError):
    pass


class CronExpression:
    def __init__(self, expression: str):
        if not is_valid_cron(expression):
            raise CronError(f"invalid cron expression: {expression!r}")
        self.expression = " ".join(expression.split())

    def matches(self, when: dt.datetime) -> bool:
        return croniter.match(self.expression, when.replace(second=0, microsecond=0))


def _zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def local_time(now: dt.datetime, timezone: Optional[str]) -> dt.datetime:
    """``now`` (naive UTC) expressed in ``timezone``."""
    return now.replace(tzinfo=dt.timezone.utc).astimezone(_zone(timezone))


def should_run(workflow: Workflow, now: dt.datetime) -> bool:
    config = workflow.trigger_config or {}
    expression = config.get("cron")
    if not expression:
        return False
    try:
        cron = CronExpression(expression)
    except CronError as exc:
        logger.error("Invalid cron for workflow %s: %s", workflow.id, exc)
        return False
    if not cron.matches(local_time(now, config.get("timezone"))):
        return False
    if workflow.last_executed_at and workflow.last_executed_at > now - RECENT_RUN_WINDOW:
        return False
    return True


async def trigger_scheduled_workflows(db: AsyncSession, now: Optional[dt.datetime] = None) -> List[WorkflowExecution]:
    now = (now or utcnow()).replace(second=0, microsecond=0)
    workflows = (
        await db.execute(
            select(Workflow).where(
                Workflow.status == WorkflowStatus.ACTIVE.value,
                Workflow.trigger_type == TriggerType.SCHEDULE.value,
            )
        )
    ).scalars().all()

    executions = []
    for workflow in workflows:
        if not should_run(workflow, now):
            continue
        timezone = (workflow.trigger_config or {}).get("timezone") or "UTC"
        try:
            execution = await WorkflowEngine(db, workflow).execute(
                trigger_source="schedule",
                trigger_data={
                    "scheduled_at": local_time(now, timezone).isoformat(),
                    "cron": workflow.trigger_config.get("cron"),
                    "timezone": timezone,
                },
            )
        except LedgerlyError as exc:
            logger.error("Failed to trigger workflow %s: %s", workflow.id, exc.message)
            continue
        executions.append(execution)
        logger.info("Triggered workflow '%s' (%s), execution %s", workflow.name, workflow.id, execution.id)
    logger.info("Scheduler triggered %d workflow(s)", len(executions))
    return executions

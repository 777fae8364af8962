"""Dramatiq worker entry point.

Importing this module configures logging, Sentry and the broker and
registers every actor, so the worker is started with:

    dramatiq ledgerly.worker --processes 1 --threads 4

With ``SCHEDULER_ENABLED=true`` a daemon thread enqueues
``trigger_scheduled_workflows`` every ``SCHEDULER_INTERVAL_SECONDS``,
which avoids running a separate scheduler process.
"""

import logging
import os
import threading
import time

from ledgerly.core.config import settings
from ledgerly.core.observability import configure_logging, init_sentry

configure_logging()
logger = logging.getLogger("ledgerly.worker")

if init_sentry("worker"):
    logger.info("Sentry SDK initialized for worker")

# Propagate key env vars for libraries reading directly from os.environ
if settings.OPENAI_API_KEY:
    os.environ.setdefault("OPENAI_API_KEY", settings.OPENAI_API_KEY)

# Import tasks to register them
from ledgerly.core.tasks import (  # noqa: E402,F401
    broker,
    categorize_transactions,
    compute_statement_analytics,
    generate_embeddings,
    match_invoice,
    parse_statement,
    run_workflow_execution,
    trigger_scheduled_workflows,
)

logger.info("Tasks registered: %s", ", ".join(sorted(broker.get_declared_actors())))


def _maybe_start_scheduler():  # pragma: no cover - simple orchestrator
    if not settings.SCHEDULER_ENABLED:
        return
    interval = settings.SCHEDULER_INTERVAL_SECONDS

    def loop():
        while True:
            try:
                trigger_scheduled_workflows.send()
            except Exception as exc:
                logger.error("Failed to enqueue scheduled workflow check: %s", exc)
            time.sleep(interval)

    thread = threading.Thread(target=loop, name="workflow-scheduler", daemon=True)
    thread.start()
    logger.info("Workflow scheduler loop started (interval=%ss)", interval)


_maybe_start_scheduler()

"""Queue background work without importing the actor module eagerly.

Services need to queue follow-up work (categorise after parsing, compute
analytics, run a workflow) while :mod:`ledgerly.core.tasks` imports those
same services, so messages are sent by actor name.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def enqueue(actor_name: str, *args: Any, **kwargs: Any) -> Optional[str]:
    """Send a message to the named actor and return its message id."""
    from ledgerly.core import tasks

    actor = getattr(tasks, actor_name)
    message = actor.send(*args, **kwargs)
    logger.debug("Queued %s message %s", actor_name, message.message_id)
    return message.message_id

"""Observability helpers (logging setup, Sentry init & common scrubbing).

Centralises logging and Sentry initialisation for API and worker so
configuration does not drift. Sentry initialisation is a no-op when no
DSN is configured.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from ledgerly.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
	"""Configure the root logger once per process."""
	root = logging.getLogger()
	resolved = (level or settings.LOG_LEVEL or "INFO").upper()
	root.setLevel(resolved)
	if getattr(configure_logging, "_done", False):
		return
	handler = logging.StreamHandler()
	handler.setFormatter(logging.Formatter(LOG_FORMAT))
	root.addHandler(handler)
	# Quieten chatty client libraries
	for noisy in ("httpx", "openai", "urllib3"):
		logging.getLogger(noisy).setLevel(logging.WARNING)
	configure_logging._done = True  # type: ignore[attr-defined]


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None):  # type: ignore[override]
	"""Scrub obvious PII / secrets before sending to Sentry.

	- Drop Authorization & Cookie headers
	- Remove request data/body (bank narrations are personal data)
	"""
	req = event.get("request") or {}
	headers = req.get("headers") or {}
	for k in list(headers.keys()):
		if k.lower() in ("authorization", "cookie", "set-cookie", "x-api-key"):
			headers.pop(k, None)
	req.pop("data", None)
	event["request"] = req
	return event


def init_sentry(service: str) -> bool:
	"""Initialise Sentry once for a given process.

	Returns True if Sentry was initialised; False otherwise.
	"""
	if not settings.SENTRY_DSN:
		return False
	if getattr(init_sentry, "_done", False):  # prevent duplicate init in same process
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration(), SqlalchemyIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		profiles_sample_rate=float(settings.SENTRY_PROFILES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		before_send=_before_send,
	)
	sentry_sdk.set_tag("service", service)
	init_sentry._done = True  # type: ignore[attr-defined]
	return True


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Best-effort: add a breadcrumb for important lifecycle steps."""
	if not settings.SENTRY_DSN:
		return
	try:
		sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})
	except Exception:
		logging.getLogger(__name__).debug("sentry breadcrumb dropped", exc_info=True)


def sentry_metric_inc(name: str, value: int = 1, tags: Optional[Dict[str, Any]] = None) -> None:
	"""Best-effort: increment a counter using Sentry Metrics if available."""
	if not settings.SENTRY_DSN:
		return
	try:
		from sentry_sdk import metrics  # type: ignore

		safe_tags = {str(k): str(v)[:64] for k, v in (tags or {}).items()}
		metrics.increment(name, value=value, tags=safe_tags)  # type: ignore
	except Exception:
		logging.getLogger(__name__).debug("sentry metric %s dropped", name, exc_info=True)


def capture_exception(exc: BaseException) -> None:
	if settings.SENTRY_DSN:
		sentry_sdk.capture_exception(exc)


__all__ = ["configure_logging", "init_sentry", "sentry_breadcrumb", "sentry_metric_inc", "capture_exception"]

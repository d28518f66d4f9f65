"""Sentry wiring for the API process.

Initialisation is a no-op without SENTRY_DSN, and every helper below is
best-effort: reporting must never break a bulk operation.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from receiptbox.core.config import settings

_SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie")
_initialised = False


def _scrub_event(event: Dict[str, Any], hint: Dict[str, Any] | None = None):
	"""Strip credentials and user-entered data before an event leaves the process.

	Bulk bodies carry receipt ids and the filter query string can carry free-text
	search terms, so both are dropped wholesale.
	"""
	request = event.get("request")
	if isinstance(request, dict):
		headers = request.get("headers") or {}
		if isinstance(headers, dict):
			for name in [h for h in headers if h.lower() in _SCRUBBED_HEADERS]:
				headers.pop(name, None)
		request.pop("data", None)
		request.pop("query_string", None)
	return event


def sentry_enabled() -> bool:
	return bool(settings.SENTRY_DSN)


def init_sentry(service: str) -> bool:
	"""Initialise Sentry once per process; returns whether it is active."""
	global _initialised
	if not sentry_enabled():
		return False
	if _initialised:
		return True
	sentry_sdk.init(
		dsn=settings.SENTRY_DSN,
		integrations=[FastApiIntegration(), SqlalchemyIntegration()],
		traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0),
		environment=settings.ENVIRONMENT,
		release=settings.SENTRY_RELEASE,
		before_send=_scrub_event,
	)
	sentry_sdk.set_tag("service", service)
	_initialised = True
	return True


def sentry_capture(exc: BaseException) -> None:
	"""Report an exception that was handled locally (e.g. a rolled back batch)."""
	if not sentry_enabled():
		return
	try:
		sentry_sdk.capture_exception(exc)
	except Exception:  # pragma: no cover - transport problems are not ours
		return


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	if not sentry_enabled():
		return
	try:
		sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data or {})
	except Exception:  # pragma: no cover
		return


def sentry_metric_inc(name: str, value: int = 1, tags: Optional[Dict[str, Any]] = None) -> None:
	"""Count bulk operations by type/outcome when Sentry metrics are available."""
	if not sentry_enabled():
		return
	try:
		from sentry_sdk import metrics

		metrics.increment(name, value=value, tags={str(k): str(v)[:64] for k, v in (tags or {}).items()})
	except Exception:  # pragma: no cover - metrics API is optional in newer SDKs
		return


__all__ = ["init_sentry", "sentry_capture", "sentry_breadcrumb", "sentry_metric_inc", "sentry_enabled"]

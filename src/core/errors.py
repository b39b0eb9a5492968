"""Error types and the default exception handler.

Chain faults never leave the router; they are reported to an exception
handler instead. Everything raised at the call site (builder misuse, tenant
routing without a client) derives from ``FansRouterError``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

LOGGER = logging.getLogger(__name__)


class FansRouterError(Exception):
    """Base class for errors raised by fansrouter itself."""


class RouterError(FansRouterError):
    """Router misconfiguration detected at call time."""


class RuleBuilderError(FansRouterError):
    """A rule builder was used after its terminal call or without a router."""


class PoolRejectedError(FansRouterError, RuntimeError):
    """The worker pool refused a task (full or shut down)."""


class LogExceptionHandler:
    """Default exception handler: log with traceback and keep going."""

    def handle(self, context: Optional[Mapping[str, Any]], error: BaseException) -> None:
        LOGGER.error(
            "Error happened while handling message: %s",
            error,
            exc_info=(type(error), error, error.__traceback__),
        )


def report_error(exception_handler, context: Optional[Mapping[str, Any]], error: BaseException) -> None:
    """Forward ``error`` to ``exception_handler`` without ever raising."""

    try:
        exception_handler.handle(context, error)
    except Exception:
        LOGGER.exception("Exception handler %r failed", exception_handler)

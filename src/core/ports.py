"""Ports (interfaces) used by the router.

Ports define the minimal contracts for the router's collaborators so the
core can be reused with different clients, stores and chain members.
Interceptors and handlers may also be plain callables with the same
signature as the port method.
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Protocol

from core.models import InboundMessage, ReplyMessage


class MessageClient(Protocol):
    """Outbound platform API client handed through to handlers."""

    def switchover_to(self, app_id: str) -> "MessageClient":
        ...


class DuplicateChecker(Protocol):
    """Atomic check-and-record of message identities."""

    def is_duplicate(self, key: str) -> bool:
        ...


class Session(Protocol):
    def end_access(self) -> None:
        ...

    def get_attribute(self, name: str, default: Any = None) -> Any:
        ...

    def set_attribute(self, name: str, value: Any) -> None:
        ...


class SessionManager(Protocol):
    """Per-sender session store with begin/end-of-access bracketing."""

    def begin_access(self, session_id: str) -> Session:
        ...

    def get_session(self, session_id: str, create: bool = True) -> Optional[Session]:
        ...

    def find_session(self, session_id: str) -> Optional[Session]:
        ...


class MessageInterceptor(Protocol):
    """Chain member that may veto the handlers by returning False."""

    def intercept(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        sessions: SessionManager,
    ) -> bool:
        ...


class MessageHandler(Protocol):
    """Chain member receiving the previous handler's reply and returning the next one."""

    def handle(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        sessions: SessionManager,
        reply: Optional[ReplyMessage],
    ) -> Optional[ReplyMessage]:
        ...


class TaskPool(Protocol):
    """Executor for asynchronous rules; rejects work by raising RuntimeError."""

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        ...

    def shutdown(self, wait: bool = True) -> None:
        ...


class ExceptionHandler(Protocol):
    def handle(self, context: Optional[Dict[str, Any]], error: BaseException) -> None:
        ...

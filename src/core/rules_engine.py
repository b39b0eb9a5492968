"""Rule building, matching and chain execution (core domain).

A rule is assembled with ``RuleBuilder`` and only becomes a ``Rule`` through
a terminal call: ``end()`` (stop scanning after this rule), ``next()``
(keep scanning) or ``build()``. The router accepts nothing but ``Rule``
instances, so a builder that was never terminated can not end up in a
rule set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from core.errors import RuleBuilderError, report_error
from core.models import InboundMessage, ReplyMessage
from core.ports import ExceptionHandler, MessageClient, MessageHandler, MessageInterceptor, SessionManager

if TYPE_CHECKING:
    from core.router import MessageRouter

LOGGER = logging.getLogger(__name__)

InterceptFn = Callable[..., bool]
HandleFn = Callable[..., Optional[ReplyMessage]]


def _intercept_fn(interceptor: Any) -> InterceptFn:
    method = getattr(interceptor, "intercept", None)
    if callable(method):
        return method
    if callable(interceptor):
        return interceptor
    raise TypeError(f"Not an interceptor: {interceptor!r}")


def _handle_fn(handler: Any) -> HandleFn:
    method = getattr(handler, "handle", None)
    if callable(method):
        return method
    if callable(handler):
        return handler
    raise TypeError(f"Not a handler: {handler!r}")


def _member_name(member: Any) -> str:
    return getattr(member, "__name__", None) or type(member).__name__


@dataclass(frozen=True, eq=False)
class Rule:
    """Compiled rule used by the router.

    Every predicate left as ``None`` is a wildcard. Declared predicates are
    compared by value equality against the message.
    """

    msg_type: Optional[str] = None
    event: Optional[str] = None
    event_key: Optional[str] = None
    content: Optional[str] = None
    sender: Optional[str] = None
    interceptors: Tuple[Any, ...] = ()
    handlers: Tuple[Any, ...] = ()
    reentrant: bool = False
    is_async: bool = False
    name: Optional[str] = None

    def matches(self, message: InboundMessage) -> bool:
        checks = (
            (self.msg_type, message.msg_type),
            (self.event, message.event),
            (self.event_key, message.event_key),
            (self.content, message.text),
            (self.sender, message.sender_id),
        )
        return all(expected is None or expected == actual for expected, actual in checks)

    def service(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        sessions: SessionManager,
        exception_handler: ExceptionHandler,
    ) -> Optional[ReplyMessage]:
        """Run interceptors then handlers; faults go to ``exception_handler``.

        An interceptor returning a falsy value stops the chain with no reply.
        Each handler receives the reply of the previous one.
        """

        if context is None:
            context = {}
        try:
            for interceptor in self.interceptors:
                if not _intercept_fn(interceptor)(message, context, client, sessions):
                    LOGGER.debug(
                        "Rule %s stopped by interceptor %s",
                        self.label,
                        _member_name(interceptor),
                    )
                    return None

            reply: Optional[ReplyMessage] = None
            for handler in self.handlers:
                reply = _handle_fn(handler)(message, context, client, sessions, reply)
            return reply
        except Exception as exc:
            report_error(exception_handler, context, exc)
            return None

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        parts = [
            f"{field}={value}"
            for field, value in (
                ("msg_type", self.msg_type),
                ("event", self.event),
                ("event_key", self.event_key),
                ("content", self.content),
                ("sender", self.sender),
            )
            if value is not None
        ]
        return "<" + (", ".join(parts) or "any") + ">"


class RuleBuilder:
    """Accumulates predicates and chain members for one rule.

    A builder is single-use: after ``end()``, ``next()`` or ``build()`` any
    further call raises ``RuleBuilderError``.
    """

    def __init__(self, router: Optional["MessageRouter"] = None) -> None:
        self._router = router
        self._predicates: Dict[str, Optional[str]] = {
            "msg_type": None,
            "event": None,
            "event_key": None,
            "content": None,
            "sender": None,
        }
        self._interceptors: List[Any] = []
        self._handlers: List[Any] = []
        self._is_async = False
        self._name: Optional[str] = None
        self._finished = False

    def _check_open(self) -> None:
        if self._finished:
            raise RuleBuilderError("Rule builder already finished; start a new rule()")

    def _set(self, predicate: str, value: Any) -> "RuleBuilder":
        self._check_open()
        self._predicates[predicate] = value
        return self

    def msg_type(self, value: str) -> "RuleBuilder":
        return self._set("msg_type", value)

    def event(self, value: str) -> "RuleBuilder":
        return self._set("event", value)

    def event_key(self, value: str) -> "RuleBuilder":
        return self._set("event_key", value)

    def content(self, value: str) -> "RuleBuilder":
        return self._set("content", value)

    def sender(self, value: str) -> "RuleBuilder":
        return self._set("sender", value)

    def interceptor(self, *interceptors: MessageInterceptor) -> "RuleBuilder":
        self._check_open()
        for interceptor in interceptors:
            _intercept_fn(interceptor)
        self._interceptors.extend(interceptors)
        return self

    def handler(self, *handlers: MessageHandler) -> "RuleBuilder":
        self._check_open()
        for handler in handlers:
            _handle_fn(handler)
        self._handlers.extend(handlers)
        return self

    def asynchronous(self, flag: bool = True) -> "RuleBuilder":
        self._check_open()
        self._is_async = flag
        return self

    def named(self, name: str) -> "RuleBuilder":
        self._check_open()
        self._name = name
        return self

    def build(self, reentrant: bool = False) -> Rule:
        """Finish the rule without registering it anywhere."""

        self._check_open()
        self._finished = True
        return Rule(
            interceptors=tuple(self._interceptors),
            handlers=tuple(self._handlers),
            reentrant=reentrant,
            is_async=self._is_async,
            name=self._name,
            **self._predicates,
        )

    def end(self) -> "MessageRouter":
        """Register the rule; a match on it stops the rule scan."""

        return self._register(reentrant=False)

    def next(self) -> "MessageRouter":
        """Register the rule; scanning continues past a match on it."""

        return self._register(reentrant=True)

    def _register(self, reentrant: bool) -> "MessageRouter":
        self._check_open()
        if self._router is None:
            raise RuleBuilderError("Rule builder has no router; use build() and add_rule()")
        router = self._router
        router.add_rule(self.build(reentrant=reentrant))
        return router

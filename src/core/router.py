"""Message router: dedup, ordered rule scan, sync/async dispatch.

Usage::

    router = MessageRouter(client)
    (
        router.rule().msg_type("text").content("hi").handler(greet).end()
        .rule().handler(audit).asynchronous().end()
    )
    reply = router.route(message)

Notes:
1) Register rules from the most specific to the most general one. The first
   matching rule that was finished with ``end()`` stops the scan; rules
   finished with ``next()`` let it continue.
2) Each triggered rule opens one session access for the sender and closes
   it once its chain is done, on the calling thread for synchronous rules
   and from an aggregator task for asynchronous ones.
3) ``route`` returns the reply of the last synchronous rule, or ``None``.
   The transport should then answer with an empty body so the platform does
   not retry.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from concurrent.futures import Future
from functools import partial
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.dedup import InMemoryDuplicateChecker, dedup_key
from core.errors import LogExceptionHandler, RouterError, report_error
from core.models import InboundMessage, ReplyMessage
from core.ports import DuplicateChecker, ExceptionHandler, MessageClient, SessionManager, TaskPool
from core.rules_engine import Rule, RuleBuilder
from core.sessions import StandardSessionManager
from core.workers import DEFAULT_POOL_SIZE, WorkerPool

LOGGER = logging.getLogger(__name__)


class MessageRouter:
    """Routes inbound messages to the handler chains of matching rules."""

    def __init__(
        self,
        client: Optional[MessageClient] = None,
        *,
        worker_pool: Optional[TaskPool] = None,
        duplicate_checker: Optional[DuplicateChecker] = None,
        session_manager: Optional[SessionManager] = None,
        exception_handler: Optional[ExceptionHandler] = None,
        pool_size: int = DEFAULT_POOL_SIZE,
    ) -> None:
        self._client = client
        self._worker_pool = worker_pool if worker_pool is not None else WorkerPool(pool_size)
        self._duplicate_checker = (
            duplicate_checker if duplicate_checker is not None else InMemoryDuplicateChecker()
        )
        self._session_manager = session_manager if session_manager is not None else StandardSessionManager()
        self._exception_handler = exception_handler if exception_handler is not None else LogExceptionHandler()
        self._rules: Tuple[Rule, ...] = ()
        self._rules_lock = threading.Lock()

    def set_worker_pool(self, worker_pool: TaskPool) -> None:
        self._worker_pool = worker_pool

    def set_duplicate_checker(self, duplicate_checker: DuplicateChecker) -> None:
        self._duplicate_checker = duplicate_checker

    def set_session_manager(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    def set_exception_handler(self, exception_handler: ExceptionHandler) -> None:
        self._exception_handler = exception_handler

    @property
    def session_manager(self) -> SessionManager:
        return self._session_manager

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def rule(self) -> RuleBuilder:
        """Start a new rule; finish it with ``end()`` or ``next()``."""

        return RuleBuilder(self)

    def add_rule(self, rule: Rule) -> "MessageRouter":
        if not isinstance(rule, Rule):
            raise TypeError(f"Expected a finished Rule, got {type(rule).__name__}")
        # Copy-on-write keeps in-flight scans on a stable snapshot.
        with self._rules_lock:
            self._rules = self._rules + (rule,)
        return self

    def replace_rules(self, rules: Iterable[Rule]) -> None:
        new_rules = tuple(rules)
        for rule in new_rules:
            if not isinstance(rule, Rule):
                raise TypeError(f"Expected a finished Rule, got {type(rule).__name__}")
        with self._rules_lock:
            self._rules = new_rules

    def route_for_app(
        self,
        app_id: str,
        message: InboundMessage,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[ReplyMessage]:
        """Route ``message`` with the outbound client of tenant ``app_id``."""

        if self._client is None:
            raise RouterError("Router has no client to switch over")
        return self.route(message, context, self._client.switchover_to(app_id))

    def route(
        self,
        message: InboundMessage,
        context: Optional[Dict[str, Any]] = None,
        client: Optional[MessageClient] = None,
    ) -> Optional[ReplyMessage]:
        """Dispatch one message and return the last synchronous reply."""

        if client is None:
            client = self._client
        if context is None:
            context = {}

        if self._is_duplicated(message):
            LOGGER.debug("Duplicate message skipped: sender=%s", message.sender_id)
            return None

        matched = self._match(message)
        if not matched:
            return None

        reply: Optional[ReplyMessage] = None
        futures: List[Tuple[Future, Any]] = []
        for rule in matched:
            session = self._session_manager.begin_access(message.sender_id)
            if rule.is_async:
                future = self._submit_async(rule, message, context, client, session)
                if future is not None:
                    futures.append((future, session))
            else:
                try:
                    reply = rule.service(message, context, client, self._session_manager, self._exception_handler)
                finally:
                    LOGGER.debug("End session access: async=False, session_id=%s", message.sender_id)
                    session.end_access()

        if futures:
            self._await_async_rules(message, context, futures)
        return reply

    def _is_duplicated(self, message: InboundMessage) -> bool:
        return self._duplicate_checker.is_duplicate(dedup_key(message))

    def _match(self, message: InboundMessage) -> List[Rule]:
        matched: List[Rule] = []
        for rule in self._rules:
            if rule.matches(message):
                matched.append(rule)
                if not rule.reentrant:
                    break
        return matched

    def _submit_async(
        self,
        rule: Rule,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        session: Any,
    ) -> Optional[Future]:
        try:
            return self._worker_pool.submit(
                rule.service,
                message,
                context,
                client,
                self._session_manager,
                self._exception_handler,
            )
        except RuntimeError as exc:
            LOGGER.warning("Async rule %s rejected by worker pool: %s", rule.label, exc)
            report_error(self._exception_handler, context, exc)
            LOGGER.debug("End session access: async=True, session_id=%s", message.sender_id)
            session.end_access()
            return None

    def _await_async_rules(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        futures: List[Tuple[Future, Any]],
    ) -> None:
        try:
            aggregator = self._worker_pool.submit(self._wait_and_end_access, message, context, futures)
        except RuntimeError as exc:
            LOGGER.warning("Aggregator rejected by worker pool, closing sessions on completion: %s", exc)
            self._end_access_on_completion(message, futures)
            return
        aggregator.add_done_callback(partial(self._on_aggregator_done, message, futures))

    def _on_aggregator_done(
        self,
        message: InboundMessage,
        futures: List[Tuple[Future, Any]],
        aggregator: Future,
    ) -> None:
        # A cancelled aggregator never ran, so nothing closed these sessions yet.
        if aggregator.cancelled():
            LOGGER.warning("Aggregator cancelled, closing sessions on completion: sender=%s", message.sender_id)
            self._end_access_on_completion(message, futures)

    def _wait_and_end_access(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        futures: List[Tuple[Future, Any]],
    ) -> None:
        for index, (future, session) in enumerate(futures):
            try:
                future.result()
            except concurrent.futures.CancelledError:
                LOGGER.error("Async rule was cancelled before it finished: sender=%s", message.sender_id)
                session.end_access()
                # Pool is going away: stop blocking and let completions close the rest.
                self._end_access_on_completion(message, futures[index + 1 :])
                return
            except Exception as exc:
                LOGGER.error("Error happened when wait task finish: %s", exc)
                report_error(self._exception_handler, context, exc)
            LOGGER.debug("End session access: async=True, session_id=%s", message.sender_id)
            session.end_access()

    def _end_access_on_completion(self, message: InboundMessage, futures: List[Tuple[Future, Any]]) -> None:
        for future, session in futures:
            future.add_done_callback(partial(self._end_async_access, message, session))

    @staticmethod
    def _end_async_access(message: InboundMessage, session: Any, _future: Future) -> None:
        LOGGER.debug("End session access: async=True, session_id=%s", message.sender_id)
        session.end_access()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Drain the worker pool, then stop it."""

        if timeout is None:
            self._worker_pool.shutdown(wait=wait)
        else:
            self._worker_pool.shutdown(wait=wait, timeout=timeout)

    def __enter__(self) -> "MessageRouter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

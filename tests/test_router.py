from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import Future
from typing import Any, Optional

import pytest

from core.errors import PoolRejectedError, RouterError
from core.models import EventData, InboundMessage, ReplyMessage
from core.router import MessageRouter
from core.workers import InlineWorkerPool, WorkerPool


class FakeSession:
    def __init__(self, manager: "FakeSessionManager", session_id: str) -> None:
        self._manager = manager
        self._id = session_id

    def end_access(self) -> None:
        with self._manager.lock:
            self._manager.ended[self._id] += 1

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return default

    def set_attribute(self, name: str, value: Any) -> None:
        pass


class FakeSessionManager:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.begun: Counter = Counter()
        self.ended: Counter = Counter()

    def begin_access(self, session_id: str) -> FakeSession:
        with self.lock:
            self.begun[session_id] += 1
        return FakeSession(self, session_id)

    def get_session(self, session_id: str, create: bool = True) -> Optional[FakeSession]:
        return FakeSession(self, session_id)

    def find_session(self, session_id: str) -> Optional[FakeSession]:
        return FakeSession(self, session_id)


class RecordingExceptionHandler:
    def __init__(self) -> None:
        self.errors: list[BaseException] = []

    def handle(self, context, error: BaseException) -> None:
        self.errors.append(error)


class Reply:
    def __init__(self, text: Optional[str]) -> None:
        self.text = text
        self.calls = 0

    def handle(self, message, context, client, sessions, reply) -> Optional[ReplyMessage]:
        self.calls += 1
        if self.text is None:
            return reply
        return ReplyMessage.text_reply(message, self.text)


class Boom:
    def handle(self, message, context, client, sessions, reply):
        raise ValueError("boom")


class RejectingPool:
    def submit(self, fn, *args, **kwargs) -> Future:
        raise PoolRejectedError("full")

    def shutdown(self, wait: bool = True) -> None:
        pass


class FakeClient:
    def __init__(self, app_id: str = "default") -> None:
        self.app_id = app_id

    def switchover_to(self, app_id: str) -> "FakeClient":
        return FakeClient(app_id)


def _message(*, text: Optional[str] = "hi", created_at: str = "1700000000", sender_id: str = "fan-1") -> InboundMessage:
    return InboundMessage(
        sender_id=sender_id,
        receiver_id="account-1",
        created_at=created_at,
        msg_type="text",
        text=text,
    )


def _router(**kwargs: Any) -> tuple[MessageRouter, FakeSessionManager, RecordingExceptionHandler]:
    sessions = FakeSessionManager()
    errors = RecordingExceptionHandler()
    kwargs.setdefault("worker_pool", InlineWorkerPool())
    router = MessageRouter(session_manager=sessions, exception_handler=errors, **kwargs)
    return router, sessions, errors


def test_sync_reply_wins_and_async_rule_also_fires() -> None:
    router, sessions, _ = _router()
    greet = Reply("hello")
    audit = Reply(None)
    router.rule().msg_type("text").content("hi").handler(greet).next()
    router.rule().handler(audit).asynchronous().end()

    reply = router.route(_message(text="hi"))

    assert reply.text == "hello"
    assert greet.calls == 1
    assert audit.calls == 1
    assert sessions.begun["fan-1"] == 2
    assert sessions.ended["fan-1"] == 2


def test_duplicate_delivery_is_suppressed() -> None:
    router, sessions, _ = _router()
    greet = Reply("hello")
    router.rule().content("hi").handler(greet).end()

    first = router.route(_message())
    second = router.route(_message())

    assert first.text == "hello"
    assert second is None
    assert greet.calls == 1
    assert sessions.begun["fan-1"] == 1


def test_same_content_with_new_timestamp_is_not_a_duplicate() -> None:
    router, _, _ = _router()
    greet = Reply("hello")
    router.rule().content("hi").handler(greet).end()

    router.route(_message(created_at="1"))
    router.route(_message(created_at="2"))

    assert greet.calls == 2


def test_first_non_reentrant_match_stops_scan() -> None:
    router, _, _ = _router()
    specific = Reply("specific")
    general = Reply("general")
    router.rule().content("hi").handler(specific).end()
    router.rule().handler(general).end()

    assert router.route(_message()).text == "specific"
    assert general.calls == 0


def test_reentrant_then_terminal_both_run_and_last_sync_wins() -> None:
    router, sessions, _ = _router()
    first = Reply("first")
    second = Reply("second")
    never = Reply("never")
    router.rule().content("hi").handler(first).next()
    router.rule().handler(second).end()
    router.rule().handler(never).end()

    assert router.route(_message()).text == "second"
    assert first.calls == 1
    assert never.calls == 0
    assert sessions.ended["fan-1"] == 2


def test_no_match_returns_none_without_touching_sessions() -> None:
    router, sessions, _ = _router()
    router.rule().content("bye").handler(Reply("bye")).end()

    assert router.route(_message(text="hi")) is None
    assert sessions.begun["fan-1"] == 0


def test_only_async_matches_return_none() -> None:
    router, sessions, _ = _router()
    audit = Reply("ignored")
    router.rule().handler(audit).asynchronous().end()

    assert router.route(_message()) is None
    assert audit.calls == 1
    assert sessions.ended["fan-1"] == 1


def test_fault_in_one_rule_does_not_stop_sibling_rules() -> None:
    router, sessions, errors = _router()
    after = Reply("after")
    router.rule().handler(Boom()).next()
    router.rule().handler(after).end()

    assert router.route(_message()).text == "after"
    assert [str(error) for error in errors.errors] == ["boom"]
    assert sessions.ended["fan-1"] == 2


def test_later_sync_fault_overwrites_earlier_reply_with_none() -> None:
    router, _, _ = _router()
    router.rule().handler(Reply("early")).next()
    router.rule().handler(Boom()).end()

    assert router.route(_message()) is None


def test_interceptor_veto_yields_no_reply_contribution() -> None:
    router, sessions, _ = _router()
    handler = Reply("blocked")
    router.rule().interceptor(lambda message, context, client, sessions: False).handler(handler).end()

    assert router.route(_message()) is None
    assert handler.calls == 0
    assert sessions.ended["fan-1"] == 1


def test_rejected_async_rule_still_ends_session_access() -> None:
    router, sessions, errors = _router(worker_pool=RejectingPool())
    audit = Reply(None)
    router.rule().handler(audit).asynchronous().next()
    router.rule().handler(Reply("sync")).end()

    assert router.route(_message()).text == "sync"
    assert audit.calls == 0
    assert sessions.begun["fan-1"] == 2
    assert sessions.ended["fan-1"] == 2
    assert isinstance(errors.errors[0], PoolRejectedError)


def test_context_is_shared_along_the_matched_rules() -> None:
    router, _, _ = _router()

    def remember(message, context, client, sessions, reply):
        context["seen"] = True
        return reply

    def answer(message, context, client, sessions, reply):
        return ReplyMessage.text_reply(message, "seen" if context.get("seen") else "fresh")

    router.rule().handler(remember).next()
    router.rule().handler(answer).end()

    context: dict = {}
    assert router.route(_message(), context).text == "seen"
    assert context == {"seen": True}


def test_route_for_app_passes_tenant_client_to_handlers() -> None:
    router, _, _ = _router(client=FakeClient())
    seen: list[str] = []

    def record(message, context, client, sessions, reply):
        seen.append(client.app_id)
        return reply

    router.rule().handler(record).end()
    router.route_for_app("tenant-42", _message())
    router.route(_message(created_at="later"))

    assert seen == ["tenant-42", "default"]


def test_route_for_app_without_client_is_an_error() -> None:
    router, _, _ = _router()
    with pytest.raises(RouterError):
        router.route_for_app("tenant-42", _message())


def test_replace_rules_swaps_the_rule_set() -> None:
    router, _, _ = _router()
    router.rule().handler(Reply("old")).end()
    new_rule = router.rule().handler(Reply("new")).build()

    router.replace_rules([new_rule])

    assert router.rules == (new_rule,)
    assert router.route(_message()).text == "new"


def test_async_rules_on_worker_pool_end_every_session_access() -> None:
    sessions = FakeSessionManager()
    release = threading.Event()
    finished = threading.Event()
    count_lock = threading.Lock()
    calls: list[str] = []

    def slow(message, context, client, sessions, reply):
        release.wait(timeout=5)
        with count_lock:
            calls.append(message.sender_id)
            if len(calls) == 6:
                finished.set()
        return reply

    router = MessageRouter(worker_pool=WorkerPool(4), session_manager=sessions)
    router.rule().handler(slow).asynchronous().next()
    router.rule().handler(slow).asynchronous().end()

    for index in range(3):
        assert router.route(_message(sender_id=f"fan-{index}")) is None

    release.set()
    assert finished.wait(timeout=5)
    router.shutdown(wait=True)

    for index in range(3):
        assert sessions.begun[f"fan-{index}"] == 2
        assert sessions.ended[f"fan-{index}"] == 2


def test_cancelled_async_rules_still_end_session_access() -> None:
    sessions = FakeSessionManager()
    gate = threading.Event()
    started = threading.Event()

    def blocker(message, context, client, sessions, reply):
        started.set()
        gate.wait(timeout=5)
        return reply

    pool = WorkerPool(1)
    router = MessageRouter(worker_pool=pool, session_manager=sessions)
    router.rule().handler(blocker).asynchronous().end()

    # Occupies the only worker; the next route's task and aggregator queue behind it.
    router.route(_message(sender_id="busy"))
    assert started.wait(timeout=5)
    router.route(_message(sender_id="fan-1"))

    pool.shutdown(wait=False, cancel_pending=True)
    gate.set()
    pool.shutdown(wait=True)

    assert sessions.ended["fan-1"] == sessions.begun["fan-1"] == 1

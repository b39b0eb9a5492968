from __future__ import annotations

import threading
from typing import Optional

from core.dedup import InMemoryDuplicateChecker, dedup_key
from core.models import EventData, InboundMessage


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _message(*, created_at: str = "1700000000", sender_id: str = "fan-1", event_data: Optional[EventData] = None) -> InboundMessage:
    return InboundMessage(
        sender_id=sender_id,
        receiver_id="account-1",
        created_at=created_at,
        msg_type="event" if event_data else "text",
        text="hi",
        event_data=event_data,
    )


def test_dedup_key_joins_time_sender_and_event_data() -> None:
    message = _message(event_data=EventData(sub_type="click", key="MENU_1"))
    assert dedup_key(message) == "1700000000-fan-1-click-MENU_1"


def test_dedup_key_is_empty_safe() -> None:
    assert dedup_key(_message()) == "1700000000-fan-1--"
    partial = _message(event_data=EventData(sub_type=" follow ", key=None))
    assert dedup_key(partial) == "1700000000-fan-1-follow-"


def test_first_sighting_is_not_duplicate_second_is() -> None:
    checker = InMemoryDuplicateChecker()
    assert checker.is_duplicate("k") is False
    assert checker.is_duplicate("k") is True
    assert checker.is_duplicate("other") is False


def test_key_expires_after_ttl() -> None:
    clock = FakeClock()
    checker = InMemoryDuplicateChecker(ttl_seconds=15, clear_period_seconds=5, clock=clock)
    assert checker.is_duplicate("k") is False

    clock.now += 14
    assert checker.is_duplicate("k") is True

    clock.now += 2
    assert checker.is_duplicate("k") is False


def test_purge_drops_expired_records() -> None:
    clock = FakeClock()
    checker = InMemoryDuplicateChecker(ttl_seconds=10, clock=clock)
    checker.is_duplicate("old")
    clock.now += 6
    checker.is_duplicate("young")
    clock.now += 5

    assert checker.purge() == 1
    assert len(checker) == 1


def test_capacity_evicts_oldest_record() -> None:
    checker = InMemoryDuplicateChecker(max_entries=2)
    checker.is_duplicate("a")
    checker.is_duplicate("b")
    checker.is_duplicate("c")

    assert len(checker) == 2
    assert checker.is_duplicate("c") is True
    assert checker.is_duplicate("a") is False


def test_concurrent_callers_with_same_key_only_one_proceeds() -> None:
    checker = InMemoryDuplicateChecker()
    barrier = threading.Barrier(8)
    results: list[bool] = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        outcome = checker.is_duplicate("same-key")
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(False) == 1
    assert results.count(True) == 7

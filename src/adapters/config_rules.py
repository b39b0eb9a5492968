"""Rules described in config.json.

Operators can register simple rules without code: each entry either answers
with a fixed text or only logs the message. Order in the file is priority
order, so specific entries must come before general ones.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from core.models import InboundMessage, ReplyMessage
from core.ports import MessageClient, SessionManager
from core.rules_engine import Rule
from core.router import MessageRouter

LOGGER = logging.getLogger(__name__)

_PREDICATES = ("msg_type", "event", "event_key", "content", "sender")


class StaticTextHandler:
    """Reply with a fixed text."""

    def __init__(self, text: str) -> None:
        self._text = text

    def handle(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        sessions: SessionManager,
        reply: Optional[ReplyMessage],
    ) -> Optional[ReplyMessage]:
        return ReplyMessage.text_reply(message, self._text)


class LogOnlyHandler:
    """Log the message and pass the previous reply through unchanged."""

    def __init__(self, rule_name: str) -> None:
        self._rule_name = rule_name

    def handle(
        self,
        message: InboundMessage,
        context: Dict[str, Any],
        client: Optional[MessageClient],
        sessions: SessionManager,
        reply: Optional[ReplyMessage],
    ) -> Optional[ReplyMessage]:
        LOGGER.info(
            "Rule %s saw %s message from %s (event=%s, key=%s)",
            self._rule_name,
            message.msg_type,
            message.sender_id,
            message.event,
            message.event_key,
        )
        return reply


def build_rules(rules_config: Iterable[dict], router: MessageRouter) -> List[Rule]:
    """Register the enabled rules of ``rules_config`` on ``router``.

    Returns the registered rules in priority order.
    """

    registered: List[Rule] = []
    for entry in rules_config:
        if not entry.get("enabled", True):
            continue
        name = entry.get("name")
        if not name:
            raise ValueError(f"Rule entry without a name: {entry!r}")

        builder = router.rule().named(name)
        for predicate in _PREDICATES:
            value = entry.get(predicate)
            if value is not None:
                getattr(builder, predicate)(str(value))

        reply_text = entry.get("reply_text")
        if reply_text:
            builder.handler(StaticTextHandler(reply_text))
        else:
            builder.handler(LogOnlyHandler(name))
        builder.asynchronous(bool(entry.get("async", False)))

        rule = builder.build(reentrant=bool(entry.get("reentrant", False)))
        router.add_rule(rule)
        registered.append(rule)
    return registered

"""Application entry point for fansrouter.

``fansrouter replay FILE`` feeds decoded push payloads (one JSON object per
line) through a router built from config.json and prints each reply.
``fansrouter rules`` lists the configured rules in priority order.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.config_rules import build_rules
from adapters.payload_mapper import build_message
from adapters.sqlite_dedup import SQLiteDuplicateChecker
from core.dedup import InMemoryDuplicateChecker
from core.router import MessageRouter
from core.sessions import StandardSessionManager
from core.workers import WorkerPool

NAME = "FANSROUTER"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/fansrouter.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_duplicate_checker():
    if settings.DEDUP.backend == "sqlite":
        checker = SQLiteDuplicateChecker(settings.DB_PATH, ttl_seconds=settings.DEDUP.ttl_seconds)
        checker.init_db()
        removed = checker.cleanup_seen(settings.DEDUP.ttl_seconds)
        logging.getLogger(__name__).info("Dedup cleanup removed %s records", removed)
        return checker
    if settings.DEDUP.backend == "memory":
        return InMemoryDuplicateChecker(
            ttl_seconds=settings.DEDUP.ttl_seconds,
            max_entries=settings.DEDUP.max_entries,
        )
    raise RuntimeError("dedup.backend must be 'memory' or 'sqlite'")


def _build_router() -> MessageRouter:
    logger = logging.getLogger(__name__)
    router = MessageRouter(
        worker_pool=WorkerPool(settings.POOL.size, max_pending=settings.POOL.max_pending),
        duplicate_checker=_build_duplicate_checker(),
        session_manager=StandardSessionManager(
            max_inactive_interval=settings.SESSIONS.max_inactive_seconds,
            expire_check_interval=settings.SESSIONS.expire_check_seconds,
        ),
    )
    rules = build_rules(settings.RULES_CONFIG, router)
    logger.info("%s rules are loaded", len(rules))
    return router


def _reply_json(reply) -> str:
    if reply is None:
        return ""
    return json.dumps(dataclasses.asdict(reply), ensure_ascii=False)


def _replay(path: str) -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("Replaying %s", path)

    routed = 0
    with _build_router() as router, open(path, "r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                message = build_message(json.loads(line))
            except ValueError:
                logger.exception("Skipping malformed payload on line %s", line_no)
                continue
            print(_reply_json(router.route(message)))
            routed += 1
    logger.info("Replay complete: messages=%s", routed)


def _list_rules() -> None:
    _print_banner()
    router = _build_router()
    try:
        for index, rule in enumerate(router.rules, start=1):
            flow = "next" if rule.reentrant else "end"
            mode = "async" if rule.is_async else "sync"
            print(f"{index}. {rule.label} | {mode} | {flow}")
    finally:
        router.shutdown()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="fansrouter")
    subparsers = parser.add_subparsers(dest="command")

    replay_parser = subparsers.add_parser("replay", help="Route decoded payloads from a JSON-lines file")
    replay_parser.add_argument("path", help="File with one decoded push payload per line")
    subparsers.add_parser("rules", help="List configured rules in priority order")

    args = parser.parse_args(argv)
    if args.command == "replay":
        _replay(args.path)
        return
    if args.command == "rules":
        _list_rules()
        return
    parser.print_help()


if __name__ == "__main__":
    main()

"""Static configuration for fansrouter.

All operator-editable settings (pool, dedup, sessions, rules, logging) live
in a single JSON file for quick edits without touching Python. The file
defaults to ``config.json`` at the project root; ``FANSROUTER_CONFIG`` in
the environment or in ``.env`` points elsewhere.
"""

import json
import os

from dotenv import load_dotenv

from core.config import DedupConfig, PoolConfig, SessionConfig

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.getenv("FANSROUTER_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, operator-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Worker pool for asynchronous rules.
# - size: number of worker threads
# - max_pending: reject async rules beyond this many queued tasks (null = queue)
_pool = _CONFIG.get("pool", {})
POOL_SIZE = int(_pool.get("size", 100))
POOL_MAX_PENDING = _pool.get("max_pending")
if POOL_MAX_PENDING is not None:
    POOL_MAX_PENDING = int(POOL_MAX_PENDING)

# Deduplication of platform retries (three retries within five seconds).
# - backend: "memory" for one process, "sqlite" to share across processes
# - ttl_seconds: how long a delivered message identity is remembered
_dedup = _CONFIG.get("dedup", {})
DEDUP_BACKEND = _dedup.get("backend", "memory")
DEDUP_TTL_SECONDS = int(_dedup.get("ttl_seconds", 15))
DEDUP_MAX_ENTRIES = int(_dedup.get("max_entries", 10_000))

# Where to store the SQLite dedup database when backend=sqlite.
DB_PATH = _dedup.get("db_path", os.path.join(PROJECT_ROOT, "fansrouter.db"))
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Sessions expire after this much inactivity unless a rule is using them.
_sessions = _CONFIG.get("sessions", {})
SESSION_MAX_INACTIVE_SECONDS = int(_sessions.get("max_inactive_seconds", 1800))
SESSION_EXPIRE_CHECK_SECONDS = int(_sessions.get("expire_check_seconds", 60))

# Rules are pulled directly from config.json, in priority order.
RULES_CONFIG = _CONFIG.get("rules", [])

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

POOL = PoolConfig(size=POOL_SIZE, max_pending=POOL_MAX_PENDING)
DEDUP = DedupConfig(backend=DEDUP_BACKEND, ttl_seconds=DEDUP_TTL_SECONDS, max_entries=DEDUP_MAX_ENTRIES)
SESSIONS = SessionConfig(
    max_inactive_seconds=SESSION_MAX_INACTIVE_SECONDS,
    expire_check_seconds=SESSION_EXPIRE_CHECK_SECONDS,
)

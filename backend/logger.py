"""
Buzzer Backend Logging
======================
Structured, rotating file-based logging with a dedicated game-event stream.
Logs are written to LOG_DIR (default: backend/logs/)

Log files produced:
  - buzzer.log             General backend log (all levels)
  - game_events.jsonl      One JSON object per match state change (create, join,
                           start, buzz, answer, finish, rejected calls)
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional
from contextvars import ContextVar

from config import config

# ---------------------------------------------------------------------------
# Request / Correlation ID  (set per-request for traceability across logs)
# ---------------------------------------------------------------------------

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(rid: str | None = None) -> str:
    """Set a correlation ID for the current request context. Returns the ID."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get("-")

# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_VERBOSE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | [%(request_id)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    defaults={"request_id": "-"},
)

_CONSOLE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

# ---------------------------------------------------------------------------
# Handler factory
# ---------------------------------------------------------------------------

def _rotating_handler(
    log_dir: Path,
    filename: str,
    max_bytes: int = 5 * 1024 * 1024,   # 5 MB per file
    backup_count: int = 5,
    level: int = logging.DEBUG,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_VERBOSE_FMT)
    return handler

# ---------------------------------------------------------------------------
# Logger setup – call once at startup
# ---------------------------------------------------------------------------

_CONFIGURED = False
_LOG_DIR: Path = config.LOG_DIR


class _RequestIdFilter(logging.Filter):
    """Inject the current request_id context var into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()  # type: ignore[attr-defined]
        return True


def setup_logging(*, console_level: int = logging.INFO, log_dir: Path | None = None) -> None:
    """Initialise all loggers.  Safe to call more than once."""
    global _CONFIGURED, _LOG_DIR
    if _CONFIGURED:
        return
    _CONFIGURED = True

    _LOG_DIR = Path(log_dir or config.LOG_DIR)
    _LOG_DIR.mkdir(parents=True, exist_ok=True)

    rid_filter = _RequestIdFilter()

    # ---- Root / general logger ------------------------------------------
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(_CONSOLE_FMT)
    console.addFilter(rid_filter)
    root.addHandler(console)

    general = _rotating_handler(_LOG_DIR, "buzzer.log", level=logging.DEBUG)
    general.addFilter(rid_filter)
    root.addHandler(general)

    # ---- Game-events logger (JSONL) – structured match/player events ----
    game_logger = logging.getLogger("game.events")
    game_logger.setLevel(logging.DEBUG)
    game_handler = _rotating_handler(
        _LOG_DIR,
        "game_events.jsonl",
        max_bytes=10 * 1024 * 1024,  # 10 MB
        backup_count=10,
        level=logging.DEBUG,
    )
    # JSONL lines should be raw – no formatter prefix
    game_handler.setFormatter(logging.Formatter("%(message)s"))
    game_logger.addHandler(game_handler)
    game_logger.propagate = False  # don't echo raw JSON to console

    logging.getLogger("buzzer").info(
        f"📁 Logging initialised – log directory: {_LOG_DIR.resolve()}"
    )


# ---------------------------------------------------------------------------
# Convenience accessors
# ---------------------------------------------------------------------------

def get_logger(name: str = "buzzer") -> logging.Logger:
    return logging.getLogger(name)


def get_game_event_logger() -> logging.Logger:
    return logging.getLogger("game.events")


# ---------------------------------------------------------------------------
# Structured game-event helper
# ---------------------------------------------------------------------------

def log_game_event(
    event_type: str,
    *,
    match_id: str | None = None,
    player_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Write a structured JSON line to game_events.jsonl.

    Use for match lifecycle, player actions and rejected calls.
    Each line is self-contained and easy to query with jq / pandas.
    """
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        "request_id": get_request_id(),
    }
    if match_id:
        record["match"] = match_id
    if player_id:
        record["player_id"] = player_id
    if data:
        record.update(data)
    get_game_event_logger().info(json.dumps(record, default=str))


# ---------------------------------------------------------------------------
# Summary helper (can be called from an endpoint or CLI)
# ---------------------------------------------------------------------------

def summarize_game_events(since_hours: float = 24, log_dir: Optional[Path] = None) -> dict[str, Any]:
    """Parse game_events.jsonl and return aggregate stats."""
    jsonl_path = Path(log_dir or _LOG_DIR) / "game_events.jsonl"
    if not jsonl_path.exists():
        return {"error": "No game_events.jsonl found", "events": 0}

    cutoff = time.time() - since_hours * 3600
    total = 0
    rejected = 0
    event_counts: dict[str, int] = {}
    rejection_kinds: dict[str, int] = {}
    matches: set[str] = set()
    finished: set[str] = set()

    with open(jsonl_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError:
                continue
            try:
                ts = datetime.fromisoformat(rec.get("ts", "")).timestamp()
            except (ValueError, TypeError):
                ts = 0
            if ts < cutoff:
                continue

            total += 1
            ev = rec.get("event", "unknown")
            event_counts[ev] = event_counts.get(ev, 0) + 1
            if rec.get("match"):
                matches.add(rec["match"])
                if ev == "match_finished":
                    finished.add(rec["match"])
            if ev == "call_rejected":
                rejected += 1
                kind = rec.get("kind", "unknown")
                rejection_kinds[kind] = rejection_kinds.get(kind, 0) + 1

    return {
        "period_hours": since_hours,
        "events": total,
        "matches_touched": len(matches),
        "matches_finished": len(finished),
        "rejected_calls": rejected,
        "rejection_rate_pct": round(rejected / max(total, 1) * 100, 1),
        "event_breakdown": event_counts,
        "rejection_breakdown": rejection_kinds,
    }

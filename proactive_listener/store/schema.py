"""SQLite schema for the proactive engine.

All state lives in a single SQLite file at ~/.proactive-listener/proactive.db.
Tables:
  users            — per-user notification preferences and digest hours
  waiting_checks   — standing "tell me when X happens" conditions
  priority_senders — contacts that bypass classification
  bridges          — bridge connection state and last_seen_online watermark
  usage_logs       — one row per notification attempt, used for cooldowns
  message_history  — notification text as the assistant sent it
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from proactive_listener.config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- ══════════════════════════════════════════════════════════════════
-- Users and preferences
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS users (
    id                          INTEGER PRIMARY KEY,
    phone_number                TEXT NOT NULL DEFAULT '',
    matrix_username             TEXT,
    timezone                    TEXT,                -- IANA name, e.g. Europe/Helsinki
    notification_type           TEXT,                -- sms | call, default channel
    critical_enabled            TEXT,                -- sms | call, NULL disables
    action_on_critical_message  TEXT,                -- notify_family restricts to focus senders
    call_notify                 INTEGER NOT NULL DEFAULT 1,
    proactive_agent_on          INTEGER NOT NULL DEFAULT 1,
    has_monitoring_subscription INTEGER NOT NULL DEFAULT 1,
    morning_digest              TEXT,                -- "HH:00" or NULL
    day_digest                  TEXT,
    evening_digest              TEXT
);

-- ══════════════════════════════════════════════════════════════════
-- Matching rules
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS waiting_checks (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    content      TEXT NOT NULL,
    service_type TEXT NOT NULL,                      -- whatsapp, telegram, signal, email, messaging
    noti_type    TEXT NOT NULL DEFAULT 'sms'
);

CREATE INDEX IF NOT EXISTS idx_waiting_user ON waiting_checks(user_id, service_type);

CREATE TABLE IF NOT EXISTS priority_senders (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    platform   TEXT NOT NULL,
    sender     TEXT NOT NULL,
    noti_mode  TEXT NOT NULL DEFAULT 'all',          -- all | focus
    noti_type  TEXT NOT NULL DEFAULT 'sms'
);

CREATE INDEX IF NOT EXISTS idx_priority_user ON priority_senders(user_id, platform);

-- ══════════════════════════════════════════════════════════════════
-- Bridges
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS bridges (
    user_id          INTEGER NOT NULL,
    bridge_type      TEXT NOT NULL,
    status           TEXT NOT NULL,                  -- connecting | connected | disconnected
    room_id          TEXT,                           -- management room
    last_seen_online INTEGER,                        -- unix seconds
    created_at       INTEGER NOT NULL,
    PRIMARY KEY (user_id, bridge_type)
);

CREATE INDEX IF NOT EXISTS idx_bridges_room ON bridges(room_id) WHERE room_id IS NOT NULL;

-- ══════════════════════════════════════════════════════════════════
-- Notification log
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS usage_logs (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL,
    activity_type TEXT NOT NULL,                     -- content type tag, e.g. whatsapp_critical
    external_ref  TEXT,                              -- message or call id
    success       INTEGER NOT NULL,
    status        TEXT NOT NULL,                     -- delivered | completed | failed
    reason        TEXT,
    created_at    INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_usage_user_type ON usage_logs(user_id, activity_type, created_at DESC);

CREATE TABLE IF NOT EXISTS message_history (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    role       TEXT NOT NULL,
    content    TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_user ON message_history(user_id, created_at DESC);
"""


def init_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed."""
    path = db_path or DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")

    conn.executescript(SCHEMA_SQL)
    conn.commit()

    logger.info("Proactive database initialized at %s", path)
    return conn

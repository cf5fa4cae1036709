"""ProactiveStore — SQLite persistence for the proactive engine.

Covers users and their settings, waiting checks, priority senders, bridge
state with the last_seen_online watermark, the notification usage log used
for cooldowns, and message history.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from proactive_listener.store.models import (
    DIGEST_SLOTS,
    BridgeConnection,
    DigestSettings,
    NotificationRecord,
    PrioritySender,
    UserSettings,
    WaitingCheck,
)
from proactive_listener.store.schema import init_db

logger = logging.getLogger(__name__)

# Waiting checks stored under a generic name also apply to the concrete service
SERVICE_ALIASES = {
    "whatsapp": ("whatsapp", "messaging"),
    "telegram": ("telegram", "messaging"),
    "signal": ("signal", "messaging"),
    "messaging": ("messaging", "whatsapp"),
    "email": ("email", "imap"),
    "imap": ("imap", "email"),
}

_USER_COLUMNS = (
    "phone_number",
    "matrix_username",
    "timezone",
    "notification_type",
    "critical_enabled",
    "action_on_critical_message",
    "call_notify",
    "proactive_agent_on",
    "has_monitoring_subscription",
)


class ProactiveStore:
    """Manages the proactive engine's SQLite database."""

    def __init__(self, db_path: Path | None = None, clock: Callable[[], float] = time.time):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._clock = clock

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = init_db(self._db_path)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def _now(self) -> int:
        return int(self._clock())

    # ══════════════════════════════════════════════════════════════
    # Users
    # ══════════════════════════════════════════════════════════════

    def upsert_user(self, settings: UserSettings):
        values = [getattr(settings, c) for c in _USER_COLUMNS]
        values = [int(v) if isinstance(v, bool) else v for v in values]
        placeholders = ", ".join("?" for _ in _USER_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _USER_COLUMNS)
        self.conn.execute(
            f"""INSERT INTO users (id, {", ".join(_USER_COLUMNS)})
                VALUES (?, {placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}""",
            (settings.user_id, *values),
        )
        self.conn.commit()

    def get_user(self, user_id: int) -> UserSettings | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            return None
        return UserSettings(
            user_id=row["id"],
            phone_number=row["phone_number"],
            matrix_username=row["matrix_username"],
            timezone=row["timezone"],
            notification_type=row["notification_type"],
            critical_enabled=row["critical_enabled"],
            action_on_critical_message=row["action_on_critical_message"],
            call_notify=bool(row["call_notify"]),
            proactive_agent_on=bool(row["proactive_agent_on"]),
            has_monitoring_subscription=bool(row["has_monitoring_subscription"]),
        )

    def get_digest_settings(self, user_id: int) -> DigestSettings:
        row = self.conn.execute(
            "SELECT morning_digest, day_digest, evening_digest, timezone FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return DigestSettings()
        return DigestSettings(
            morning_digest=row["morning_digest"],
            day_digest=row["day_digest"],
            evening_digest=row["evening_digest"],
            timezone=row["timezone"],
        )

    def set_digests(
        self,
        user_id: int,
        morning: Optional[str] = None,
        day: Optional[str] = None,
        evening: Optional[str] = None,
    ):
        """Overwrite all three digest hours; None disables a slot."""
        self.conn.execute(
            "UPDATE users SET morning_digest = ?, day_digest = ?, evening_digest = ? WHERE id = ?",
            (morning, day, evening, user_id),
        )
        self.conn.commit()

    def set_timezone(self, user_id: int, tz_name: str):
        self.conn.execute("UPDATE users SET timezone = ? WHERE id = ?", (tz_name, user_id))
        self.conn.commit()

    def get_users_with_digests(self) -> List[int]:
        clauses = " OR ".join(f"{slot}_digest IS NOT NULL" for slot in DIGEST_SLOTS)
        rows = self.conn.execute(f"SELECT id FROM users WHERE {clauses} ORDER BY id").fetchall()
        return [r["id"] for r in rows]

    # ══════════════════════════════════════════════════════════════
    # Waiting checks
    # ══════════════════════════════════════════════════════════════

    def create_waiting_check(self, user_id: int, content: str, service_type: str, noti_type: str = "sms") -> int:
        cursor = self.conn.execute(
            "INSERT INTO waiting_checks (user_id, content, service_type, noti_type) VALUES (?, ?, ?, ?)",
            (user_id, content, service_type, noti_type),
        )
        self.conn.commit()
        return cursor.lastrowid

    def get_waiting_checks(self, user_id: int, service_type: str) -> List[WaitingCheck]:
        """Checks scoped to `service_type` or one of its aliases."""
        names = SERVICE_ALIASES.get(service_type, (service_type,))
        placeholders = ", ".join("?" for _ in names)
        rows = self.conn.execute(
            f"""SELECT * FROM waiting_checks
                WHERE user_id = ? AND service_type IN ({placeholders})
                ORDER BY id""",
            (user_id, *names),
        ).fetchall()
        return [self._row_to_waiting_check(r) for r in rows]

    def list_waiting_checks(self, user_id: int) -> List[WaitingCheck]:
        rows = self.conn.execute(
            "SELECT * FROM waiting_checks WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [self._row_to_waiting_check(r) for r in rows]

    def delete_waiting_check(self, user_id: int, check_id: int) -> bool:
        """Delete a check. Returns True only for the caller that removed the row."""
        cursor = self.conn.execute(
            "DELETE FROM waiting_checks WHERE id = ? AND user_id = ?", (check_id, user_id)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def _row_to_waiting_check(self, row: sqlite3.Row) -> WaitingCheck:
        return WaitingCheck(
            id=row["id"],
            user_id=row["user_id"],
            content=row["content"],
            service_type=row["service_type"],
            noti_type=row["noti_type"],
        )

    # ══════════════════════════════════════════════════════════════
    # Priority senders
    # ══════════════════════════════════════════════════════════════

    def create_priority_sender(self, sender: PrioritySender) -> int:
        cursor = self.conn.execute(
            """INSERT INTO priority_senders (user_id, platform, sender, noti_mode, noti_type)
               VALUES (?, ?, ?, ?, ?)""",
            (sender.user_id, sender.platform, sender.sender, sender.noti_mode, sender.noti_type),
        )
        self.conn.commit()
        return cursor.lastrowid

    def get_priority_senders(self, user_id: int, platform: str) -> List[PrioritySender]:
        rows = self.conn.execute(
            "SELECT * FROM priority_senders WHERE user_id = ? AND platform = ? ORDER BY id",
            (user_id, platform),
        ).fetchall()
        return [self._row_to_priority_sender(r) for r in rows]

    def get_priority_map(self, user_id: int) -> Dict[str, List[str]]:
        """platform -> sender names, for digest ordering."""
        rows = self.conn.execute(
            "SELECT platform, sender FROM priority_senders WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        result: Dict[str, List[str]] = {}
        for r in rows:
            result.setdefault(r["platform"], []).append(r["sender"])
        return result

    def _row_to_priority_sender(self, row: sqlite3.Row) -> PrioritySender:
        return PrioritySender(
            id=row["id"],
            user_id=row["user_id"],
            platform=row["platform"],
            sender=row["sender"],
            noti_mode=row["noti_mode"],
            noti_type=row["noti_type"],
        )

    # ══════════════════════════════════════════════════════════════
    # Bridges
    # ══════════════════════════════════════════════════════════════

    def upsert_bridge(self, bridge: BridgeConnection):
        self.conn.execute(
            """INSERT INTO bridges (user_id, bridge_type, status, room_id, last_seen_online, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, bridge_type) DO UPDATE SET
                 status = excluded.status,
                 room_id = excluded.room_id""",
            (
                bridge.user_id, bridge.bridge_type, bridge.status, bridge.room_id,
                bridge.last_seen_online, bridge.created_at or self._now(),
            ),
        )
        self.conn.commit()

    def get_bridge(self, user_id: int, bridge_type: str) -> BridgeConnection | None:
        row = self.conn.execute(
            "SELECT * FROM bridges WHERE user_id = ? AND bridge_type = ?", (user_id, bridge_type)
        ).fetchone()
        return self._row_to_bridge(row) if row else None

    def get_bridges(self, user_id: int) -> List[BridgeConnection]:
        rows = self.conn.execute(
            "SELECT * FROM bridges WHERE user_id = ? ORDER BY bridge_type", (user_id,)
        ).fetchall()
        return [self._row_to_bridge(r) for r in rows]

    def delete_bridge(self, user_id: int, bridge_type: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM bridges WHERE user_id = ? AND bridge_type = ?", (user_id, bridge_type)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def has_active_bridges(self, user_id: int) -> bool:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM bridges WHERE user_id = ? AND status != 'disconnected'", (user_id,)
        ).fetchone()
        return row[0] > 0

    def update_bridge_last_seen_online(self, user_id: int, bridge_type: str, seen_at: int) -> int:
        """Last-write-wins watermark update. Returns the number of rows touched."""
        cursor = self.conn.execute(
            "UPDATE bridges SET last_seen_online = ? WHERE user_id = ? AND bridge_type = ?",
            (seen_at, user_id, bridge_type),
        )
        self.conn.commit()
        return cursor.rowcount

    def _row_to_bridge(self, row: sqlite3.Row) -> BridgeConnection:
        return BridgeConnection(
            user_id=row["user_id"],
            bridge_type=row["bridge_type"],
            status=row["status"],
            room_id=row["room_id"],
            last_seen_online=row["last_seen_online"],
            created_at=row["created_at"],
        )

    # ══════════════════════════════════════════════════════════════
    # Usage log
    # ══════════════════════════════════════════════════════════════

    def log_usage(
        self,
        user_id: int,
        activity_type: str,
        success: bool,
        status: str,
        external_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        cursor = self.conn.execute(
            """INSERT INTO usage_logs (user_id, activity_type, external_ref, success, status, reason, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user_id, activity_type, external_ref, int(success), status, reason, self._now()),
        )
        self.conn.commit()
        return cursor.lastrowid

    def has_recent_notification(self, user_id: int, activity_type: str, seconds: int) -> bool:
        """True if a successful `activity_type` notification was logged in the last `seconds`."""
        row = self.conn.execute(
            """SELECT COUNT(*) FROM usage_logs
               WHERE user_id = ? AND activity_type = ? AND success = 1 AND created_at > ?""",
            (user_id, activity_type, self._now() - seconds),
        ).fetchone()
        return row[0] > 0

    def recent_usage(self, user_id: int | None = None, limit: int = 20) -> List[NotificationRecord]:
        if user_id is None:
            rows = self.conn.execute(
                "SELECT * FROM usage_logs ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM usage_logs WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [
            NotificationRecord(
                id=r["id"],
                user_id=r["user_id"],
                activity_type=r["activity_type"],
                success=bool(r["success"]),
                status=r["status"],
                external_ref=r["external_ref"],
                reason=r["reason"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ══════════════════════════════════════════════════════════════
    # Message history
    # ══════════════════════════════════════════════════════════════

    def create_message_history(self, user_id: int, content: str, role: str = "assistant") -> int:
        cursor = self.conn.execute(
            "INSERT INTO message_history (user_id, role, content, created_at) VALUES (?, ?, ?, ?)",
            (user_id, role, content, self._now()),
        )
        self.conn.commit()
        return cursor.lastrowid

    def get_message_history(self, user_id: int, limit: int = 20) -> List[dict]:
        rows = self.conn.execute(
            """SELECT role, content, created_at FROM message_history
               WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

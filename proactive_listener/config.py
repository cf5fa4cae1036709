"""Proactive listener configuration.

Settings are read from ~/.proactive-listener/config.yaml and then overridden
by environment variables. Engine timing constants live here as well so the
pipeline, the scheduler and the tests share one source of truth.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".proactive-listener"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"
DEFAULT_DB_PATH = CONFIG_DIR / "proactive.db"

# ══════════════════════════════════════════════════════════════════
# Engine constants
# ══════════════════════════════════════════════════════════════════

STALE_EVENT_SECONDS = 30 * 60
ACTIVITY_THRESHOLD_SECONDS = 5 * 60
SHORT_WAIT_SECONDS = 2 * 60
LONG_WAIT_SECONDS = 10 * 60
TIMELINE_SCAN_LIMIT = 100

CRITICAL_COOLDOWN_SECONDS = 10 * 60
ADMIN_ALERT_COOLDOWN_SECONDS = 6 * 3600

# Rooms with more joined members than this are group chats
GROUP_ROOM_MEMBER_THRESHOLD = 3

SMS_MAX_CHARS = 157
SMS_SENDER_MAX_CHARS = 30

BRIDGE_SERVICES = ("whatsapp", "telegram", "signal")
DIGEST_PLATFORMS = ("email", "whatsapp", "telegram", "signal")

# Sent to the other party by the auto-responder; a "yes" reply to it is relayed
CONFIRMATION_PROMPT = (
    "Hi, I'm your friend's AI assistant. This message looks time-sensitive—since they're "
    "not currently on their computer, would you like me to send them a notification about it? "
    "Reply \"yes\" or \"no.\""
)


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be used."""


@dataclass
class Settings:
    """Runtime settings for the engine and the CLI."""

    llm_provider: str = "gemini"
    llm_model: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    log_level: str = "INFO"
    admin_user_id: int = 1
    admin_alert_webhook: str = ""
    bridge_bots: Dict[str, str] = field(default_factory=dict)

    def bridge_bot(self, service: str) -> Optional[str]:
        """Matrix ID of the bridge bot for a service, or None if unconfigured.

        `{SERVICE}_BRIDGE_BOT` wins over the config file.
        """
        env_value = os.environ.get(f"{service.upper()}_BRIDGE_BOT")
        if env_value:
            return env_value
        return self.bridge_bots.get(service)


def _apply_env(settings: Settings) -> Settings:
    provider = os.environ.get("PROACTIVE_LLM_PROVIDER")
    if provider:
        settings.llm_provider = provider
    model = os.environ.get("PROACTIVE_LLM_MODEL")
    if model:
        settings.llm_model = model
    db_path = os.environ.get("PROACTIVE_DB_PATH")
    if db_path:
        settings.db_path = Path(db_path)
    webhook = os.environ.get("ADMIN_ALERT_WEBHOOK")
    if webhook:
        settings.admin_alert_webhook = webhook
    return settings


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from YAML (if present) and the environment."""
    config_path = path or DEFAULT_CONFIG_PATH
    raw: Dict[str, Any] = {}

    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Cannot read {config_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping, got {type(loaded).__name__}")
        raw = loaded

    settings = Settings(
        llm_provider=raw.get("llm_provider", "gemini"),
        llm_model=raw.get("llm_model"),
        db_path=Path(raw["db_path"]).expanduser() if raw.get("db_path") else DEFAULT_DB_PATH,
        log_level=str(raw.get("log_level", "INFO")).upper(),
        admin_user_id=int(raw.get("admin_user_id", 1)),
        admin_alert_webhook=raw.get("admin_alert_webhook", ""),
        bridge_bots=dict(raw.get("bridge_bots") or {}),
    )
    settings = _apply_env(settings)
    logger.debug("Loaded settings from %s (provider=%s)", config_path, settings.llm_provider)
    return settings


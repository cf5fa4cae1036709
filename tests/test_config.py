import pytest

from proactive_listener.config import ConfigError, Settings, load_settings


class TestSettings:
    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PROACTIVE_LLM_PROVIDER", raising=False)
        settings = load_settings(tmp_path / "missing.yaml")
        assert settings.llm_provider == "gemini"
        assert settings.log_level == "INFO"

    def test_yaml_and_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(
            "llm_provider: claude\nlog_level: debug\nbridge_bots:\n  whatsapp: '@whatsappbot:localhost'\n"
        )
        monkeypatch.setenv("PROACTIVE_DB_PATH", str(tmp_path / "x.db"))
        settings = load_settings(path)
        assert settings.llm_provider == "claude"
        assert settings.log_level == "DEBUG"
        assert settings.db_path == tmp_path / "x.db"
        assert settings.bridge_bot("whatsapp") == "@whatsappbot:localhost"

    def test_env_bridge_bot_wins(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_BRIDGE_BOT", "@signalbot:env")
        settings = Settings(bridge_bots={"signal": "@signalbot:file"})
        assert settings.bridge_bot("signal") == "@signalbot:env"

    def test_missing_bridge_bot(self, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BRIDGE_BOT", raising=False)
        assert Settings().bridge_bot("telegram") is None

    def test_non_mapping_is_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_settings(path)


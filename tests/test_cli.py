from click.testing import CliRunner

from proactive_listener.main import cli
from proactive_listener.store.store import ProactiveStore


def _invoke(tmp_path, monkeypatch, *args):
    monkeypatch.setenv("PROACTIVE_DB_PATH", str(tmp_path / "cli.db"))
    return CliRunner().invoke(cli, ["--config", str(tmp_path / "none.yaml"), *args])


class TestCli:
    def test_waiting_lifecycle(self, tmp_path, monkeypatch):
        assert _invoke(tmp_path, monkeypatch, "init-db", "--user", "1").exit_code == 0

        result = _invoke(tmp_path, monkeypatch, "waiting", "add", "package delivered", "--user", "1")
        assert result.exit_code == 0, result.output
        assert "Waiting check 1 added" in result.output

        listing = _invoke(tmp_path, monkeypatch, "waiting", "list", "--user", "1")
        assert "package delivered" in listing.output

        assert "removed" in _invoke(tmp_path, monkeypatch, "waiting", "remove", "1", "--user", "1").output
        assert "No waiting checks" in _invoke(tmp_path, monkeypatch, "waiting", "list", "--user", "1").output

    def test_digest_settings_and_preview(self, tmp_path, monkeypatch):
        _invoke(tmp_path, monkeypatch, "init-db", "--user", "1")
        result = _invoke(
            tmp_path, monkeypatch, "digest", "settings", "--user", "1",
            "--morning", "7", "--day", "13:00", "--timezone", "Europe/Helsinki",
        )
        assert result.exit_code == 0, result.output

        settings = ProactiveStore(tmp_path / "cli.db").get_digest_settings(1)
        assert settings.morning_digest == "07:00"
        assert settings.evening_digest is None

        preview = _invoke(tmp_path, monkeypatch, "digest", "preview", "--user", "1")
        assert "07:00" in preview.output
        assert "6h" in preview.output

    def test_digest_settings_rejects_bad_input(self, tmp_path, monkeypatch):
        _invoke(tmp_path, monkeypatch, "init-db", "--user", "1")
        assert _invoke(tmp_path, monkeypatch, "digest", "settings", "--user", "1", "--morning", "25").exit_code != 0
        assert _invoke(tmp_path, monkeypatch, "digest", "settings", "--user", "1",
                       "--timezone", "Mars/Olympus").exit_code != 0

    def test_priority_and_history(self, tmp_path, monkeypatch):
        _invoke(tmp_path, monkeypatch, "init-db", "--user", "1")
        result = _invoke(tmp_path, monkeypatch, "priority", "add", "Mom", "--user", "1", "--platform", "whatsapp")
        assert result.exit_code == 0, result.output
        assert "Mom" in _invoke(tmp_path, monkeypatch, "priority", "list", "--user", "1").output

        ProactiveStore(tmp_path / "cli.db").log_usage(1, "whatsapp_critical", True, "delivered", external_ref="SM1")
        history = _invoke(tmp_path, monkeypatch, "history", "--user", "1")
        assert "whatsapp_critical" in history.output

    def test_classify_dry_run(self, tmp_path, monkeypatch):
        from proactive_listener.cli import classify_cmd
        from tests.fakes import FakeLLM

        llm = FakeLLM({"analyze_message": [{"is_critical": True, "what_to_inform": "Bob is locked out"}]})
        monkeypatch.setattr(classify_cmd, "LLMClient", lambda provider=None, model=None: llm)

        result = _invoke(tmp_path, monkeypatch, "classify", "I'm locked out, come home", "--chat", "Bob")

        assert result.exit_code == 0, result.output
        assert "Critical" in result.output
        assert "Bob is locked out" in result.output
        assert llm.calls_for("analyze_message")[0].endswith("Whatsapp from Bob: I'm locked out, come home")

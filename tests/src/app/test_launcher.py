"""Tests for the uvicorn launcher."""
import launcher


def test_main_passes_cli_options(monkeypatch):
    """Test CLI flags reach uvicorn."""
    calls = []
    monkeypatch.setattr(launcher.uvicorn, "run", lambda **kwargs: calls.append(kwargs))

    launcher.main(["--host", "127.0.0.1", "--port", "9001", "--reload"])

    kwargs = calls[0]
    assert kwargs["app"] == "deal_intake.api.http.server:app"
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9001
    assert kwargs["reload"] is True
    assert kwargs["log_config"] is None


def test_main_defaults_from_env(monkeypatch):
    """Test APP_PORT is honoured without flags."""
    calls = []
    monkeypatch.setattr(launcher.uvicorn, "run", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setenv("APP_PORT", "8123")
    monkeypatch.delenv("APP_RELOAD", raising=False)
    monkeypatch.setattr("sys.argv", ["launcher"])

    launcher.main()

    assert calls[0]["port"] == 8123
    assert "reload" not in calls[0]

"""Tests for environment variable overrides in settings."""
from pathlib import Path

from deal_intake.infra.config.settings import Settings


def test_env_overrides(monkeypatch, tmp_path):
    """Test environment overrides for services and timers."""
    monkeypatch.setenv("UPLOADS_ROOT", str(tmp_path / "spool"))
    monkeypatch.setenv("CATALOG_BASE_URL", "http://catalog.local/")
    monkeypatch.setenv("DOCUMENTS_BASE_URL", "http://docs.local/api/")
    monkeypatch.setenv("OCR_SUBMIT_BATCH_SIZE", "5")
    monkeypatch.setenv("OCR_STATUS_TIMEOUT_SECONDS", "1.5")
    monkeypatch.setenv("OCR_DISABLED", "yes")

    s = Settings()
    assert s.uploads_root == Path(tmp_path / "spool")
    assert s.catalog_base_url == "http://catalog.local"
    assert s.documents_base_url == "http://docs.local/api"
    assert s.ocr_submit_batch_size == 5
    assert s.ocr_status_timeout_seconds == 1.5
    assert s.ocr_disabled is True


def test_invalid_numbers_fall_back(monkeypatch):
    """Test malformed numbers use defaults and batch size stays positive."""
    monkeypatch.setenv("OCR_POLL_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("OCR_SUBMIT_BATCH_SIZE", "0")
    s = Settings()
    assert s.ocr_poll_interval_seconds == 10.0
    assert s.ocr_submit_batch_size == 1


def test_push_backend_selection(monkeypatch):
    """Test Redis push is used only with a URL configured."""
    monkeypatch.setenv("PUSH_BACKEND", "redis")
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert Settings().use_redis_push is False

    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    assert Settings().use_redis_push is True

    monkeypatch.setenv("PUSH_BACKEND", "memory")
    assert Settings().use_redis_push is False


def test_cors_origins(monkeypatch):
    """Test CORS origins default and wildcard handling."""
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    s = Settings()
    assert "http://localhost:5173" in s.cors_origins
    assert s.cors_allow_credentials is True

    monkeypatch.setenv("CORS_ORIGINS", "*, http://a.test")
    s = Settings()
    assert s.cors_origins == ["*", "http://a.test"]
    assert s.cors_allow_credentials is False


def test_env_mode(monkeypatch):
    """Test production flag."""
    monkeypatch.setenv("ENV", "Production")
    s = Settings()
    assert s.is_prod is True
    assert s.is_dev is False

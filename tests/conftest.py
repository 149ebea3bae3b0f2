"""Pytest configuration and fixtures for test suite."""
# pylint: disable=redefined-outer-name,protected-access
import asyncio
import inspect
import sys
from pathlib import Path

import pytest

# Project root on sys.path so deal_intake.* imports work without installing
PROJECT_ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(PROJECT_ROOT)
if ROOT_STR in sys.path:
    sys.path.remove(ROOT_STR)
sys.path.insert(0, ROOT_STR)

from deal_intake.infra.config.settings import settings as app_settings  # noqa: E402


@pytest.fixture
def temp_workspace(tmp_path):
    """Creates a temporary workspace with the upload spool directory."""
    (tmp_path / "assets" / "uploads").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def mock_settings(temp_workspace):
    """Overrides settings to use the temporary workspace and fast timers."""
    overrides = {
        "uploads_root": temp_workspace / "assets" / "uploads",
        "catalog_base_url": "http://catalog.test",
        "documents_base_url": "http://documents.test",
        "documents_api_key": None,
        "redis_url": None,
        "push_backend": "memory",
        "ocr_disabled": False,
        "ocr_submit_batch_size": 3,
        "ocr_status_timeout_seconds": 0.5,
        "ocr_poll_interval_seconds": 0.0,
        "ocr_refresh_poll_delay_seconds": 0.01,
        "ocr_checking_min_seconds": 0.0,
        "env": "test",
    }
    original_values = {key: getattr(app_settings, key) for key in overrides}
    for key, value in overrides.items():
        setattr(app_settings, key, value)

    yield app_settings

    for key, value in original_values.items():
        setattr(app_settings, key, value)


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """
    Run all sync tests inside an asyncio event loop so they execute in async mode
    without manual rewrite of each test. Coroutine tests are left to pytest-asyncio.
    """
    if inspect.iscoroutinefunction(pyfuncitem.obj) or "asyncio" in pyfuncitem.keywords:
        return None

    testargs = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }

    async def _run():
        pyfuncitem.obj(**testargs)

    asyncio.run(_run())
    return True

"""Unit tests for the FileTrace app factory.

Tests:
  1. create_app() with local settings returns a working ASGI app
  2. Share, audit and files routers are registered
  3. In-memory stores are selected for ENVIRONMENT=local
  4. Supabase stores are selected for non-local environments
  5. Invalid settings fail fast
  6. Lifespan configures logging and startup/shutdown run cleanly
"""

import logging

import pytest
from fastapi.testclient import TestClient

from filetrace.audit.model import InMemoryAuditLog
from filetrace.db.share_store import SupabaseShareStore
from filetrace.main import create_app
from filetrace.settings import FileTraceSettings
from filetrace.sharing.store import InMemoryShareStore


def _local_settings(**overrides) -> FileTraceSettings:
    defaults = {"environment": "local", "jwt_secret": "x" * 32}
    defaults.update(overrides)
    return FileTraceSettings(**defaults)


def _staging_settings(**overrides) -> FileTraceSettings:
    defaults = {
        "environment": "staging",
        "supabase_url": "https://test.supabase.co",
        "supabase_service_role_key": "test-key-not-real",
        "jwt_secret": "s" * 32,
    }
    defaults.update(overrides)
    return FileTraceSettings(**defaults)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestCreateApp:

    def test_local_uses_inmemory_stores(self):
        app = create_app(_local_settings())
        assert isinstance(app.state.deps.share_store, InMemoryShareStore)
        assert isinstance(app.state.deps.audit_log, InMemoryAuditLog)

    def test_staging_uses_supabase_stores(self):
        app = create_app(_staging_settings())
        assert isinstance(app.state.deps.share_store, SupabaseShareStore)

    def test_overrides_win(self):
        store = InMemoryShareStore()
        app = create_app(_staging_settings(), share_store=store)
        assert app.state.deps.share_store is store

    def test_invalid_settings_fail_fast(self):
        with pytest.raises(ValueError, match="settings validation failed"):
            create_app(FileTraceSettings(environment="staging"))

    def test_routes_registered(self):
        app = create_app(_local_settings())
        paths = {route.path for route in app.routes}
        assert "/health" in paths
        assert "/api/share/create" in paths
        assert "/api/share/{token}/download" in paths
        assert "/api/audit/file/{file_id}" in paths
        assert "/api/files" in paths

    def test_local_without_secret_uses_dev_secret(self, caplog):
        create_app(FileTraceSettings())
        assert "local development secret" in caplog.text


class TestLifespan:

    def test_health_through_lifespan(self, restore_root_logging):
        app = create_app(_local_settings(log_format="console"))
        with TestClient(app) as client:
            resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "environment": "local"}
        assert resp.headers["x-request-id"]

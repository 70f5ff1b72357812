"""Pytest configuration and fixtures for hearth tests.

Test isolation strategy:
- Every test gets its own SQLite store and static directory under tmp_path
- Environment variables are set per test and the settings cache is cleared
  before and after, so get_settings() never leaks between tests
- App tests use `client`, which runs the lifespan (workers, sweeper, reaper)
"""

import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hearth.app import add_request_id_middleware, create_app
from hearth.config import Settings, clear_settings_cache, get_settings
from hearth.db.records import User
from hearth.db.store import Store
from hearth.realtime.registry import ConnectionRegistry
from hearth.services.apns import ApnsConfig, load_private_key
from tests.helpers import create_family

TEST_FAMILY_ID = 7


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point every setting at a per-test temporary directory."""
    for name in (
        "APNS_TEAM_ID",
        "APNS_KEY_ID",
        "APNS_BUNDLE_ID",
        "APNS_KEY_PATH",
        "SESSION_SIGNING_KEY",
        "DATABASE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HEARTH_ENV", "test")
    monkeypatch.setenv("HEARTH_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("STATIC_DIR", str(tmp_path / "static"))
    monkeypatch.setenv("SITE_ROOT", "http://localhost:3000")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def static_dir(settings: Settings) -> Path:
    path = Path(settings.static_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def store(settings: Settings) -> Generator[Store, None, None]:
    """A fresh store at the configured database path."""
    store = Store.open(settings.effective_database_path)
    yield store
    store.close()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def family(store: Store) -> list[User]:
    """Three members of family 7: Ada, Grace and Linus."""
    return create_family(store, ["Ada", "Grace", "Linus"], family_id=TEST_FAMILY_ID)


@pytest.fixture
def app(settings: Settings, store: Store) -> FastAPI:
    """App over the test store, with request-id middleware outermost."""
    app = create_app(settings=settings, store=store)
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the lifespan running."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def apns_key_path(tmp_path: Path) -> Path:
    """A freshly generated P-256 key in PKCS8 PEM, like an APNs .p8 file."""
    key = ec.generate_private_key(ec.SECP256R1())
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path = tmp_path / "AuthKey_TESTKEY123.p8"
    path.write_bytes(pem)
    return path


@pytest.fixture
def apns_config(apns_key_path: Path) -> ApnsConfig:
    return ApnsConfig(
        team_id="TEAM123456",
        key_id="TESTKEY123",
        bundle_id="com.example.family",
        key_path=str(apns_key_path),
        private_key=load_private_key(str(apns_key_path)),
    )

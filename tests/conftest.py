"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

from pathlib import Path
from typing import Iterator

import pytest
from flask import Flask
from flask.testing import FlaskClient

from lifelines_core import server
from lifelines_core.kernel.ids import SequentialIdFactory
from lifelines_core.kernel.settings import LifelinesSettings
from lifelines_core.kernel.time import FixedTimeProvider
from lifelines_core.lifecycle.handlers import LifecycleService
from lifelines_core.lifecycle.models import Actor
from lifelines_core.lifecycle.seed import seed_store
from lifelines_core.lifelines import Lifelines
from lifelines_core.store.audit import AuditLedger
from lifelines_core.store.entity_store import EntityStore
from tests.helpers import FIXED_NOW


@pytest.fixture
def time_provider() -> FixedTimeProvider:
    """Provide a time provider frozen at a known instant"""
    return FixedTimeProvider(FIXED_NOW)


@pytest.fixture
def settings() -> LifelinesSettings:
    """Settings independent of the environment"""
    return LifelinesSettings(
        db_path=None,
        seed_demo_data=True,
        snapshot_audit_limit=400,
        audit_memory_limit=5000,
        remote_timeout_seconds=2.0,
    )


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path of a SQLite file that does not exist yet"""
    return tmp_path / "lifelines.db"


# =============================================================================
# Core (no facade)
# =============================================================================


@pytest.fixture
def store() -> EntityStore:
    return EntityStore()


@pytest.fixture
def ledger(store: EntityStore, time_provider: FixedTimeProvider) -> AuditLedger:
    return AuditLedger(store, time_provider, id_factory=SequentialIdFactory())


@pytest.fixture
def service(
    store: EntityStore, ledger: AuditLedger, time_provider: FixedTimeProvider
) -> LifecycleService:
    """Lifecycle service over a store holding the demo dataset"""
    seed_store(store, ledger, time_provider)
    return LifecycleService(store, ledger, time_provider, id_factory=SequentialIdFactory())


@pytest.fixture
def admin(service: LifecycleService) -> Actor:
    return service.store.require("actors", "user_admin")


@pytest.fixture
def official(service: LifecycleService) -> Actor:
    return service.store.require("actors", "user_official")


@pytest.fixture
def contractor(service: LifecycleService) -> Actor:
    return service.store.require("actors", "user_contractor")


@pytest.fixture
def community(service: LifecycleService) -> Actor:
    return service.store.require("actors", "user_community")


# =============================================================================
# Server
# =============================================================================


@pytest.fixture
def lifelines(
    temp_db: Path, time_provider: FixedTimeProvider, settings: LifelinesSettings
) -> Lifelines:
    """Seeded server facade backed by a temporary database"""
    return Lifelines(temp_db, time_provider=time_provider, settings=settings, seed=True)


@pytest.fixture
def app(lifelines: Lifelines) -> Iterator[Flask]:
    """Flask app bound to the seeded facade"""
    flask_app = server.initialize_server(lifelines)
    flask_app.config["TESTING"] = True
    yield flask_app
    # Reset global state after test
    server._lifelines = None


@pytest.fixture
def client(app: Flask) -> Iterator[FlaskClient]:
    """Flask test client bound to the seeded facade"""
    with app.test_client() as test_client:
        yield test_client

"""
Tests for the background drain worker
"""

import pytest

from lifelines_core.kernel.settings import get_settings
from lifelines_core.sync.client import LifelinesClient
from lifelines_core.sync.worker import SyncWorker
from tests.helpers import make_engine, project_payload


def test_interval_must_be_positive(app, time_provider):
    engine, _ = make_engine(app, time_provider)
    with pytest.raises(ValueError):
        SyncWorker(engine, interval=0)


def test_tick_without_session_does_nothing(app, time_provider):
    engine, transport = make_engine(app, time_provider)
    worker = SyncWorker(engine)
    worker.tick()
    assert worker.ticks == 1
    assert transport.requests == []


def test_tick_drains_after_reconnect(app, time_provider, lifelines):
    engine, transport = make_engine(app, time_provider)
    engine.login("official@example.com", "official123")
    transport.online = False
    LifelinesClient(engine).create_project(project_payload("Night Shift"))

    worker = SyncWorker(engine)
    worker.tick()
    assert len(engine.queue) == 1
    assert engine.online is False

    transport.online = True
    worker.tick()
    assert len(engine.queue) == 0
    assert engine.online is True
    assert len(lifelines.store.select("projects", lambda p: p.title == "Night Shift")) == 1


def test_start_and_stop(app, time_provider):
    engine, _ = make_engine(app, time_provider)
    worker = SyncWorker(engine, interval=60)
    worker.start()
    assert worker.running
    worker.stop(timeout=1)
    assert not worker.running


def test_default_interval_comes_from_settings(app, time_provider):
    engine, _ = make_engine(app, time_provider)
    assert SyncWorker(engine).interval == get_settings().drain_interval_seconds


def test_client_runs_background_sync(app, time_provider):
    """Test that the client owns one worker at a time and stops it cleanly"""
    engine, _ = make_engine(app, time_provider)
    client = LifelinesClient(engine)
    worker = client.start_background_sync(interval=60)
    assert worker.running
    assert worker.interval == 60
    assert client.start_background_sync() is worker

    client.stop_background_sync(timeout=1)
    assert not worker.running
    assert client.worker is None

"""
Shared pytest fixtures for recorder tests.
"""
import pytest

from recorder.ports import PortAllocator
from recorder.session.recording import RecordingCoordinator
from recorder.session.registry import SessionRegistry
from recorder.signaling.gateway import SignalingGateway
from recorder.tests.test_doubles import FakeEngine, FakeRouter, FakeSupervisor, make_config


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def ports(config):
    return PortAllocator(config.rtp_port_min, config.rtp_port_max)


@pytest.fixture
def registry(ports, config):
    return SessionRegistry(ports, config.process_stop_timeout_sec)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def supervisor():
    return FakeSupervisor()


@pytest.fixture
def recorder(registry, supervisor, engine, router, config):
    return RecordingCoordinator(registry, supervisor, engine, router, config)


@pytest.fixture
def gateway(registry, engine, router, recorder, config):
    return SignalingGateway(registry, engine, router, recorder, config)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove RECORDER_* variables and point the env file at a missing path."""
    import os
    for name in list(os.environ):
        if name.startswith("RECORDER_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RECORDER_ENV_FILE", str(tmp_path / "missing.env"))
    return monkeypatch

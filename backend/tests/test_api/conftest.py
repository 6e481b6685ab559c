"""
Shared pytest fixtures for API tests.

Device-facing dependencies (ONVIF client, command runner) are replaced with
scripted fakes through ``app.dependency_overrides`` and restored after each
test, so no test reaches the network or spawns a process.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.config import settings
from app.services.command_runner import get_command_runner
from app.services.onvif_client import ONVIFClient, get_onvif_client
from tests.mocks import FakeCommandRunner, FakeDeviceSession, create_profiles, session_factory_for


@pytest.fixture
def client():
    """TestClient with dependency overrides cleared afterwards"""
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def command_runner():
    """Scripted command runner injected into every endpoint that runs commands"""
    runner = FakeCommandRunner()
    app.dependency_overrides[get_command_runner] = lambda: runner
    return runner


@pytest.fixture
def device_session():
    """Fake ONVIF device with two profiles, injected through the ONVIF client dependency"""
    session = FakeDeviceSession(profiles=create_profiles(2))
    onvif_client = ONVIFClient(session_factory=session_factory_for(session), timeout_ms=200)
    app.dependency_overrides[get_onvif_client] = lambda: onvif_client
    return session


@pytest.fixture
def deploy_enabled(monkeypatch):
    """Turn MediaMTX deploy on for one test"""
    monkeypatch.setattr(settings, "MEDIAMTX_DEPLOY_ENABLED", True)
    return settings

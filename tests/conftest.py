"""Shared pytest fixtures for Rehearsal tests."""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from src.config import Settings, get_settings
from src.core.models import Scenario
from src.main import create_app
from src.services.audio.exceptions import PermissionDenied
from src.services.factory import CallServices
from tests.fakes import (
    FakeCapture,
    FakeChannelFactory,
    FakePlayer,
    FakeResponder,
    FakeSynthesizer,
    RecordingSleep,
)


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "groq_api_key": "test-groq-key",
        "deepgram_api_key": "test-deepgram-key",
        "elevenlabs_api_key": None,
        "plivo_auth_id": None,
        "plivo_auth_token": None,
        "plivo_phone_number": None,
        "stt_relay_url": None,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


@pytest.fixture
def scenario() -> Scenario:
    """Catalog-style scenario with an opening line."""
    return Scenario(
        scenario_id="test",
        title="Test Scenario",
        client_name="Sarah",
        client_type="Busy Executive",
        description="Looking for an apartment near the office",
        personality="D",
        difficulty="medium",
        opening_line="Hi, I saw your listing.",
    )


@pytest.fixture
def silent_scenario() -> Scenario:
    """Scenario where the user speaks first."""
    return Scenario(client_name="Omar", client_type="Investor", opening_line=None)


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def denied_capture() -> FakeCapture:
    return FakeCapture(fail_with=PermissionDenied("Microphone access denied"))


@pytest.fixture
def channel_factory() -> FakeChannelFactory:
    return FakeChannelFactory()


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def test_client(settings_factory, monkeypatch) -> Generator:
    """FastAPI TestClient with patched settings."""
    test_settings = settings_factory()

    # Routes resolve settings through Depends(get_settings); the lifespan reads src.main's
    monkeypatch.setattr("src.main.get_settings", lambda: test_settings)

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client


@pytest.fixture
def fake_services(test_client, settings) -> Generator:
    """Swap the app's call services for in-process fakes."""
    services = CallServices(
        settings=settings,
        responder=FakeResponder(["Is the price negotiable?"]),
        synthesizer=FakeSynthesizer(),
        fallback_synthesizer=None,
        channel_factory=FakeChannelFactory(),
    )
    original = test_client.app.state.services
    test_client.app.state.services = services
    yield services
    test_client.app.state.services = original

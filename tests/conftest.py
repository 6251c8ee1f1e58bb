"""Pytest configuration and fixtures."""

import os

TEST_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SERVICE_ROLE_KEY": "test-key",
    "ANTHROPIC_API_KEY": "test-anthropic-key",
    "OPENAI_API_KEY": "test-openai-key",
    "RFI_ENGINE_ENV": "test",
    "LLM_USAGE_LOGGING": "false",
}

# Set before any app import; modules that configure logging read settings on import
for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)

import pytest  # noqa: E402

from app.core.config import Settings  # noqa: E402
from app.core.events import EventBus  # noqa: E402
from app.services.engine import build_engine  # noqa: E402
from tests.fakes.fake_llm import FakeExtractor, FakeGenerator  # noqa: E402
from tests.fakes.fake_store import FakeKeyValueStore  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.update(TEST_ENV)


@pytest.fixture
def settings() -> Settings:
    """Settings with delays removed so event chains settle immediately."""
    return Settings(
        BATCH_STAGGER_MS=0,
        ANSWER_EVENT_MAX_JITTER_MS=0,
        EVENT_MAX_ATTEMPTS=1,
        EVENT_RETRY_DELAY_SECONDS=0,
        HANDLER_TIMEOUT_SECONDS=5,
    )


@pytest.fixture
def store() -> FakeKeyValueStore:
    return FakeKeyValueStore(page_size=7)


@pytest.fixture
def bus(settings) -> EventBus:
    return EventBus(
        default_timeout_seconds=settings.HANDLER_TIMEOUT_SECONDS,
        max_attempts=settings.EVENT_MAX_ATTEMPTS,
        retry_delay_seconds=settings.EVENT_RETRY_DELAY_SECONDS,
    )


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor(["What is your uptime SLA?", "Do you encrypt data at rest?"])


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def engine(settings, store, bus, extractor, generator):
    """A started engine over in-memory collaborators."""
    engine = build_engine(
        settings=settings,
        store=store,
        bus=bus,
        extractor=extractor,
        generator=generator,
    )
    engine.start()
    return engine

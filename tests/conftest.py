from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from secure_chat.config.settings import Settings, clear_settings_cache
from secure_chat.main import create_app
from secure_chat.metrics import reset_metrics
from tests.helpers import PROXY_URL, UPSTREAM_URL, ScriptedUpstream


@pytest.fixture(autouse=True)
def _isolate_state() -> Iterator[None]:
    clear_settings_cache()
    reset_metrics()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        groq_api_key="test-key",
        upstream_url=UPSTREAM_URL,
        proxy_url=PROXY_URL,
        backoff_base_s=0.0,
        min_request_interval_s=0.0,
        system_prompt_enabled=False,
    )


@pytest.fixture
def upstream() -> ScriptedUpstream:
    return ScriptedUpstream()


@pytest.fixture
def client(settings: Settings, upstream: ScriptedUpstream) -> TestClient:
    app = create_app(settings=settings, transport=upstream.transport)
    return TestClient(app)

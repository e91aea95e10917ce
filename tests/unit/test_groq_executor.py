import asyncio

import pytest

from secure_chat.config.settings import Settings
from secure_chat.metrics import counter_value
from secure_chat.providers.base import ClientError, ConfigurationError, TransientError
from secure_chat.providers.groq import NO_API_KEY_MESSAGE, GroqExecutor
from secure_chat.providers.throttle import RateGovernor
from tests.helpers import (
    PROXY_URL,
    UPSTREAM_URL,
    FakeSleep,
    ScriptedUpstream,
    reply_completion,
    reply_network_error,
    reply_status,
)

BODY = {"model": "llama-3.3-70b-versatile", "messages": [{"role": "user", "content": "Hi"}]}


class _CountingGovernor(RateGovernor):
    def __init__(self) -> None:
        super().__init__(min_interval_s=0.0)
        self.calls = 0

    async def throttle(self) -> float:
        self.calls += 1
        return await super().throttle()


def _executor(
    upstream: ScriptedUpstream,
    api_key: str | None = "test-key",
    proxy_url: str | None = None,
    sleep: FakeSleep | None = None,
    governor: RateGovernor | None = None,
    max_retries: int = 2,
    backoff_base_s: float = 1.0,
) -> GroqExecutor:
    return GroqExecutor(
        upstream_url=UPSTREAM_URL,
        api_key=api_key,
        proxy_url=proxy_url,
        governor=governor or RateGovernor(min_interval_s=0.0),
        max_retries=max_retries,
        backoff_base_s=backoff_base_s,
        transport=upstream.transport,
        sleep=sleep or FakeSleep(),
    )


def _run(executor: GroqExecutor, body: dict[str, object] = BODY):
    async def _call():
        try:
            response = await executor.execute(body)
            return response.json()
        finally:
            await executor.aclose()

    return asyncio.run(_call())


def test_proxy_success_skips_direct_call() -> None:
    upstream = ScriptedUpstream().add(PROXY_URL, reply_completion("via proxy"))

    payload = _run(_executor(upstream, proxy_url=PROXY_URL))

    assert payload["choices"][0]["message"]["content"] == "via proxy"
    assert upstream.calls_to(PROXY_URL) == 1
    assert upstream.calls_to(UPSTREAM_URL) == 0
    assert "authorization" not in upstream.requests[0].headers
    assert upstream.bodies_to(PROXY_URL) == [BODY]


def test_unreachable_proxy_falls_back_to_direct_call() -> None:
    upstream = ScriptedUpstream().add(UPSTREAM_URL, reply_completion("direct"))

    payload = _run(_executor(upstream, proxy_url=PROXY_URL))

    assert payload["choices"][0]["message"]["content"] == "direct"
    assert upstream.calls_to(PROXY_URL) == 1
    assert upstream.calls_to(UPSTREAM_URL) == 1
    direct = upstream.requests[-1]
    assert direct.headers["authorization"] == "Bearer test-key"


def test_proxy_error_status_falls_back_to_direct_call() -> None:
    upstream = (
        ScriptedUpstream()
        .add(PROXY_URL, reply_status(500, {"error": "API configuration error"}))
        .add(UPSTREAM_URL, reply_completion("direct"))
    )

    payload = _run(_executor(upstream, proxy_url=PROXY_URL))

    assert payload["choices"][0]["message"]["content"] == "direct"
    assert counter_value(
        "scp_upstream_attempts_total", {"path": "direct", "outcome": "ok"}
    ) == 1.0


def test_missing_key_with_dead_proxy_is_a_configuration_error() -> None:
    upstream = ScriptedUpstream()
    sleep = FakeSleep()

    with pytest.raises(ConfigurationError) as exc_info:
        _run(_executor(upstream, api_key=None, proxy_url=PROXY_URL, sleep=sleep))

    assert exc_info.value.code == "NO_API_KEY"
    assert exc_info.value.message == NO_API_KEY_MESSAGE
    assert upstream.calls_to(PROXY_URL) == 1
    assert upstream.calls_to(UPSTREAM_URL) == 0
    assert sleep.delays == []


def test_rate_limited_upstream_is_retried_with_exponential_backoff() -> None:
    upstream = ScriptedUpstream().add(
        UPSTREAM_URL, reply_status(429, {"error": {"message": "Rate limit reached"}})
    )
    sleep = FakeSleep()

    with pytest.raises(TransientError) as exc_info:
        _run(_executor(upstream, sleep=sleep))

    assert exc_info.value.status_code == 429
    assert exc_info.value.code == "provider_rate_limited"
    assert exc_info.value.message == "Rate limit reached"
    assert upstream.calls_to(UPSTREAM_URL) == 3
    assert sleep.delays == [1.0, 2.0]
    assert counter_value("scp_upstream_retries_total", {}) == 2.0


def test_client_error_is_not_retried() -> None:
    upstream = ScriptedUpstream().add(
        UPSTREAM_URL,
        reply_status(400, {"error": {"message": "model not found", "code": "model_not_found"}}),
    )
    sleep = FakeSleep()

    with pytest.raises(ClientError) as exc_info:
        _run(_executor(upstream, sleep=sleep))

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "model_not_found"
    assert exc_info.value.message == "model not found"
    assert upstream.calls_to(UPSTREAM_URL) == 1
    assert sleep.delays == []


def test_error_without_json_body_uses_status_line() -> None:
    upstream = ScriptedUpstream().add(UPSTREAM_URL, reply_status(403))

    with pytest.raises(ClientError) as exc_info:
        _run(_executor(upstream))

    assert exc_info.value.message == "HTTP 403: Forbidden"
    assert exc_info.value.code == "provider_client_error"


def test_server_error_then_success_returns_the_success() -> None:
    upstream = ScriptedUpstream().add(
        UPSTREAM_URL,
        reply_status(503, {"error": {"message": "overloaded"}}),
        reply_completion("recovered"),
    )
    sleep = FakeSleep()

    payload = _run(_executor(upstream, sleep=sleep))

    assert payload["choices"][0]["message"]["content"] == "recovered"
    assert upstream.calls_to(UPSTREAM_URL) == 2
    assert sleep.delays == [1.0]


def test_network_error_is_transient() -> None:
    upstream = ScriptedUpstream().add(
        UPSTREAM_URL, reply_network_error(), reply_completion("second try")
    )

    payload = _run(_executor(upstream))

    assert payload["choices"][0]["message"]["content"] == "second try"


def test_network_errors_exhaust_into_connection_error() -> None:
    upstream = ScriptedUpstream().add(UPSTREAM_URL, reply_network_error())

    with pytest.raises(TransientError) as exc_info:
        _run(_executor(upstream, max_retries=1))

    assert exc_info.value.status_code == 502
    assert exc_info.value.code == "provider_connection_error"
    assert upstream.calls_to(UPSTREAM_URL) == 2


def test_governor_is_consulted_before_every_attempt() -> None:
    upstream = ScriptedUpstream().add(UPSTREAM_URL, reply_status(500))
    governor = _CountingGovernor()

    with pytest.raises(TransientError):
        _run(_executor(upstream, governor=governor))

    assert governor.calls == 3


def test_from_settings_disables_proxy_for_empty_url() -> None:
    settings = Settings(
        groq_api_key="k",
        upstream_url=UPSTREAM_URL,
        proxy_url="",
        min_request_interval_s=0.5,
        max_retries=4,
    )
    upstream = ScriptedUpstream().add(UPSTREAM_URL, reply_completion("ok"))
    executor = GroqExecutor.from_settings(settings, transport=upstream.transport)

    assert executor.max_retries == 4
    assert executor.governor.min_interval_s == 0.5

    _run(executor)
    assert upstream.calls_to(UPSTREAM_URL) == 1
    assert len(upstream.requests) == 1

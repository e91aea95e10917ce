"""Resilient transport for the Groq chat-completions API.

Each attempt waits on the shared ``RateGovernor``, probes the internal proxy
endpoint and, when that is unavailable, calls the upstream directly with the
configured credential.  Failures are classified by status:

* no credential             -> ``ConfigurationError``, never retried
* 429 / 5xx / network error -> ``TransientError``, retried with backoff
* any other non-2xx         -> ``ClientError``, surfaced immediately
"""

import asyncio
import logging
from typing import Any

import httpx

from secure_chat.config.settings import Settings
from secure_chat.metrics import inc_counter
from secure_chat.providers.base import (
    ClientError,
    ConfigurationError,
    ProxyError,
    SleepFn,
    TransientError,
)
from secure_chat.providers.throttle import RateGovernor

logger = logging.getLogger("scp.providers")

NO_API_KEY_MESSAGE = (
    "API-Schlüssel nicht verfügbar. Bitte wenden Sie sich an den Administrator."
)


class GroqExecutor:
    """Issues chat-completion calls with proxy fallback and retries.

    Parameters
    ----------
    upstream_url : str
        Provider chat-completions endpoint used for direct calls.
    api_key : str or None
        Bearer credential for direct calls. ``None`` disables the direct path.
    proxy_url : str or None
        Internal relay endpoint tried first on every attempt.
    max_retries : int
        Additional attempts after the first one for transient failures.
    backoff_base_s : float
        Delay before the first retry; doubles for each further retry.
    """

    def __init__(
        self,
        upstream_url: str,
        api_key: str | None,
        proxy_url: str | None = None,
        governor: RateGovernor | None = None,
        max_retries: int = 2,
        backoff_base_s: float = 1.0,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._upstream_url = upstream_url
        self._api_key = api_key or None
        self._proxy_url = proxy_url or None
        self._governor = governor or RateGovernor()
        self._max_retries = max(max_retries, 0)
        self._backoff_base_s = max(backoff_base_s, 0.0)
        self._sleep = sleep
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        governor: RateGovernor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GroqExecutor":
        return cls(
            upstream_url=settings.upstream_url,
            api_key=settings.groq_api_key,
            proxy_url=settings.proxy_url if settings.proxy_enabled else None,
            governor=governor
            or RateGovernor(min_interval_s=settings.min_request_interval_s),
            max_retries=settings.max_retries,
            backoff_base_s=settings.backoff_base_s,
            timeout_s=settings.request_timeout_s,
            transport=transport,
        )

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def governor(self) -> RateGovernor:
        return self._governor

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, body: dict[str, Any], stream: bool = False) -> httpx.Response:
        """Return a successful upstream response.

        With ``stream=True`` the body is left unread and the caller owns
        closing the response.
        """
        last_error: ProxyError | None = None
        for attempt in range(1 + self._max_retries):
            await self._governor.throttle()
            try:
                return await self._attempt(body, stream)
            except TransientError as exc:
                last_error = exc
                inc_counter("scp_upstream_failures_total", {"code": exc.code})
                if attempt >= self._max_retries:
                    break
                delay = self._backoff_base_s * (2**attempt)
                inc_counter("scp_upstream_retries_total", {})
                logger.warning(
                    "upstream_retry_scheduled",
                    extra={
                        "attempt": attempt + 1,
                        "status_code": exc.status_code,
                        "error_code": exc.code,
                        "delay_s": delay,
                    },
                )
                await self._sleep(delay)

        assert last_error is not None
        logger.error(
            "upstream_retries_exhausted",
            extra={
                "attempt": self._max_retries + 1,
                "status_code": last_error.status_code,
                "error_code": last_error.code,
            },
        )
        raise last_error

    async def _attempt(self, body: dict[str, Any], stream: bool) -> httpx.Response:
        proxied = await self._try_proxy(body, stream)
        if proxied is not None:
            inc_counter("scp_upstream_attempts_total", {"path": "proxy", "outcome": "ok"})
            return proxied

        if not self._api_key:
            inc_counter(
                "scp_upstream_attempts_total", {"path": "direct", "outcome": "no_api_key"}
            )
            raise ConfigurationError(NO_API_KEY_MESSAGE)

        response = await self._post_direct(body, stream)
        inc_counter("scp_upstream_attempts_total", {"path": "direct", "outcome": "ok"})
        return response

    async def _try_proxy(self, body: dict[str, Any], stream: bool) -> httpx.Response | None:
        if self._proxy_url is None:
            return None
        try:
            response = await self._send(
                self._proxy_url, body, stream, {"Content-Type": "application/json"}
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "proxy_unavailable",
                extra={"path": "proxy", "error_code": type(exc).__name__},
            )
            return None

        if response.is_success:
            return response
        await response.aclose()
        logger.warning(
            "proxy_rejected",
            extra={"path": "proxy", "status_code": response.status_code},
        )
        return None

    async def _post_direct(self, body: dict[str, Any], stream: bool) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._send(self._upstream_url, body, stream, headers)
        except httpx.TimeoutException as exc:
            inc_counter("scp_upstream_attempts_total", {"path": "direct", "outcome": "timeout"})
            raise TransientError(
                status_code=503,
                code="provider_timeout",
                message=f"Provider request timed out: {exc}",
            ) from exc
        except httpx.HTTPError as exc:
            inc_counter("scp_upstream_attempts_total", {"path": "direct", "outcome": "network"})
            raise TransientError(
                status_code=502,
                code="provider_connection_error",
                message=f"Cannot connect to provider: {exc}",
            ) from exc

        if response.is_success:
            return response
        inc_counter(
            "scp_upstream_attempts_total",
            {"path": "direct", "outcome": str(response.status_code)},
        )
        raise await self._classify(response)

    async def _send(
        self, url: str, body: dict[str, Any], stream: bool, headers: dict[str, str]
    ) -> httpx.Response:
        request = self._client.build_request("POST", url, json=body, headers=headers)
        return await self._client.send(request, stream=stream)

    @staticmethod
    async def _classify(response: httpx.Response) -> ProxyError:
        try:
            await response.aread()
        finally:
            await response.aclose()

        message, code = _error_details(response)
        status = response.status_code
        if status == 429:
            return TransientError(
                status_code=status,
                code=code or "provider_rate_limited",
                message=message,
            )
        if status >= 500:
            return TransientError(
                status_code=status,
                code=code or "provider_upstream_error",
                message=message,
            )
        return ClientError(
            status_code=status,
            code=code or "provider_client_error",
            message=message,
        )


def _error_details(response: httpx.Response) -> tuple[str, str | None]:
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        payload = response.json()
    except ValueError:
        return fallback, None
    if not isinstance(payload, dict):
        return fallback, None
    error = payload.get("error")
    if not isinstance(error, dict):
        return fallback, None
    message = error.get("message")
    code = error.get("code")
    return (
        str(message) if message else fallback,
        str(code) if code else None,
    )

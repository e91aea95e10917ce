"""Scripted upstream for exercising the transport without a network."""

import json
from collections import defaultdict
from collections.abc import AsyncIterator, Callable

import httpx

UPSTREAM_URL = "https://upstream.test/openai/v1/chat/completions"
PROXY_URL = "https://proxy.test/api/groq/chat/completions"

Reply = Callable[[httpx.Request], httpx.Response]


def reply_status(status_code: int, payload: dict[str, object] | None = None) -> Reply:
    def _reply(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=status_code, json=payload or {})

    return _reply


def reply_completion(content: str, usage: dict[str, int] | None = None) -> Reply:
    payload: dict[str, object] = {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }
    if usage is not None:
        payload["usage"] = usage
    return reply_status(200, payload)


def reply_network_error() -> Reply:
    def _reply(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return _reply


def sse_frame(content: str | None = None, finish_reason: str | None = None) -> bytes:
    delta: dict[str, str] = {}
    if content is not None:
        delta["content"] = content
    choice: dict[str, object] = {"index": 0, "delta": delta}
    if finish_reason is not None:
        choice["finish_reason"] = finish_reason
    return f"data: {json.dumps({'choices': [choice]}, ensure_ascii=False)}\n".encode()


async def _byte_chunks(parts: tuple[bytes, ...]) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def reply_stream(*parts: bytes) -> Reply:
    """Serve ``parts`` as separate network reads of one SSE body."""

    def _reply(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code=200,
            headers={"content-type": "text/event-stream"},
            content=_byte_chunks(parts),
        )

    return _reply


class ScriptedUpstream:
    """``httpx.MockTransport`` handler replaying queued replies per URL.

    The last reply queued for a URL repeats once the queue is drained.
    Unknown URLs fail with a connection error.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._replies: dict[str, list[Reply]] = defaultdict(list)

    def add(self, url: str, *replies: Reply) -> "ScriptedUpstream":
        self._replies[url].extend(replies)
        return self

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    def bodies_to(self, url: str) -> list[dict[str, object]]:
        return [
            json.loads(request.content)
            for request in self.requests
            if str(request.url) == url
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._replies.get(str(request.url))
        if not queue:
            raise httpx.ConnectError("no route", request=request)
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return reply(request)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

import json

from tests.helpers import UPSTREAM_URL, reply_status, reply_stream, sse_frame


def test_chat_endpoint_stream_success(client, upstream) -> None:
    upstream.add(
        UPSTREAM_URL,
        reply_stream(sse_frame("Hal"), sse_frame("lo"), sse_frame(finish_reason="stop")),
    )

    with client.stream(
        "POST",
        "/v1/chat/completions",
        json={
            "stream": True,
            "messages": [{"role": "user", "content": "Schreib an max@example.com"}],
        },
    ) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = [line for line in response.iter_lines() if line]

    assert lines[-1] == "data: [DONE]"
    payloads = [json.loads(line.removeprefix("data: ")) for line in lines[:-1]]
    assert payloads == [
        {
            "content": "Hal",
            "done": False,
            "warnings": ["Persönliche Daten (E-Mail-Adressen) wurden automatisch entfernt."],
        },
        {"content": "lo", "done": False},
        {"content": "", "done": True},
    ]


def test_chat_endpoint_stream_provider_error_mapping(client, upstream) -> None:
    upstream.add(UPSTREAM_URL, reply_status(429, {"error": {"message": "Rate limit reached"}}))

    response = client.post(
        "/v1/chat/completions",
        json={"stream": True, "messages": [{"role": "user", "content": "Hallo"}]},
    )

    assert response.status_code == 429
    body = response.json()
    assert body["error"]["code"] == "provider_rate_limited"
    assert upstream.calls_to(UPSTREAM_URL) == 3

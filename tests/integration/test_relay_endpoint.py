"""Integration tests for the internal proxy endpoint that holds the credential."""

from fastapi.testclient import TestClient

from secure_chat.main import create_app
from tests.helpers import (
    UPSTREAM_URL,
    reply_completion,
    reply_status,
    reply_stream,
    sse_frame,
)

RELAY_PATH = "/api/groq/chat/completions"


def test_relay_requires_messages_array(client) -> None:
    missing = client.post(RELAY_PATH, json={"model": "llama-3.3-70b-versatile"})
    wrong_type = client.post(RELAY_PATH, json={"messages": "hallo"})

    assert missing.status_code == 400
    assert missing.json() == {"error": "Messages array is required"}
    assert wrong_type.status_code == 400


def test_relay_without_credential_is_a_configuration_error(settings, upstream) -> None:
    app = create_app(
        settings=settings.model_copy(update={"groq_api_key": None}),
        transport=upstream.transport,
    )
    client = TestClient(app)

    response = client.post(RELAY_PATH, json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 500
    assert response.json() == {"error": "API configuration error"}
    assert upstream.requests == []


def test_relay_forwards_with_bearer_and_defaults(client, upstream) -> None:
    upstream.add(UPSTREAM_URL, reply_completion("Hallo zurück"))
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "Was ist das?"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA="}},
            ],
        }
    ]

    response = client.post(RELAY_PATH, json={"messages": messages})

    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "Hallo zurück"
    forwarded = upstream.requests[0]
    assert forwarded.headers["authorization"] == "Bearer test-key"
    assert upstream.bodies_to(UPSTREAM_URL)[0] == {
        "model": "llama-3.3-70b-versatile",
        "messages": messages,
        "temperature": 0.7,
        "max_tokens": 1000,
        "stream": False,
    }


def test_relay_mirrors_upstream_error_status(client, upstream) -> None:
    upstream.add(UPSTREAM_URL, reply_status(401, {"error": {"message": "Invalid API Key"}}))

    response = client.post(RELAY_PATH, json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "Failed to generate response"
    assert "Invalid API Key" in body["details"]


def test_relay_reports_unreachable_upstream(client) -> None:
    response = client.post(RELAY_PATH, json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


def test_relay_passes_stream_through_unchanged(client, upstream) -> None:
    frames = (sse_frame("Hal"), sse_frame("lo"), sse_frame(finish_reason="stop"))
    upstream.add(UPSTREAM_URL, reply_stream(*frames))

    with client.stream(
        "POST",
        RELAY_PATH,
        json={"messages": [{"role": "user", "content": "Hi"}], "stream": True},
    ) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = b"".join(response.iter_bytes())

    assert body == b"".join(frames)
    assert upstream.bodies_to(UPSTREAM_URL)[0]["stream"] is True


def test_relay_keeps_explicit_zero_temperature(client, upstream) -> None:
    upstream.add(UPSTREAM_URL, reply_completion("ok"))

    response = client.post(
        RELAY_PATH,
        json={"messages": [{"role": "user", "content": "Hi"}], "temperature": 0},
    )

    assert response.status_code == 200
    assert upstream.bodies_to(UPSTREAM_URL)[0]["temperature"] == 0

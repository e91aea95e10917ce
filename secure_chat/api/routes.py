from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse

from secure_chat.models.chat import ProxyRequest, ProxyResponse, StreamChunk
from secure_chat.models.openai import RelayChatRequest
from secure_chat.services.chat_service import SecureChatProxy
from secure_chat.services.relay import UpstreamRelay

router = APIRouter()


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/groq/chat/completions")
async def relay_chat_completions(request: Request, payload: RelayChatRequest) -> Response:
    relay: UpstreamRelay = request.app.state.relay
    return await relay.handle(payload)


@router.post(
    "/v1/chat/completions",
    response_model=ProxyResponse,
    response_model_exclude_none=True,
)
async def chat_completions(
    request: Request, payload: ProxyRequest
) -> ProxyResponse | StreamingResponse:
    proxy: SecureChatProxy = request.app.state.chat_proxy
    if not payload.stream:
        return await proxy.chat_completion(payload)

    chunks = proxy.chat_completion_stream(payload)
    # Pull the first chunk here so upstream errors still map to a status code.
    first = await anext(chunks, None)
    return StreamingResponse(
        _event_stream(first, chunks),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def _event_stream(
    first: StreamChunk | None, chunks: AsyncGenerator[StreamChunk, None]
) -> AsyncGenerator[str, None]:
    try:
        if first is not None:
            yield f"data: {first.model_dump_json(exclude_none=True)}\n\n"
        async for chunk in chunks:
            yield f"data: {chunk.model_dump_json(exclude_none=True)}\n\n"
        yield "data: [DONE]\n\n"
    finally:
        await chunks.aclose()

from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse

from secure_chat.providers.base import ProxyError


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    type: str
    request_id: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "type": self.type,
                "request_id": self.request_id,
            }
        }


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(
    status_code: int, code: str, error_type: str, message: str, request_id: str
) -> JSONResponse:
    envelope = ErrorEnvelope(code=code, message=message, type=error_type, request_id=request_id)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response


def proxy_error_response(exc: ProxyError, request_id: str) -> JSONResponse:
    return app_error_response(
        exc.status_code, exc.code, exc.error_type, exc.message, request_id
    )

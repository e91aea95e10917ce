"""Error taxonomy shared by the transport, the decoder and the adapters."""

from collections.abc import Awaitable, Callable

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]
CancelPredicate = Callable[[], bool]


class ProxyError(Exception):
    """Single error type surfaced to callers of the secure proxy.

    ``message`` is meant for direct display to end users.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error_type: str = "provider",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error_type = error_type


class ConfigurationError(ProxyError):
    def __init__(self, message: str, code: str = "NO_API_KEY"):
        super().__init__(
            status_code=500, code=code, message=message, error_type="configuration"
        )


class ClientError(ProxyError):
    """Upstream rejected the request; retrying will not help."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(
            status_code=status_code, code=code, message=message, error_type="client"
        )


class TransientError(ProxyError):
    """Network failure, upstream 5xx or rate limiting."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(
            status_code=status_code, code=code, message=message, error_type="transient"
        )


class DecodeError(ProxyError):
    """Malformed stream frame. The decoder logs and skips these."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(
            status_code=502, code="stream_frame_invalid", message=message, error_type="decode"
        )
        self.line = line

"""Engine API error codes returned by execution clients."""

from enum import IntEnum


class EngineAPIError(IntEnum):
    """JSON-RPC error codes returned by Engine API methods."""

    ParseError = -32700
    InvalidRequest = -32600
    MethodNotFound = -32601
    InvalidParams = -32602
    InternalError = -32603
    ServerError = -32000
    UnknownPayload = -38001
    InvalidForkchoiceState = -38002
    InvalidPayloadAttributes = -38003
    TooLargeRequest = -38004
    UnsupportedFork = -38005

    @classmethod
    def describe(cls, code: int | None) -> str:
        """Return a readable name for an error code, including codes outside the enum."""
        if code is None:
            return "no error"
        try:
            return f"{cls(code).name} ({code})"
        except ValueError:
            return f"unknown error ({code})"

"""Error taxonomy for the inference client.

Every failure the client can raise derives from ``InferenceError`` so that
callers can catch the whole family at one boundary.
"""


class InferenceError(Exception):
    """Base class for all inference client failures."""


class TransportError(InferenceError):
    """Network-level failure (abrupt close, read timeout) while talking to the server."""


class ServerUnreachable(TransportError):
    """The server could not be reached (connection refused, connect timeout)."""


class BadResponse(InferenceError):
    """The server answered with a payload that does not match the expected schema."""


class ServerError(BadResponse):
    """The server reported a failure, either by status code or an ``error`` field."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EmptyGeneration(InferenceError):
    """The generation stream finished without producing any text."""

    def __init__(self, message: str = "Model failed to generate a response. Please try again."):
        super().__init__(message)

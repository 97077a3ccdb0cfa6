"""Chat Errors - Failure taxonomy shared by the WebSocket and REST surfaces."""

from fastapi import status


class ChatError(Exception):
    """
    Base class for chat failures that are reported to the caller.

    Each subclass fixes the HTTP status used by the REST gateway, the
    machine readable code carried in WebSocket acks, and whether the
    client may retry the same request unchanged.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "chat_error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "retryable": self.retryable}


class AuthenticationError(ChatError):
    """Missing, malformed, expired or unverifiable credential."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class ChatValidationError(ChatError):
    """Malformed input: bad ride id, empty text, bad pagination."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class NotFoundError(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class RideNotFoundError(NotFoundError):
    def __init__(self, message: str = "Ride not found"):
        super().__init__(message)


class ForbiddenError(ChatError):
    """Caller is not the driver or an accepted passenger of the ride."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class StoreUnavailableError(ChatError):
    """Message store timed out or lost its connection after retries."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"
    retryable = True

    def __init__(self, message: str = "Message store unavailable, please retry"):
        super().__init__(message)

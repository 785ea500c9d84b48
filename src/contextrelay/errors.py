"""Error taxonomy for context delivery.

Every error here is terminal for the delivery attempt that raised it. The
sequencer converts them into a single ``ErrorEvent``; nothing retries.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"
    BAD_REQUEST = "bad_request"
    HTTP_ERROR = "http_error"
    MALFORMED_RESPONSE = "malformed_response"
    EMPTY_ACKNOWLEDGMENT = "empty_acknowledgment"
    BUSY = "busy"


class DeliveryError(Exception):
    """Base class for failures that end a delivery attempt."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransportFailure(DeliveryError):
    """The request could not be completed (network, timeout or HTTP status)."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthFailure(TransportFailure):
    kind = ErrorKind.AUTH_FAILURE


class RateLimited(TransportFailure):
    """The endpoint asked us to back off. The caller may retry later."""

    kind = ErrorKind.RATE_LIMITED


class BadRequest(TransportFailure):
    kind = ErrorKind.BAD_REQUEST


class GenericHttpError(TransportFailure):
    kind = ErrorKind.HTTP_ERROR


class MalformedResponse(DeliveryError):
    kind = ErrorKind.MALFORMED_RESPONSE


class EmptyAcknowledgment(DeliveryError):
    kind = ErrorKind.EMPTY_ACKNOWLEDGMENT

"""Translate upstream HTTP results into application outcomes."""

from __future__ import annotations

import enum
from typing import Dict, List, Optional

import httpx


PERMISSION_DENIED_MESSAGE = "Permission denied."
COMMUNICATION_ERROR_MESSAGE = "Communication error. Please try again."
INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."
GENERIC_ERROR_MESSAGE = "An unexpected error occurred."


class Outcome(enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    FAILURE = "failure"
    TRANSPORT_ERROR = "transport_error"


def map_status(status_code: Optional[int]) -> Outcome:
    """Return the outcome for an upstream status, ``None`` meaning no response."""

    if status_code is None:
        return Outcome.TRANSPORT_ERROR
    if 200 <= status_code < 300:
        return Outcome.SUCCESS
    if status_code == 404:
        return Outcome.NOT_FOUND
    if status_code == 403:
        return Outcome.FORBIDDEN
    return Outcome.FAILURE


class UpstreamError(Exception):
    """Base class for failures reported by, or while reaching, the upstream API."""

    outcome = Outcome.FAILURE
    user_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)


class NotFoundError(UpstreamError):
    outcome = Outcome.NOT_FOUND
    user_message = "The requested record was not found."


class ForbiddenError(UpstreamError):
    outcome = Outcome.FORBIDDEN
    user_message = PERMISSION_DENIED_MESSAGE


class UpstreamFailure(UpstreamError):
    """Any non-2xx status other than 403 and 404."""

    outcome = Outcome.FAILURE

    def __init__(self, status_code: Optional[int], message: Optional[str] = None) -> None:
        self.status_code = status_code
        super().__init__(message or f"Upstream API responded with status {status_code}")


class TransportFailure(UpstreamError):
    """The upstream API could not be reached or did not answer in time."""

    outcome = Outcome.TRANSPORT_ERROR
    user_message = COMMUNICATION_ERROR_MESSAGE


class InvalidCredentialsError(Exception):
    def __init__(self, message: str = INVALID_CREDENTIALS_MESSAGE) -> None:
        super().__init__(message)


class ValidationFailure(Exception):
    """Client-side input problems; the upstream API is never contacted."""

    def __init__(self, errors: Optional[Dict[str, List[str]]] = None, message: str = "Invalid input.") -> None:
        self.errors: Dict[str, List[str]] = dict(errors or {})
        super().__init__(message)


class IdentifierMismatchError(ValidationFailure):
    def __init__(self, path_id: int, body_id: Optional[int]) -> None:
        self.path_id = path_id
        self.body_id = body_id
        super().__init__(
            {"id": ["Identifier does not match the record being edited."]},
            message=f"Path identifier {path_id} does not match body identifier {body_id}",
        )


def raise_for_outcome(response: httpx.Response) -> None:
    """Raise the exception matching a non-2xx response."""

    outcome = map_status(response.status_code)
    if outcome is Outcome.SUCCESS:
        return
    if outcome is Outcome.NOT_FOUND:
        raise NotFoundError()
    if outcome is Outcome.FORBIDDEN:
        raise ForbiddenError()
    raise UpstreamFailure(response.status_code)


__all__ = [
    "COMMUNICATION_ERROR_MESSAGE",
    "GENERIC_ERROR_MESSAGE",
    "INVALID_CREDENTIALS_MESSAGE",
    "PERMISSION_DENIED_MESSAGE",
    "ForbiddenError",
    "IdentifierMismatchError",
    "InvalidCredentialsError",
    "NotFoundError",
    "Outcome",
    "TransportFailure",
    "UpstreamError",
    "UpstreamFailure",
    "ValidationFailure",
    "map_status",
    "raise_for_outcome",
]

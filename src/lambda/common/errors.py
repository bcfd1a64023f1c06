"""Error taxonomy shared by the API operations.

Operations raise these; the router turns them into JSON error responses.
Per-item failures inside batch operations are not raised, they are returned
in the result list.
"""
from http import HTTPStatus


class ApiError(Exception):
    """Base error carrying the HTTP status to report."""

    statusCode = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message, statusCode=None, details=None):
        super().__init__(message)
        self.message = message
        if statusCode is not None:
            self.statusCode = statusCode
        self.details = details or {}


class Unauthorized(ApiError):
    statusCode = HTTPStatus.UNAUTHORIZED

    def __init__(self, message="Unauthorized", details=None):
        super().__init__(message, details=details)


class Forbidden(ApiError):
    statusCode = HTTPStatus.FORBIDDEN

    def __init__(self, message="Forbidden", details=None):
        super().__init__(message, details=details)


class ValidationError(ApiError):
    statusCode = HTTPStatus.BAD_REQUEST


class NotFound(ApiError):
    statusCode = HTTPStatus.NOT_FOUND


class UpstreamFailure(ApiError):
    statusCode = HTTPStatus.BAD_GATEWAY

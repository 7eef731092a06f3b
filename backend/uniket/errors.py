from __future__ import annotations


class ApiError(Exception):
    """Base for errors that map onto a JSON error response.

    Services raise these; the handler registered in create_app renders them
    with the same shape as werkzeug HTTP errors.
    """

    status_code = 500
    code = "ServerError"

    def __init__(self, message: str = "", *, status_code: int | None = None, details=None):
        super().__init__(message)
        self.message = message or self.code
        if status_code is not None:
            self.status_code = int(status_code)
        self.details = details

    def to_dict(self, *, include_details: bool = False) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status_code),
        }
        if include_details and self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(ApiError):
    status_code = 400
    code = "ValidationError"


class AuthenticationError(ApiError):
    status_code = 401
    code = "AuthenticationError"


class AuthorizationError(ApiError):
    status_code = 403
    code = "AuthorizationError"


class NotFoundError(ApiError):
    status_code = 404
    code = "NotFoundError"


class ConflictError(ApiError):
    # Double rating, double cancellation and similar state conflicts.
    status_code = 400
    code = "ConflictError"


class InvalidOperationError(ApiError):
    status_code = 400
    code = "InvalidOperation"


class ServerError(ApiError):
    status_code = 500
    code = "ServerError"

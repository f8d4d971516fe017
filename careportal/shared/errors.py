"""
Application error taxonomy

Services raise these instead of HTTP exceptions so the same logic can run
behind FastAPI, inside the arq worker, and in unit tests. The exception
handlers in main.py translate them to HTTP responses.
"""

from typing import Optional


class AppError(Exception):
    """Base class for expected, typed failures"""

    status_code = 500
    default_code = "InternalError"

    def __init__(self, message: str = "", code: Optional[str] = None):
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(AppError):
    """Missing or malformed input"""

    status_code = 400
    default_code = "ValidationError"


class NotFoundError(AppError):
    """Unknown booking, payment, invoice or service"""

    status_code = 404
    default_code = "NotFound"


class ConflictError(AppError):
    """Illegal state transition or duplicate active payment"""

    status_code = 409
    default_code = "Conflict"


class AuthError(AppError):
    """Missing or invalid signature, token or secret"""

    status_code = 401
    default_code = "Unauthorized"


class ForbiddenError(AuthError):
    """Authenticated, but not allowed to touch this resource"""

    status_code = 403
    default_code = "Forbidden"


class UpstreamError(AppError):
    """Payment provider unreachable or returned an error; local state unchanged"""

    status_code = 502
    default_code = "UpstreamError"


class InternalError(AppError):
    status_code = 500
    default_code = "InternalError"

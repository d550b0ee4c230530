from __future__ import annotations

from typing import Any

INVALID_APPROVAL_LINK_MESSAGE = "This approval link is no longer valid or you lack permission."


class LoopError(RuntimeError):
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = str(message)
        self.code = str(code or self.default_code)
        self.extra = dict(extra)

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class ParseError(LoopError):
    """Twine export markup is missing or malformed."""

    status_code = 400
    default_code = "TWINE_PARSE_ERROR"


class ValidationError(LoopError):
    """Story input failed structural checks after repair."""

    status_code = 400
    default_code = "STORY_VALIDATION_ERROR"


class NotFoundError(LoopError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(LoopError):
    """Action conflicts with the current state; ``extra["status"]`` names that state."""

    status_code = 409
    default_code = "CONFLICT"


class UnauthorizedError(LoopError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(LoopError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotificationError(LoopError):
    status_code = 502
    default_code = "NOTIFICATION_FAILED"


class InvalidApprovalLinkError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(INVALID_APPROVAL_LINK_MESSAGE)

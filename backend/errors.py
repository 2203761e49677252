"""
Typed game errors.

Every caller-facing operation raises one of these before mutating anything.
Each carries a stable machine-readable ``code`` so clients never have to parse
messages or raw storage errors. The FastAPI handlers in main.py turn them into
``{"error": {"code": ..., "message": ...}}`` responses with ``status_code``.
"""
from typing import Optional


class GameError(Exception):
    status_code: int = 400
    default_code: str = "game_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(GameError):
    """Wrong phase, bad settings, missing field, insufficient players, ..."""
    status_code = 400
    default_code = "validation_error"


class AuthorizationError(GameError):
    """Host-only operation by a non-host, or a non-member reading room data."""
    status_code = 403
    default_code = "forbidden"


class NotFoundError(GameError):
    status_code = 404
    default_code = "not_found"


class ConflictError(GameError):
    """Unique-key violations: duplicate vote, duplicate name/join, double tally."""
    status_code = 409
    default_code = "conflict"


class InternalError(GameError):
    """Unexpected storage failure. The only kind worth logging in full."""
    status_code = 500
    default_code = "storage_failure"

"""Library domain errors.

They subclass ``HTTPException`` so anything that only knows Starlette still
sees the right status; ``error_handlers`` renders them from their own
``error``/``message``/``details`` fields.
"""

from __future__ import annotations

from fastapi import HTTPException


class LibraryError(HTTPException):
    status_code_default: int = 400
    error: str = "bad_request"

    def __init__(self, message: str, *, details: object | None = None) -> None:
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.details = details


class ValidationError(LibraryError):
    """Malformed input or a structural rule violation (e.g. move into a descendant)."""

    status_code_default = 422
    error = "validation_error"


class NotFoundError(LibraryError):
    status_code_default = 404
    error = "not_found"


class ConflictError(LibraryError):
    """Slug space exhausted or a unique constraint lost a race; retry the whole request."""

    status_code_default = 409
    error = "conflict"


class PayloadTooLargeError(LibraryError):
    status_code_default = 413
    error = "payload_too_large"

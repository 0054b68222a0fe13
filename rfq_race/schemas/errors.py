"""
schemas/errors.py — Structured error response model

Shared by HTTPException and RequestValidationError handlers in main.py.
`code` carries the race engine's error code when the failure came from a
service result (not_found, invalid_state, ...).
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    code: str = ""
    request_id: str = ""
    detail: list | None = None

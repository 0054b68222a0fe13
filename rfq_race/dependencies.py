"""
dependencies.py — Shared FastAPI Dependencies

Actor identity and the race clock. Authentication itself happens upstream
(gateway / session layer); by the time a request reaches this service the
caller's identity is carried in headers.

Business Rules:
- require_buyer_id raises 401 if X-Buyer-Id is missing or not an integer
- require_supplier_id raises 401 if X-Supplier-Id is missing or not an integer
- require_foundry_id raises 401 if X-Foundry-Id is missing or not an integer
- get_clock returns a zero-arg callable; tests override it with a fixed clock

Called by: routers/rfq.py
Depends on: utils (utc_now)
"""

from collections.abc import Callable
from datetime import datetime

from fastapi import Header, HTTPException

from .utils import utc_now


def get_clock() -> Callable[[], datetime]:
    """Dependency: the time source for race decisions."""
    return utc_now


def _header_int(value: str | None, name: str) -> int:
    if not value:
        raise HTTPException(401, f"Missing {name} header")
    try:
        return int(value)
    except ValueError:
        raise HTTPException(401, f"Invalid {name} header")


def require_buyer_id(x_buyer_id: str | None = Header(default=None)) -> int:
    return _header_int(x_buyer_id, "X-Buyer-Id")


def require_supplier_id(x_supplier_id: str | None = Header(default=None)) -> int:
    return _header_int(x_supplier_id, "X-Supplier-Id")


def require_foundry_id(x_foundry_id: str | None = Header(default=None)) -> int:
    return _header_int(x_foundry_id, "X-Foundry-Id")


def optional_supplier_id(x_supplier_id: str | None = Header(default=None)) -> int | None:
    """Supplier identity when present (e.g. for has_user_responded)."""
    if not x_supplier_id:
        return None
    return _header_int(x_supplier_id, "X-Supplier-Id")

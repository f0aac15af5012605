"""API-specific response schemas (Pydantic v2)."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope: ``{"success": true, "data": ...}``."""

    success: bool = True
    data: T


class ErrorResponse(BaseModel):
    """Failure envelope: ``{"success": false, "error": "..."}``."""

    success: bool = False
    error: str


class HealthResponse(BaseModel):
    status: str
    version: str
    database: bool
    cache: bool
    price_rows: int
    fundamental_rows: int
    symbols: int

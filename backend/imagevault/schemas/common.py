"""Shared Pydantic schemas."""
from typing import Any, Optional
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """Envelope returned by every endpoint. None fields are left out."""
    success: bool
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    details: Optional[str] = None

"""Canonical JSON error body for the avatar HTTP surface.

Standardized structure:
{
  "error": "human readable message",
  "code": "machine_readable_code",
  "details": {}
}
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from avatar_engines.common.errors import AvatarEngineError


class ErrorEnvelope(BaseModel):
    """Top-level error body returned by every avatar endpoint."""
    error: str
    code: str
    details: Dict[str, Any] = Field(default_factory=dict)


def build_error_envelope(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> ErrorEnvelope:
    """Construct an ErrorEnvelope (without raising)."""
    return ErrorEnvelope(error=message, code=code, details=details or {})


def envelope_from_exception(exc: AvatarEngineError) -> ErrorEnvelope:
    return build_error_envelope(code=exc.code, message=exc.message, details=exc.details)

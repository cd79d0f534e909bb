"""Centralized error codes and helper utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

__all__ = [
    "UNKNOWN_TOOL",
    "UNKNOWN_RESOURCE",
    "VALIDATION_ERROR",
    "NOT_FOUND",
    "STORAGE_ERROR",
    "CONFIG_ERROR",
    "INTERNAL_ERROR",
    "SnippetServerError",
    "RegistrationError",
    "error_payload",
]

UNKNOWN_TOOL = "UNKNOWN_TOOL"
UNKNOWN_RESOURCE = "UNKNOWN_RESOURCE"
VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
STORAGE_ERROR = "STORAGE_ERROR"
CONFIG_ERROR = "CONFIG_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(slots=True)
class SnippetServerError(Exception):
    """Domain-specific exception carrying an error code and message."""

    code: str
    message: str
    details: Mapping[str, Any] | None = None

    def __str__(self) -> str:  # pragma: no cover - delegation to message
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return error_payload(self.code, self.message, details=self.details)


class RegistrationError(SnippetServerError):
    """Raised when a tool or resource is registered twice."""


def error_payload(code: str, message: str, *, details: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build a structured error payload used in tool responses."""

    payload: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if details:
        payload["details"] = dict(details)
    return payload

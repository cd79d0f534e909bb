"""Domain models for stored snippets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

SNIPPET_FIELDS: tuple[str, ...] = ("id", "userId", "title", "language", "code")

SNIPPET_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {field: {"type": "string"} for field in SNIPPET_FIELDS},
    "required": list(SNIPPET_FIELDS),
}

DOCUMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "snippets": {"type": "array", "items": SNIPPET_SCHEMA},
    },
    "required": ["snippets"],
}


@dataclass(slots=True)
class Snippet:
    """A code snippet owned by a single principal."""

    id: str
    owner_id: str
    title: str
    language: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "userId": self.owner_id,
            "title": self.title,
            "language": self.language,
            "code": self.code,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snippet":
        return cls(
            id=str(payload["id"]),
            owner_id=str(payload["userId"]),
            title=str(payload["title"]),
            language=str(payload["language"]),
            code=str(payload["code"]),
        )

    def is_owned_by(self, owner_id: str) -> bool:
        return self.owner_id == owner_id

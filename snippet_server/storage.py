"""JSON-file storage for snippets.

Every operation loads the whole document, mutates it in memory and, when
something changed, writes it back through a temporary sibling file. A
per-store lock spans the full cycle so concurrent callers in the same
process never interleave their read and write.
"""

from __future__ import annotations

import json
import os
import tempfile
import uuid
from functools import wraps
from pathlib import Path
from threading import RLock
from typing import Any

from jsonschema import exceptions as jsonschema_exceptions, validators as jsonschema_validators

from .errors import STORAGE_ERROR, SnippetServerError
from .logging import get_logger
from .models import DOCUMENT_SCHEMA, Snippet

logger = get_logger(__name__)

_DOCUMENT_VALIDATOR = jsonschema_validators.validator_for(DOCUMENT_SCHEMA)(DOCUMENT_SCHEMA)
_MAX_ID_ATTEMPTS = 100


class StorageError(SnippetServerError):
    """Raised when the snippet document cannot be read or written."""


def synchronized(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class SnippetStore:
    """Read/modify/write helper over a single JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = RLock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @synchronized
    def list(self, owner_id: str) -> list[Snippet]:
        return [snippet for snippet in self._read() if snippet.is_owned_by(owner_id)]

    @synchronized
    def create(self, owner_id: str, title: str, language: str, code: str) -> Snippet:
        snippets = self._read()
        snippet = Snippet(
            id=self._generate_id(snippets),
            owner_id=owner_id,
            title=title,
            language=language,
            code=code,
        )
        snippets.append(snippet)
        self._write(snippets)
        logger.info("store.create", extra={"context": {"id": snippet.id, "owner_id": owner_id}})
        return snippet

    @synchronized
    def update(self, owner_id: str, snippet_id: str, title: str, language: str, code: str) -> Snippet | None:
        snippets = self._read()
        index = self._find(snippets, owner_id, snippet_id)
        if index is None:
            logger.info("store.update.not_found", extra={"context": {"id": snippet_id, "owner_id": owner_id}})
            return None
        current = snippets[index]
        updated = Snippet(
            id=current.id,
            owner_id=current.owner_id,
            title=title,
            language=language,
            code=code,
        )
        snippets[index] = updated
        self._write(snippets)
        logger.info("store.update", extra={"context": {"id": snippet_id, "owner_id": owner_id}})
        return updated

    @synchronized
    def delete(self, owner_id: str, snippet_id: str) -> bool:
        snippets = self._read()
        remaining = [
            snippet
            for snippet in snippets
            if not (snippet.id == snippet_id and snippet.is_owned_by(owner_id))
        ]
        if len(remaining) == len(snippets):
            logger.info("store.delete.not_found", extra={"context": {"id": snippet_id, "owner_id": owner_id}})
            return False
        self._write(remaining)
        logger.info("store.delete", extra={"context": {"id": snippet_id, "owner_id": owner_id}})
        return True

    @synchronized
    def count(self) -> int:
        return len(self._read())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find(snippets: list[Snippet], owner_id: str, snippet_id: str) -> int | None:
        for index, snippet in enumerate(snippets):
            if snippet.id == snippet_id and snippet.is_owned_by(owner_id):
                return index
        return None

    @staticmethod
    def _generate_id(snippets: list[Snippet]) -> str:
        existing = {snippet.id for snippet in snippets}
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = str(uuid.uuid4())
            if candidate not in existing:
                return candidate
        raise StorageError(STORAGE_ERROR, "Unable to generate a unique snippet id")

    def _read(self) -> list[Snippet]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.error("store.read.failed", exc_info=exc, extra={"context": {"path": str(self._path)}})
            raise StorageError(
                STORAGE_ERROR,
                "Could not read snippets data.",
                details={"path": str(self._path)},
            ) from exc

        try:
            document: Any = json.loads(raw)
            _DOCUMENT_VALIDATOR.validate(document)
        except (json.JSONDecodeError, jsonschema_exceptions.ValidationError) as exc:
            logger.error("store.read.corrupt", exc_info=exc, extra={"context": {"path": str(self._path)}})
            raise StorageError(
                STORAGE_ERROR,
                "Could not read snippets data.",
                details={"path": str(self._path), "reason": str(exc)},
            ) from exc

        return [Snippet.from_dict(item) for item in document["snippets"]]

    def _write(self, snippets: list[Snippet]) -> None:
        payload = {"snippets": [snippet.to_dict() for snippet in snippets]}
        encoded = json.dumps(payload, indent=2, ensure_ascii=False)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(encoded)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            logger.error("store.write.failed", exc_info=exc, extra={"context": {"path": str(self._path)}})
            raise StorageError(
                STORAGE_ERROR,
                "Could not save snippets data.",
                details={"path": str(self._path)},
            ) from exc

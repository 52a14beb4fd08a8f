"""
Whole-document persistence for condos, goals and tasks.

Every caller loads the full document, mutates it in memory and saves it
back. Documents carry a version number; saving a document whose version no
longer matches the stored one raises StaleDocumentError instead of silently
overwriting the other writer's changes.
"""

import json
import os
import secrets
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import yaml

from .errors import StaleDocumentError
from .models import Document


def generate_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(4)}"


class Store(ABC):
    """Abstract document store."""

    def __init__(self):
        self._write_lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[Document]:
        """
        Load, let the caller mutate, then save.

        The save is skipped when the block raises or leaves the document
        unchanged. Transactions in one process are serialized.
        """
        with self._write_lock:
            document = self.load()
            before = json.dumps(document.to_dict(), sort_keys=True)
            yield document
            if json.dumps(document.to_dict(), sort_keys=True) != before:
                self.save(document)

    @abstractmethod
    def load(self) -> Document:
        """Return a fresh copy of the current document."""
        pass

    @abstractmethod
    def save(self, document: Document):
        """Persist the document, bumping its version."""
        pass

    def new_id(self, prefix: str) -> str:
        return generate_id(prefix)


class MemoryStore(Store):
    """Keeps the serialized document in memory. Used by tests and dry runs."""

    def __init__(self, document: Optional[Document] = None):
        super().__init__()
        self._lock = threading.Lock()
        self._data = (document or Document()).to_dict()
        self.save_count = 0

    def load(self) -> Document:
        with self._lock:
            return Document.from_dict(json.loads(json.dumps(self._data)))

    def save(self, document: Document):
        with self._lock:
            stored = self._data.get("version") or 0
            if document.version != stored:
                raise StaleDocumentError(document.version, stored)
            document.version += 1
            self._data = json.loads(json.dumps(document.to_dict()))
            self.save_count += 1


class JsonStore(Store):
    """
    File-backed store.

    The format follows the file suffix: .yaml/.yml is written as YAML,
    anything else as JSON. Writes go through a temp file and a rename so a
    crash never leaves a half-written document behind.
    """

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self._lock = threading.Lock()

    @property
    def is_yaml(self) -> bool:
        return self.path.suffix in (".yaml", ".yml")

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        content = self.path.read_text()
        if not content.strip():
            return {}
        if self.is_yaml:
            return yaml.safe_load(content) or {}
        return json.loads(content)

    def _write(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.is_yaml:
            content = yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
        else:
            content = json.dumps(data, indent=2) + "\n"
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(content)
        os.replace(tmp, self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Document:
        with self._lock:
            return Document.from_dict(self._read())

    def save(self, document: Document):
        with self._lock:
            stored = self._read().get("version") or 0
            if document.version != stored:
                raise StaleDocumentError(document.version, stored)
            document.version += 1
            self._write(document.to_dict())

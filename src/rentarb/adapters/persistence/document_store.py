# src/rentarb/adapters/persistence/document_store.py
"""
Document Store - Ledger Persistence as JSON Documents

This module implements the document-style ledger store used for bookings,
incomes, expenses and projected expenses: collection-level CRUD, exact-match
queries and a live change feed.

Two implementations share one interface:
- MemoryDocumentStore keeps everything in process (tests, dry runs)
- JsonFileDocumentStore additionally persists every write to one JSON file
  using a temp file + atomic rename, so a crash never leaves a torn file.
  The file write runs off the event loop via asyncio.to_thread

Files that USE this module:
- rentarb.adapters.persistence.repositories (typed repositories wrap a DocumentStore)
- rentarb.application.health (ledger health check)
- rentarb.app (builds the JSON store from settings.ledger_file)
- tests.test_document_store (unit tests)

Files that this module USES:
- rentarb.domain.errors (NotFoundError for updates of missing documents)
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple, Union

from rentarb.domain.errors import NotFoundError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Collections = Dict[str, Dict[str, Document]]

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"


class _DeleteField:
    """Marker value: update() removes the key instead of writing it."""

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


@dataclass(frozen=True)
class ChangeEvent:
    """One change to a collection, as delivered by watch()."""
    kind: str  # "added", "modified" or "removed"
    collection: str
    doc_id: str
    data: Optional[Document]


class DocumentStore(Protocol):
    """Interface every ledger store implements."""

    async def create(self, collection: str, data: Document) -> str: ...

    async def update(self, collection: str, doc_id: str, fields: Document) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...

    async def query(self, collection: str, **equals: Any) -> List[Tuple[str, Document]]: ...

    async def list(self, collection: str) -> List[Tuple[str, Document]]: ...

    def watch(self, collection: str) -> AsyncIterator[ChangeEvent]: ...


def strip_none(data: Document) -> Document:
    """Drop keys whose value is None; absent and null mean the same in the ledger."""
    return {k: v for k, v in data.items() if v is not None}


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


class MemoryDocumentStore:
    """In-process document store. Writes are serialized by one asyncio lock."""

    def __init__(self, initial: Optional[Collections] = None):
        self._collections: Collections = copy.deepcopy(initial) if initial else {}
        self._watchers: Dict[str, List[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, collection: str, data: Document) -> str:
        """
        Insert a new document.

        Returns:
            The generated document id
        """
        doc_id = new_document_id()
        doc = strip_none(copy.deepcopy(data))
        async with self._lock:
            docs = dict(self._collections.get(collection, {}))
            docs[doc_id] = doc
            await self._commit(collection, docs)
        self._emit(ChangeEvent(ADDED, collection, doc_id, copy.deepcopy(doc)))
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """
        Merge fields into an existing document.

        None values are skipped; DELETE_FIELD values remove the key.

        Raises:
            NotFoundError: If the document does not exist
        """
        async with self._lock:
            docs = dict(self._collections.get(collection, {}))
            if doc_id not in docs:
                raise NotFoundError(collection, doc_id)
            merged = dict(docs[doc_id])
            for key, value in fields.items():
                if value is DELETE_FIELD:
                    merged.pop(key, None)
                elif value is not None:
                    merged[key] = copy.deepcopy(value)
            docs[doc_id] = merged
            await self._commit(collection, docs)
        self._emit(ChangeEvent(MODIFIED, collection, doc_id, copy.deepcopy(merged)))

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing id is not an error."""
        async with self._lock:
            docs = dict(self._collections.get(collection, {}))
            if docs.pop(doc_id, None) is None:
                return
            await self._commit(collection, docs)
        self._emit(ChangeEvent(REMOVED, collection, doc_id, None))

    async def _commit(self, collection: str, docs: Dict[str, Document]) -> None:
        snapshot = dict(self._collections)
        snapshot[collection] = docs
        await self._write(snapshot)
        self._collections = snapshot

    async def _write(self, collections: Collections) -> None:
        """Persist a full snapshot before it becomes visible. Nothing to do in memory."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, **equals: Any) -> List[Tuple[str, Document]]:
        """Return (id, document) pairs whose fields equal every given value."""
        return [
            (doc_id, copy.deepcopy(doc))
            for doc_id, doc in self._collections.get(collection, {}).items()
            if all(doc.get(key) == value for key, value in equals.items())
        ]

    async def list(self, collection: str) -> List[Tuple[str, Document]]:
        return await self.query(collection)

    async def watch(self, collection: str) -> AsyncIterator[ChangeEvent]:
        """
        Live view of a collection.

        Yields an "added" event for every existing document first, then every
        later change as it happens. Stops when the consumer stops iterating.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.setdefault(collection, []).append(queue)
        try:
            for doc_id, doc in await self.list(collection):
                yield ChangeEvent(ADDED, collection, doc_id, doc)
            while True:
                yield await queue.get()
        finally:
            self._watchers[collection].remove(queue)

    def _emit(self, event: ChangeEvent) -> None:
        for queue in self._watchers.get(event.collection, []):
            queue.put_nowait(event)


class JsonFileDocumentStore(MemoryDocumentStore):
    """Document store persisted to a single JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(self._load())

    def _load(self) -> Collections:
        """
        Load all collections from disk.

        A corrupt file is backed up to *.corrupt and the store starts empty.
        """
        if not self.path.exists():
            logger.info("No ledger file at %s, starting empty", self.path)
            return {}

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            backup_path = self.path.with_suffix(".json.corrupt")
            shutil.copy2(self.path, backup_path)
            logger.warning("Ledger file corrupted, backed up to %s: %s", backup_path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ledger file has unexpected top-level %s, starting empty", type(data).__name__)
            return {}
        logger.info(
            "Loaded ledger from %s (%s)",
            self.path,
            ", ".join(f"{name}={len(docs)}" for name, docs in data.items()) or "empty",
        )
        return data

    async def _write(self, collections: Collections) -> None:
        """
        Write all collections using an atomic temp-file + rename.

        The file I/O runs in a worker thread; the store lock stays held until
        it finishes, so snapshots reach the disk in commit order.

        Raises:
            RuntimeError: If the file could not be written
        """
        await asyncio.to_thread(self._write_file, collections)

    def _write_file(self, collections: Collections) -> None:
        temp_fd, temp_path = tempfile.mkstemp(suffix=".json.tmp", dir=str(self.path.parent), text=True)
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(collections, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, str(self.path))
        except Exception as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise RuntimeError(f"Failed to save ledger file: {e}") from e

"""
File-backed local vector store for the Local Knowledge Base.

Keeps every entry in memory and answers queries with a brute-force numpy
cosine scan; the corpus is bounded by the scanner's file cap.  Entries carry
a denormalized copy of their :class:`CodeUnit` so search results never need
to re-read source files.

Storage: ``<index_dir>/vectors.bin``, little-endian::

    [int32 count][int32 dim]
    count × ( [str id][str filePath][int32 startLine][int32 endLine]
              [str kind][str name][str content][str summary]
              [dim × float32] )

where ``str`` is ``[int32 byte length][UTF-8 bytes]``.  A file that fails
validation is discarded and the store starts empty.
"""

from __future__ import annotations

import logging
import os
import struct
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .models import CodeUnit, SearchResult, UnitKind, normalize_path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VECTORS_FILENAME = "vectors.bin"

_INT32 = struct.Struct("<i")
_HEADER = struct.Struct("<ii")
_FLOAT32_LE = np.dtype("<f4")


@dataclass(eq=False)
class VectorEntry:
    """One stored vector with its unit metadata."""
    unit_id: str
    vector: np.ndarray
    unit: CodeUnit


class VectorFormatError(ValueError):
    """Raised internally when ``vectors.bin`` does not match the layout."""


# ---------------------------------------------------------------------------
# Binary helpers
# ---------------------------------------------------------------------------

def _pack_str(value: str) -> bytes:
    data = value.encode("utf-8")
    return _INT32.pack(len(data)) + data


class _Reader:
    """Bounds-checked cursor over a byte buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int) -> bytes:
        if size < 0 or size > self.remaining:
            raise VectorFormatError(f"truncated data at offset {self._pos}")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def int32(self) -> int:
        return _INT32.unpack(self.take(_INT32.size))[0]

    def string(self) -> str:
        length = self.int32()
        if length < 0:
            raise VectorFormatError(f"negative string length {length}")
        return self.take(length).decode("utf-8")


def _entry_to_bytes(entry: VectorEntry) -> bytes:
    unit = entry.unit
    return b"".join((
        _pack_str(entry.unit_id),
        _pack_str(unit.file_path),
        _INT32.pack(unit.line_start),
        _INT32.pack(unit.line_end),
        _pack_str(unit.kind.value),
        _pack_str(unit.name),
        _pack_str(unit.content),
        _pack_str(unit.summary),
        entry.vector.astype(_FLOAT32_LE).tobytes(),
    ))


def _entry_from_reader(reader: _Reader, dim: int) -> VectorEntry:
    unit_id = reader.string()
    file_path = reader.string()
    line_start = reader.int32()
    line_end = reader.int32()
    kind_value = reader.string()
    try:
        kind = UnitKind(kind_value)
    except ValueError as exc:
        raise VectorFormatError(f"unknown unit kind {kind_value!r}") from exc
    name = reader.string()
    content = reader.string()
    summary = reader.string()
    vector = np.frombuffer(reader.take(dim * 4), dtype=_FLOAT32_LE).astype(np.float32)
    unit = CodeUnit(
        file_path=file_path,
        line_start=line_start,
        line_end=line_end,
        kind=kind,
        name=name,
        content=content,
        summary=summary,
        unit_id=unit_id,
    )
    return VectorEntry(unit_id=unit_id, vector=vector, unit=unit)


# ---------------------------------------------------------------------------
# VectorStore
# ---------------------------------------------------------------------------

class VectorStore:
    """
    In-memory vector store persisted to a single binary file.

    Parameters
    ----------
    store_dir:
        Directory holding ``vectors.bin``.
    dimension:
        Length of every stored vector.
    """

    def __init__(self, store_dir: str, dimension: int) -> None:
        self._store_dir = store_dir
        self._dimension = dimension
        self._entries: dict[str, VectorEntry] = {}
        self._lock = threading.Lock()
        self._dirty = False

    @property
    def path(self) -> str:
        return os.path.join(self._store_dir, VECTORS_FILENAME)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, unit_id: str, vector: np.ndarray, unit: CodeUnit) -> None:
        """
        Insert or replace the entry for *unit_id*.

        Raises
        ------
        ValueError
            If *vector* does not have the store's dimension.
        """
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != (self._dimension,):
            raise ValueError(
                f"vector shape {vector.shape} does not match dimension {self._dimension}"
            )
        with self._lock:
            self._entries[unit_id] = VectorEntry(unit_id=unit_id, vector=vector, unit=unit)
            self._dirty = True

    def remove(self, unit_id: str) -> bool:
        """Remove one entry; returns True if it existed."""
        with self._lock:
            if self._entries.pop(unit_id, None) is None:
                return False
            self._dirty = True
            return True

    def remove_by_file(self, file_path: str) -> int:
        """
        Remove every entry whose unit belongs to *file_path*.

        Returns
        -------
        int
            Number of entries removed.
        """
        target = normalize_path(file_path)
        with self._lock:
            doomed = [
                uid for uid, e in self._entries.items()
                if normalize_path(e.unit.file_path) == target
            ]
            for uid in doomed:
                del self._entries[uid]
            if doomed:
                self._dirty = True
        if doomed:
            logger.debug("Removed %d vectors for %s", len(doomed), target)
        return len(doomed)

    def clear(self) -> None:
        """Drop every entry and delete the persisted file."""
        with self._lock:
            self._entries.clear()
            self._dirty = False
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete %s: %s", self.path, exc)

    def copy(self) -> "VectorStore":
        """Return an independent store with the same entries and location."""
        other = VectorStore(self._store_dir, self._dimension)
        with self._lock:
            other._entries = dict(self._entries)
            other._dirty = self._dirty
        return other

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, unit_id: str) -> Optional[VectorEntry]:
        return self._entries.get(unit_id)

    def entries(self) -> list[VectorEntry]:
        """All entries in insertion order."""
        with self._lock:
            return list(self._entries.values())

    def get_indexed_files(self) -> set[str]:
        """Normalized paths of every file with at least one entry."""
        with self._lock:
            return {normalize_path(e.unit.file_path) for e in self._entries.values()}

    def search(self, query_vector: np.ndarray, top_k: int = 10) -> list[SearchResult]:
        """
        Cosine-similarity search over every entry.

        Parameters
        ----------
        query_vector:
            Query embedding of the store's dimension.
        top_k:
            Number of results to return.

        Returns
        -------
        list[SearchResult]
            Sorted by score descending; equal scores keep insertion order.
            Empty when the store is empty, *top_k* is not positive or the
            query has a different dimension.
        """
        query = np.asarray(query_vector, dtype=np.float32)
        if top_k <= 0 or query.shape != (self._dimension,):
            return []

        entries = self.entries()
        if not entries:
            return []

        matrix = np.stack([e.vector for e in entries])
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0:
            scores = np.zeros(len(entries), dtype=np.float32)
        else:
            row_norms = np.linalg.norm(matrix, axis=1)
            row_norms[row_norms == 0] = 1.0
            scores = (matrix @ query) / (row_norms * query_norm)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            SearchResult(unit_id=entries[i].unit_id, score=float(scores[i]), unit=entries[i].unit)
            for i in order
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, force: bool = False) -> None:
        """
        Write all entries to ``vectors.bin``.

        Skipped when nothing changed since the last save/load and the file
        exists, unless *force* is set.  The file is replaced atomically.

        Raises
        ------
        OSError
            If the file cannot be written.
        """
        if not force and not self._dirty and os.path.exists(self.path):
            return

        entries = self.entries()
        os.makedirs(self._store_dir, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "wb") as fh:
            fh.write(_HEADER.pack(len(entries), self._dimension))
            for entry in entries:
                fh.write(_entry_to_bytes(entry))
        os.replace(tmp_path, self.path)
        self._dirty = False
        logger.debug("Saved %d vectors to %s", len(entries), self.path)

    def load(self) -> bool:
        """
        Replace the in-memory entries with the contents of ``vectors.bin``.

        Never raises: a missing file leaves the store empty; an unreadable or
        malformed file is logged and the store starts empty.

        Returns
        -------
        bool
            True if entries were loaded from disk.
        """
        with self._lock:
            self._entries = {}
            self._dirty = False

        if not os.path.exists(self.path):
            return False

        try:
            with open(self.path, "rb") as fh:
                data = fh.read()
            entries = self._decode(data)
        except (OSError, VectorFormatError, struct.error, UnicodeDecodeError) as exc:
            logger.warning("Discarding unreadable vector store %s: %s", self.path, exc)
            return False

        with self._lock:
            self._entries = {e.unit_id: e for e in entries}
        logger.debug("Loaded %d vectors from %s", len(entries), self.path)
        return True

    def _decode(self, data: bytes) -> list[VectorEntry]:
        reader = _Reader(data)
        count = reader.int32()
        dim = reader.int32()
        if count < 0:
            raise VectorFormatError(f"negative entry count {count}")
        if dim != self._dimension:
            raise VectorFormatError(
                f"dimension {dim} does not match configured {self._dimension}"
            )
        entries = [_entry_from_reader(reader, dim) for _ in range(count)]
        if reader.remaining:
            raise VectorFormatError(f"{reader.remaining} trailing bytes")
        return entries

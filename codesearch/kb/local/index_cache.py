"""
Per-file change-detection cache for incremental indexing.

Maps each indexed file (separator-normalized path) to the content hash seen
when it was last processed and the unit ids it contributed to the vector
store.  It is the sole source of truth for incremental diffing.

Storage: ``<index_dir>/index_cache.json``::

    {
      "version": "1.0",
      "createdAt": "<ISO-8601 UTC>",
      "lastUpdated": "<ISO-8601 UTC>",
      "files": {
        "<path>": {"hash": "...", "lastModified": "...", "chunkIds": ["..."]}
      }
    }
"""

from __future__ import annotations

import copy
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from .models import normalize_path

logger = logging.getLogger(__name__)

CACHE_FILENAME = "index_cache.json"
CACHE_VERSION = "1.0"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class IndexCache:
    """
    Durable path → (hash, unit ids) map.

    Parameters
    ----------
    cache_dir:
        Directory holding ``index_cache.json``.  Nothing is read until
        :meth:`load` is called.
    """

    def __init__(self, cache_dir: str) -> None:
        self._cache_dir = cache_dir
        self._created_at = _utc_now()
        self._last_updated = self._created_at
        self._files: dict[str, dict] = {}

    @property
    def path(self) -> str:
        return os.path.join(self._cache_dir, CACHE_FILENAME)

    @property
    def file_count(self) -> int:
        return len(self._files)

    @property
    def created_at(self) -> str:
        return self._created_at

    @property
    def last_updated(self) -> str:
        return self._last_updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_changed(self, file_path: str, file_hash: str) -> bool:
        """True if *file_path* is unknown or was cached with another hash."""
        info = self._files.get(normalize_path(file_path))
        return info is None or info["hash"] != file_hash

    def get_chunk_ids(self, file_path: str) -> list[str]:
        info = self._files.get(normalize_path(file_path))
        return list(info["chunkIds"]) if info else []

    def get_hash(self, file_path: str) -> Optional[str]:
        info = self._files.get(normalize_path(file_path))
        return info["hash"] if info else None

    def get_cached_files(self) -> list[str]:
        return list(self._files)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_file(self, file_path: str, file_hash: str, chunk_ids: list[str]) -> None:
        """Record *file_hash* and the owned *chunk_ids* for *file_path*."""
        self._files[normalize_path(file_path)] = {
            "hash": file_hash,
            "lastModified": _utc_now(),
            "chunkIds": list(chunk_ids),
        }

    def remove_file(self, file_path: str) -> None:
        self._files.pop(normalize_path(file_path), None)

    def clear(self) -> None:
        """Forget every file and delete the persisted cache."""
        self._files = {}
        self._created_at = _utc_now()
        self._last_updated = self._created_at
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete %s: %s", self.path, exc)

    def copy(self) -> "IndexCache":
        """Return an independent cache with the same contents and location."""
        other = IndexCache(self._cache_dir)
        other._created_at = self._created_at
        other._last_updated = self._last_updated
        other._files = copy.deepcopy(self._files)
        return other

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "version": CACHE_VERSION,
            "createdAt": self._created_at,
            "lastUpdated": self._last_updated,
            "files": copy.deepcopy(self._files),
        }

    def save(self) -> None:
        """
        Write the cache atomically, stamping ``lastUpdated``.

        Raises
        ------
        OSError
            If the file cannot be written.
        """
        self._last_updated = _utc_now()
        os.makedirs(self._cache_dir, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug("Saved index cache with %d files to %s", len(self._files), self.path)

    def load(self) -> bool:
        """
        Replace the in-memory state with ``index_cache.json``.

        Never raises: a missing file yields an empty cache, and a corrupt
        or incompatible one is logged and discarded.

        Returns
        -------
        bool
            True if the file was loaded.
        """
        self._files = {}
        self._created_at = _utc_now()
        self._last_updated = self._created_at

        if not os.path.exists(self.path):
            return False

        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
            files = self._validate(data)
        except (OSError, ValueError) as exc:
            logger.warning("Discarding unreadable index cache %s: %s", self.path, exc)
            return False

        self._files = files
        self._created_at = data.get("createdAt") or self._created_at
        self._last_updated = data.get("lastUpdated") or self._last_updated
        logger.debug("Loaded index cache with %d files", len(files))
        return True

    @staticmethod
    def _validate(data) -> dict[str, dict]:
        """Check the document shape; raises ValueError when it is wrong."""
        if not isinstance(data, dict):
            raise ValueError("cache root is not an object")
        if data.get("version") != CACHE_VERSION:
            raise ValueError(f"unsupported cache version {data.get('version')!r}")
        files = data.get("files")
        if not isinstance(files, dict):
            raise ValueError("'files' is not an object")

        result: dict[str, dict] = {}
        for path, info in files.items():
            if (not isinstance(info, dict)
                    or not isinstance(info.get("hash"), str)
                    or not isinstance(info.get("chunkIds"), list)):
                raise ValueError(f"malformed entry for {path!r}")
            result[normalize_path(path)] = {
                "hash": info["hash"],
                "lastModified": str(info.get("lastModified", "")),
                "chunkIds": [str(c) for c in info["chunkIds"]],
            }
        return result

"""
Source file discovery for the Local Knowledge Base.

Walks the configured folders, applies extension and exclusion rules, and
records a content hash and modification time for every candidate file.
The hash is what the :class:`~codesearch.kb.local.index_cache.IndexCache`
compares against to decide whether a file needs re-indexing.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .models import normalize_path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_EXTENSIONS: tuple[str, ...] = (".cs",)

DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "/Editor/",
    "/Plugins/",
    "/ThirdParty/",
    "/TextMesh Pro/",
    "/.git/",
    "/Library/",
    "/Temp/",
    "/obj/",
    "/bin/",
)

# Files processed between cooperative yields.
YIELD_EVERY = 50

_HASH_BLOCK_SIZE = 65536


@dataclass
class ScannedFile:
    """A candidate source file found by the scanner."""
    path: str            # absolute, separator-normalized
    hash: str            # SHA-256 hex digest
    last_modified: float


def compute_file_hash(file_path: str) -> str:
    """
    Compute the SHA-256 hex digest of a file's contents.

    Parameters
    ----------
    file_path:
        Path to the file.

    Returns
    -------
    str
        64-character hex digest.

    Raises
    ------
    OSError
        If the file cannot be read.
    """
    h = hashlib.sha256()
    with open(file_path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_HASH_BLOCK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


class Scanner:
    """
    Enumerates indexable files below a set of root folders.

    Parameters
    ----------
    extensions:
        File extensions to keep (case-insensitive, with leading dot).
    exclude_patterns:
        Substrings; any file whose separator-normalized path contains one of
        them is skipped.  Matching is case-sensitive.
    """

    def __init__(
        self,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
    ) -> None:
        self._extensions = tuple(e.lower() for e in extensions)
        self._exclude_patterns: list[str] = [normalize_path(p) for p in exclude_patterns]

    @property
    def extensions(self) -> tuple[str, ...]:
        return self._extensions

    @property
    def exclude_patterns(self) -> list[str]:
        return list(self._exclude_patterns)

    def add_exclude_pattern(self, pattern: str) -> None:
        """Add an exclusion substring (ignored if already present)."""
        pattern = normalize_path(pattern)
        if pattern and pattern not in self._exclude_patterns:
            self._exclude_patterns.append(pattern)

    def is_excluded(self, path: str) -> bool:
        """Return True if *path* contains any exclusion pattern."""
        normalized = normalize_path(path)
        return any(p in normalized for p in self._exclude_patterns)

    def is_candidate(self, path: str) -> bool:
        """Return True if *path* has a tracked extension and is not excluded."""
        ext = os.path.splitext(path)[1].lower()
        return ext in self._extensions and not self.is_excluded(path)

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    def _collect(self, folders: Iterable[str], max_files: int,
                 cancel_event: Optional[threading.Event]) -> list[str]:
        """Return up to *max_files* candidate paths, sorted per folder."""
        found: list[str] = []
        seen: set[str] = set()

        for folder in folders:
            if not os.path.isdir(folder):
                logger.warning("Indexed folder does not exist, skipping: %s", folder)
                continue

            for dirpath, dirnames, filenames in os.walk(folder, topdown=True):
                if cancel_event is not None and cancel_event.is_set():
                    return found
                # Patterns apply below the scanned folder, not to its own location
                rel_dir = "/" + normalize_path(os.path.relpath(dirpath, folder))
                if rel_dir == "/.":
                    rel_dir = ""
                # Prune excluded directories in-place (modifies the walk)
                dirnames[:] = sorted(
                    d for d in dirnames
                    if not self.is_excluded(f"{rel_dir}/{d}/")
                )
                for fname in sorted(filenames):
                    abs_path = normalize_path(os.path.abspath(os.path.join(dirpath, fname)))
                    if abs_path in seen or not self.is_candidate(f"{rel_dir}/{fname}"):
                        continue
                    seen.add(abs_path)
                    found.append(abs_path)
                    if len(found) >= max_files:
                        logger.warning(
                            "File limit of %d reached; remaining files are not indexed",
                            max_files,
                        )
                        return found
        return found

    def scan_folders(
        self,
        folders: Iterable[str],
        max_files: int = 5000,
        progress: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[ScannedFile]:
        """
        Scan *folders* recursively and hash every candidate file.

        Parameters
        ----------
        folders:
            Absolute root folders to walk.
        max_files:
            Upper bound on the number of files returned.  The cap is
            applied before hashing.
        progress:
            Optional callable receiving the fraction of files processed.
        cancel_event:
            When set, scanning stops and the files hashed so far are returned.

        Returns
        -------
        list[ScannedFile]
            Files in walk order.  Unreadable files are logged and omitted.
        """
        folders = list(folders)
        candidates = self._collect(folders, max_files, cancel_event)
        total = len(candidates)
        results: list[ScannedFile] = []

        for idx, path in enumerate(candidates):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Scan cancelled after %d of %d files", idx, total)
                break
            try:
                file_hash = compute_file_hash(path)
                last_modified = os.path.getmtime(path)
            except OSError as exc:
                logger.warning("Could not read %s, skipping: %s", path, exc)
            else:
                results.append(ScannedFile(path=path, hash=file_hash,
                                           last_modified=last_modified))

            if progress is not None:
                progress((idx + 1) / total)
            if (idx + 1) % YIELD_EVERY == 0:
                time.sleep(0)

        logger.debug("Scanned %d files under %d folder(s)", len(results), len(folders))
        return results

"""
Index coordinator — orchestrates full and incremental indexing.

Full rebuild:
  1. Scan the configured folders for source files
  2. Parse, chunk and embed every file
  3. Persist ``vectors.bin`` and ``index_cache.json``

Incremental update:
  Rescans, diffs the scan against the index cache (insertions, updates,
  deletions) and reprocesses only what changed.

A pass always works on private copies of the stores; queries keep reading
the committed snapshot until a completed pass saves and swaps the new
stores in.  Cancelled or failed passes persist nothing.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from enum import Enum
from typing import Callable, Optional

from .chunker import Chunker
from .embedder import Embedder, HashingEmbedder
from .index_cache import IndexCache
from .models import SearchResult
from .parser import StructuralParser
from .scanner import ScannedFile, Scanner
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

# Files processed between cooperative yields.
YIELD_EVERY = 10

ProgressListener = Callable[[float, str], None]
StateListener = Callable[["IndexState"], None]


class IndexState(str, Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    READY = "ready"
    ERROR = "error"


class _CancelSignal:
    """Cancelled when either the coordinator's or the caller's event is set."""

    def __init__(self, *events: Optional[threading.Event]) -> None:
        self._events = [e for e in events if e is not None]

    def is_set(self) -> bool:
        return any(e.is_set() for e in self._events)


class IndexCoordinator:
    """
    Owns the indexing pipeline and the committed index.

    Parameters
    ----------
    config:
        :class:`~codesearch.config.Config` with paths, limits and folders.
    embedder:
        Embedding strategy; defaults to :class:`HashingEmbedder` with
        ``config.EMBEDDING_DIM`` dimensions.
    """

    def __init__(self, config, embedder: Optional[Embedder] = None) -> None:
        self.config = config
        self.index_dir = config.index_path()

        self.scanner = Scanner(config.FILE_EXTENSIONS, config.EXCLUDE_PATTERNS)
        self.parser = StructuralParser(config.PROJECT_ROOT)
        self.chunker = Chunker(config.MAX_CHUNK_TOKENS, config.CHUNK_OVERLAP_TOKENS)
        self.embedder = embedder or HashingEmbedder(config.EMBEDDING_DIM)

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._state = IndexState.IDLE
        self._progress_listeners: list[ProgressListener] = []
        self._state_listeners: list[StateListener] = []

        self._store = VectorStore(self.index_dir, self.embedder.dimension)
        self._cache = IndexCache(self.index_dir)
        self._store.load()
        self._cache.load()

        # Every stored entry must belong to a cached file.
        orphaned = self._store.get_indexed_files() - set(self._cache.get_cached_files())
        if orphaned:
            logger.warning("Vector store has entries for %d files missing from the index "
                           "cache; dropping them", len(orphaned))
            for path in sorted(orphaned):
                self._store.remove_by_file(path)

        if self._store.count > 0:
            self._state = IndexState.READY
        elif self._cache.file_count > 0:
            # The cache would report every file as unchanged; forget it so the
            # next update reprocesses everything.
            logger.warning("Index cache lists %d files but the vector store is empty; "
                           "clearing cache", self._cache.file_count)
            self._cache.clear()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is IndexState.READY

    @property
    def vector_store(self) -> VectorStore:
        return self._store

    @property
    def index_cache(self) -> IndexCache:
        return self._cache

    @property
    def unit_count(self) -> int:
        return self._store.count

    @property
    def file_count(self) -> int:
        return self._cache.file_count

    def stats(self) -> dict:
        """Summary of the committed index."""
        return {
            "state": self._state.value,
            "units": self._store.count,
            "files": self._cache.file_count,
            "index_dir": self.index_dir,
            "cache_last_updated": self._cache.last_updated,
        }

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._progress_listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        if listener in self._progress_listeners:
            self._progress_listeners.remove(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def _report(self, fraction: float, message: str) -> None:
        for listener in list(self._progress_listeners):
            try:
                listener(fraction, message)
            except Exception as exc:
                logger.warning("Progress listener failed: %s", exc)

    def _set_state(self, state: IndexState) -> None:
        with self._lock:
            self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.warning("State listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def rebuild_index(
        self,
        folders: Optional[list[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[dict]:
        """
        Rebuild the whole index from scratch in the calling thread.

        Parameters
        ----------
        folders:
            Folders to index; defaults to ``config.INDEXED_FOLDERS``.
        cancel_event:
            Optional external cancellation signal, checked once per file.

        Returns
        -------
        Optional[dict]
            Summary with ``files``, ``units``, ``removed``, ``errors`` and
            ``elapsed_seconds``; None if the call was rejected, cancelled or
            failed.
        """
        prior = self._begin_indexing()
        if prior is None:
            return None
        return self._run_pass(self._rebuild_pass, "Rebuild", prior, folders, cancel_event)

    def incremental_update(
        self,
        folders: Optional[list[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[dict]:
        """
        Reprocess only files that were added, changed or deleted.

        Same parameters and return value as :meth:`rebuild_index`.
        """
        prior = self._begin_indexing()
        if prior is None:
            return None
        return self._run_pass(self._incremental_pass, "Incremental update", prior,
                              folders, cancel_event)

    def rebuild_index_async(
        self,
        folders: Optional[list[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[threading.Thread]:
        """Run :meth:`rebuild_index` on a daemon thread; None if rejected."""
        prior = self._begin_indexing()
        if prior is None:
            return None
        return self._start_thread(self._rebuild_pass, "Rebuild", prior, folders, cancel_event)

    def incremental_update_async(
        self,
        folders: Optional[list[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[threading.Thread]:
        """Run :meth:`incremental_update` on a daemon thread; None if rejected."""
        prior = self._begin_indexing()
        if prior is None:
            return None
        return self._start_thread(self._incremental_pass, "Incremental update", prior,
                                  folders, cancel_event)

    def cancel_indexing(self) -> None:
        """Ask the running pass, if any, to stop at the next file boundary."""
        if self._state is IndexState.INDEXING:
            logger.info("Cancelling indexing")
            self._cancel_event.set()

    def clear_index(self) -> bool:
        """
        Wipe both stores (memory and disk) and return to IDLE.

        Returns
        -------
        bool
            False if rejected because a pass is running.
        """
        with self._lock:
            if self._state is IndexState.INDEXING:
                logger.warning("Cannot clear the index while indexing is in progress")
                return False
            self._store.clear()
            self._cache.clear()
        self._set_state(IndexState.IDLE)
        logger.info("Index cleared")
        return True

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(self, text: str, top_k: int = 5) -> list[SearchResult]:
        """
        Embed *text* and return the *top_k* most similar units.

        Returns an empty list for blank text or when the index is not
        READY; never raises for either case.
        """
        if not text or not text.strip():
            return []
        if self._state is not IndexState.READY:
            logger.warning("Index not ready (state: %s). Run a rebuild first.",
                           self._state.value)
            return []
        return self._store.search(self.embedder.embed(text), top_k)

    # ------------------------------------------------------------------
    # Pass machinery
    # ------------------------------------------------------------------

    def _begin_indexing(self) -> Optional[IndexState]:
        """Enter INDEXING atomically; returns the prior state or None if busy."""
        with self._lock:
            if self._state is IndexState.INDEXING:
                logger.warning("Indexing already in progress; request ignored")
                return None
            prior = self._state
            self._state = IndexState.INDEXING
            self._cancel_event.clear()
        for listener in list(self._state_listeners):
            try:
                listener(IndexState.INDEXING)
            except Exception as exc:
                logger.warning("State listener failed: %s", exc)
        return prior

    def _start_thread(self, pass_fn, label, prior, folders, cancel_event) -> threading.Thread:
        t = threading.Thread(
            target=self._run_pass,
            args=(pass_fn, label, prior, folders, cancel_event),
            daemon=True,
            name=f"codesearch-{label.lower().replace(' ', '-')}",
        )
        t.start()
        return t

    def _run_pass(self, pass_fn, label: str, prior: IndexState,
                  folders: Optional[list[str]],
                  cancel_event: Optional[threading.Event]) -> Optional[dict]:
        signal = _CancelSignal(self._cancel_event, cancel_event)
        try:
            summary = pass_fn(self.config.resolve_folders(folders), signal)
        except Exception as exc:
            logger.error("%s failed: %s", label, exc, exc_info=True)
            self._report(1.0, f"{label} failed: {exc}")
            self._set_state(IndexState.ERROR)
            return None

        if summary is None:
            logger.info("%s cancelled; index left unchanged", label)
            self._set_state(prior)
            return None

        logger.info(
            "%s complete: %d files, %d units, %d removed, %d errors in %.1fs",
            label, summary["files"], summary["units"], summary["removed"],
            summary["errors"], summary["elapsed_seconds"],
        )
        self._set_state(IndexState.READY)
        return summary

    def _rebuild_pass(self, folders: list[str], signal: _CancelSignal) -> Optional[dict]:
        start_time = time.time()
        store = VectorStore(self.index_dir, self.embedder.dimension)
        cache = IndexCache(self.index_dir)

        self._report(0.0, "Scanning project files...")
        files = self.scanner.scan_folders(
            folders,
            self.config.MAX_INDEXED_FILES,
            progress=lambda p: self._report(p * 0.2, f"Scanning files... ({int(p * 100)}%)"),
            cancel_event=signal,
        )
        if signal.is_set():
            self._report(1.0, "Indexing cancelled")
            return None
        self._report(0.2, f"Found {len(files)} source files")

        units, errors = self._process_files(files, store, cache, signal, 0.2, 0.7, "Processing")
        if signal.is_set():
            self._report(1.0, "Indexing cancelled")
            return None

        self._report(0.9, "Saving index...")
        self._commit(store, cache, force=True)
        self._report(1.0, f"Indexed {units} units from {len(files)} files")
        return {
            "files": len(files),
            "units": units,
            "removed": 0,
            "errors": errors,
            "elapsed_seconds": round(time.time() - start_time, 2),
        }

    def _incremental_pass(self, folders: list[str], signal: _CancelSignal) -> Optional[dict]:
        start_time = time.time()
        store = self._store.copy()
        cache = self._cache.copy()

        self._report(0.0, "Scanning for changes...")
        files = self.scanner.scan_folders(
            folders,
            self.config.MAX_INDEXED_FILES,
            progress=lambda p: self._report(p * 0.1, f"Scanning files... ({int(p * 100)}%)"),
            cancel_event=signal,
        )
        if signal.is_set():
            self._report(1.0, "Update cancelled")
            return None

        current = {f.path for f in files}
        changed = [f for f in files if cache.has_changed(f.path, f.hash)]
        deleted = [p for p in cache.get_cached_files() if p not in current]
        self._report(0.1, f"Found {len(changed)} changed, {len(deleted)} deleted files")

        for path in deleted:
            store.remove_by_file(path)
            cache.remove_file(path)
            logger.debug("Removed deleted file from index: %s", path)

        units, errors = self._process_files(changed, store, cache, signal, 0.1, 0.8, "Updating")
        if signal.is_set():
            self._report(1.0, "Update cancelled")
            return None

        self._report(0.9, "Saving index...")
        self._commit(store, cache)
        self._report(1.0, f"Updated {units} units from {len(changed)} files")
        return {
            "files": len(changed),
            "units": units,
            "removed": len(deleted),
            "errors": errors,
            "elapsed_seconds": round(time.time() - start_time, 2),
        }

    def _process_files(self, files: list[ScannedFile], store: VectorStore, cache: IndexCache,
                       signal: _CancelSignal, base: float, span: float,
                       verb: str) -> tuple[int, int]:
        """Index *files* into *store*/*cache*; returns (units, errors)."""
        units = 0
        errors = 0
        total = max(1, len(files))
        for idx, scanned in enumerate(files):
            if signal.is_set():
                break
            self._report(base + span * idx / total,
                         f"{verb}: {os.path.basename(scanned.path)}")
            count = self._index_file(scanned, store, cache)
            if count is None:
                errors += 1
            else:
                units += count
            if (idx + 1) % YIELD_EVERY == 0:
                time.sleep(0)
        return units, errors

    def _index_file(self, scanned: ScannedFile, store: VectorStore,
                    cache: IndexCache) -> Optional[int]:
        """
        Replace the entries of one file.

        Units and vectors are computed before anything is touched, so a
        failing file keeps its previous entries and cache record.

        Returns
        -------
        Optional[int]
            Number of units stored, or None if the file failed.
        """
        try:
            units = self.chunker.process_units(self.parser.parse_file(scanned.path))
            vectors = [self.embedder.embed(u.embedding_text()) for u in units]
            for vector in vectors:
                if vector.shape != (store.dimension,):
                    raise ValueError(f"embedder returned shape {vector.shape}, "
                                     f"expected ({store.dimension},)")
        except Exception as exc:
            logger.warning("Error processing %s: %s", scanned.path, exc)
            return None

        store.remove_by_file(scanned.path)
        chunk_ids: list[str] = []
        for unit, vector in zip(units, vectors):
            store.add(unit.unit_id, vector, unit)
            if unit.unit_id not in chunk_ids:
                chunk_ids.append(unit.unit_id)
        cache.update_file(scanned.path, scanned.hash, chunk_ids)
        return len(units)

    def _commit(self, store: VectorStore, cache: IndexCache, force: bool = False) -> None:
        """Persist both stores, then make them the committed snapshot."""
        store.save(force=force)
        cache.save()
        with self._lock:
            self._store = store
            self._cache = cache

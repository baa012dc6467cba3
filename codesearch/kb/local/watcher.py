"""
File watcher that keeps the index current.

Uses watchdog to monitor the indexed folders.  Any create, modify, delete
or move of a tracked source file (re)starts a debounce timer; when the
timer fires, one incremental update picks up every change made in the
meantime.  If the coordinator is busy with another pass, the update is
rescheduled instead of dropped.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .indexer import IndexState
from .models import normalize_path

logger = logging.getLogger(__name__)


class IndexFileHandler:
    """
    Debounces file events into incremental index updates.

    Parameters
    ----------
    coordinator:
        The :class:`~codesearch.kb.local.indexer.IndexCoordinator` to update.
    folders:
        Absolute folders being watched; passed to each update.
    debounce_seconds:
        Quiet period after the last relevant event before updating.
    """

    def __init__(self, coordinator, folders: list[str], debounce_seconds: float = 2.0) -> None:
        self._coordinator = coordinator
        self._folders = [normalize_path(os.path.abspath(f)) for f in folders]
        self._debounce = debounce_seconds
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._closed = False
        self.updates_run = 0

    # ------------------------------------------------------------------
    # Watchdog event dispatch
    # ------------------------------------------------------------------

    def on_modified(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_deleted(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)
            self._handle(event.dest_path)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def is_relevant(self, path: str) -> bool:
        """True if *path* is a tracked source file inside a watched folder."""
        norm = normalize_path(os.path.abspath(path))
        scanner = self._coordinator.scanner
        for folder in self._folders:
            prefix = folder.rstrip("/") + "/"
            if norm.startswith(prefix):
                return scanner.is_candidate("/" + norm[len(prefix):])
        return False

    def schedule(self) -> None:
        """(Re)start the debounce timer."""
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self._debounce, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def close(self) -> None:
        """Cancel any pending update; later events are ignored."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _handle(self, path: str) -> None:
        if not self.is_relevant(path):
            return
        logger.debug("[watcher] Change: %s", path)
        self.schedule()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._closed:
                return

        if self._coordinator.state is IndexState.INDEXING:
            logger.debug("[watcher] Index busy, rescheduling update")
            self.schedule()
            return

        try:
            summary = self._coordinator.incremental_update(self._folders)
        except Exception as exc:
            logger.warning("[watcher] Incremental update failed: %s", exc)
            return

        if summary is None and self._coordinator.state is IndexState.INDEXING:
            # Another pass started between the check and the call
            self.schedule()
            return
        self.updates_run += 1
        if summary is not None:
            logger.info("[watcher] Updated %d files, removed %d",
                        summary["files"], summary["removed"])


class _WatchdogAdapter(FileSystemEventHandler):
    def __init__(self, handler: IndexFileHandler) -> None:
        super().__init__()
        self._h = handler

    def on_modified(self, event):
        self._h.on_modified(event)

    def on_created(self, event):
        self._h.on_created(event)

    def on_deleted(self, event):
        self._h.on_deleted(event)

    def on_moved(self, event):
        self._h.on_moved(event)


class IndexWatcher:
    """
    Watches folders and keeps the coordinator's index up to date.

    Usage::

        watcher = IndexWatcher(coordinator, config.resolve_folders())
        watcher.start_background()
        ...
        watcher.stop()

    Parameters
    ----------
    coordinator:
        Configured :class:`~codesearch.kb.local.indexer.IndexCoordinator`.
    folders:
        Folders to watch (recursively).
    debounce_seconds:
        See :class:`IndexFileHandler`.
    """

    def __init__(self, coordinator, folders: list[str], debounce_seconds: float = 2.0) -> None:
        self._folders = [os.path.abspath(f) for f in folders]
        self.handler = IndexFileHandler(coordinator, self._folders, debounce_seconds)
        self._observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start_background(self) -> None:
        """Start observing; events are handled on watchdog's thread."""
        if self._observer is not None:
            return
        observer = Observer()
        adapter = _WatchdogAdapter(self.handler)
        for folder in self._folders:
            if not os.path.isdir(folder):
                logger.warning("[watcher] Folder does not exist, not watching: %s", folder)
                continue
            observer.schedule(adapter, folder, recursive=True)
            logger.info("[watcher] Watching %s", folder)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def start(self) -> None:
        """
        Start watching and block until :meth:`stop` is called or the
        process is interrupted.
        """
        self.start_background()
        observer = self._observer
        try:
            while observer.is_alive():
                observer.join(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the observer and discard any pending update."""
        self.handler.close()
        if self._observer is not None:
            self._observer.stop()
            if self._observer.is_alive():
                self._observer.join(timeout=5)
            self._observer = None
            logger.info("[watcher] Stopped")

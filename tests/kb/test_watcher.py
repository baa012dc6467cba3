"""
Unit tests for codesearch.kb.local.watcher

The debounce handler is driven with real watchdog event objects against a
mocked coordinator; one test runs the full observer against a real index.
"""

from __future__ import annotations

import os
import time
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from codesearch.kb.local.indexer import IndexCoordinator, IndexState
from codesearch.kb.local.scanner import Scanner
from codesearch.kb.local.watcher import IndexFileHandler, IndexWatcher

DEBOUNCE = 0.05


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def coordinator():
    coord = MagicMock()
    coord.scanner = Scanner([".cs"], ["/Editor/"])
    coord.state = IndexState.READY
    coord.incremental_update.return_value = {"files": 1, "removed": 0}
    return coord


@pytest.fixture
def handler(tmp_path, coordinator):
    h = IndexFileHandler(coordinator, [str(tmp_path)], debounce_seconds=DEBOUNCE)
    yield h
    h.close()


# ---------------------------------------------------------------------------
# Relevance filtering
# ---------------------------------------------------------------------------

class TestRelevance:

    def test_tracked_file_is_relevant(self, tmp_path, handler):
        assert handler.is_relevant(str(tmp_path / "Assets" / "Player.cs"))

    @pytest.mark.parametrize("rel", ["notes.txt", "Assets/Editor/Tool.cs"])
    def test_untracked_or_excluded(self, tmp_path, handler, rel):
        assert not handler.is_relevant(str(tmp_path / rel))

    def test_outside_watched_folder(self, tmp_path, handler):
        assert not handler.is_relevant(os.path.join(os.path.dirname(str(tmp_path)), "Other.cs"))

    def test_directory_events_are_ignored(self, tmp_path, handler):
        handler.on_modified(DirModifiedEvent(str(tmp_path / "Assets")))
        assert not handler.pending

    def test_irrelevant_event_does_not_schedule(self, tmp_path, handler):
        handler.on_modified(FileModifiedEvent(str(tmp_path / "readme.md")))
        assert not handler.pending


# ---------------------------------------------------------------------------
# Debounce and scheduling
# ---------------------------------------------------------------------------

class TestScheduling:

    def test_burst_of_events_triggers_one_update(self, tmp_path, handler, coordinator):
        path = str(tmp_path / "Player.cs")
        handler.on_created(FileCreatedEvent(path))
        handler.on_modified(FileModifiedEvent(path))
        handler.on_modified(FileModifiedEvent(path))
        assert handler.pending

        assert _wait_for(lambda: handler.updates_run == 1)
        coordinator.incremental_update.assert_called_once()
        (folders,), _ = coordinator.incremental_update.call_args
        assert folders == [str(tmp_path).replace("\\", "/")]
        assert not handler.pending

    def test_delete_and_move_are_relevant(self, tmp_path, handler, coordinator):
        handler.on_deleted(FileDeletedEvent(str(tmp_path / "Old.cs")))
        handler.on_moved(FileMovedEvent(str(tmp_path / "A.cs"), str(tmp_path / "B.cs")))
        assert _wait_for(lambda: handler.updates_run == 1)

    def test_busy_coordinator_reschedules(self, tmp_path, handler, coordinator):
        coordinator.state = IndexState.INDEXING
        handler.on_modified(FileModifiedEvent(str(tmp_path / "Player.cs")))

        time.sleep(DEBOUNCE * 4)
        coordinator.incremental_update.assert_not_called()

        coordinator.state = IndexState.READY
        assert _wait_for(lambda: coordinator.incremental_update.called)

    def test_close_cancels_pending_update(self, tmp_path, handler, coordinator):
        handler.on_modified(FileModifiedEvent(str(tmp_path / "Player.cs")))
        handler.close()
        time.sleep(DEBOUNCE * 4)
        coordinator.incremental_update.assert_not_called()
        handler.schedule()
        assert not handler.pending

    def test_update_failure_is_logged_not_raised(self, tmp_path, handler, coordinator):
        coordinator.incremental_update.side_effect = RuntimeError("boom")
        handler.on_modified(FileModifiedEvent(str(tmp_path / "Player.cs")))
        assert _wait_for(lambda: coordinator.incremental_update.called)
        assert handler.updates_run == 0


# ---------------------------------------------------------------------------
# Observer integration
# ---------------------------------------------------------------------------

class TestIndexWatcher:

    def test_stop_before_start_is_safe(self, tmp_path, coordinator):
        watcher = IndexWatcher(coordinator, [str(tmp_path)])
        watcher.stop()
        assert not watcher.is_running

    def test_new_file_is_indexed(self, project, make_config):
        coord = IndexCoordinator(make_config())
        coord.rebuild_index()
        assert coord.file_count == 2

        watcher = IndexWatcher(coord, [str(project)], debounce_seconds=DEBOUNCE)
        watcher.start_background()
        try:
            assert watcher.is_running
            (project / "Assets" / "Scripts" / "Enemy.cs").write_text(
                "public class Enemy\n{\n}\n", encoding="utf-8")
            assert _wait_for(lambda: coord.file_count == 3, timeout=10)
        finally:
            watcher.stop()
        assert not watcher.is_running

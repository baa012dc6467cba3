"""
Unit tests for codesearch.kb.cli

Each command is run through ``main`` against the sample project with a
YAML settings file; the inference provider is disabled.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest
import yaml

from codesearch.kb.cli import _build_parser, _run_with_progress, main


@pytest.fixture
def config_file(project, tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "project_root": str(project),
        "provider": "none",
    }), encoding="utf-8")
    return str(path)


def _run(config_file, *argv):
    main(["--config", config_file, *argv])


class TestParser:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args([])

    def test_search_defaults(self):
        args = _build_parser().parse_args(["search", "move player"])
        assert args.query == "move player"
        assert args.top_k is None

    def test_ask_flags(self):
        args = _build_parser().parse_args(["ask", "why", "--no-llm", "--top-k", "2"])
        assert args.no_llm
        assert args.top_k == 2


class TestCommands:

    def test_index_prints_summary(self, config_file, project, capsys):
        _run(config_file, "index")
        out = capsys.readouterr().out
        assert f"Indexing project: {project}" in out
        assert "Index complete:" in out
        assert "Files:   2" in out
        assert (project / ".codesearch" / "logs").is_dir()

    def test_update_after_index(self, config_file, capsys):
        _run(config_file, "index")
        _run(config_file, "update")
        out = capsys.readouterr().out
        assert "Update complete:" in out
        assert "Files:   0" in out

    def test_status(self, config_file, capsys):
        _run(config_file, "index")
        capsys.readouterr()
        _run(config_file, "status")
        out = capsys.readouterr().out
        assert "Code Index Status" in out
        assert "state" in out and "ready" in out

    def test_search(self, config_file, capsys):
        _run(config_file, "index")
        capsys.readouterr()
        _run(config_file, "search", "move the player", "--top-k", "3")
        out = capsys.readouterr().out
        assert "Results for 'move the player'" in out
        assert "PlayerController" in out
        assert "Assets/Scripts/PlayerController.cs:" in out

    def test_search_uses_configured_top_k(self, config_file, monkeypatch, capsys):
        _run(config_file, "index")
        capsys.readouterr()
        monkeypatch.setenv("CODESEARCH_TOP_K", "1")
        monkeypatch.setenv("CODESEARCH_RELEVANCE_THRESHOLD", "0")
        _run(config_file, "search", "move the player")
        assert "[1 result(s)]" in capsys.readouterr().out

    def test_search_without_index_exits(self, config_file, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(config_file, "search", "move")
        assert exc.value.code == 1
        assert "No index found" in capsys.readouterr().err

    def test_ask_without_llm_prints_report(self, config_file, capsys):
        _run(config_file, "index")
        capsys.readouterr()
        _run(config_file, "ask", "How do I move the player?", "--no-llm")
        out = capsys.readouterr().out
        assert out.startswith('## Search Results for: "How do I move the player?"')

    def test_ask_streams_service_output(self, config_file, capsys):
        _run(config_file, "index")
        capsys.readouterr()

        service = MagicMock()
        service.is_ready.return_value = True

        def _infer(prompt, on_text, cancel_event):
            on_text("Call ")
            on_text("MovePlayer.")
            return "Call MovePlayer."

        service.start_inference.side_effect = _infer
        with patch("codesearch.llm.create_inference_service", return_value=service):
            _run(config_file, "ask", "How do I move the player?")

        assert capsys.readouterr().out == "Call MovePlayer.\n"

    def test_ask_unknown_provider_exits(self, config_file, monkeypatch, capsys):
        _run(config_file, "index")
        monkeypatch.setenv("CODESEARCH_PROVIDER", "gpt-cloud")
        with pytest.raises(SystemExit):
            _run(config_file, "ask", "anything")
        assert "Unknown provider" in capsys.readouterr().err

    def test_clear(self, config_file, capsys):
        _run(config_file, "index")
        _run(config_file, "clear")
        assert "Index cleared." in capsys.readouterr().out
        with pytest.raises(SystemExit):
            _run(config_file, "search", "move")


class TestProgressRunner:

    def test_interrupt_requests_cooperative_cancel(self, monkeypatch):
        stopped = threading.Event()
        coordinator = MagicMock()
        coordinator.cancel_indexing.side_effect = stopped.set

        def _pass():
            stopped.wait(5)
            return None

        real_join = threading.Thread.join
        interrupted = []

        def _join(self, timeout=None):
            if not interrupted:
                interrupted.append(True)
                raise KeyboardInterrupt
            return real_join(self, timeout)

        monkeypatch.setattr(threading.Thread, "join", _join)
        assert _run_with_progress(coordinator, "Indexing", _pass) is None
        coordinator.cancel_indexing.assert_called_once()
        coordinator.remove_progress_listener.assert_called_once()

    def test_returns_pass_summary(self):
        coordinator = MagicMock()
        summary = {"files": 1}
        assert _run_with_progress(coordinator, "Updating", lambda: summary) is summary

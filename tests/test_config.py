"""
Unit tests for codesearch.config
"""

from __future__ import annotations

import os

import pytest

from codesearch.config import Config


class TestDefaults:

    def test_built_in_defaults(self):
        config = Config()
        assert config.PROJECT_ROOT == os.path.abspath(".")
        assert config.FILE_EXTENSIONS == [".cs"]
        assert "/Library/" in config.EXCLUDE_PATTERNS
        assert config.MAX_INDEXED_FILES == 5000
        assert config.EMBEDDING_DIM == 384
        assert config.TOP_K == 3
        assert config.RELEVANCE_THRESHOLD == pytest.approx(0.25)
        assert config.AUTO_REINDEX is False
        assert config.PROVIDER == "ollama"


class TestSources:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / ".codesearch.yaml"
        path.write_text(
            "project_root: {}\n"
            "top_k: 7\n"
            "file_extensions: [cs, .Shader]\n"
            "provider: LM_Studio\n".format(tmp_path),
            encoding="utf-8",
        )
        config = Config.load(str(path))
        assert config.PROJECT_ROOT == str(tmp_path)
        assert config.TOP_K == 7
        assert config.FILE_EXTENSIONS == [".cs", ".shader"]
        assert config.PROVIDER == "lm_studio"

    def test_missing_explicit_file_uses_defaults(self, tmp_path):
        config = Config.load(str(tmp_path / "nope.yaml"))
        assert config.TOP_K == 3

    def test_invalid_yaml_is_ignored(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("top_k: [1, 2\n", encoding="utf-8")
        assert Config.load(str(path)).TOP_K == 3

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("CODESEARCH_TOP_K", "9")
        monkeypatch.setenv("CODESEARCH_AUTO_REINDEX", "true")
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434")
        config = Config({"top_k": 4, "auto_reindex": False})
        assert config.TOP_K == 9
        assert config.AUTO_REINDEX is True
        assert config.OLLAMA_BASE_URL == "http://gpu-box:11434"

    def test_comma_separated_lists(self, monkeypatch):
        monkeypatch.setenv("CODESEARCH_INDEXED_FOLDERS", "Assets, Packages/Local ,")
        assert Config().INDEXED_FOLDERS == ["Assets", "Packages/Local"]


class TestPaths:

    def test_resolve_folders(self, tmp_path):
        config = Config({"project_root": str(tmp_path), "indexed_folders": ["Assets", "/abs"]})
        assert config.resolve_folders() == [str(tmp_path / "Assets"), "/abs"]
        assert config.resolve_folders(["Other/.."]) == [str(tmp_path)]

    def test_index_path(self, tmp_path):
        config = Config({"project_root": str(tmp_path)})
        assert config.index_path() == os.path.join(str(tmp_path), ".codesearch/index")
        assert Config({"index_dir": "/var/idx"}).index_path() == "/var/idx"

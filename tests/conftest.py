"""Shared fixtures for the codesearch test suite."""

from __future__ import annotations

import os
import textwrap

import pytest

from codesearch.config import Config


PLAYER_CONTROLLER = textwrap.dedent("""\
    using UnityEngine;

    /// <summary>
    /// Moves the player character.
    /// </summary>
    public class PlayerController : MonoBehaviour
    {
        public float Speed { get; set; }

        /// <summary>Moves the player by the given direction.</summary>
        public void MovePlayer(Vector3 direction)
        {
            transform.position += direction * Speed * Time.deltaTime;
        }

        void Update()
        {
            MovePlayer(new Vector3(Input.GetAxis("Horizontal"), 0, 0));
        }
    }
""")

SAVE_MANAGER = textwrap.dedent("""\
    using System.IO;

    public class SaveManager
    {
        public void SaveGame(string path)
        {
            try
            {
                File.WriteAllText(path, "data");
            }
            catch (IOException e)
            {
                Debug.LogError(e.Message);
            }
        }
    }
""")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep CODESEARCH_* variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("CODESEARCH_") or key in ("OLLAMA_BASE_URL", "LM_STUDIO_BASE_URL"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_config(tmp_path):
    """Factory for a Config rooted at ``tmp_path``."""
    def _make(**overrides) -> Config:
        data = {"project_root": str(tmp_path), "provider": "none"}
        data.update(overrides)
        return Config(data)
    return _make


@pytest.fixture
def project(tmp_path):
    """A small project tree with two scripts."""
    scripts = tmp_path / "Assets" / "Scripts"
    scripts.mkdir(parents=True)
    (scripts / "PlayerController.cs").write_text(PLAYER_CONTROLLER, encoding="utf-8")
    (scripts / "SaveManager.cs").write_text(SAVE_MANAGER, encoding="utf-8")
    return tmp_path


@pytest.fixture
def player_source():
    return PLAYER_CONTROLLER


@pytest.fixture
def save_source():
    return SAVE_MANAGER

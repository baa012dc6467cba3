"""
Configuration — loads settings from .codesearch.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).

The resulting :class:`Config` is passed explicitly into the index coordinator
and the retrieval pipeline; nothing in the core reads settings globally.
"""

import os

import yaml


_DEFAULTS = {
    "project_root": ".",
    "index_dir": ".codesearch/index",
    "indexed_folders": ["."],
    "file_extensions": [".cs"],
    "exclude_patterns": [
        "/.git/",
        "/.codesearch/",
        "/Library/",
        "/Temp/",
        "/obj/",
        "/bin/",
        "/Plugins/",
        "/ThirdParty/",
        "/node_modules/",
    ],
    "max_indexed_files": 5000,
    "max_chunk_tokens": 512,
    "chunk_overlap_tokens": 50,
    "embedding_dim": 384,
    "top_k": 3,
    "relevance_threshold": 0.25,
    "recency_full_days": 7,
    "recency_max_days": 90,
    "max_context_chars": 4000,
    "max_unit_chars": 600,
    "auto_reindex": False,
    "watch_debounce_seconds": 2.0,
    "provider": "ollama",
    "model": "qwen2.5-coder:7b",
    "ollama_base_url": "http://localhost:11434",
    "lm_studio_base_url": "http://localhost:1234/v1",
    "llm_timeout": 120.0,
    "log_dir": ".codesearch/logs",
}

# Config file search locations
_CONFIG_FILENAMES = [".codesearch.yaml", ".codesearch.yml"]

_ENV_PREFIX = "CODESEARCH_"


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    # Search CWD first, then home directory
    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _as_list(value) -> list[str]:
    """Accept a YAML list or a comma-separated string."""
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``CODESEARCH_<KEY>``)
    3. .codesearch.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(yaml_key: str, cast=str, env_key: str | None = None):
            env_val = os.getenv(env_key or _ENV_PREFIX + yaml_key.upper())
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return _DEFAULTS[yaml_key]

        def _get_bool(yaml_key: str) -> bool:
            env_val = os.getenv(_ENV_PREFIX + yaml_key.upper())
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return _DEFAULTS[yaml_key]

        self.PROJECT_ROOT: str = os.path.abspath(_get("project_root"))
        self.INDEX_DIR: str = _get("index_dir")

        self.INDEXED_FOLDERS: list[str] = _get("indexed_folders", cast=_as_list)
        self.FILE_EXTENSIONS: list[str] = [
            e.lower() if e.startswith(".") else "." + e.lower()
            for e in _get("file_extensions", cast=_as_list)
        ]
        self.EXCLUDE_PATTERNS: list[str] = _get("exclude_patterns", cast=_as_list)

        # Indexing limits
        self.MAX_INDEXED_FILES = _get("max_indexed_files", cast=int)
        self.MAX_CHUNK_TOKENS = _get("max_chunk_tokens", cast=int)
        self.CHUNK_OVERLAP_TOKENS = _get("chunk_overlap_tokens", cast=int)
        self.EMBEDDING_DIM = _get("embedding_dim", cast=int)

        # Retrieval
        self.TOP_K = _get("top_k", cast=int)
        self.RELEVANCE_THRESHOLD = _get("relevance_threshold", cast=float)
        self.RECENCY_FULL_DAYS = _get("recency_full_days", cast=float)
        self.RECENCY_MAX_DAYS = _get("recency_max_days", cast=float)
        self.MAX_CONTEXT_CHARS = _get("max_context_chars", cast=int)
        self.MAX_UNIT_CHARS = _get("max_unit_chars", cast=int)

        # Auto re-index on file changes
        self.AUTO_REINDEX = _get_bool("auto_reindex")
        self.WATCH_DEBOUNCE_SECONDS = _get("watch_debounce_seconds", cast=float)

        # Inference collaborator
        self.PROVIDER = _get("provider").lower()
        self.MODEL = _get("model")
        self.OLLAMA_BASE_URL = _get("ollama_base_url", env_key="OLLAMA_BASE_URL")
        self.LM_STUDIO_BASE_URL = _get("lm_studio_base_url",
                                       env_key="LM_STUDIO_BASE_URL")
        self.LLM_TIMEOUT = _get("llm_timeout", cast=float)

        self.LOG_DIR = _get("log_dir")

    def resolve_folders(self, folders: list[str] | None = None) -> list[str]:
        """Return *folders* (or the configured ones) as absolute paths."""
        result = []
        for folder in folders or self.INDEXED_FOLDERS:
            if os.path.isabs(folder):
                result.append(folder)
            else:
                result.append(os.path.normpath(os.path.join(self.PROJECT_ROOT, folder)))
        return result

    def index_path(self) -> str:
        """Absolute directory holding the persisted cache and vector files."""
        if os.path.isabs(self.INDEX_DIR):
            return self.INDEX_DIR
        return os.path.join(self.PROJECT_ROOT, self.INDEX_DIR)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)

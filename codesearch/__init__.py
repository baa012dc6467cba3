"""
codesearch — local, incremental semantic code index and retrieval.

Public API for library usage::

    from codesearch import Config, IndexCoordinator, RetrievalOrchestrator

    config = Config.load()
    index = IndexCoordinator(config)
    index.rebuild_index()
    print(RetrievalOrchestrator(index, config=config).query_with_context(
        "how do I move the player"))
"""

from .config import Config
from .kb.local.indexer import IndexCoordinator, IndexState
from .kb.local.rag import RetrievalOrchestrator

__all__ = ["Config", "IndexCoordinator", "IndexState", "RetrievalOrchestrator"]

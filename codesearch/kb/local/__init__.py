"""
Local Knowledge Base — per-project semantic code index.

Indexing:  scanner -> parser -> chunker -> embedder -> vector_store / index_cache
Retrieval: query_processor -> hybrid_search -> reranker -> rag
"""

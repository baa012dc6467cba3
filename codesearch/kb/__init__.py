"""
Knowledge Base package for codesearch.

The local KB scans a source tree, extracts structural code units, embeds
them and answers natural-language queries with ranked code passages.
"""

__version__ = "1.0.0"

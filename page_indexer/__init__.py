"""
page-indexer - Reasoning-based hierarchical document index

Builds a table-of-contents tree over a paginated document from an LLM's
structure analysis, persists it, and answers queries by letting the LLM
reason over the tree outline instead of over embeddings.
"""

__version__ = "0.1.0"

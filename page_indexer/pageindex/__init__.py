"""
PageIndex Module - Vectorless, Reasoning-based Retrieval

- Tree index generation from LLM structure analysis
- LLM-based tree search over the index outline
- Persistent tree storage (JSON or MessagePack)
"""

from .document import Document
from .tree_generator import DocumentTree, SourceMetadata, TreeGenerator, TreeNode
from .tree_searcher import Relevance, SearchOutcome, SearchResult, TreeSearcher
from .tree_store import TreeFormat, load_tree, save_tree

__all__ = [
    "Document",
    "DocumentTree",
    "SourceMetadata",
    "TreeGenerator",
    "TreeNode",
    "Relevance",
    "SearchOutcome",
    "SearchResult",
    "TreeSearcher",
    "TreeFormat",
    "load_tree",
    "save_tree",
]

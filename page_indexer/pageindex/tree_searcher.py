"""
Tree Searcher - LLM Reasoning-based Tree Search

Ranks document sections against a query by letting the LLM reason over the
tree outline in a single call, then validates every reference it returns
against the tree before anything reaches the caller.

Search process:
    1. Serialize the tree into a bounded outline (every node, always)
    2. One LLM call: outline + query → ranked section references
    3. Resolve references by id, falling back to title matching
    4. Drop unresolvable references (recorded as warnings), deduplicate
    5. Filter below the minimum tier, stable sort by tier, truncate to top-k
    6. Optionally attach page content from the source Document

Design decisions:
    - Async throughout (agenerate for the LLM call)
    - Results reference nodes by id only and copy page ranges from the tree,
      never from the model
    - One bad entry degrades the result set; it never fails the search
    - Content extraction failures are recorded per result
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .tree_generator import DocumentTree, TreeNode, normalize_title
from ..core.config import settings
from ..core.errors import ContentExtractionError, EmptyTree, ResponseUnparseable
from ..llm.groq_client import SYSTEM_DOCUMENT_ANALYZER
from ..llm.response_parsing import parse_json_payload
from ..observability.logging import get_logger

logger = get_logger(__name__)

if TYPE_CHECKING:
    from ..llm.groq_client import GroqClient
    from .document import Document


# ──────────────────────────────────────────────────────────────
# Data classes
# ──────────────────────────────────────────────────────────────


class Relevance(str, Enum):
    """Coarse relevance tier assigned by the reasoning step."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: 0 for High, 2 for Low."""
        return _RELEVANCE_RANK[self]

    @classmethod
    def parse(cls, value: object) -> Optional[Relevance]:
        """Case-insensitive lookup; ``None`` for anything else."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_RELEVANCE_RANK = {Relevance.HIGH: 0, Relevance.MEDIUM: 1, Relevance.LOW: 2}


@dataclass
class SearchResult:
    """
    One ranked section.

    Attributes:
        node_id: Id of the matched TreeNode (lookup key, not a reference).
        title: Section title, copied from the tree.
        relevance: Relevance tier.
        start_index: First page (inclusive), copied from the tree.
        end_index: Last page (inclusive), copied from the tree.
        reason: The model's justification.
        content: Section text, when content was requested and available.
        content_error: Why content could not be extracted, if it failed.
    """

    node_id: int
    title: str
    relevance: Relevance
    start_index: int
    end_index: int
    reason: str = ""
    content: Optional[str] = None
    content_error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "node_id": self.node_id,
            "title": self.title,
            "relevance": self.relevance.value,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "reason": self.reason,
            "content": self.content,
        }
        if self.content_error:
            data["content_error"] = self.content_error
        return data


@dataclass
class SearchOutcome:
    """
    Ranked results plus what was dropped along the way.

    Iterating yields the results in rank order.

    Attributes:
        query: The query that was searched.
        results: Up to top-k results, highest relevance first.
        warnings: Entries from the model that were dropped, and why.
        reasoning: The model's ``thinking`` field, if it supplied one.
        elapsed_ms: Wall-clock time of the search.
    """

    query: str
    results: list[SearchResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    reasoning: str = ""
    elapsed_ms: float = 0.0

    def __iter__(self) -> Iterator[SearchResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "results": [result.to_dict() for result in self.results],
            "warnings": list(self.warnings),
            "reasoning": self.reasoning,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


# ──────────────────────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────────────────────

_TREE_SEARCH_PROMPT = """You are given a question and the table of contents of a document.
Each line of the outline is one section: its id in square brackets, its title, and its page range.
Subsections are indented under their parent section.

Find the sections most likely to contain the answer. Rank them from most to least relevant.

Question: {query}

Document outline:
{outline}

Reply with ONLY a JSON object in this exact format:
{{
    "thinking": "<your reasoning about where the answer is>",
    "relevant_sections": [
        {{
            "node_id": <id from the outline>,
            "title": "<section title>",
            "relevance": "high" | "medium" | "low",
            "reason": "<why this section is relevant>"
        }}
    ]
}}
Return an empty "relevant_sections" list if no section is relevant."""


# ──────────────────────────────────────────────────────────────
# Outline serialization
# ──────────────────────────────────────────────────────────────


def serialize_outline(tree: DocumentTree, max_chars: int) -> str:
    """
    Render the tree as an indented outline for the search prompt.

    Summaries are included while the outline fits in ``max_chars``. Above the
    bound they are omitted, but every node's id, title and range is kept even
    if that still exceeds the bound.
    """
    full = _render_outline(tree, with_summaries=True)
    if len(full) <= max_chars:
        return full

    compact = _render_outline(tree, with_summaries=False)
    if len(compact) > max_chars:
        logger.warning(
            "tree_searcher.outline_over_budget",
            outline_chars=len(compact),
            max_chars=max_chars,
            node_count=tree.node_count(),
        )
    return compact


def _render_outline(tree: DocumentTree, with_summaries: bool) -> str:
    lines = []
    stack = [(node, 0) for node in reversed(tree.roots)]
    while stack:
        node, depth = stack.pop()
        indent = "  " * depth
        lines.append(
            f"{indent}[{node.id}] {node.title} (pages {node.start_index}-{node.end_index})"
        )
        if with_summaries and node.summary:
            lines.append(f"{indent}    Summary: {node.summary}")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return "\n".join(lines)


# ──────────────────────────────────────────────────────────────
# Response parsing and resolution
# ──────────────────────────────────────────────────────────────

_LEADING_NUMBERING_RE = re.compile(r"^\s*\d+(?:\.\d+)*\.?\s+")


class _RawRankedSection(BaseModel):
    """Shape accepted for one entry of ``relevant_sections``."""

    model_config = ConfigDict(extra="ignore")

    node_id: Optional[Union[int, str]] = None
    title: Optional[str] = None
    relevance: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class RankedReference:
    """A parsed ranking entry before it is resolved against the tree."""

    node_id: Optional[int]
    title: Optional[str]
    relevance: Relevance
    reason: str

    def describe(self) -> str:
        if self.node_id is not None and self.title:
            return f"node {self.node_id} ({self.title!r})"
        if self.node_id is not None:
            return f"node {self.node_id}"
        return repr(self.title)


def parse_ranked_references(response: str) -> tuple[list[RankedReference], list[str], str]:
    """
    Parse a search completion into ranked references.

    Returns:
        (references in model order, warnings for skipped entries, thinking)

    Raises:
        ResponseUnparseable: The completion is not JSON of the expected shape,
            or it listed entries but none could be read.
    """
    payload = parse_json_payload(response, ResponseUnparseable)

    thinking = ""
    if isinstance(payload, dict):
        if not isinstance(payload.get("relevant_sections"), list):
            raise ResponseUnparseable(
                "Search response has no 'relevant_sections' list", raw_text=response
            )
        raw_thinking = payload.get("thinking")
        thinking = raw_thinking if isinstance(raw_thinking, str) else ""
        entries = payload["relevant_sections"]
    elif isinstance(payload, list):
        entries = payload
    else:
        raise ResponseUnparseable(
            f"Expected a JSON object or array, got {type(payload).__name__}",
            raw_text=response,
        )

    references: list[RankedReference] = []
    warnings: list[str] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            warnings.append(f"Entry {position} is not an object: {entry!r}")
            continue
        try:
            raw = _RawRankedSection.model_validate(entry)
        except ValidationError as exc:
            warnings.append(f"Entry {position} is malformed: {exc.errors()[0]['msg']}")
            continue

        relevance = Relevance.parse(raw.relevance)
        if relevance is None:
            warnings.append(f"Entry {position} has unknown relevance {raw.relevance!r}")
            continue

        node_id = _coerce_node_id(raw.node_id)
        title = raw.title.strip() if raw.title and raw.title.strip() else None
        if node_id is None and title is None:
            warnings.append(f"Entry {position} names no node id or title")
            continue

        references.append(
            RankedReference(
                node_id=node_id,
                title=title,
                relevance=relevance,
                reason=(raw.reason or "").strip(),
            )
        )

    if entries and not references:
        raise ResponseUnparseable(
            f"None of the {len(entries)} ranked entries could be read", raw_text=response
        )
    return references, warnings, thinking


def _coerce_node_id(value: Union[int, str, None]) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip().strip("[]")
        if stripped.isdigit():
            return int(stripped)
    return None


def _strip_numbering(title: str) -> str:
    return normalize_title(_LEADING_NUMBERING_RE.sub("", title))


def resolve_reference(tree: DocumentTree, reference: RankedReference) -> Optional[TreeNode]:
    """
    Find the node a ranking entry refers to.

    Exact id first; otherwise the first node (pre-order) whose title matches
    ignoring case and spacing, then ignoring leading section numbers.
    """
    if reference.node_id is not None:
        node = tree.find_by_id(reference.node_id)
        if node is not None:
            return node

    if not reference.title:
        return None

    node = tree.find_by_title(reference.title)
    if node is not None:
        return node

    wanted = _strip_numbering(reference.title)
    if not wanted:
        return None
    for candidate in tree.iter_nodes():
        if _strip_numbering(candidate.title) == wanted:
            return candidate
    return None


def rank_results(
    tree: DocumentTree,
    references: list[RankedReference],
    top_k: int,
    min_relevance: Relevance = Relevance.LOW,
) -> tuple[list[SearchResult], list[str]]:
    """
    Resolve, deduplicate, filter, order and truncate ranked references.

    Results below ``min_relevance`` are left out silently; they are not
    warnings.

    Returns:
        (at most ``top_k`` results, warnings for dropped references)
    """
    warnings: list[str] = []
    seen: set[int] = set()
    resolved: list[SearchResult] = []

    for reference in references:
        node = resolve_reference(tree, reference)
        if node is None:
            warnings.append(f"Unresolvable reference {reference.describe()} dropped")
            continue
        if node.id in seen:
            continue
        seen.add(node.id)
        resolved.append(
            SearchResult(
                node_id=node.id,
                title=node.title,
                relevance=reference.relevance,
                start_index=node.start_index,
                end_index=node.end_index,
                reason=reference.reason,
            )
        )

    kept = [result for result in resolved if result.relevance.rank <= min_relevance.rank]
    # sorted() is stable: model order survives within a tier.
    ordered = sorted(kept, key=lambda result: result.relevance.rank)
    return ordered[:top_k], warnings


def attach_content(results: list[SearchResult], document: Optional[Document]) -> None:
    """Fill ``content`` for each result, recording failures per result."""
    for result in results:
        if document is None:
            result.content_error = "No source document available"
            continue
        try:
            result.content = document.content_range(result.start_index, result.end_index)
        except ContentExtractionError as exc:
            result.content = None
            result.content_error = str(exc)
            logger.warning(
                "tree_searcher.content_extraction_failed",
                node_id=result.node_id,
                start_index=result.start_index,
                end_index=result.end_index,
                error=str(exc),
            )


# ──────────────────────────────────────────────────────────────
# Core Searcher
# ──────────────────────────────────────────────────────────────


class TreeSearcher:
    """
    Reasoning-based search over a DocumentTree.

    Safe to share across concurrent searches: it holds no per-search state.

    Args:
        llm: GroqClient (or anything with a compatible ``agenerate``).
        model: Model override; defaults to ``settings.llm_model``.
        top_k: Default result count; defaults to ``settings.search_top_k``.
        min_relevance: Default lowest tier returned (Low keeps everything).
        outline_max_chars: Outline size bound; defaults to settings.
    """

    def __init__(
        self,
        llm: GroqClient,
        model: Optional[str] = None,
        top_k: Optional[int] = None,
        outline_max_chars: Optional[int] = None,
        min_relevance: Relevance = Relevance.LOW,
    ) -> None:
        self._llm = llm
        self._model = model or settings.llm_model
        self._top_k = top_k or settings.search_top_k
        self._outline_max_chars = outline_max_chars or settings.outline_max_chars
        self._min_relevance = min_relevance

    async def search(
        self,
        query: str,
        tree: DocumentTree,
        top_k: Optional[int] = None,
        document: Optional[Document] = None,
        include_content: bool = False,
        min_relevance: Optional[Relevance] = None,
    ) -> SearchOutcome:
        """
        Rank the sections of ``tree`` against ``query``.

        Args:
            query: Natural-language question.
            tree: Tree to search (not modified).
            top_k: Maximum number of results (default from constructor).
            document: Source document, used when ``include_content`` is set.
            include_content: Attach each result's page text.
            min_relevance: Lowest tier to return (default from constructor).

        Returns:
            SearchOutcome with up to ``top_k`` results, High before Medium
            before Low, model order preserved within a tier.

        Raises:
            EmptyTree: The tree has no nodes (the LLM is not called).
            ValueError: Blank query or ``top_k`` < 1.
            LlmUnavailable: The reasoning call failed.
            ResponseUnparseable: No ranked entries could be read.
        """
        k = self._top_k if top_k is None else top_k
        floor = self._min_relevance if min_relevance is None else min_relevance
        if k < 1:
            raise ValueError(f"top_k must be at least 1, got {k}")
        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        if tree.is_empty():
            raise EmptyTree("Document tree has no root nodes")

        start_time = time.time()
        logger.info(
            "tree_searcher.search.start",
            query=query[:100],
            node_count=tree.node_count(),
            top_k=k,
            min_relevance=floor.value,
            include_content=include_content,
        )

        prompt = _TREE_SEARCH_PROMPT.format(
            query=query.strip(),
            outline=serialize_outline(tree, self._outline_max_chars),
        )
        response = await self._llm.agenerate(
            prompt=prompt,
            model=self._model,
            system_prompt=SYSTEM_DOCUMENT_ANALYZER,
        )

        references, parse_warnings, thinking = parse_ranked_references(response)
        results, rank_warnings = rank_results(tree, references, k, floor)
        warnings = parse_warnings + rank_warnings
        for warning in warnings:
            logger.warning("tree_searcher.reference_dropped", detail=warning)

        if include_content:
            attach_content(results, document)

        outcome = SearchOutcome(
            query=query,
            results=results,
            warnings=warnings,
            reasoning=thinking,
            elapsed_ms=(time.time() - start_time) * 1000,
        )
        logger.info(
            "tree_searcher.search.complete",
            ranked=len(references),
            returned=len(results),
            dropped=len(warnings),
            elapsed_ms=round(outcome.elapsed_ms, 1),
        )
        return outcome

"""
Tree Generator - Hierarchical Tree Index from LLM Structure Analysis

Turns a paginated document into a table-of-contents tree whose page ranges
are guaranteed consistent, even though the structure comes from untrusted
model output.

This is the INGESTION component of the PageIndex pipeline:
    Document → Structure Prompt → LLM → TOC items → Tree → Store

Design decisions:
    - One LLM call per document; the model supplies only titles, levels and
      start pages, end pages are derived here
    - Raw TOC items are validated with pydantic at the boundary; a malformed
      item fails the whole build (blank-title artifacts are the one exception)
    - Nesting uses an explicit (level, node) frame stack, and every later pass
      is iterative, so model-declared depth never touches the recursion limit
    - Invariants are checked after construction and again on every load;
      violations are reported, never clamped away
    - Ids are sequential integers in depth-first pre-order
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.config import settings
from ..core.errors import InvalidStructure, InvariantViolation, ParseFailure
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


@dataclass
class TreeNode:
    """
    A single section in the document tree.

    Attributes:
        id: Unique integer id within the tree (depth-first pre-order).
        title: Section title as written in the document.
        level: Nesting depth (0 = top-level section).
        start_index: First page of the section (0-indexed, inclusive).
        end_index: Last page of the section (0-indexed, inclusive).
        children: Sub-sections in document order.
        summary: Optional short description of the section.
    """

    id: int
    title: str
    level: int
    start_index: int
    end_index: int
    children: list[TreeNode] = field(default_factory=list)
    summary: Optional[str] = None

    @property
    def page_span(self) -> int:
        """Number of pages covered by this section."""
        return self.end_index - self.start_index + 1

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> dict:
        """
        Convert tree node to dictionary for serialization.

        Returns:
            Dictionary representation including recursively serialized children.
        """
        return {
            "id": self.id,
            "title": self.title,
            "level": self.level,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "children": [child.to_dict() for child in self.children],
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TreeNode:
        """
        Create a TreeNode from a dictionary.

        Raises:
            KeyError: If required fields are missing.
            TypeError: If ``data`` or ``children`` has the wrong shape.
        """
        children = [cls.from_dict(child_data) for child_data in data.get("children", [])]
        return cls(
            id=data["id"],
            title=data["title"],
            level=data["level"],
            start_index=data["start_index"],
            end_index=data["end_index"],
            children=children,
            summary=data.get("summary"),
        )


@dataclass
class SourceMetadata:
    """Provenance of a tree: document title, page count, build time (ISO 8601)."""

    title: Optional[str] = None
    page_count: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "page_count": self.page_count,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SourceMetadata:
        return cls(
            title=data.get("title"),
            page_count=data.get("page_count"),
            created_at=data.get("created_at"),
        )


@dataclass
class DocumentTree:
    """
    Complete tree index for a single document.

    Treated as read-only once built; re-indexing produces a new tree.

    Attributes:
        roots: Top-level sections in document order.
        source_metadata: Where the tree came from, if known.
    """

    roots: list[TreeNode] = field(default_factory=list)
    source_metadata: Optional[SourceMetadata] = None

    @property
    def page_count(self) -> Optional[int]:
        return self.source_metadata.page_count if self.source_metadata else None

    @property
    def name(self) -> str:
        if self.source_metadata and self.source_metadata.title:
            return self.source_metadata.title
        return "untitled"

    def is_empty(self) -> bool:
        return not self.roots

    def iter_nodes(self) -> Iterator[TreeNode]:
        """Yield every node in depth-first pre-order."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())

    def max_depth(self) -> int:
        """Number of levels in the tree (0 for an empty tree)."""
        deepest = 0
        stack = [(node, 1) for node in self.roots]
        while stack:
            node, depth = stack.pop()
            deepest = max(deepest, depth)
            stack.extend((child, depth + 1) for child in node.children)
        return deepest

    def find_by_id(self, node_id: int) -> Optional[TreeNode]:
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None

    def find_by_title(self, title: str) -> Optional[TreeNode]:
        """First node (pre-order) whose title matches, ignoring case and spacing."""
        wanted = normalize_title(title)
        for node in self.iter_nodes():
            if normalize_title(node.title) == wanted:
                return node
        return None

    def format_outline(self) -> str:
        """Human-readable outline used by the ``show`` command."""
        pages = self.page_count if self.page_count is not None else "?"
        lines = [f"Document: {self.name} ({pages} pages, {self.node_count()} sections)"]
        stack = [(node, 1) for node in reversed(self.roots)]
        while stack:
            node, depth = stack.pop()
            lines.append(
                f"{'  ' * depth}{node.title} [pages {node.start_index}-{node.end_index}]"
            )
            stack.extend((child, depth + 1) for child in reversed(node.children))
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "roots": [node.to_dict() for node in self.roots],
            "source_metadata": (
                self.source_metadata.to_dict() if self.source_metadata else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> DocumentTree:
        """
        Create a DocumentTree from a dictionary.

        Raises:
            KeyError: If ``roots`` or a required node field is missing.
        """
        metadata = data.get("source_metadata")
        return cls(
            roots=[TreeNode.from_dict(node_data) for node_data in data["roots"]],
            source_metadata=SourceMetadata.from_dict(metadata) if metadata else None,
        )


@dataclass(frozen=True)
class TocItem:
    """One flat entry from structure extraction, before nesting."""

    title: str
    level: int
    start_index: int
    physical_index: Optional[str] = None


def normalize_title(title: str) -> str:
    return " ".join(title.split()).casefold()


# ──────────────────────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────────────────────

_STRUCTURE_PROMPT = """You are an expert in extracting hierarchical tree structure. Your task is to generate the table of contents of the document below.

The document has {page_count} pages. Each page is wrapped in tags like <physical_index_X> ... <physical_index_X>, where X is the 0-based page index (0 to {last_page}).

For each section and subsection, in document order, report:
- "structure": its hierarchy index, e.g. "1" for the first section, "1.2" for its second subsection
- "title": the original title from the text (only fix spacing inconsistencies)
- "level": nesting level, 1 for top-level sections, 2 for their subsections, and so on
- "physical_index": the tag of the page where the section starts, keeping the "<physical_index_X>" format

Reply with ONLY a JSON array in this exact format:
[
    {{
        "structure": "1",
        "title": "Section title",
        "level": 1,
        "physical_index": "<physical_index_0>"
    }}
]

Document:
{content}"""


# ──────────────────────────────────────────────────────────────
# Parsing model output
# ──────────────────────────────────────────────────────────────

_PHYSICAL_INDEX_RE = re.compile(r"^\s*<?\s*physical_index_(\d+)\s*>?\s*$")
_STRUCTURE_RE = re.compile(r"^\s*\d+(?:\.\d+)*\.?\s*$")


class _RawTocItem(BaseModel):
    """Shape accepted for one structure-extraction entry."""

    model_config = ConfigDict(extra="ignore")

    title: str
    level: Optional[int] = Field(default=None, ge=0)
    structure: Optional[str] = None
    start_index: Optional[int] = Field(default=None, ge=0)
    physical_index: Optional[Union[int, str]] = None
    page: Optional[int] = Field(default=None, ge=0)


def _is_blank_artifact(entry: object) -> bool:
    if not isinstance(entry, dict):
        return False
    title = entry.get("title")
    return title is None or (isinstance(title, str) and not title.strip())


def _resolve_start_page(raw: _RawTocItem) -> Optional[int]:
    if raw.start_index is not None:
        return raw.start_index
    if raw.physical_index is not None:
        if isinstance(raw.physical_index, int):
            return raw.physical_index if raw.physical_index >= 0 else None
        match = _PHYSICAL_INDEX_RE.match(raw.physical_index)
        if match:
            return int(match.group(1))
        if raw.physical_index.strip().isdigit():
            return int(raw.physical_index)
        return None
    return raw.page


def _resolve_level(raw: _RawTocItem) -> Optional[int]:
    if raw.level is not None:
        return raw.level
    if raw.structure is not None and _STRUCTURE_RE.match(raw.structure):
        return len(raw.structure.strip().rstrip(".").split("."))
    return None


def parse_toc_response(response: str) -> list[TocItem]:
    """
    Parse a structure-extraction completion into ordered TOC items.

    Accepts a bare JSON array or an object with a ``table_of_contents`` array.
    Entries with a blank or missing title are dropped as artifacts; any other
    malformed entry fails the whole parse.

    Raises:
        ParseFailure: The completion does not decode into TOC items.
    """
    payload = parse_json_payload(response, ParseFailure)

    if isinstance(payload, dict) and "table_of_contents" in payload:
        payload = payload["table_of_contents"]
    if not isinstance(payload, list):
        raise ParseFailure(
            f"Expected a JSON array of TOC entries, got {type(payload).__name__}",
            raw_text=response,
        )

    items: list[TocItem] = []
    for position, entry in enumerate(payload):
        if _is_blank_artifact(entry):
            logger.warning("tree_generator.toc_item_dropped", position=position, reason="blank title")
            continue
        if not isinstance(entry, dict):
            raise ParseFailure(
                f"TOC entry {position} is not an object: {entry!r}", raw_text=response
            )
        try:
            raw = _RawTocItem.model_validate(entry)
        except ValidationError as exc:
            raise ParseFailure(
                f"TOC entry {position} is malformed: {exc.errors()[0]['msg']}",
                raw_text=response,
            ) from exc

        start = _resolve_start_page(raw)
        if start is None:
            raise ParseFailure(
                f"TOC entry {position} ({raw.title!r}) has no usable start page",
                raw_text=response,
            )
        level = _resolve_level(raw)
        if level is None:
            raise ParseFailure(
                f"TOC entry {position} ({raw.title!r}) has no usable level",
                raw_text=response,
            )

        label = raw.physical_index if isinstance(raw.physical_index, str) else None
        items.append(
            TocItem(title=raw.title.strip(), level=level, start_index=start, physical_index=label)
        )

    return items


# ──────────────────────────────────────────────────────────────
# Tree construction
# ──────────────────────────────────────────────────────────────


def build_tree(items: list[TocItem], page_count: int) -> list[TreeNode]:
    """
    Nest flat TOC items into a validated forest with resolved page ranges.

    Args:
        items: TOC items in document order.
        page_count: Number of pages in the source document.

    Returns:
        Root nodes with ids assigned and every invariant checked.

    Raises:
        InvalidStructure: No items, or no pages to index.
        InvariantViolation: Resolved ranges are inconsistent.
    """
    if page_count < 1:
        raise InvalidStructure("Cannot build a tree for a document with no pages")
    if not items:
        raise InvalidStructure("No table-of-contents entries to build a tree from")

    top_level = min(item.level for item in items)
    roots: list[TreeNode] = []
    stack: list[tuple[int, TreeNode]] = []

    for item in items:
        while stack and stack[-1][0] >= item.level:
            stack.pop()

        node = TreeNode(
            id=-1,
            title=item.title,
            level=0,
            start_index=item.start_index,
            end_index=item.start_index,
        )
        if stack:
            parent = stack[-1][1]
            node.level = parent.level + 1
            parent.children.append(node)
        else:
            if item.level > top_level:
                logger.warning(
                    "tree_generator.implicit_root",
                    title=item.title,
                    declared_level=item.level,
                    top_level=top_level,
                )
            roots.append(node)
        stack.append((item.level, node))

    _resolve_end_indices(roots, page_count)
    assign_ids(roots)
    validate_tree(roots, page_count)
    return roots


def _resolve_end_indices(roots: list[TreeNode], page_count: int) -> None:
    """Derive end pages top-down from next-sibling starts and parent bounds."""
    pending: list[tuple[list[TreeNode], int]] = [(roots, page_count - 1)]
    while pending:
        siblings, upper = pending.pop()
        for position, node in enumerate(siblings):
            if position + 1 < len(siblings):
                next_start = siblings[position + 1].start_index
                # Sections sharing a start page end on that page, and so does a
                # section whose last subsection starts where the next one does.
                node.end_index = max(
                    node.start_index,
                    next_start - 1,
                    min(_last_descendant_start(node), next_start),
                )
            else:
                node.end_index = upper
            if node.children:
                pending.append((node.children, node.end_index))


def _last_descendant_start(node: TreeNode) -> int:
    while node.children:
        node = node.children[-1]
    return node.start_index


def assign_ids(roots: list[TreeNode]) -> None:
    """Number nodes 0..n-1 in depth-first pre-order."""
    next_id = 0
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        node.id = next_id
        next_id += 1
        stack.extend(reversed(node.children))


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_node(node: TreeNode, page_count: Optional[int], seen_ids: set) -> None:
    node_id = node.id if _is_int(node.id) else None
    if not _is_int(node.id) or node.id < 0:
        raise InvariantViolation(f"Node id must be a non-negative integer, got {node.id!r}", title=str(node.title))
    if node.id in seen_ids:
        raise InvariantViolation("Duplicate node id", node_id, node.title)
    seen_ids.add(node.id)

    if not isinstance(node.title, str):
        raise InvariantViolation("Title must be a string", node_id, repr(node.title))
    if node.summary is not None and not isinstance(node.summary, str):
        raise InvariantViolation("Summary must be a string or null", node_id, node.title)
    if not isinstance(node.children, list):
        raise InvariantViolation("Children must be a list", node_id, node.title)
    for name in ("level", "start_index", "end_index"):
        if not _is_int(getattr(node, name)):
            raise InvariantViolation(f"{name} must be an integer", node_id, node.title)

    if node.level < 0:
        raise InvariantViolation(f"Negative level {node.level}", node_id, node.title)
    if node.start_index < 0:
        raise InvariantViolation(f"Negative start page {node.start_index}", node_id, node.title)
    if node.start_index > node.end_index:
        raise InvariantViolation(
            f"Start page {node.start_index} is after end page {node.end_index}",
            node_id,
            node.title,
        )
    if page_count is not None and node.end_index > page_count - 1:
        raise InvariantViolation(
            f"End page {node.end_index} is beyond the last page {page_count - 1}",
            node_id,
            node.title,
        )


def _check_siblings(siblings: list[TreeNode]) -> None:
    for current, following in zip(siblings, siblings[1:]):
        if current.end_index > following.start_index:
            raise InvariantViolation(
                f"Section ends on page {current.end_index} after its next sibling "
                f"{following.title!r} starts on page {following.start_index}",
                current.id,
                current.title,
            )


def _check_child(parent: TreeNode, child: TreeNode) -> None:
    if child.level <= parent.level:
        raise InvariantViolation(
            f"Level {child.level} does not exceed parent level {parent.level}",
            child.id,
            child.title,
        )
    if child.start_index < parent.start_index or child.end_index > parent.end_index:
        raise InvariantViolation(
            f"Pages {child.start_index}-{child.end_index} fall outside parent "
            f"{parent.title!r} ({parent.start_index}-{parent.end_index})",
            child.id,
            child.title,
        )


def validate_tree(roots: list[TreeNode], page_count: Optional[int] = None) -> None:
    """
    Check every structural invariant of a tree.

    Args:
        roots: Top-level nodes.
        page_count: Document page count, when known.

    Raises:
        InvariantViolation: Identifying the first offending node.
    """
    if not isinstance(roots, list):
        raise InvariantViolation("Tree roots must be a list")

    seen_ids: set[int] = set()
    pending: list[tuple[Optional[TreeNode], list[TreeNode]]] = [(None, roots)]
    while pending:
        parent, siblings = pending.pop()
        for node in siblings:
            if not isinstance(node, TreeNode):
                raise InvariantViolation(f"Unexpected tree entry {node!r}")
            _check_node(node, page_count, seen_ids)
            if parent is not None:
                _check_child(parent, node)
        _check_siblings(siblings)
        for node in siblings:
            if node.children:
                pending.append((node, node.children))


# ──────────────────────────────────────────────────────────────
# Core Generator
# ──────────────────────────────────────────────────────────────


class TreeGenerator:
    """
    Generates a DocumentTree from a paginated Document with one LLM call.

    Args:
        llm: GroqClient (or anything with a compatible ``agenerate``).
        model: Model override; defaults to ``settings.llm_model``.
        max_chars_per_page: Per-page text cap inside the prompt.
    """

    def __init__(
        self,
        llm: GroqClient,
        model: Optional[str] = None,
        max_chars_per_page: Optional[int] = None,
    ) -> None:
        self._llm = llm
        self._model = model or settings.llm_model
        self._max_chars_per_page = max_chars_per_page or settings.max_chars_per_page

    async def generate_tree(self, document: Document) -> DocumentTree:
        """
        Build the tree index for ``document``.

        Returns:
            DocumentTree with validated page ranges and source metadata.

        Raises:
            LlmUnavailable: The structure-extraction call failed.
            ParseFailure: The completion could not be parsed into TOC items.
            InvalidStructure: The items cannot form a tree.
            InvariantViolation: The resolved page ranges are inconsistent.
        """
        start_time = time.time()
        logger.info(
            "tree_generator.generate_tree.start",
            document=document.name,
            page_count=document.page_count,
            model=self._model,
        )

        prompt = _STRUCTURE_PROMPT.format(
            page_count=document.page_count,
            last_page=document.page_count - 1,
            content=document.content_with_tags(self._max_chars_per_page),
        )
        response = await self._llm.agenerate(
            prompt=prompt,
            model=self._model,
            system_prompt=SYSTEM_DOCUMENT_ANALYZER,
        )

        items = parse_toc_response(response)
        roots = build_tree(items, document.page_count)
        tree = DocumentTree(
            roots=roots,
            source_metadata=SourceMetadata(
                title=document.name,
                page_count=document.page_count,
                created_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

        logger.info(
            "tree_generator.generate_tree.complete",
            document=document.name,
            toc_items=len(items),
            node_count=tree.node_count(),
            tree_depth=tree.max_depth(),
            elapsed_ms=round((time.time() - start_time) * 1000, 1),
        )
        return tree

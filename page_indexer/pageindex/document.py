"""
Document - Ordered Page Texts

The unit every page index refers to. Pages are 0-indexed and immutable once
loaded. Text files are either a single page or pre-paginated with a page
delimiter (form feed by default, as emitted by ``pdftotext``).

Design decisions:
    - Frozen dataclass over a tuple of strings, safe to share across
      concurrent searches
    - Out-of-range slices raise ContentExtractionError so callers can record
      the failure per result instead of aborting the operation
    - Page tags (<physical_index_X>) are added only when assembling prompts,
      never stored in the page text
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from ..core.errors import ContentExtractionError, DocumentError
from ..observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Document:
    """
    An ordered, immutable sequence of page texts.

    Attributes:
        name: Display name (usually the file stem).
        pages: Page texts, index 0 is the first page.
        source_path: File the document was read from, if any.
    """

    name: str
    pages: tuple[str, ...]
    source_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.pages:
            raise DocumentError(f"Document {self.name!r} has no pages")

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def total_chars(self) -> int:
        return sum(len(page) for page in self.pages)

    # ─── Construction ───────────────────────────

    @classmethod
    def from_pages(cls, name: str, pages: list[str], source_path: Optional[str] = None) -> Document:
        return cls(name=name, pages=tuple(pages), source_path=source_path)

    @classmethod
    def from_text(cls, name: str, text: str, delimiter: Optional[str] = "\f") -> Document:
        """
        Split raw text into pages.

        Args:
            name: Display name for the document.
            text: Full document text.
            delimiter: Page separator. ``None`` or empty keeps the whole text
                as a single page.

        Raises:
            DocumentError: If the text is empty.
        """
        if not text.strip():
            raise DocumentError(f"Document {name!r} is empty")

        if delimiter:
            pages = text.split(delimiter)
            # pdftotext terminates the last page with a delimiter too
            while pages and not pages[-1].strip():
                pages.pop()
        else:
            pages = [text]
        return cls(name=name, pages=tuple(pages))

    @classmethod
    def from_text_file(cls, path: str | Path, delimiter: Optional[str] = "\f") -> Document:
        """
        Load a UTF-8 text file as a document.

        Raises:
            DocumentError: If the file is missing, unreadable or empty.
        """
        path = Path(path)
        if not path.is_file():
            raise DocumentError(f"Document not found: {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentError(f"Cannot read document {path}: {exc}") from exc

        doc = cls.from_text(path.stem, text, delimiter=delimiter)
        logger.info("document.loaded", path=str(path), pages=doc.page_count, chars=doc.total_chars)
        return replace(doc, source_path=str(path))

    # ─── Access ─────────────────────────────────

    def content_range(self, start_index: int, end_index: int) -> str:
        """
        Concatenate pages ``[start_index, end_index]`` inclusive.

        Raises:
            ContentExtractionError: If the range is inverted or falls outside
                the document (e.g. a tree built from a longer document).
        """
        if start_index < 0 or start_index > end_index:
            raise ContentExtractionError(
                f"Invalid page range {start_index}-{end_index}"
            )
        if end_index >= self.page_count:
            raise ContentExtractionError(
                f"Page range {start_index}-{end_index} exceeds document "
                f"{self.name!r} with {self.page_count} pages"
            )
        return "\n\n".join(
            page.strip() for page in self.pages[start_index:end_index + 1]
        ).strip()

    def content_with_tags(self, max_chars_per_page: Optional[int] = None) -> str:
        """Render all pages wrapped in ``<physical_index_X>`` tags for prompting."""
        parts = []
        for index, page in enumerate(self.pages):
            text = page.strip()
            if max_chars_per_page and len(text) > max_chars_per_page:
                text = text[:max_chars_per_page] + " ..."
            parts.append(f"<physical_index_{index}>\n{text}\n<physical_index_{index}>")
        return "\n\n".join(parts)

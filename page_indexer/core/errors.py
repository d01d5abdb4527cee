"""
Error taxonomy for page-indexer.

Every failure surfaced to a caller is one of these kinds. The CLI prints the
class name, so names double as user-visible error kinds.
"""

from __future__ import annotations

from typing import Optional


class PageIndexError(Exception):
    """Base class for all page-indexer failures."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigurationError(PageIndexError, ValueError):
    """Required configuration is missing or invalid."""


class DocumentError(PageIndexError):
    """The source document could not be read or has no pages."""


class LlmUnavailable(PageIndexError):
    """The reasoning call failed (transport, auth, rate limit) after retries."""


class LlmTimeout(LlmUnavailable):
    """The reasoning call did not finish within the overall deadline."""


class ModelOutputError(PageIndexError):
    """Model output did not match the expected shape.

    The offending completion is kept on ``raw_text`` for diagnosis.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text

    def __str__(self) -> str:
        base = super().__str__()
        if not self.raw_text:
            return base
        snippet = self.raw_text[:200].replace("\n", " ")
        return f"{base} (response: {snippet!r})"


class ParseFailure(ModelOutputError):
    """Structure-extraction output could not be decoded into TOC items."""


class ResponseUnparseable(ModelOutputError):
    """Search output yielded no ranked items at all."""


class InvalidStructure(PageIndexError):
    """The TOC items cannot be nested into a tree."""


class InvariantViolation(PageIndexError):
    """A resolved tree breaks a page-range, nesting or id invariant."""

    def __init__(
        self,
        message: str,
        node_id: Optional[int] = None,
        title: Optional[str] = None,
    ) -> None:
        where = ""
        if node_id is not None or title is not None:
            where = f" [node {node_id}: {title!r}]"
        super().__init__(f"{message}{where}")
        self.node_id = node_id
        self.title = title


class EmptyTree(PageIndexError, ValueError):
    """Search was requested on a tree with no nodes."""


class PersistenceError(PageIndexError):
    """Encoding, decoding or filesystem failure while saving/loading a tree."""


class ContentExtractionError(PageIndexError):
    """A page range could not be sliced out of the document."""


class DatasetError(PageIndexError):
    """An evaluation dataset could not be read or has the wrong shape."""

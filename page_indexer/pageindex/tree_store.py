"""
Tree Store - Persistent Storage for Document Trees

Saves and loads a DocumentTree in one of two encodings chosen by file
extension. Both carry the same logical schema (``DocumentTree.to_dict``):

    .json                       : readable, indented JSON (default)
    .bin / .bincode / .msgpack  : compact MessagePack

Design decisions:
    - Synchronous file I/O (small files, called once per command)
    - Atomic writes: encode fully, write a temp file beside the target, then
      rename over it, so a failure never leaves a partial file
    - Every load re-validates the tree invariants before returning
    - Codecs only map dict <-> bytes; the data model never sees the encoding
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Optional

import msgpack

from .tree_generator import DocumentTree, validate_tree
from ..core.errors import PersistenceError
from ..observability.logging import get_logger

logger = get_logger(__name__)


# ──────────────────────────────────────────────────────────────
# Encodings
# ──────────────────────────────────────────────────────────────


class TreeFormat(str, Enum):
    """On-disk encoding of a tree file."""

    JSON = "json"
    BINARY = "binary"

    @classmethod
    def from_path(cls, path: str | Path) -> TreeFormat:
        """Pick the encoding from the file extension (JSON unless binary)."""
        if Path(path).suffix.lower() in _BINARY_SUFFIXES:
            return cls.BINARY
        return cls.JSON


_BINARY_SUFFIXES = {".bin", ".bincode", ".msgpack"}


def encode_tree(tree: DocumentTree, fmt: TreeFormat) -> bytes:
    """Encode a tree to bytes in the given format."""
    data = tree.to_dict()
    if fmt is TreeFormat.BINARY:
        return msgpack.packb(data, use_bin_type=True)
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def decode_tree(payload: bytes, fmt: TreeFormat) -> DocumentTree:
    """
    Decode bytes into a validated DocumentTree.

    Raises:
        PersistenceError: The payload is not a decodable tree.
        InvariantViolation: The decoded tree breaks a structural invariant.
    """
    try:
        if fmt is TreeFormat.BINARY:
            data = msgpack.unpackb(payload, raw=False)
        else:
            data = json.loads(payload.decode("utf-8"))
    except (
        ValueError,
        RecursionError,
        msgpack.ExtraData,
        msgpack.FormatError,
        msgpack.StackError,
    ) as exc:
        raise PersistenceError(f"Corrupt {fmt.value} tree data: {exc}") from exc

    if not isinstance(data, dict):
        raise PersistenceError(f"Tree data must be an object, got {type(data).__name__}")
    try:
        tree = DocumentTree.from_dict(data)
    except (KeyError, TypeError, AttributeError, RecursionError) as exc:
        raise PersistenceError(f"Tree data does not match the schema: {exc!r}") from exc

    page_count = tree.page_count
    if page_count is not None and (isinstance(page_count, bool) or not isinstance(page_count, int)):
        raise PersistenceError(f"source_metadata.page_count must be an integer, got {page_count!r}")
    validate_tree(tree.roots, page_count)
    return tree


# ──────────────────────────────────────────────────────────────
# Save / load
# ──────────────────────────────────────────────────────────────


def save_tree(tree: DocumentTree, path: str | Path, fmt: Optional[TreeFormat] = None) -> Path:
    """
    Save a tree atomically.

    Args:
        tree: Tree to save.
        path: Destination file; parent directories are created.
        fmt: Encoding override (default: from the file extension).

    Returns:
        The destination path.

    Raises:
        PersistenceError: Encoding or filesystem failure.
    """
    path = Path(path)
    fmt = fmt or TreeFormat.from_path(path)

    try:
        payload = encode_tree(tree, fmt)
    except (TypeError, ValueError, OverflowError) as exc:
        raise PersistenceError(f"Cannot encode tree: {exc}") from exc

    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_bytes(payload)
        temp_path.replace(path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Failed to write tree to {path}: {exc}") from exc

    logger.info(
        "tree_store.tree_saved",
        path=str(path),
        format=fmt.value,
        size_bytes=len(payload),
        node_count=tree.node_count(),
    )
    return path


def load_tree(path: str | Path, fmt: Optional[TreeFormat] = None) -> DocumentTree:
    """
    Load and re-validate a tree.

    Raises:
        PersistenceError: Missing, unreadable or corrupt file.
        InvariantViolation: The stored tree breaks a structural invariant.
    """
    path = Path(path)
    fmt = fmt or TreeFormat.from_path(path)

    if not path.is_file():
        raise PersistenceError(f"Tree index not found: {path}")
    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise PersistenceError(f"Cannot read tree index {path}: {exc}") from exc

    tree = decode_tree(payload, fmt)
    logger.info(
        "tree_store.tree_loaded",
        path=str(path),
        format=fmt.value,
        node_count=tree.node_count(),
    )
    return tree


def tree_exists(path: str | Path) -> bool:
    return Path(path).is_file()


def tree_size(path: str | Path) -> int:
    """
    Size of a tree file in bytes.

    Raises:
        PersistenceError: The file cannot be read.
    """
    try:
        return Path(path).stat().st_size
    except OSError as exc:
        raise PersistenceError(f"Cannot stat tree index {path}: {exc}") from exc

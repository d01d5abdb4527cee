"""
Tests for PageIndex Tree Store

Tests persistence of document trees:
- Encoding selection by file extension
- JSON and MessagePack round trips
- Atomic writes and failure cleanup
- Load-time validation of corrupt or hand-edited files
"""

import json
from pathlib import Path

import msgpack
import pytest

from page_indexer.core.errors import InvariantViolation, PersistenceError
from page_indexer.pageindex.tree_generator import (
    DocumentTree,
    SourceMetadata,
    TocItem,
    build_tree,
)
from page_indexer.pageindex.tree_store import (
    TreeFormat,
    load_tree,
    save_tree,
    tree_exists,
    tree_size,
)


def _make_tree() -> DocumentTree:
    items = [
        TocItem(title="1. Überblick", level=1, start_index=0),
        TocItem(title="1.1 Scope", level=2, start_index=1),
        TocItem(title="1.2 Terms", level=2, start_index=2),
        TocItem(title="2. Details", level=1, start_index=4),
        TocItem(title="2.1 Edge Cases", level=2, start_index=4),
    ]
    tree = DocumentTree(
        roots=build_tree(items, page_count=8),
        source_metadata=SourceMetadata(
            title="manual",
            page_count=8,
            created_at="2026-03-01T12:00:00+00:00",
        ),
    )
    tree.roots[0].children[1].summary = "Glossary of terms"
    return tree


# ──────────────────────────────────────────────────────────────
# Format selection
# ──────────────────────────────────────────────────────────────


class TestTreeFormat:
    """Tests for extension-based encoding selection."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("tree.json", TreeFormat.JSON),
            ("tree.JSON", TreeFormat.JSON),
            ("tree.bin", TreeFormat.BINARY),
            ("tree.bincode", TreeFormat.BINARY),
            ("tree.msgpack", TreeFormat.BINARY),
            ("tree", TreeFormat.JSON),
            ("tree.txt", TreeFormat.JSON),
        ],
    )
    def test_from_path(self, name: str, expected: TreeFormat) -> None:
        assert TreeFormat.from_path(name) is expected


# ──────────────────────────────────────────────────────────────
# Round trips
# ──────────────────────────────────────────────────────────────


class TestRoundTrip:
    """load(save(tree)) == tree for both encodings."""

    @pytest.mark.parametrize("filename", ["tree.json", "tree.bin"])
    def test_roundtrip(self, tmp_path: Path, filename: str) -> None:
        tree = _make_tree()
        path = save_tree(tree, tmp_path / filename)
        restored = load_tree(path)

        assert restored == tree
        assert [n.id for n in restored.iter_nodes()] == [n.id for n in tree.iter_nodes()]

    def test_roundtrip_without_metadata(self, tmp_path: Path) -> None:
        tree = DocumentTree(roots=_make_tree().roots)
        assert load_tree(save_tree(tree, tmp_path / "bare.msgpack")) == tree

    def test_json_is_readable_schema(self, tmp_path: Path) -> None:
        path = save_tree(_make_tree(), tmp_path / "tree.json")
        data = json.loads(path.read_text(encoding="utf-8"))

        assert set(data) == {"roots", "source_metadata"}
        assert data["source_metadata"]["page_count"] == 8
        root = data["roots"][0]
        assert set(root) == {"id", "title", "level", "start_index", "end_index", "children", "summary"}
        assert root["title"] == "1. Überblick"

    def test_binary_is_msgpack_of_same_schema(self, tmp_path: Path) -> None:
        tree = _make_tree()
        path = save_tree(tree, tmp_path / "tree.bin")
        payload = path.read_bytes()

        with pytest.raises(ValueError):
            json.loads(payload)
        assert msgpack.unpackb(payload, raw=False) == tree.to_dict()

    def test_format_override(self, tmp_path: Path) -> None:
        tree = _make_tree()
        path = save_tree(tree, tmp_path / "tree.dat", fmt=TreeFormat.BINARY)
        assert load_tree(path, fmt=TreeFormat.BINARY) == tree

    def test_cross_format_conversion(self, tmp_path: Path) -> None:
        tree = _make_tree()
        from_json = load_tree(save_tree(tree, tmp_path / "a.json"))
        from_bin = load_tree(save_tree(from_json, tmp_path / "b.bin"))
        assert from_bin == tree


# ──────────────────────────────────────────────────────────────
# Writes
# ──────────────────────────────────────────────────────────────


class TestSaveTree:
    """Tests for atomic writes."""

    def test_creates_parent_dirs_and_leaves_no_temp(self, tmp_path: Path) -> None:
        path = save_tree(_make_tree(), tmp_path / "data" / "nested" / "tree.json")
        assert path.is_file()
        assert list(path.parent.iterdir()) == [path]

    def test_overwrite_replaces_content(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        save_tree(_make_tree(), path)
        smaller = DocumentTree(roots=build_tree([TocItem("Only", 1, 0)], page_count=2))
        save_tree(smaller, path)
        assert load_tree(path) == smaller

    def test_failed_write_leaves_no_partial_file(self, tmp_path: Path) -> None:
        target = tmp_path / "tree.json"
        target.mkdir()
        with pytest.raises(PersistenceError):
            save_tree(_make_tree(), target)
        assert not (tmp_path / "tree.json.tmp").exists()

    def test_exists_and_size(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        assert not tree_exists(path)
        save_tree(_make_tree(), path)
        assert tree_exists(path)
        assert tree_size(path) == path.stat().st_size > 0

    def test_size_of_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PersistenceError):
            tree_size(tmp_path / "missing.json")


# ──────────────────────────────────────────────────────────────
# Loads
# ──────────────────────────────────────────────────────────────


class TestLoadTree:
    """Tests for load-time validation."""

    def _write_json(self, tmp_path: Path, data) -> Path:
        path = tmp_path / "tree.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PersistenceError, match="not found"):
            load_tree(tmp_path / "nope.json")

    def test_corrupt_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        path.write_text('{"roots": [', encoding="utf-8")
        with pytest.raises(PersistenceError, match="Corrupt"):
            load_tree(path)

    def test_corrupt_binary(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.bin"
        path.write_bytes(msgpack.packb({"roots": []}) + b"\x00trailing")
        with pytest.raises(PersistenceError):
            load_tree(path)

    def test_deeply_nested_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        path.write_text('{"roots": ' + "[" * 200_000 + "]" * 200_000 + "}", encoding="utf-8")
        with pytest.raises(PersistenceError, match="Corrupt"):
            load_tree(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        with pytest.raises(PersistenceError, match="object"):
            load_tree(self._write_json(tmp_path, [1, 2, 3]))

    def test_missing_node_field(self, tmp_path: Path) -> None:
        data = _make_tree().to_dict()
        del data["roots"][0]["end_index"]
        with pytest.raises(PersistenceError, match="schema"):
            load_tree(self._write_json(tmp_path, data))

    def test_hand_edited_inverted_range(self, tmp_path: Path) -> None:
        data = _make_tree().to_dict()
        data["roots"][1]["end_index"] = 1
        with pytest.raises(InvariantViolation) as exc_info:
            load_tree(self._write_json(tmp_path, data))
        assert exc_info.value.title == "2. Details"

    def test_range_beyond_page_count(self, tmp_path: Path) -> None:
        data = _make_tree().to_dict()
        data["source_metadata"]["page_count"] = 5
        with pytest.raises(InvariantViolation, match="last page"):
            load_tree(self._write_json(tmp_path, data))

    def test_overlapping_siblings(self, tmp_path: Path) -> None:
        data = _make_tree().to_dict()
        data["roots"][0]["children"][0]["end_index"] = 3
        with pytest.raises(InvariantViolation, match="next sibling"):
            load_tree(self._write_json(tmp_path, data))

    def test_bad_page_count_type(self, tmp_path: Path) -> None:
        data = _make_tree().to_dict()
        data["source_metadata"]["page_count"] = "eight"
        with pytest.raises(PersistenceError, match="page_count"):
            load_tree(self._write_json(tmp_path, data))

    def test_empty_tree_loads(self, tmp_path: Path) -> None:
        tree = load_tree(self._write_json(tmp_path, {"roots": []}))
        assert tree.is_empty()
        assert tree.source_metadata is None

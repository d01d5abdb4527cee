"""
Evaluation Datasets - question/document pairs for benchmarking

Supported sources:
    - QuALITY (NYU long-document QA), JSONL with one article per line
    - Custom JSON: {"name": ..., "items": [{id, document, question, answer}]}
    - A small built-in sample for smoke runs
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from ..core.errors import DatasetError
from ..observability.logging import get_logger

logger = get_logger(__name__)


class DatasetItem(BaseModel):
    """One question asked against one document."""

    id: str
    document: str
    question: str
    answer: Optional[str] = None
    options: Optional[list[str]] = None
    correct_option: Optional[int] = None
    source: str = "custom"


class Dataset(BaseModel):
    """A named collection of evaluation items."""

    name: str
    items: list[DatasetItem] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def take(self, n: int) -> Dataset:
        """First ``n`` items, for quick runs."""
        return Dataset(name=self.name, items=self.items[:n])


# ──────────────────────────────────────────────────────────────
# Loaders
# ──────────────────────────────────────────────────────────────


def _read_text(path: str | Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise DatasetError(f"Cannot read dataset {path}: {exc}") from exc


def load_custom_dataset(path: str | Path) -> Dataset:
    """
    Load a dataset saved as a single JSON object.

    Raises:
        DatasetError: Unreadable file, invalid JSON or wrong shape.
    """
    content = _read_text(path)
    try:
        dataset = Dataset.model_validate_json(content)
    except ValidationError as exc:
        raise DatasetError(f"Invalid dataset {path}: {exc.errors()[0]['msg']}") from exc

    logger.info("dataset.loaded", path=str(path), name=dataset.name, items=len(dataset))
    return dataset


class _QualityQuestion(BaseModel):
    question: str
    question_unique_id: str
    options: list[str]
    gold_label: int


class _QualityArticle(BaseModel):
    article: str
    article_id: str
    questions: list[_QualityQuestion]


def load_quality_dataset(path: str | Path) -> Dataset:
    """
    Load the QuALITY dev/train JSONL file.

    Each article line expands to one item per question. ``gold_label`` is
    1-based in the file and stored 0-based; labels outside 1-4 leave the
    item without an answer.

    Raises:
        DatasetError: Unreadable file or a malformed line (line number given).
    """
    dataset = Dataset(name="QuALITY")
    for line_number, line in enumerate(_read_text(path).splitlines(), start=1):
        if not line.strip():
            continue
        try:
            article = _QualityArticle.model_validate_json(line)
        except ValidationError as exc:
            raise DatasetError(
                f"Malformed QuALITY article on line {line_number}: {exc.errors()[0]['msg']}"
            ) from exc

        for question in article.questions:
            correct = question.gold_label - 1 if 1 <= question.gold_label <= 4 else None
            answer = None
            if correct is not None and correct < len(question.options):
                answer = question.options[correct]
            dataset.items.append(
                DatasetItem(
                    id=question.question_unique_id,
                    document=article.article,
                    question=question.question,
                    answer=answer,
                    options=question.options,
                    correct_option=correct,
                    source="QuALITY",
                )
            )

    logger.info("dataset.loaded", path=str(path), name=dataset.name, items=len(dataset))
    return dataset


def save_dataset(dataset: Dataset, path: str | Path) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(dataset.model_dump(), indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError as exc:
        raise DatasetError(f"Cannot write dataset {path}: {exc}") from exc
    return path


def sample_dataset() -> Dataset:
    """Three short single-page documents with reference answers."""
    samples = [
        (
            "sample_1",
            "Rust is a systems programming language focused on safety, speed, and concurrency.\n"
            "It achieves memory safety without garbage collection through its ownership system.\n"
            "The borrow checker ensures references are valid and prevents data races at compile time.\n"
            "Rust was originally designed by Graydon Hoare at Mozilla Research.\n"
            "The first stable release, Rust 1.0, was announced in May 2015.",
            "What mechanism does Rust use to achieve memory safety?",
            "Rust uses an ownership system and borrow checker to achieve memory safety "
            "without garbage collection.",
        ),
        (
            "sample_2",
            "Python is a high-level, interpreted programming language known for its clear syntax.\n"
            "Created by Guido van Rossum, Python was first released in 1991.\n"
            "Python supports procedural, object-oriented and functional programming.\n"
            "The Python Package Index (PyPI) hosts thousands of third-party packages.\n"
            "Python is widely used in data science, machine learning, and web development.",
            "Who created Python and when was it first released?",
            "Python was created by Guido van Rossum and first released in 1991.",
        ),
        (
            "sample_3",
            "Machine learning is a subset of artificial intelligence that enables systems to learn from data.\n"
            "Supervised learning uses labeled data to train models, while unsupervised learning finds "
            "patterns in unlabeled data.\n"
            "Neural networks are computing systems inspired by biological neural networks.\n"
            "Deep learning uses neural networks with many layers to model complex patterns.",
            "What is the difference between supervised and unsupervised learning?",
            "Supervised learning uses labeled data to train models, while unsupervised learning "
            "finds patterns in unlabeled data.",
        ),
    ]
    return Dataset(
        name="sample",
        items=[
            DatasetItem(id=item_id, document=document, question=question, answer=answer, source="sample")
            for item_id, document, question, answer in samples
        ],
    )

"""
Benchmark Runner - tree search vs vector search

For each dataset item:
    1. Tree search: index the document (cached per document text), search
       with content, keep High/Medium sections (any sections if none)
    2. Vector search: chunk, embed, take the top-k chunks
    3. Answer the question from each system's retrieved context (one call each)
    4. Ask the judge to compare the two answers against the reference

A stage that fails with a page-indexer error is recorded on the item and
the run moves on to the next stage.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .dataset import Dataset, DatasetItem
from .judge import ComparisonResult, LlmJudge
from .vector_search import Embedder, TextChunker, VectorIndex
from ..core.config import settings
from ..core.errors import PageIndexError
from ..observability.logging import get_logger
from ..pageindex.document import Document
from ..pageindex.tree_generator import DocumentTree, TreeGenerator
from ..pageindex.tree_searcher import Relevance, SearchOutcome, TreeSearcher

if TYPE_CHECKING:
    from ..llm.groq_client import GroqClient

logger = get_logger(__name__)

TREE_SYSTEM = "PageIndex"
VECTOR_SYSTEM = "VectorRAG"

_ANSWER_PROMPT = """Answer the question using ONLY the context below.
If the context does not contain the answer, say so.

Question: {question}

Context:
{context}

Answer:"""


@dataclass
class BenchmarkConfig:
    top_k: int = field(default_factory=lambda: settings.eval_top_k)
    run_tree: bool = True
    run_vector: bool = True
    max_items: Optional[int] = None


@dataclass
class ItemResult:
    item_id: str
    tree_content: Optional[str] = None
    tree_answer: Optional[str] = None
    tree_time_ms: Optional[float] = None
    vector_content: Optional[str] = None
    vector_answer: Optional[str] = None
    vector_time_ms: Optional[float] = None
    comparison: Optional[ComparisonResult] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "tree_content": self.tree_content,
            "tree_answer": self.tree_answer,
            "tree_time_ms": self.tree_time_ms,
            "vector_content": self.vector_content,
            "vector_answer": self.vector_answer,
            "vector_time_ms": self.vector_time_ms,
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "errors": list(self.errors),
        }


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass
class BenchmarkResults:
    """Per-item results and the aggregate scoreboard."""

    dataset_name: str
    item_results: list[ItemResult] = field(default_factory=list)
    total_time_secs: float = 0.0

    @property
    def total_items(self) -> int:
        return len(self.item_results)

    def _comparisons(self) -> list[ComparisonResult]:
        return [r.comparison for r in self.item_results if r.comparison is not None]

    @property
    def tree_wins(self) -> int:
        return sum(1 for c in self._comparisons() if c.winner == 1)

    @property
    def vector_wins(self) -> int:
        return sum(1 for c in self._comparisons() if c.winner == 2)

    @property
    def ties(self) -> int:
        return sum(1 for c in self._comparisons() if c.winner == 0)

    @property
    def avg_tree_score(self) -> float:
        return _mean([c.score_system1 for c in self._comparisons()])

    @property
    def avg_vector_score(self) -> float:
        return _mean([c.score_system2 for c in self._comparisons()])

    @property
    def avg_tree_time_ms(self) -> float:
        return _mean([r.tree_time_ms for r in self.item_results if r.tree_time_ms is not None])

    @property
    def avg_vector_time_ms(self) -> float:
        return _mean([r.vector_time_ms for r in self.item_results if r.vector_time_ms is not None])

    def summary(self) -> dict:
        return {
            "dataset_name": self.dataset_name,
            "total_items": self.total_items,
            "tree_wins": self.tree_wins,
            "vector_wins": self.vector_wins,
            "ties": self.ties,
            "avg_tree_score": round(self.avg_tree_score, 2),
            "avg_vector_score": round(self.avg_vector_score, 2),
            "avg_tree_time_ms": round(self.avg_tree_time_ms, 1),
            "avg_vector_time_ms": round(self.avg_vector_time_ms, 1),
            "total_time_secs": round(self.total_time_secs, 1),
        }

    def to_dict(self) -> dict:
        data = self.summary()
        data["item_results"] = [result.to_dict() for result in self.item_results]
        return data


def format_tree_context(outcome: SearchOutcome, top_k: int) -> str:
    """High/Medium sections with their text, or any sections if none rank that high."""
    results = [r for r in outcome if r.relevance in (Relevance.HIGH, Relevance.MEDIUM)]
    if not results:
        results = list(outcome)
    return "\n\n---\n\n".join(
        f"[Section: {r.title}] (pages {r.start_index}-{r.end_index})\n{r.content or '(no content)'}"
        for r in results[:top_k]
    )


class Benchmark:
    """
    Runs both retrieval systems over a dataset and judges their answers.

    Args:
        llm: Client used for indexing, search, answering and judging.
        embedder: Vector baseline embeddings; required when ``run_vector``.
        config: Benchmark options.
        chunker: Chunking for the vector baseline.
    """

    def __init__(
        self,
        llm: GroqClient,
        embedder: Optional[Embedder] = None,
        config: Optional[BenchmarkConfig] = None,
        chunker: Optional[TextChunker] = None,
    ) -> None:
        self.config = config or BenchmarkConfig()
        if not (self.config.run_tree or self.config.run_vector):
            raise ValueError("At least one retrieval system must be enabled")
        if self.config.run_vector and embedder is None:
            raise ValueError("The vector baseline needs an embedder")

        self._llm = llm
        self._embedder = embedder
        self._chunker = chunker or TextChunker()
        self._generator = TreeGenerator(llm=llm)
        self._searcher = TreeSearcher(llm=llm)
        self._judge = LlmJudge(llm)
        self._tree_cache: dict[str, tuple[DocumentTree, Document]] = {}

    async def run(self, dataset: Dataset) -> BenchmarkResults:
        start_time = time.time()
        items = dataset.items
        if self.config.max_items is not None:
            items = items[: self.config.max_items]

        logger.info("benchmark.start", dataset=dataset.name, items=len(items))
        results = BenchmarkResults(dataset_name=dataset.name)
        for position, item in enumerate(items, start=1):
            logger.info("benchmark.item", item_id=item.id, position=position, total=len(items))
            results.item_results.append(await self.process_item(item))

        results.total_time_secs = time.time() - start_time
        logger.info("benchmark.complete", **results.summary())
        return results

    async def process_item(self, item: DatasetItem) -> ItemResult:
        result = ItemResult(item_id=item.id)

        if self.config.run_tree:
            try:
                started = time.time()
                result.tree_content = await self._tree_context(item)
                result.tree_time_ms = (time.time() - started) * 1000
                result.tree_answer = await self._answer(item.question, result.tree_content)
            except PageIndexError as exc:
                self._record(result, TREE_SYSTEM, exc)

        if self.config.run_vector:
            try:
                started = time.time()
                result.vector_content = await self._vector_context(item)
                result.vector_time_ms = (time.time() - started) * 1000
                result.vector_answer = await self._answer(item.question, result.vector_content)
            except PageIndexError as exc:
                self._record(result, VECTOR_SYSTEM, exc)

        if result.tree_answer is not None and result.vector_answer is not None:
            try:
                result.comparison = await self._judge.compare_answers(
                    item.question,
                    TREE_SYSTEM,
                    result.tree_answer,
                    VECTOR_SYSTEM,
                    result.vector_answer,
                    ground_truth=item.answer,
                )
            except PageIndexError as exc:
                self._record(result, "Judge", exc)
        return result

    def _record(self, result: ItemResult, stage: str, exc: PageIndexError) -> None:
        result.errors.append(f"{stage}: {exc.kind}: {exc}")
        logger.warning("benchmark.stage_failed", item_id=result.item_id, stage=stage, error=str(exc))

    async def _tree_context(self, item: DatasetItem) -> str:
        key = hashlib.sha256(item.document.encode("utf-8")).hexdigest()
        cached = self._tree_cache.get(key)
        if cached is None:
            document = Document.from_text(item.id, item.document)
            tree = await self._generator.generate_tree(document)
            cached = self._tree_cache[key] = (tree, document)
        tree, document = cached

        outcome = await self._searcher.search(
            item.question,
            tree,
            document=document,
            include_content=True,
        )
        return format_tree_context(outcome, self.config.top_k)

    async def _vector_context(self, item: DatasetItem) -> str:
        index = await asyncio.to_thread(VectorIndex.build, item.document, self._embedder, self._chunker)
        return await asyncio.to_thread(index.search_context, item.question, self.config.top_k)

    async def _answer(self, question: str, context: str) -> str:
        prompt = _ANSWER_PROMPT.format(question=question, context=context)
        answer = await self._llm.agenerate(prompt=prompt)
        return answer.strip()

"""
Tests for the evaluation benchmark

Covers dataset loading, the vector baseline (with a deterministic in-test
embedder), judge parsing and the end-to-end benchmark with a mocked LLM.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import main
from page_indexer.core.errors import DatasetError, LlmUnavailable, ResponseUnparseable
from page_indexer.eval.benchmark import (
    Benchmark,
    BenchmarkConfig,
    BenchmarkResults,
    ItemResult,
    format_tree_context,
)
from page_indexer.eval.dataset import (
    Dataset,
    DatasetItem,
    load_custom_dataset,
    load_quality_dataset,
    sample_dataset,
    save_dataset,
)
from page_indexer.eval.judge import ComparisonResult, LlmJudge, parse_comparison, parse_judgement
from page_indexer.eval.vector_search import TextChunker, VectorIndex, cosine_similarity
from page_indexer.pageindex.tree_searcher import Relevance, SearchOutcome, SearchResult

_VOCABULARY = ["rust", "memory", "python", "guido", "learning", "labeled"]


class _KeywordEmbedder:
    """Counts vocabulary words; enough to make similarity meaningful."""

    def __init__(self) -> None:
        self.calls = 0

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self.embed_query(text) for text in texts]

    def embed_query(self, query: str) -> list[float]:
        words = query.lower().replace(".", " ").replace("?", " ").split()
        return [float(words.count(term)) for term in _VOCABULARY]


def _routing_llm(judge_winner: str = "A") -> MagicMock:
    """LLM mock that answers each prompt kind with a fitting response."""

    async def agenerate(prompt: str, **kwargs) -> str:
        if prompt.startswith("You are an expert in extracting hierarchical tree structure"):
            return json.dumps([{"structure": "1", "title": "Overview", "physical_index": "<physical_index_0>"}])
        if prompt.startswith("You are given a question and the table of contents"):
            return json.dumps({"relevant_sections": [{"node_id": 0, "relevance": "high", "reason": "only one"}]})
        if prompt.startswith("Answer the question"):
            return "  an answer  "
        if prompt.startswith("You are an expert judge comparing"):
            return json.dumps({
                "winner": judge_winner, "score_system_a": 4, "score_system_b": 3, "explanation": "ok",
            })
        raise AssertionError(f"unexpected prompt: {prompt[:60]}")

    llm = MagicMock()
    llm.agenerate = AsyncMock(side_effect=agenerate)
    return llm


# ──────────────────────────────────────────────────────────────
# Datasets
# ──────────────────────────────────────────────────────────────


class TestDatasets:
    """Tests for dataset loaders."""

    def test_sample_dataset(self) -> None:
        dataset = sample_dataset()
        assert dataset.name == "sample"
        assert len(dataset) == 3
        assert all(item.document and item.question and item.answer for item in dataset.items)
        assert len(dataset.take(2)) == 2

    def test_custom_roundtrip(self, tmp_path: Path) -> None:
        path = save_dataset(sample_dataset(), tmp_path / "sets" / "sample.json")
        assert load_custom_dataset(path) == sample_dataset()

    def test_custom_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"name": "x", "items": [{"id": "1"}]}), encoding="utf-8")
        with pytest.raises(DatasetError, match="Invalid dataset"):
            load_custom_dataset(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DatasetError, match="Cannot read"):
            load_custom_dataset(tmp_path / "nope.json")

    def test_quality_jsonl(self, tmp_path: Path) -> None:
        article = {
            "article": "A long story.",
            "article_id": "a1",
            "set_unique_id": "s1",
            "questions": [
                {"question": "Who?", "question_unique_id": "q1", "options": ["w", "x", "y", "z"], "gold_label": 2},
                {"question": "Why?", "question_unique_id": "q2", "options": ["a", "b", "c", "d"], "gold_label": 9},
            ],
        }
        path = tmp_path / "quality.jsonl"
        path.write_text(json.dumps(article) + "\n\n", encoding="utf-8")

        dataset = load_quality_dataset(path)
        assert dataset.name == "QuALITY"
        assert [item.id for item in dataset.items] == ["q1", "q2"]
        assert (dataset.items[0].correct_option, dataset.items[0].answer) == (1, "x")
        assert (dataset.items[1].correct_option, dataset.items[1].answer) == (None, None)
        assert dataset.items[0].document == "A long story."

    def test_quality_bad_line_reports_line_number(self, tmp_path: Path) -> None:
        path = tmp_path / "quality.jsonl"
        path.write_text('{"article": "x", "article_id": "a", "questions": []}\n{oops\n', encoding="utf-8")
        with pytest.raises(DatasetError, match="line 2"):
            load_quality_dataset(path)


# ──────────────────────────────────────────────────────────────
# Vector baseline
# ──────────────────────────────────────────────────────────────


class TestVectorSearch:
    """Tests for chunking and in-memory vector ranking."""

    def test_chunks_cover_text_and_prefer_sentence_breaks(self) -> None:
        text = "This is a test. Another sentence here. And one more sentence to finish."
        chunks = TextChunker(chunk_size=40, chunk_overlap=5).chunk_text(text)

        assert len(chunks) > 1
        assert chunks[0].text.endswith(".")
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert chunks[-1].end_char == len(text)

    def test_empty_text_has_no_chunks(self) -> None:
        assert TextChunker(chunk_size=40, chunk_overlap=5).chunk_text("") == []

    def test_overlap_must_be_smaller_than_size(self) -> None:
        with pytest.raises(ValueError):
            TextChunker(chunk_size=50, chunk_overlap=50)

    def test_cosine_similarity(self) -> None:
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_search_ranks_matching_chunk_first(self) -> None:
        text = "Rust manages memory with ownership.\nPython was created by Guido."
        index = VectorIndex.build(text, _KeywordEmbedder(), TextChunker(chunk_size=40, chunk_overlap=0))

        hits = index.search("Who is Guido in Python history?", top_k=1)
        assert len(hits) == 1
        assert "Guido" in hits[0].chunk.text
        assert "[Score: " in index.search_context("rust memory", top_k=2)


# ──────────────────────────────────────────────────────────────
# Judge
# ──────────────────────────────────────────────────────────────


class TestJudge:
    """Tests for judge response parsing and calls."""

    def test_parse_judgement_clamps(self) -> None:
        result = parse_judgement('{"relevance": 9, "answerable": true, "explanation": "good"}')
        assert (result.relevance, result.answerable) == (5, True)

    @pytest.mark.parametrize("winner, expected", [("A", 1), ("b", 2), ("TIE", 0), ("neither", 0)])
    def test_parse_comparison_winner(self, winner: str, expected: int) -> None:
        text = json.dumps({"winner": winner, "score_system_a": 0, "score_system_b": 3, "explanation": None})
        result = parse_comparison("Verdict:\n" + text)
        assert result.winner == expected
        assert (result.score_system1, result.score_system2) == (1, 3)
        assert result.explanation == ""

    def test_wrong_shape_raises(self) -> None:
        with pytest.raises(ResponseUnparseable, match="wrong shape"):
            parse_comparison('{"winner": "A"}')

    @pytest.mark.asyncio
    async def test_compare_answers_prompt(self) -> None:
        llm = _routing_llm()
        judge = LlmJudge(llm)
        result = await judge.compare_answers("Q?", "PageIndex", "ans1", "VectorRAG", "ans2", ground_truth="truth")

        assert result.winner == 1
        prompt = llm.agenerate.call_args.kwargs["prompt"]
        assert "System A (PageIndex)" in prompt
        assert "Ground Truth Answer: truth" in prompt

    @pytest.mark.asyncio
    async def test_judge_relevance(self) -> None:
        llm = MagicMock()
        llm.agenerate = AsyncMock(return_value='{"relevance": 3, "answerable": false, "explanation": "partial"}')
        result = await LlmJudge(llm).judge_relevance("Q?", "some content")
        assert (result.relevance, result.answerable, result.explanation) == (3, False, "partial")


# ──────────────────────────────────────────────────────────────
# Benchmark
# ──────────────────────────────────────────────────────────────


class TestBenchmark:
    """Tests for the benchmark runner with a mocked LLM."""

    def test_requires_embedder_for_vector(self) -> None:
        with pytest.raises(ValueError, match="embedder"):
            Benchmark(llm=_routing_llm(), config=BenchmarkConfig(top_k=3))

    def test_requires_a_system(self) -> None:
        with pytest.raises(ValueError):
            Benchmark(llm=_routing_llm(), config=BenchmarkConfig(top_k=3, run_tree=False, run_vector=False))

    @pytest.mark.asyncio
    async def test_full_run(self) -> None:
        llm = _routing_llm()
        benchmark = Benchmark(llm=llm, embedder=_KeywordEmbedder(), config=BenchmarkConfig(top_k=2))

        results = await benchmark.run(sample_dataset())

        assert results.total_items == 3
        assert results.tree_wins == 3
        assert results.avg_tree_score == pytest.approx(4.0)
        assert results.avg_vector_score == pytest.approx(3.0)
        first = results.item_results[0]
        assert first.tree_answer == "an answer"
        assert first.tree_content.startswith("[Section: Overview] (pages 0-0)\nRust is")
        assert first.vector_content.startswith("[Score: ")
        assert first.errors == []

    @pytest.mark.asyncio
    async def test_tree_cached_per_document(self) -> None:
        llm = _routing_llm()
        item = sample_dataset().items[0]
        dataset = Dataset(name="dup", items=[item, item.model_copy(update={"id": "again"})])
        benchmark = Benchmark(llm=llm, config=BenchmarkConfig(top_k=2, run_vector=False))

        results = await benchmark.run(dataset)

        structure_calls = [
            call for call in llm.agenerate.call_args_list
            if call.kwargs["prompt"].startswith("You are an expert in extracting")
        ]
        assert len(structure_calls) == 1
        assert all(r.comparison is None for r in results.item_results)

    @pytest.mark.asyncio
    async def test_stage_failure_recorded(self) -> None:
        llm = MagicMock()
        llm.agenerate = AsyncMock(side_effect=LlmUnavailable("down"))
        benchmark = Benchmark(llm=llm, embedder=_KeywordEmbedder(), config=BenchmarkConfig(top_k=2, max_items=1))

        results = await benchmark.run(sample_dataset())

        assert results.total_items == 1
        result = results.item_results[0]
        assert result.tree_answer is None
        assert result.vector_content is not None
        assert [e.split(":")[0] for e in result.errors] == ["PageIndex", "VectorRAG"]
        assert result.comparison is None

    def test_summary_counts(self) -> None:
        results = BenchmarkResults(dataset_name="t", item_results=[
            ItemResult(item_id="1", tree_time_ms=100, vector_time_ms=50,
                       comparison=ComparisonResult(winner=1, score_system1=4, score_system2=3)),
            ItemResult(item_id="2", tree_time_ms=150, vector_time_ms=60,
                       comparison=ComparisonResult(winner=2, score_system1=3, score_system2=5)),
            ItemResult(item_id="3", errors=["PageIndex: LlmUnavailable: down"]),
        ])
        summary = results.summary()
        assert (summary["tree_wins"], summary["vector_wins"], summary["ties"]) == (1, 1, 0)
        assert summary["avg_tree_score"] == 3.5
        assert summary["avg_vector_score"] == 4.0
        assert summary["avg_tree_time_ms"] == 125.0
        assert len(results.to_dict()["item_results"]) == 3

    def test_tree_context_falls_back_to_low(self) -> None:
        low = SearchResult(node_id=0, title="A", relevance=Relevance.LOW, start_index=0, end_index=1, content="text")
        outcome = SearchOutcome(query="q", results=[low])
        assert format_tree_context(outcome, top_k=3) == "[Section: A] (pages 0-1)\ntext"


class TestEvalCommand:
    """Tests for `eval`."""

    def test_tree_only_sample(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        output = tmp_path / "results.json"
        with patch("page_indexer.llm.groq_client.GroqClient", return_value=_routing_llm()):
            code = main.main(["eval", "sample", "--tree-only", "--max-items", "2", "-o", str(output)])

        assert code == 0
        assert "Dataset: sample (3 items)" in capsys.readouterr().out
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["total_items"] == 2
        assert data["item_results"][0]["tree_answer"] == "an answer"

    def test_custom_needs_path(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main.main(["eval", "custom"])
        assert exc_info.value.code == 2

    def test_conflicting_flags(self) -> None:
        with pytest.raises(SystemExit):
            main.main(["eval", "sample", "--tree-only", "--vector-only"])

    def test_bad_dataset_reports_kind(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        with patch("page_indexer.llm.groq_client.GroqClient", return_value=_routing_llm()):
            code = main.main(["eval", "custom", str(tmp_path / "missing.json"), "--tree-only"])
        assert code == 1
        assert "DatasetError" in capsys.readouterr().err

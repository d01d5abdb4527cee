"""Benchmarks comparing tree search against a vector-search baseline."""

from .benchmark import Benchmark, BenchmarkConfig, BenchmarkResults, ItemResult
from .dataset import Dataset, DatasetItem, load_custom_dataset, load_quality_dataset, sample_dataset
from .judge import ComparisonResult, JudgeResult, LlmJudge
from .vector_search import SentenceEmbedder, TextChunker, VectorIndex

__all__ = [
    "Benchmark",
    "BenchmarkConfig",
    "BenchmarkResults",
    "ComparisonResult",
    "Dataset",
    "DatasetItem",
    "ItemResult",
    "JudgeResult",
    "LlmJudge",
    "SentenceEmbedder",
    "TextChunker",
    "VectorIndex",
    "load_custom_dataset",
    "load_quality_dataset",
    "sample_dataset",
]

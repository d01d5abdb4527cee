"""
Vector Baseline - chunk, embed and rank by cosine similarity

The comparison system for benchmarks: fixed-size overlapping chunks that
prefer sentence boundaries, embedded with a sentence-transformers model and
ranked against the query in memory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..core.config import settings
from ..observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Chunk:
    """A slice of the source text."""
    text: str
    index: int
    start_char: int = 0
    end_char: int = 0


class TextChunker:
    """
    Split text into overlapping chunks.

    A chunk ends at the last sentence break (``.``, ``!``, ``?`` or newline)
    within 100 characters before the size limit, when there is one.
    """

    def __init__(self, chunk_size: Optional[int] = None, chunk_overlap: Optional[int] = None):
        self.chunk_size = chunk_size or settings.eval_chunk_size
        self.chunk_overlap = settings.eval_chunk_overlap if chunk_overlap is None else chunk_overlap
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

    def chunk_text(self, text: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        start = 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            if end < len(text):
                best_break = self._find_break_point(text, max(start, end - 100), end)
                if best_break > start:
                    end = best_break

            piece = text[start:end].strip()
            if piece:
                chunks.append(Chunk(text=piece, index=len(chunks), start_char=start, end_char=end))
            if end >= len(text):
                break
            # Always advance, even when the overlap would step back past start.
            start = max(end - self.chunk_overlap, start + 1)
        return chunks

    def _find_break_point(self, text: str, start: int, end: int) -> int:
        best = -1
        for i in range(start, end):
            if text[i] in ".!?\n":
                best = i + 1
        return best


class Embedder(Protocol):
    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, query: str) -> list[float]: ...


class SentenceEmbedder:
    """
    sentence-transformers embeddings, normalized so a dot product is the
    cosine similarity.
    """

    def __init__(self, model_name: Optional[str] = None, batch_size: int = 32):
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name or settings.embedding_model
        self.batch_size = batch_size
        self._model = SentenceTransformer(self.model_name, device="cpu")
        logger.info("vector_search.embedder_loaded", model=self.model_name)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [embedding.tolist() for embedding in embeddings]

    def embed_query(self, query: str) -> list[float]:
        return self.embed_texts([query])[0]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(y * y for y in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass
class VectorHit:
    chunk: Chunk
    score: float


class VectorIndex:
    """In-memory chunk index over one document."""

    def __init__(self, embedder: Embedder, chunks: list[Chunk], embeddings: list[list[float]]):
        self._embedder = embedder
        self._entries = list(zip(chunks, embeddings))

    @classmethod
    def build(cls, text: str, embedder: Embedder, chunker: Optional[TextChunker] = None) -> VectorIndex:
        chunker = chunker or TextChunker()
        chunks = chunker.chunk_text(text)
        embeddings = embedder.embed_texts([chunk.text for chunk in chunks])
        logger.debug("vector_search.index_built", chunks=len(chunks))
        return cls(embedder, chunks, embeddings)

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, query: str, top_k: int) -> list[VectorHit]:
        """Best ``top_k`` chunks by cosine similarity, highest first."""
        query_embedding = self._embedder.embed_query(query)
        hits = [
            VectorHit(chunk=chunk, score=cosine_similarity(query_embedding, embedding))
            for chunk, embedding in self._entries
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    def search_context(self, query: str, top_k: int) -> str:
        """Retrieved chunks joined into one context block."""
        return "\n\n---\n\n".join(
            f"[Score: {hit.score:.3f}]\n{hit.chunk.text}" for hit in self.search(query, top_k)
        )

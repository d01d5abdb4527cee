"""
LLM Judge - scores retrieved content and compares two systems' answers

Both verdicts are one LLM call each, parsed strictly at the boundary. Scores
are clamped to 1-5.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.errors import ResponseUnparseable
from ..llm.response_parsing import parse_json_payload

if TYPE_CHECKING:
    from ..llm.groq_client import GroqClient


_RELEVANCE_PROMPT = """You are an expert judge evaluating retrieved content for answering a question.

Question: {question}

Retrieved Content:
{content}
{ground_truth}
Evaluate the retrieved content:
1. Relevance: how relevant is it to the question? (1 = not relevant, 5 = highly relevant)
2. Answerability: could someone answer the question using ONLY this content?

Reply with ONLY a JSON object:
{{
    "relevance": <1-5>,
    "answerable": <true or false>,
    "explanation": "<brief explanation>"
}}"""

_COMPARISON_PROMPT = """You are an expert judge comparing the answers of two question-answering systems.

Question: {question}

System A ({name_a}) answered:
{answer_a}

---

System B ({name_b}) answered:
{answer_b}
{ground_truth}
Which answer is more correct and complete? Rate each answer from 1 to 5.

Reply with ONLY a JSON object:
{{
    "winner": "A" | "B" | "TIE",
    "score_system_a": <1-5>,
    "score_system_b": <1-5>,
    "explanation": "<brief explanation>"
}}"""


@dataclass
class JudgeResult:
    relevance: int
    answerable: bool
    explanation: str = ""


@dataclass
class ComparisonResult:
    """
    Head-to-head verdict.

    Attributes:
        winner: 1 for the first system, 2 for the second, 0 for a tie.
    """

    winner: int
    score_system1: int
    score_system2: int
    explanation: str = ""

    def to_dict(self) -> dict:
        return {
            "winner": self.winner,
            "score_system1": self.score_system1,
            "score_system2": self.score_system2,
            "explanation": self.explanation,
        }


class _RawJudgement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    relevance: int
    answerable: bool
    explanation: Optional[str] = None


class _RawComparison(BaseModel):
    model_config = ConfigDict(extra="ignore")

    winner: str
    score_system_a: int
    score_system_b: int
    explanation: Optional[str] = None


def _clamp_score(value: int) -> int:
    return max(1, min(5, value))


def _ground_truth_block(ground_truth: Optional[str]) -> str:
    return f"\nGround Truth Answer: {ground_truth}\n" if ground_truth else ""


def parse_judgement(response: str) -> JudgeResult:
    payload = parse_json_payload(response, ResponseUnparseable)
    try:
        raw = _RawJudgement.model_validate(payload)
    except ValidationError as exc:
        raise ResponseUnparseable(
            f"Judge response has the wrong shape: {exc.errors()[0]['msg']}", raw_text=response
        ) from exc
    return JudgeResult(
        relevance=_clamp_score(raw.relevance),
        answerable=raw.answerable,
        explanation=raw.explanation or "",
    )


def parse_comparison(response: str) -> ComparisonResult:
    payload = parse_json_payload(response, ResponseUnparseable)
    try:
        raw = _RawComparison.model_validate(payload)
    except ValidationError as exc:
        raise ResponseUnparseable(
            f"Comparison response has the wrong shape: {exc.errors()[0]['msg']}", raw_text=response
        ) from exc
    winner = {"A": 1, "B": 2}.get(raw.winner.strip().upper(), 0)
    return ComparisonResult(
        winner=winner,
        score_system1=_clamp_score(raw.score_system_a),
        score_system2=_clamp_score(raw.score_system_b),
        explanation=raw.explanation or "",
    )


class LlmJudge:
    """LLM-as-judge over any client with an ``agenerate`` coroutine."""

    def __init__(self, llm: GroqClient, model: Optional[str] = None) -> None:
        self._llm = llm
        self._model = model

    async def judge_relevance(
        self,
        question: str,
        content: str,
        ground_truth: Optional[str] = None,
    ) -> JudgeResult:
        prompt = _RELEVANCE_PROMPT.format(
            question=question,
            content=content,
            ground_truth=_ground_truth_block(ground_truth),
        )
        return parse_judgement(await self._llm.agenerate(prompt=prompt, model=self._model))

    async def compare_answers(
        self,
        question: str,
        name_a: str,
        answer_a: str,
        name_b: str,
        answer_b: str,
        ground_truth: Optional[str] = None,
    ) -> ComparisonResult:
        prompt = _COMPARISON_PROMPT.format(
            question=question,
            name_a=name_a,
            answer_a=answer_a,
            name_b=name_b,
            answer_b=answer_b,
            ground_truth=_ground_truth_block(ground_truth),
        )
        return parse_comparison(await self._llm.agenerate(prompt=prompt, model=self._model))

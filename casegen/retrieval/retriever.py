"""Heuristic similar-case retriever for few-shot grounding.

Scores each historical case against a test point with a weighted sum of
three explainable signals:

  - module match (0.5): the test point's feature and the case's module
    name contain one another
  - keyword overlap (0.3): Jaccard similarity of filtered token sets
  - affinity (0.2): close priority levels and title/description containment

The total is clamped to [0, 1].  No embeddings or network access involved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from casegen.errors import RetrievalError
from casegen.generation.base import TestPoint

logger = logging.getLogger(__name__)

MODULE_WEIGHT = 0.5
KEYWORD_WEIGHT = 0.3
FEATURE_WEIGHT = 0.2

PRIORITY_MATCH_SCORE = 0.5
TITLE_MATCH_SCORE = 0.5

DEFAULT_MAX_RESULTS = 3
DEFAULT_MIN_SIMILARITY = 0.5

# Ordinal priority levels, legacy 高/中/低 labels included
PRIORITY_LEVELS: dict[str, int] = {
    "P0": 4, "P1": 3, "P2": 2, "P3": 1,
    "高": 4, "中": 2, "低": 1,
}
_UNKNOWN_PRIORITY_LEVEL = 2

STOP_WORDS = frozenset({
    "的", "了", "在", "是", "和", "与", "或", "测试", "功能", "用户", "输入", "点击", "访问",
    "to", "the", "and", "of", "a", "in", "is", "for", "with", "on", "at",
})

_NON_WORD_RE = re.compile(r"[^\u4e00-\u9fa5a-z0-9\s]")
_MODULE_SUFFIX = "模块"


def _string_tuple(value: Any) -> tuple[str, ...]:
    # A bare string is one entry, not a sequence of characters
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None)
    return ()


@dataclass(frozen=True)
class HistoricalCase:
    """A previously authored test case from the knowledge base."""

    id: str
    title: str
    description: str = ""
    precondition: str = ""
    steps: tuple[str, ...] = ()
    expected_result: str = ""
    priority: str = "P2"
    module: str = ""
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoricalCase:
        """Build from a camelCase or snake_case mapping."""
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            precondition=str(data.get("precondition", "") or ""),
            steps=_string_tuple(data.get("steps")),
            expected_result=str(
                data.get("expectedResult", data.get("expected_result", "")) or ""
            ),
            priority=str(data.get("priority", "P2") or "P2"),
            module=str(
                data.get("module")
                or data.get("relatedFeature")
                or data.get("related_feature")
                or ""
            ),
            keywords=_string_tuple(data.get("keywords")),
        )


@dataclass(frozen=True)
class RetrievalResult:
    """A historical case with its similarity to the query test point."""

    case: HistoricalCase
    similarity: float


# ── Scoring ──────────────────────────────────────────────────────────


def normalize_module(name: str) -> str:
    """Lowercase, trim, and drop a trailing ``模块`` ("module") suffix."""
    normalized = name.strip().lower()
    if normalized.endswith(_MODULE_SUFFIX):
        normalized = normalized[: -len(_MODULE_SUFFIX)].strip()
    return normalized


def extract_keywords(text: str) -> set[str]:
    """Tokenize *text* into a set of stop-word-filtered keywords."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return {w for w in cleaned.split() if len(w) > 1 and w not in STOP_WORDS}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def module_score(test_point: TestPoint, case: HistoricalCase) -> float:
    feature = normalize_module(test_point.related_feature)
    module = normalize_module(case.module)
    if not feature or not module:
        return 0.0
    return 1.0 if feature in module or module in feature else 0.0


def keyword_score(test_point: TestPoint, case: HistoricalCase) -> float:
    point_words = extract_keywords(f"{test_point.name} {test_point.description}")
    case_words = extract_keywords(
        f"{case.title} {case.precondition} {case.expected_result}"
    )
    return jaccard(point_words, case_words)


def affinity_score(test_point: TestPoint, case: HistoricalCase) -> float:
    score = 0.0

    point_level = PRIORITY_LEVELS.get(test_point.priority, _UNKNOWN_PRIORITY_LEVEL)
    case_level = PRIORITY_LEVELS.get(case.priority, _UNKNOWN_PRIORITY_LEVEL)
    if abs(point_level - case_level) <= 1:
        score += PRIORITY_MATCH_SCORE

    description = test_point.description.lower()
    title = case.title.lower()
    name = test_point.name.lower()
    if (title and title in description) or (name and name in title):
        score += TITLE_MATCH_SCORE

    return min(score, 1.0)


def score_case(test_point: TestPoint, case: HistoricalCase) -> float:
    """Weighted similarity of *case* to *test_point*, clamped to [0, 1]."""
    total = (
        MODULE_WEIGHT * module_score(test_point, case)
        + KEYWORD_WEIGHT * keyword_score(test_point, case)
        + FEATURE_WEIGHT * affinity_score(test_point, case)
    )
    return max(0.0, min(total, 1.0))


# ── Retrieval ────────────────────────────────────────────────────────


class SimilarityRetriever:
    """Ranks a knowledge-base corpus against a test point."""

    def __init__(
        self,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        self._max_results = max_results
        self._min_similarity = min_similarity

    def retrieve(
        self,
        test_point: TestPoint,
        corpus: Sequence[HistoricalCase],
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RetrievalResult]:
        """Return up to *max_results* cases scoring at least *min_similarity*.

        Results are ordered by similarity, highest first.  An empty corpus
        yields an empty list.

        Raises:
            RetrievalError: If a corpus entry cannot be scored.
        """
        limit = self._max_results if max_results is None else max_results
        floor = self._min_similarity if min_similarity is None else min_similarity

        if not corpus or limit <= 0:
            return []

        scored: list[RetrievalResult] = []
        for case in corpus:
            try:
                similarity = score_case(test_point, case)
            except (AttributeError, TypeError) as e:
                raise RetrievalError(
                    f"Cannot score knowledge-base entry {getattr(case, 'id', case)!r}: {e}"
                ) from e
            if similarity >= floor:
                scored.append(RetrievalResult(case=case, similarity=similarity))

        scored.sort(key=lambda r: r.similarity, reverse=True)
        results = scored[:limit]

        logger.info(
            "Retrieved %d/%d similar cases for test point %s (top=%.3f).",
            len(results), len(corpus), test_point.id,
            results[0].similarity if results else 0.0,
        )
        return results


def add_to_knowledge_base(
    case: HistoricalCase,
    corpus: Iterable[HistoricalCase],
) -> list[HistoricalCase]:
    """Return a new corpus with *case* inserted, replacing any same-id entry."""
    updated = list(corpus)
    for idx, existing in enumerate(updated):
        if existing.id == case.id:
            updated[idx] = case
            return updated
    updated.append(case)
    return updated

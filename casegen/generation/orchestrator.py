"""Drive test-case generation for one or many test points."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import Counter
from typing import Awaitable, Callable, Sequence, Union

from casegen.errors import (
    AllModelsFailedError,
    CaseGenError,
    GenerationInvocationError,
    ModelInactiveError,
    ModelNotFoundError,
    NoAvailableModelError,
    ResponseParseError,
    RetrievalError,
)
from casegen.generation.base import (
    BatchResult,
    GeneratedTestCase,
    GenerationContext,
    PointFailure,
    PointState,
    TestPoint,
)
from casegen.generation.parser import parse_response
from casegen.generation.prompt_composer import PromptComposer
from casegen.llm.models import TaskType
from casegen.llm.registry import ModelRegistry
from casegen.retrieval.retriever import HistoricalCase, SimilarityRetriever

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

KnowledgeLoader = Callable[
    [Union[str, None]],
    Union[Sequence[HistoricalCase], Awaitable[Sequence[HistoricalCase]]],
]
ProgressCallback = Callable[[int, int], None]

# Misconfiguration rather than a transient failure: never swallowed per point
_ESCALATED_ERRORS = (NoAvailableModelError, ModelNotFoundError, ModelInactiveError)


class GenerationOrchestrator:
    """Top-level entry point of the generation pipeline.

    For each test point: optional similar-case retrieval, prompt assembly,
    model selection and invocation through the registry, then response
    parsing.  Batches run in sequential chunks whose members execute
    concurrently; one failing point never aborts its siblings.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        retriever: SimilarityRetriever | None = None,
        composer: PromptComposer | None = None,
        knowledge_loader: KnowledgeLoader | None = None,
        task_type: str | TaskType = TaskType.TESTCASE_GENERATION,
    ) -> None:
        self._registry = registry
        self._retriever = retriever or SimilarityRetriever()
        self._composer = composer or PromptComposer()
        self._knowledge_loader = knowledge_loader
        self._task_type = task_type

    # ── Knowledge base ───────────────────────────────────────────────

    async def _load_knowledge_base(self, project_id: str | None) -> list[HistoricalCase]:
        """Load the corpus, returning ``[]`` on any loader failure."""
        if self._knowledge_loader is None:
            return []
        try:
            loaded = self._knowledge_loader(project_id)
            if inspect.isawaitable(loaded):
                loaded = await loaded
            return list(loaded or [])
        except Exception:
            logger.exception(
                "Knowledge base load failed for project %s, continuing without examples.",
                project_id,
            )
            return []

    def _build_prompt(
        self,
        test_point: TestPoint,
        context: GenerationContext | None,
        corpus: Sequence[HistoricalCase] | None,
        max_results: int | None,
        min_similarity: float | None,
    ) -> str:
        examples = []
        if corpus:
            try:
                examples = self._retriever.retrieve(
                    test_point, corpus,
                    max_results=max_results, min_similarity=min_similarity,
                )
            except RetrievalError as e:
                logger.warning(
                    "Retrieval failed for test point %s (%s), using plain prompt.",
                    test_point.id, e,
                )
                examples = []
        return self._composer.compose(test_point, context, examples)

    # ── Single point ─────────────────────────────────────────────────

    async def generate_one(
        self,
        test_point: TestPoint,
        context: GenerationContext | None = None,
        use_rag: bool = False,
        knowledge_base: Sequence[HistoricalCase] | None = None,
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> list[GeneratedTestCase]:
        """Generate test cases for a single test point.

        Raises:
            NoAvailableModelError: No model is active.
            GenerationInvocationError: Every model in the fallback chain failed.
            ResponseParseError: The model output could not be parsed.
        """
        corpus: Sequence[HistoricalCase] | None = None
        if use_rag:
            if knowledge_base is not None:
                corpus = knowledge_base
            else:
                corpus = await self._load_knowledge_base(
                    context.project_id if context else None
                )
        return await self._generate(
            test_point, context, corpus, max_results, min_similarity,
        )

    async def _generate(
        self,
        test_point: TestPoint,
        context: GenerationContext | None,
        corpus: Sequence[HistoricalCase] | None,
        max_results: int | None,
        min_similarity: float | None,
    ) -> list[GeneratedTestCase]:
        prompt = self._build_prompt(test_point, context, corpus, max_results, min_similarity)
        model_id = self._registry.select_model_for_task(self._task_type)
        logger.info("Generating cases for test point %s with model %s.", test_point.id, model_id)

        try:
            text = await self._registry.generate_with_fallback(prompt, model_id)
        except AllModelsFailedError as e:
            raise GenerationInvocationError(
                f"Generation failed for test point {test_point.id}: {e}",
                model_id=model_id,
            ) from e

        return parse_response(text, test_point)

    # ── Batch ────────────────────────────────────────────────────────

    async def generate_batch(
        self,
        test_points: Sequence[TestPoint],
        context: GenerationContext | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
        use_rag: bool = False,
        knowledge_base: Sequence[HistoricalCase] | None = None,
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> BatchResult:
        """Generate cases for many test points in concurrent chunks.

        Cases are returned in input order.  Points whose generation failed
        are omitted from ``cases`` and reported in ``errors``.

        Raises:
            ValueError: Two test points share an id.
            NoAvailableModelError, ModelNotFoundError, ModelInactiveError:
                Registry misconfiguration; aborts the batch.  The cases and
                states gathered before the abort are attached to the error
                as ``partial_result``.
        """
        counts = Counter(tp.id for tp in test_points)
        duplicates = sorted(point_id for point_id, n in counts.items() if n > 1)
        if duplicates:
            raise ValueError(f"Duplicate test point id(s) in batch: {', '.join(duplicates)}")

        chunk_size = max(1, concurrency)
        total = len(test_points)
        result = BatchResult(states={tp.id: PointState.PENDING for tp in test_points})

        corpus: Sequence[HistoricalCase] | None = None
        if use_rag and total:
            if knowledge_base is not None:
                corpus = knowledge_base
            else:
                corpus = await self._load_knowledge_base(
                    context.project_id if context else None
                )

        completed = 0
        for start in range(0, total, chunk_size):
            chunk = test_points[start:start + chunk_size]
            for tp in chunk:
                result.states[tp.id] = PointState.IN_FLIGHT

            outcomes = await asyncio.gather(
                *(
                    self._generate(tp, context, corpus, max_results, min_similarity)
                    for tp in chunk
                ),
                return_exceptions=True,
            )

            escalated: CaseGenError | None = None
            for tp, outcome in zip(chunk, outcomes):
                if isinstance(outcome, _ESCALATED_ERRORS):
                    result.states[tp.id] = PointState.FAILED
                    escalated = escalated or outcome
                    continue
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.states[tp.id] = PointState.FAILED
                    result.errors.append(_failure(tp, outcome))
                    logger.warning(
                        "Test point %s failed: %s: %s",
                        tp.id, type(outcome).__name__, outcome,
                    )
                    continue
                result.states[tp.id] = PointState.SUCCEEDED
                result.cases.extend(outcome)

            if escalated is not None:
                escalated.partial_result = result
                raise escalated

            completed += len(chunk)
            logger.info("Batch progress: %d/%d test points.", completed, total)
            if on_progress is not None:
                on_progress(completed, total)

        return result


def _failure(test_point: TestPoint, error: Exception) -> PointFailure:
    if not isinstance(error, (GenerationInvocationError, ResponseParseError)):
        logger.error(
            "Unexpected error for test point %s", test_point.id, exc_info=error,
        )
    return PointFailure(
        test_point_id=test_point.id,
        error_type=type(error).__name__,
        message=str(error),
    )

"""Service facade consumed by an HTTP layer or the CLI."""

from __future__ import annotations

import logging
from typing import Sequence

from casegen.config import AppConfig, ModelEntryConfig
from casegen.generation.base import (
    BatchResult,
    GeneratedTestCase,
    GenerationContext,
    TestPoint,
)
from casegen.generation.orchestrator import (
    GenerationOrchestrator,
    KnowledgeLoader,
    ProgressCallback,
)
from casegen.llm.client import ModelInvoker, OpenAICompatibleInvoker
from casegen.llm.models import CostRate, ModelConfig, TaskType
from casegen.llm.registry import ModelRegistry
from casegen.retrieval.retriever import HistoricalCase, SimilarityRetriever

logger = logging.getLogger(__name__)


class TestCaseService:
    """Wires registry, retriever and orchestrator behind one object."""

    __test__ = False

    def __init__(
        self,
        registry: ModelRegistry,
        orchestrator: GenerationOrchestrator,
        config: AppConfig | None = None,
    ) -> None:
        self._registry = registry
        self._orchestrator = orchestrator
        self._config = config or AppConfig()

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    async def generate_for_test_point(
        self,
        point: TestPoint,
        context: GenerationContext | None = None,
        use_rag: bool | None = None,
        knowledge_base: Sequence[HistoricalCase] | None = None,
    ) -> list[GeneratedTestCase]:
        rag = self._config.generation.use_rag if use_rag is None else use_rag
        return await self._orchestrator.generate_one(
            point,
            context,
            use_rag=rag,
            knowledge_base=knowledge_base,
            max_results=self._config.retrieval.max_results,
            min_similarity=self._config.retrieval.min_similarity,
        )

    async def generate_for_test_points(
        self,
        points: Sequence[TestPoint],
        context: GenerationContext | None = None,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        use_rag: bool | None = None,
        knowledge_base: Sequence[HistoricalCase] | None = None,
    ) -> BatchResult:
        rag = self._config.generation.use_rag if use_rag is None else use_rag
        return await self._orchestrator.generate_batch(
            points,
            context,
            concurrency=concurrency or self._config.generation.concurrency,
            on_progress=on_progress,
            use_rag=rag,
            knowledge_base=knowledge_base,
            max_results=self._config.retrieval.max_results,
            min_similarity=self._config.retrieval.min_similarity,
        )

    def get_usage_stats(self) -> dict[str, int]:
        return self._registry.get_usage_stats()

    def get_total_cost(self) -> float:
        return self._registry.get_total_cost()

    async def check_health(self) -> dict[str, bool]:
        return await self._registry.check_health()

    async def get_recommended_model(
        self, task_type: str | TaskType = TaskType.TESTCASE_GENERATION,
    ) -> str:
        return await self._registry.get_recommended_model(task_type)


def model_config_from_entry(entry: ModelEntryConfig) -> ModelConfig:
    """Translate a YAML model entry into a registry ModelConfig."""
    cost = None
    if entry.cost_input is not None and entry.cost_output is not None:
        cost = CostRate(input=entry.cost_input, output=entry.cost_output)
    elif entry.cost_input is not None or entry.cost_output is not None:
        logger.warning(
            "Model '%s' sets only one of cost_input/cost_output, using default rates.",
            entry.id,
        )
    return ModelConfig(
        id=entry.id,
        name=entry.name,
        provider=entry.provider,
        credential_ref=entry.api_key_env,
        base_url=entry.base_url,
        priority=entry.priority,
        is_active=entry.is_active,
        cost_per_1k_tokens=cost,
    )


def create_service(
    config: AppConfig,
    invoker: ModelInvoker | None = None,
    knowledge_loader: KnowledgeLoader | None = None,
) -> TestCaseService:
    """Build a TestCaseService from configuration.

    Args:
        config: Loaded application config.
        invoker: Model transport; defaults to the OpenAI-compatible client.
        knowledge_loader: Callable returning historical cases for a project.
    """
    if invoker is None:
        invoker = OpenAICompatibleInvoker(
            base_url=config.llm.base_url,
            api_key_env=config.llm.api_key_env,
            temperature=config.llm.temperature,
        )

    registry = ModelRegistry(
        invoker,
        configs=[model_config_from_entry(e) for e in config.models],
        task_mapping=config.task_mapping,
        timeout=config.llm.timeout,
        health_timeout=config.llm.health_timeout,
        estimated_tokens=config.generation.estimated_tokens_per_call,
    )
    retriever = SimilarityRetriever(
        max_results=config.retrieval.max_results,
        min_similarity=config.retrieval.min_similarity,
    )
    orchestrator = GenerationOrchestrator(
        registry,
        retriever=retriever,
        knowledge_loader=knowledge_loader,
        task_type=config.generation.task_type,
    )
    logger.info(
        "Service ready with %d model(s); default task model: %s.",
        len(config.models),
        registry.task_mapping.get(config.generation.task_type, "<priority order>"),
    )
    return TestCaseService(registry, orchestrator, config)

"""Multi-model registry: task routing, fallback, cost tracking and health."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from typing import Iterable

from casegen.errors import (
    AllModelsFailedError,
    GenerationInvocationError,
    ModelInactiveError,
    ModelNotFoundError,
    NoAvailableModelError,
    NoHealthyModelError,
)
from casegen.llm.client import InvocationResult, ModelInvoker
from casegen.llm.models import (
    DEFAULT_COSTS,
    DEFAULT_PRIORITY,
    FALLBACK_COST,
    CostRate,
    ModelConfig,
    TaskType,
)
from casegen.llm.prompt_templates import HEALTH_PROBE

logger = logging.getLogger(__name__)

# Task type → preferred model id
DEFAULT_TASK_MAPPING: dict[str, str] = {
    TaskType.REQUIREMENT_ANALYSIS.value: "qwen-3",
    TaskType.TESTPOINT_GENERATION.value: "kimi-k2.5",
    TaskType.TESTCASE_GENERATION.value: "kimi-k2.5",
    TaskType.QUALITY_CHECK.value: "qwen-3",
    TaskType.CODE_REVIEW.value: "qwen-3",
    TaskType.DOCUMENT_ANALYSIS.value: "kimi-k2.5",
}

# Token count assumed per call when the transport reports no usage
DEFAULT_ESTIMATED_TOKENS = 1000

# Rate per 1K tokens for unknown model ids
_UNKNOWN_MODEL_RATE = 0.001

_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(ModelConfig) if f.name != "id"
)


def _task_key(task_type: str | TaskType) -> str:
    return task_type.value if isinstance(task_type, TaskType) else str(task_type)


class ModelRegistry:
    """Holds model configurations and routes generation calls to them.

    Usage counters and the cost accumulator are guarded by their own lock so
    concurrent batch items never lose an increment.  Config mutation uses a
    separate, coarser lock.
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        configs: Iterable[ModelConfig] = (),
        task_mapping: dict[str, str] | None = None,
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS,
    ) -> None:
        self._invoker = invoker
        self._timeout = timeout
        self._health_timeout = health_timeout
        self._estimated_tokens = estimated_tokens

        self._config_lock = threading.Lock()
        self._configs: dict[str, ModelConfig] = {}
        self._task_mapping: dict[str, str] = {**DEFAULT_TASK_MAPPING, **(task_mapping or {})}

        self._stats_lock = threading.Lock()
        self._usage: dict[str, int] = {}
        self._total_cost = 0.0

        for config in configs:
            self.add_config(config)

    # ── Configuration ────────────────────────────────────────────────

    @staticmethod
    def _with_defaults(config: ModelConfig) -> ModelConfig:
        priority = config.priority if config.priority is not None else DEFAULT_PRIORITY
        cost = config.cost_per_1k_tokens or DEFAULT_COSTS.get(config.id, FALLBACK_COST)
        return dataclasses.replace(config, priority=priority, cost_per_1k_tokens=cost)

    @property
    def task_mapping(self) -> dict[str, str]:
        """A copy of the task type → model id table."""
        return dict(self._task_mapping)

    def set_task_model(self, task_type: str | TaskType, model_id: str) -> None:
        with self._config_lock:
            self._task_mapping[_task_key(task_type)] = model_id

    def add_config(self, config: ModelConfig) -> None:
        """Register *config*; an existing entry with the same id is replaced."""
        stored = self._with_defaults(config)
        with self._config_lock:
            if stored.id in self._configs:
                logger.info("Replacing model config '%s'.", stored.id)
            self._configs[stored.id] = stored

    def update_config(self, model_id: str, **changes) -> ModelConfig:
        """Apply field *changes* to a registered model.

        Raises:
            ModelNotFoundError: If *model_id* is not registered.
            ValueError: If a change names an unknown field.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ModelConfig field(s): {', '.join(sorted(unknown))}")

        with self._config_lock:
            current = self._configs.get(model_id)
            if current is None:
                raise ModelNotFoundError(model_id)
            updated = dataclasses.replace(current, **changes)
            self._configs[model_id] = self._with_defaults(updated)
            return self._configs[model_id]

    def deactivate_model(self, model_id: str) -> None:
        self.update_config(model_id, is_active=False)

    def activate_model(self, model_id: str) -> None:
        self.update_config(model_id, is_active=True)

    def get_config(self, model_id: str) -> ModelConfig | None:
        with self._config_lock:
            return self._configs.get(model_id)

    def get_all_configs(self) -> list[ModelConfig]:
        with self._config_lock:
            return list(self._configs.values())

    def get_active_configs(self) -> list[ModelConfig]:
        return [c for c in self.get_all_configs() if c.is_active]

    def _active_by_priority(self) -> list[ModelConfig]:
        # sorted() is stable, so equal priorities keep registration order
        return sorted(self.get_active_configs(), key=lambda c: c.priority)

    # ── Routing ──────────────────────────────────────────────────────

    def select_model_for_task(self, task_type: str | TaskType) -> str:
        """Return the mapped model for *task_type*, or the best active model.

        Raises:
            NoAvailableModelError: If no model is active.
        """
        mapped = self._task_mapping.get(_task_key(task_type))
        if mapped:
            config = self.get_config(mapped)
            if config is not None and config.is_active:
                return mapped
            logger.debug(
                "Mapped model '%s' for task '%s' unavailable, using priority order.",
                mapped, _task_key(task_type),
            )

        candidates = self._active_by_priority()
        if not candidates:
            raise NoAvailableModelError()
        return candidates[0].id

    # ── Generation ───────────────────────────────────────────────────

    async def generate(self, prompt: str, model_id: str) -> str:
        """Generate text with a specific model.

        Raises:
            ModelNotFoundError: Unknown *model_id*.
            ModelInactiveError: *model_id* is deactivated.
            GenerationInvocationError: Transport failure or timeout.
        """
        config = self.get_config(model_id)
        if config is None:
            raise ModelNotFoundError(model_id)
        if not config.is_active:
            raise ModelInactiveError(model_id)

        result = await self._invoke(prompt, config, self._timeout)
        cost = self._call_cost(config, result)
        self._record_usage(model_id, cost)
        return result.text

    async def _invoke(self, prompt: str, config: ModelConfig, timeout: float) -> InvocationResult:
        try:
            return await asyncio.wait_for(
                self._invoker.invoke(prompt, config.id, config, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationInvocationError(
                f"Model call timed out after {timeout:.1f}s", model_id=config.id,
            ) from e
        except GenerationInvocationError:
            raise
        except Exception as e:
            raise GenerationInvocationError(
                f"Model call failed: {e}", model_id=config.id,
            ) from e

    async def generate_for_task(self, prompt: str, task_type: str | TaskType) -> str:
        return await self.generate(prompt, self.select_model_for_task(task_type))

    async def generate_with_fallback(self, prompt: str, preferred_model_id: str) -> str:
        """Try *preferred_model_id*, then every other active model by priority.

        Raises:
            NoAvailableModelError: If no model is active.
            AllModelsFailedError: If every attempt failed.
        """
        active = self._active_by_priority()
        if not active:
            raise NoAvailableModelError()

        try_order = [preferred_model_id] + [
            c.id for c in active if c.id != preferred_model_id
        ]

        attempts: list[tuple[str, BaseException]] = []
        for model_id in try_order:
            try:
                return await self.generate(prompt, model_id)
            except Exception as e:
                logger.warning("Model '%s' failed: %s", model_id, e)
                attempts.append((model_id, e))

        raise AllModelsFailedError(attempts)

    # ── Cost and usage ───────────────────────────────────────────────

    def estimate_cost(self, model_id: str, token_count: int) -> float:
        """Estimate the cost of *token_count* tokens, split 50/50 in/out."""
        tokens = max(token_count, 0)
        config = self.get_config(model_id)
        if config is None or config.cost_per_1k_tokens is None:
            return (tokens / 1000) * _UNKNOWN_MODEL_RATE
        return self._priced(config.cost_per_1k_tokens, tokens * 0.5, tokens * 0.5)

    @staticmethod
    def _priced(rate: CostRate, input_tokens: float, output_tokens: float) -> float:
        return (input_tokens / 1000) * rate.input + (output_tokens / 1000) * rate.output

    def _call_cost(self, config: ModelConfig, result: InvocationResult) -> float:
        if result.has_usage and config.cost_per_1k_tokens is not None:
            return self._priced(
                config.cost_per_1k_tokens, result.input_tokens, result.output_tokens,
            )
        return self.estimate_cost(config.id, self._estimated_tokens)

    def _record_usage(self, model_id: str, cost: float) -> None:
        with self._stats_lock:
            self._usage[model_id] = self._usage.get(model_id, 0) + 1
            self._total_cost += cost

    def get_usage_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._usage)

    def get_total_cost(self) -> float:
        with self._stats_lock:
            return self._total_cost

    # ── Health ───────────────────────────────────────────────────────

    async def check_health(self) -> dict[str, bool]:
        """Report availability for every registered model.

        Inactive models are reported unhealthy without probing.  For models
        on the transport's listing endpoint, membership in the listing
        decides health.  Models on other endpoints, or all of them when the
        listing is empty or fails, get a short probe call.
        """
        configs = self.get_all_configs()
        health: dict[str, bool] = {c.id: False for c in configs}
        active = [c for c in configs if c.is_active]
        if not active:
            return health

        by_listing = [c for c in active if self._invoker.serves_listing(c)]
        to_probe = [c for c in active if not self._invoker.serves_listing(c)]

        available: list[str] = []
        if by_listing:
            try:
                available = await self._invoker.list_available_model_ids()
            except Exception as e:
                logger.warning("Model listing unavailable (%s), probing models directly.", e)

        if available:
            listed = set(available)
            for config in by_listing:
                health[config.id] = config.id in listed
        else:
            to_probe = by_listing + to_probe

        if to_probe:
            results = await asyncio.gather(
                *(self._probe(config) for config in to_probe)
            )
            for config, ok in zip(to_probe, results):
                health[config.id] = ok
        return health

    async def _probe(self, config: ModelConfig) -> bool:
        try:
            await self._invoke(HEALTH_PROBE, config, self._health_timeout)
        except GenerationInvocationError as e:
            logger.info("Health probe for '%s' failed: %s", config.id, e)
            return False
        return True

    async def get_recommended_model(self, task_type: str | TaskType) -> str:
        """Pick the task's model if healthy, else the best healthy model.

        Raises:
            NoHealthyModelError: If no active model is healthy.
        """
        health = await self.check_health()
        try:
            preferred = self.select_model_for_task(task_type)
        except NoAvailableModelError as e:
            raise NoHealthyModelError() from e

        if health.get(preferred):
            return preferred

        for config in self._active_by_priority():
            if health.get(config.id):
                logger.info(
                    "Preferred model '%s' unhealthy, recommending '%s'.", preferred, config.id,
                )
                return config.id

        raise NoHealthyModelError()

"""In-memory fakes shared across the test suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

from casegen.generation.base import TestPoint
from casegen.llm.client import InvocationResult, ModelInvoker
from casegen.llm.models import ModelConfig
from casegen.retrieval.retriever import HistoricalCase

Outcome = Any  # str | InvocationResult | BaseException | Callable[[str], Any]


def cases_json(*titles: str, priority: str = "P1") -> str:
    """A well-formed model response with one case per title."""
    return json.dumps(
        {
            "testCases": [
                {
                    "title": t,
                    "precondition": "logged out",
                    "steps": ["open page", "submit"],
                    "expectedResult": "ok",
                    "priority": priority,
                }
                for t in titles
            ]
        },
        ensure_ascii=False,
    )


class FakeInvoker(ModelInvoker):
    """Scriptable transport.

    ``scripts`` maps a model id to a list of outcomes consumed one per call;
    the last outcome repeats.  Outcomes may be text, an InvocationResult, an
    exception instance (raised) or a callable taking the prompt.
    """

    def __init__(
        self,
        scripts: dict[str, list[Outcome]] | None = None,
        default: Outcome = '{"testCases": []}',
        listed: list[str] | Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.default = default
        self.listed = listed
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.timeouts: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _next(self, model_id: str) -> Outcome:
        queue = self.scripts.get(model_id)
        if not queue:
            return self.default
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def invoke(
        self,
        prompt: str,
        model_id: str,
        config: ModelConfig,
        timeout: float,
    ) -> InvocationResult:
        self.calls.append((model_id, prompt))
        self.timeouts.append(timeout)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self._next(model_id)
            if callable(outcome) and not isinstance(outcome, BaseException):
                outcome = outcome(prompt)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, InvocationResult):
                return outcome
            return InvocationResult(text=outcome)
        finally:
            self.in_flight -= 1

    async def list_available_model_ids(self) -> list[str]:
        if isinstance(self.listed, Exception):
            raise self.listed
        return list(self.listed or [])

    def serves_listing(self, config: ModelConfig) -> bool:
        # Models with their own endpoint are outside the listing
        return not config.base_url

    @property
    def called_models(self) -> list[str]:
        return [model_id for model_id, _ in self.calls]


def make_point(
    point_id: str = "tp-1",
    name: str = "Login with valid password",
    description: str = "User signs in with a correct password",
    priority: str = "P1",
    related_feature: str = "登录模块",
) -> TestPoint:
    return TestPoint(
        id=point_id,
        name=name,
        description=description,
        priority=priority,
        related_feature=related_feature,
    )


def make_case(
    case_id: str = "hc-1",
    title: str = "Login succeeds",
    module: str = "登录模块",
    priority: str = "P1",
    precondition: str = "",
    expected_result: str = "",
    steps: tuple[str, ...] = ("open login page", "submit"),
) -> HistoricalCase:
    return HistoricalCase(
        id=case_id,
        title=title,
        precondition=precondition,
        steps=steps,
        expected_result=expected_result,
        priority=priority,
        module=module,
    )


def model(model_id: str, priority: int = 999, active: bool = True, **kwargs) -> ModelConfig:
    return ModelConfig(id=model_id, priority=priority, is_active=active, **kwargs)


ProgressLog = list[tuple[int, int]]


def progress_recorder() -> tuple[ProgressLog, Callable[[int, int], None]]:
    log: ProgressLog = []
    return log, lambda done, total: log.append((done, total))

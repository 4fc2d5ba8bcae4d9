"""Exception hierarchy for the generation pipeline."""

from __future__ import annotations


class CaseGenError(Exception):
    """Base class for all pipeline errors."""

    # BatchResult collected before an aborted batch, set by generate_batch
    partial_result = None


# ── Registry errors (configuration problems, escalated) ──────────────


class ModelNotFoundError(CaseGenError):
    def __init__(self, model_id: str) -> None:
        super().__init__(f"Model '{model_id}' is not registered")
        self.model_id = model_id


class ModelInactiveError(CaseGenError):
    def __init__(self, model_id: str) -> None:
        super().__init__(f"Model '{model_id}' is not active")
        self.model_id = model_id


class NoAvailableModelError(CaseGenError):
    def __init__(self, message: str = "No active model is configured") -> None:
        super().__init__(message)


class NoHealthyModelError(CaseGenError):
    def __init__(self, message: str = "No healthy model is available") -> None:
        super().__init__(message)


# ── Per-call errors (captured per test point in batch mode) ─────────


class AllModelsFailedError(CaseGenError):
    """Every model in the fallback chain failed.

    ``attempts`` holds ``(model_id, error)`` pairs in the order tried.
    """

    def __init__(self, attempts: list[tuple[str, BaseException]]) -> None:
        self.attempts = attempts
        detail = "; ".join(f"{model_id}: {err}" for model_id, err in attempts)
        super().__init__(f"All models failed: {detail}")

    @property
    def attempted_models(self) -> list[str]:
        return [model_id for model_id, _ in self.attempts]


class GenerationInvocationError(CaseGenError):
    """Network, auth or timeout failure while calling a model."""

    def __init__(self, message: str, model_id: str | None = None) -> None:
        super().__init__(message)
        self.model_id = model_id


class ResponseParseError(CaseGenError):
    """Model output was not valid JSON or lacked a ``testCases`` array."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class RetrievalError(CaseGenError):
    """Similar-case retrieval failed; callers degrade to plain prompting."""

"""Model configuration records and display-name helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

# Sentinel priority for models registered without one (lower = preferred).
DEFAULT_PRIORITY = 999


class TaskType(str, Enum):
    """Known task labels. The registry also accepts arbitrary strings."""

    REQUIREMENT_ANALYSIS = "requirement_analysis"
    TESTPOINT_GENERATION = "testpoint_generation"
    TESTCASE_GENERATION = "testcase_generation"
    QUALITY_CHECK = "quality_check"
    CODE_REVIEW = "code_review"
    DOCUMENT_ANALYSIS = "document_analysis"


# ── Provider prefix mapping ──────────────────────────────────────

_PROVIDER_MAP: dict[str, str] = {
    "kimi": "Moonshot",
    "moonshot": "Moonshot",
    "qwen": "Qwen",
    "deepseek": "DeepSeek",
    "gpt": "OpenAI",
    "openai": "OpenAI",
    "claude": "Anthropic",
    "glm": "Zhipu",
}

# Name segments shown in capitals
_ACRONYMS = {"gpt": "GPT", "glm": "GLM"}


@dataclass(frozen=True)
class CostRate:
    """Price per 1K tokens, split by direction."""

    input: float
    output: float

    def __post_init__(self) -> None:
        if self.input < 0 or self.output < 0:
            raise ValueError("Token rates must be non-negative")


# Per-model defaults (currency units per 1K tokens)
DEFAULT_COSTS: dict[str, CostRate] = {
    "kimi-k2.5": CostRate(input=0.001, output=0.002),
    "qwen-3": CostRate(input=0.002, output=0.004),
    "gpt-4": CostRate(input=0.03, output=0.06),
    "deepseek-v3": CostRate(input=0.001, output=0.002),
}

FALLBACK_COST = CostRate(input=0.001, output=0.002)


@dataclass
class ModelConfig:
    """A registered model.

    ``credential_ref`` names the environment variable holding the API key;
    the key itself is never stored on the config.
    """

    id: str
    name: str = ""
    provider: str = ""
    credential_ref: str = ""
    base_url: str = ""
    priority: int = DEFAULT_PRIORITY
    is_active: bool = True
    cost_per_1k_tokens: CostRate | None = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("ModelConfig.id must be a non-empty string")
        if self.priority is None:
            self.priority = DEFAULT_PRIORITY
        if not self.name:
            self.name = humanize_model_name(self.id)
        if not self.provider:
            self.provider = guess_provider(self.id)


def guess_provider(model_id: str) -> str:
    """Infer a provider label from the leading segment of a model id."""
    prefix = re.split(r"[-_:/.]", model_id.lower(), maxsplit=1)[0]
    return _PROVIDER_MAP.get(prefix, prefix.title())


def humanize_model_name(model_id: str) -> str:
    """Display name for a model id: ``kimi-k2.5`` becomes ``Kimi K2.5``."""
    words = [w for w in re.split(r"[-_\s]+", model_id) if w]
    return " ".join(_ACRONYMS.get(w.lower(), w[:1].upper() + w[1:]) for w in words)

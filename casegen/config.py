"""Configuration loading from YAML."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("casegen.yaml")


@dataclass
class LLMConfig:
    base_url: str = "https://api.moonshot.cn/v1"
    api_key_env: str = "KIMI_API_KEY"
    timeout: float = 30.0
    health_timeout: float = 5.0
    temperature: float = 0.3


@dataclass
class ModelEntryConfig:
    id: str = ""
    name: str = ""
    provider: str = ""
    api_key_env: str = ""
    base_url: str = ""
    priority: int = 999
    is_active: bool = True
    cost_input: float | None = None
    cost_output: float | None = None


@dataclass
class RetrievalConfig:
    max_results: int = 3
    min_similarity: float = 0.5


@dataclass
class GenerationConfig:
    concurrency: int = 3
    use_rag: bool = False
    task_type: str = "testcase_generation"
    estimated_tokens_per_call: int = 1000


@dataclass
class AppConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    models: list[ModelEntryConfig] = field(default_factory=list)
    task_mapping: dict[str, str] = field(default_factory=dict)


def _apply_dict(target: Any, data: dict[str, Any]) -> None:
    """Apply dictionary values onto a dataclass instance."""
    for key, value in data.items():
        if hasattr(target, key):
            current = getattr(target, key)
            if current is not None and value is not None:
                expected_type = type(current)
                actual_type = type(value)
                # Allow int → float coercion
                if expected_type is float and actual_type is int:
                    value = float(value)
                # Guard against bool being subclass of int
                elif expected_type is int and actual_type is bool:
                    logger.warning(
                        "Config type mismatch for '%s': expected %s, got %s, skipping.",
                        key, expected_type.__name__, actual_type.__name__,
                    )
                    continue
                elif not isinstance(value, expected_type):
                    logger.warning(
                        "Config type mismatch for '%s': expected %s, got %s, skipping.",
                        key, expected_type.__name__, actual_type.__name__,
                    )
                    continue
            elif value is not None and key.startswith("cost_"):
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    logger.warning("Config value for '%s' must be a number, skipping.", key)
                    continue
                value = float(value)
            setattr(target, key, value)
        else:
            logger.warning("Unknown config key '%s' ignored.", key)


def _load_models(raw_models: Any) -> list[ModelEntryConfig]:
    if not isinstance(raw_models, list):
        logger.warning("Config 'models' must be a list, ignoring.")
        return []

    entries: list[ModelEntryConfig] = []
    for raw in raw_models:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning("Skipping model entry without an id: %r", raw)
            continue
        entry = ModelEntryConfig()
        # Nested cost mapping: {cost: {input: .., output: ..}}
        cost = raw.get("cost")
        flat = {k: v for k, v in raw.items() if k != "cost"}
        if isinstance(cost, dict):
            flat.setdefault("cost_input", cost.get("input"))
            flat.setdefault("cost_output", cost.get("output"))
        _apply_dict(entry, flat)
        entries.append(entry)
    return entries


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from YAML file, falling back to defaults."""
    cfg = AppConfig()

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        if "llm" in raw:
            _apply_dict(cfg.llm, raw["llm"])
        if "retrieval" in raw:
            _apply_dict(cfg.retrieval, raw["retrieval"])
        if "generation" in raw:
            _apply_dict(cfg.generation, raw["generation"])
        if "models" in raw:
            cfg.models = _load_models(raw["models"])
        if "task_mapping" in raw:
            mapping = raw["task_mapping"]
            if isinstance(mapping, dict):
                cfg.task_mapping = {str(k): str(v) for k, v in mapping.items()}
            else:
                logger.warning("Config 'task_mapping' must be a mapping, ignoring.")
    else:
        logger.info("No config file at %s, using defaults.", config_path)

    return cfg


def config_to_dict(cfg: AppConfig) -> dict[str, Any]:
    """Convert an AppConfig to a plain dict, redacting secrets.

    Environment-variable names that hold API keys are replaced with
    ``"***"`` so they never leak into logs or API responses.
    """
    result = dataclasses.asdict(cfg)
    result["llm"]["api_key_env"] = "***"
    for model in result["models"]:
        if model.get("api_key_env"):
            model["api_key_env"] = "***"
    return result


def save_config(cfg: AppConfig, config_path: Path | None = None) -> None:
    """Write the current config to YAML on disk.

    The file is overwritten atomically (write-to-temp then rename).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data = dataclasses.asdict(cfg)

    tmp = config_path.with_suffix(".yaml.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
    tmp.replace(config_path)

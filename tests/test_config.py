"""Tests for YAML configuration loading."""

from __future__ import annotations

from pathlib import Path

import yaml

from casegen.config import (
    AppConfig,
    GenerationConfig,
    _apply_dict,
    config_to_dict,
    load_config,
    save_config,
)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.generation.concurrency == 3
        assert cfg.retrieval.max_results == 3
        assert cfg.retrieval.min_similarity == 0.5
        assert cfg.llm.timeout == 30.0
        assert cfg.models == []

    def test_empty_file(self, tmp_path: Path) -> None:
        p = tmp_path / "casegen.yaml"
        p.write_text("", encoding="utf-8")
        assert load_config(p) == AppConfig()

    def test_sections_and_models(self, tmp_path: Path) -> None:
        p = tmp_path / "casegen.yaml"
        p.write_text(
            """
llm:
  timeout: 10
  api_key_env: MY_KEY
retrieval:
  min_similarity: 0.3
generation:
  concurrency: 5
  use_rag: true
models:
  - id: kimi-k2.5
    priority: 1
  - id: qwen-3
    api_key_env: QWEN_KEY
    is_active: false
    cost:
      input: 0.002
      output: 0.004
  - name: no id here
task_mapping:
  quality_check: kimi-k2.5
""",
            encoding="utf-8",
        )
        cfg = load_config(p)
        assert cfg.llm.timeout == 10.0
        assert isinstance(cfg.llm.timeout, float)
        assert cfg.llm.api_key_env == "MY_KEY"
        assert cfg.retrieval.min_similarity == 0.3
        assert cfg.generation.concurrency == 5
        assert cfg.generation.use_rag is True
        assert [m.id for m in cfg.models] == ["kimi-k2.5", "qwen-3"]
        assert cfg.models[0].priority == 1
        assert cfg.models[1].is_active is False
        assert (cfg.models[1].cost_input, cfg.models[1].cost_output) == (0.002, 0.004)
        assert cfg.task_mapping == {"quality_check": "kimi-k2.5"}

    def test_bad_models_section_ignored(self, tmp_path: Path) -> None:
        p = tmp_path / "casegen.yaml"
        p.write_text("models: {id: x}\ntask_mapping: [a]\n", encoding="utf-8")
        cfg = load_config(p)
        assert cfg.models == []
        assert cfg.task_mapping == {}


class TestApplyDict:
    def test_type_mismatch_skipped(self) -> None:
        gen = GenerationConfig()
        _apply_dict(gen, {"concurrency": "lots", "use_rag": True})
        assert gen.concurrency == 3
        assert gen.use_rag is True

    def test_bool_for_int_rejected(self) -> None:
        gen = GenerationConfig()
        _apply_dict(gen, {"concurrency": True})
        assert gen.concurrency == 3

    def test_unknown_key_ignored(self) -> None:
        gen = GenerationConfig()
        _apply_dict(gen, {"nonsense": 1})
        assert not hasattr(gen, "nonsense")


class TestSaveConfig:
    def test_redaction(self) -> None:
        cfg = load_config(Path("definitely-missing.yaml"))
        data = config_to_dict(cfg)
        assert data["llm"]["api_key_env"] == "***"

    def test_round_trip_keeps_real_env_names(self, tmp_path: Path) -> None:
        p = tmp_path / "casegen.yaml"
        cfg = AppConfig()
        cfg.generation.concurrency = 7
        cfg.task_mapping = {"testcase_generation": "qwen-3"}
        save_config(cfg, p)

        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
        assert raw["llm"]["api_key_env"] == "KIMI_API_KEY"
        loaded = load_config(p)
        assert loaded.generation.concurrency == 7
        assert loaded.task_mapping == {"testcase_generation": "qwen-3"}
        assert not p.with_suffix(".yaml.tmp").exists()

"""CLI entry point for casegen."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from casegen.config import load_config
from casegen.errors import CaseGenError
from casegen.generation.base import GenerationContext, TestPoint
from casegen.retrieval.retriever import HistoricalCase

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _load_points(path: str) -> list[TestPoint]:
    raw = _read_json(path)
    if isinstance(raw, dict):
        raw = raw.get("testPoints", [])
    return [TestPoint.from_dict(item) for item in raw]


def _load_knowledge(path: str | None) -> list[HistoricalCase] | None:
    if not path:
        return None
    raw = _read_json(path)
    if isinstance(raw, dict):
        raw = raw.get("cases", [])
    return [HistoricalCase.from_dict(item) for item in raw]


def cmd_generate(args: argparse.Namespace) -> None:
    """Generate test cases for every test point in a JSON file."""
    from casegen.service import create_service

    config = load_config(Path(args.config) if args.config else None)

    try:
        points = _load_points(args.points)
        knowledge = _load_knowledge(args.knowledge)
        context = GenerationContext.from_dict(_read_json(args.context)) if args.context else None
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: cannot read input: {e}", file=sys.stderr)
        sys.exit(1)

    if not points:
        print("No test points found. Nothing to generate.")
        return

    service = create_service(config)

    def _progress(completed: int, total: int) -> None:
        print(f"  [{completed}/{total}] test points processed", file=sys.stderr)

    async def _run() -> None:
        try:
            result = await service.generate_for_test_points(
                points,
                context,
                concurrency=args.concurrency,
                on_progress=_progress,
                use_rag=args.rag or None,
                knowledge_base=knowledge,
            )
        except (CaseGenError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        output = {
            "testCases": [c.to_dict() for c in result.cases],
            "errors": [e.to_dict() for e in result.errors],
            "usage": service.get_usage_stats(),
            "totalCost": round(service.get_total_cost(), 6),
        }
        text = json.dumps(output, ensure_ascii=False, indent=2)
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            print(f"Wrote {len(result.cases)} test cases to {args.output}.")
        else:
            print(text)

        for failure in result.errors:
            print(
                f"  FAILED {failure.test_point_id}: {failure.error_type}: {failure.message}",
                file=sys.stderr,
            )

    asyncio.run(_run())


def cmd_health(args: argparse.Namespace) -> None:
    """Probe every configured model."""
    from casegen.service import create_service

    config = load_config(Path(args.config) if args.config else None)
    service = create_service(config)

    async def _run() -> None:
        health = await service.check_health()
        if not health:
            print("No models configured.")
            return
        for model_id, ok in health.items():
            print(f"  {model_id:<24} {'healthy' if ok else 'unavailable'}")
        try:
            recommended = await service.get_recommended_model(args.task)
            print(f"\nRecommended for {args.task}: {recommended}")
        except CaseGenError as e:
            print(f"\nNo recommendation: {e}", file=sys.stderr)

    asyncio.run(_run())


def cmd_models(args: argparse.Namespace) -> None:
    """List configured models and task routing."""
    from casegen.service import create_service

    config = load_config(Path(args.config) if args.config else None)
    registry = create_service(config).registry

    configs = sorted(registry.get_all_configs(), key=lambda c: c.priority)
    if not configs:
        print("No models configured.")
        return
    for c in configs:
        state = "active" if c.is_active else "inactive"
        rate = c.cost_per_1k_tokens
        print(
            f"  {c.id:<24} {c.name:<20} {c.provider:<10} priority={c.priority:<4} "
            f"{state:<8} in={rate.input:g}/1K out={rate.output:g}/1K"
        )
    print("\nTask routing:")
    for task, model_id in sorted(registry.task_mapping.items()):
        print(f"  {task:<24} → {model_id}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="casegen",
        description="Retrieval-augmented test case generation",
    )
    parser.add_argument("--config", help="Path to casegen.yaml", default=None)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Set logging level (default: WARNING)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # generate command
    p_gen = sub.add_parser("generate", help="Generate test cases from a test point file")
    p_gen.add_argument("--points", required=True, help="Path to test points JSON")
    p_gen.add_argument("--knowledge", default=None, help="Path to historical cases JSON")
    p_gen.add_argument("--context", default=None, help="Path to business rules/features JSON")
    p_gen.add_argument("--rag", action="store_true", help="Ground prompts in similar historical cases")
    p_gen.add_argument("--concurrency", type=int, default=None, help="Test points per chunk")
    p_gen.add_argument("--output", default=None, help="Write results to this file")
    p_gen.set_defaults(func=cmd_generate)

    # health command
    p_health = sub.add_parser("health", help="Check model availability")
    p_health.add_argument("--task", default="testcase_generation", help="Task type to recommend for")
    p_health.set_defaults(func=cmd_health)

    # models command
    p_models = sub.add_parser("models", help="List configured models")
    p_models.set_defaults(func=cmd_models)

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()

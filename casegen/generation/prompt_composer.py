"""Build the test-case generation prompt, optionally with few-shot examples."""

from __future__ import annotations

from typing import Sequence

from casegen.generation.base import GenerationContext, TestPoint
from casegen.llm.prompt_templates import (
    BUSINESS_RULES_HEADER,
    EXAMPLE_ENTRY,
    EXAMPLES_FOOTER,
    EXAMPLES_HEADER,
    EXAMPLES_REQUIREMENT,
    FEATURES_HEADER,
    OUTPUT_FORMAT_SECTION,
    REQUIREMENTS_SECTION,
    ROLE_PREAMBLE,
    TEST_POINT_SECTION,
)
from casegen.retrieval.retriever import RetrievalResult

MAX_EXAMPLES = 3


def _format_steps(steps: Sequence[str]) -> str:
    if not steps:
        return "  (none)"
    return "\n".join(f"  {i}. {step}" for i, step in enumerate(steps, start=1))


def _format_examples(examples: Sequence[RetrievalResult]) -> str:
    parts = [EXAMPLES_HEADER]
    for index, item in enumerate(examples[:MAX_EXAMPLES], start=1):
        case = item.case
        parts.append(
            EXAMPLE_ENTRY.format(
                index=index,
                similarity_percent=round(item.similarity * 100),
                title=case.title,
                precondition=case.precondition,
                steps=_format_steps(case.steps),
                expected_result=case.expected_result,
            )
        )
    parts.append(EXAMPLES_FOOTER)
    return "".join(parts)


def _format_context(context: GenerationContext | None) -> str:
    if context is None:
        return ""
    parts: list[str] = []
    if context.business_rules:
        parts.append(BUSINESS_RULES_HEADER)
        parts.extend(f"- [{rule.type}] {rule.description}\n" for rule in context.business_rules)
    if context.features:
        parts.append(FEATURES_HEADER)
        parts.extend(f"- {feature}\n" for feature in context.features)
    return "".join(parts)


class PromptComposer:
    """Assembles the instruction sent to the model for one test point."""

    def compose(
        self,
        test_point: TestPoint,
        context: GenerationContext | None = None,
        examples: Sequence[RetrievalResult] | None = None,
    ) -> str:
        """Render the full prompt.

        The reference-examples section appears only when *examples* is
        non-empty, and holds at most ``MAX_EXAMPLES`` entries.
        """
        has_examples = bool(examples)

        prompt = ROLE_PREAMBLE
        if has_examples:
            prompt += _format_examples(examples)

        prompt += TEST_POINT_SECTION.format(
            name=test_point.name,
            description=test_point.description,
            priority=test_point.priority,
            related_feature=test_point.related_feature,
        )
        prompt += _format_context(context)

        prompt += REQUIREMENTS_SECTION
        if has_examples:
            prompt += EXAMPLES_REQUIREMENT

        prompt += OUTPUT_FORMAT_SECTION
        return prompt

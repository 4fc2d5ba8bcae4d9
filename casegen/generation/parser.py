"""Parse raw model output into GeneratedTestCase records."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from casegen.errors import ResponseParseError
from casegen.generation.base import PRIORITIES, GeneratedTestCase, TestPoint

logger = logging.getLogger(__name__)

UNTITLED = "Untitled test case"

# Leading ```json / ``` fence and trailing ``` fence
_OPEN_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\n?```\s*$")

# Legacy Chinese priority labels
_PRIORITY_ALIASES = {"高": "P0", "中": "P2", "低": "P3"}


class _CaseItem(BaseModel):
    """One element of the model's ``testCases`` array."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = None
    precondition: str | None = None
    steps: list[str] = Field(default_factory=list)
    expected_result: str | None = Field(default=None, alias="expectedResult")
    priority: str | None = None

    @field_validator("title", "precondition", "expected_result", "priority", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, list):
            return [str(step) for step in value if step is not None]
        return []


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _OPEN_FENCE_RE.sub("", stripped, count=1)
        stripped = _CLOSE_FENCE_RE.sub("", stripped, count=1)
    return stripped.strip()


def normalize_priority(value: str | None, default: str) -> str:
    """Map *value* onto P0..P3, falling back to *default*."""
    if value:
        candidate = value.strip()
        upper = candidate.upper()
        if upper in PRIORITIES:
            return upper
        if candidate in _PRIORITY_ALIASES:
            return _PRIORITY_ALIASES[candidate]
    return default


def parse_response(text: str, test_point: TestPoint) -> list[GeneratedTestCase]:
    """Decode *text* and stamp every item with the test point's identity.

    An empty ``testCases`` array is a valid, empty result.

    Raises:
        ResponseParseError: Invalid JSON, a non-object payload, a missing or
            non-list ``testCases`` field, or an item that is not an object.
    """
    payload_text = strip_code_fences(text or "")
    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in model response: {e.msg}", raw=text) from e
    except RecursionError as e:
        raise ResponseParseError("Model response is nested too deeply", raw=text) from e

    if not isinstance(payload, dict):
        raise ResponseParseError("Model response is not a JSON object", raw=text)

    items = payload.get("testCases")
    if not isinstance(items, list):
        raise ResponseParseError("Model response is missing the testCases array", raw=text)

    cases: list[GeneratedTestCase] = []
    for index, raw_item in enumerate(items, start=1):
        if not isinstance(raw_item, dict):
            raise ResponseParseError(
                f"testCases[{index - 1}] is not an object", raw=text,
            )
        try:
            item = _CaseItem.model_validate(raw_item)
        except ValidationError as e:
            raise ResponseParseError(
                f"testCases[{index - 1}] failed validation: {e.error_count()} error(s)",
                raw=text,
            ) from e

        cases.append(
            GeneratedTestCase(
                id=f"TC-{test_point.id}-{index}",
                title=item.title or UNTITLED,
                precondition=item.precondition or "",
                steps=item.steps,
                expected_result=item.expected_result or "",
                priority=normalize_priority(item.priority, test_point.priority),
                test_point_id=test_point.id,
                related_feature=test_point.related_feature,
            )
        )

    logger.debug("Parsed %d test cases for test point %s.", len(cases), test_point.id)
    return cases

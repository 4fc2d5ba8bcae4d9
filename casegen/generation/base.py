"""Core records for the generation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

PRIORITIES = ("P0", "P1", "P2", "P3")


@dataclass(frozen=True)
class TestPoint:
    """A unit of required test coverage, produced upstream from a requirement."""

    __test__ = False  # keep pytest from collecting this class

    id: str
    name: str
    description: str
    priority: str
    related_feature: str

    def __post_init__(self) -> None:
        if self.priority not in PRIORITIES:
            raise ValueError(
                f"TestPoint {self.id!r}: priority must be one of {PRIORITIES}, "
                f"got {self.priority!r}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestPoint:
        """Build from a camelCase or snake_case mapping."""
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            description=str(data.get("description", "") or ""),
            priority=str(data.get("priority", "")).upper(),
            related_feature=str(
                data.get("relatedFeature", data.get("related_feature", "")) or ""
            ),
        )


@dataclass
class GeneratedTestCase:
    """A test case produced by the model for one test point."""

    id: str
    title: str
    precondition: str
    steps: list[str]
    expected_result: str
    priority: str
    test_point_id: str
    related_feature: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "precondition": self.precondition,
            "steps": list(self.steps),
            "expectedResult": self.expected_result,
            "priority": self.priority,
            "testPointId": self.test_point_id,
            "relatedFeature": self.related_feature,
        }


@dataclass(frozen=True)
class BusinessRule:
    type: str
    description: str
    value: str | None = None


@dataclass
class GenerationContext:
    """Extra requirement context rendered into the prompt."""

    business_rules: list[BusinessRule] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    project_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GenerationContext:
        if not data:
            return cls()
        rules = [
            BusinessRule(
                type=str(r.get("type", "")),
                description=str(r.get("description", "")),
                value=r.get("value"),
            )
            for r in data.get("businessRules", data.get("business_rules", [])) or []
            if isinstance(r, dict)
        ]
        return cls(
            business_rules=rules,
            features=[str(f) for f in data.get("features", []) or []],
            project_id=data.get("projectId", data.get("project_id")),
        )


class PointState(str, Enum):
    """Lifecycle of one test point inside a generation request."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PointFailure:
    """Why a test point produced no cases in a batch."""

    test_point_id: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "testPointId": self.test_point_id,
            "errorType": self.error_type,
            "message": self.message,
        }


@dataclass
class BatchResult:
    """Outcome of a batch: successful cases in input order plus failures."""

    cases: list[GeneratedTestCase] = field(default_factory=list)
    errors: list[PointFailure] = field(default_factory=list)
    states: dict[str, PointState] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

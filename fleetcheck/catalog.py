"""
Typed check catalog contract.

A catalog is a JSON or YAML list of check definitions. Keys may be written in
snake_case or in the PascalCase used by existing `sql-checks.json` files
(`SqlQuery`, `CheckTriggered`, ...).

Execution type and row-count condition strings are parsed case-insensitively.
Values the engine does not know are kept as the explicit UNRECOGNIZED variant
instead of being rejected, so one stale catalog entry never blocks a run;
`lint_catalog()` reports them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

import orjson
import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_pascal

PLACEHOLDER = "@"


class ExecutionType(enum.Enum):
    """How a check's query output is interpreted.

    UNRECOGNIZED covers any type string the engine does not know; it is
    interpreted exactly like BINARY.
    """

    BINARY = "Binary"
    ROW_COUNT = "RowCount"
    INFO_ONLY = "InfoOnly"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def parse(cls, raw: object) -> ExecutionType:
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.BINARY
        key = str(raw).strip().lower()
        for member in (cls.BINARY, cls.ROW_COUNT, cls.INFO_ONLY):
            if member.value.lower() == key:
                return member
        return cls.UNRECOGNIZED


class RowCountCondition(enum.Enum):
    """Pass condition for RowCount checks.

    LESS_THAN_0 can never hold for a drained row count; catalogs use it as an
    explicit always-fail marker. UNRECOGNIZED compares the count with the
    check's expected_value.
    """

    EQUALS_0 = "Equals0"
    GREATER_THAN_0 = "GreaterThan0"
    LESS_THAN_0 = "LessThan0"
    ANY = "Any"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def parse(cls, raw: object) -> RowCountCondition:
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.EQUALS_0
        key = str(raw).strip().lower()
        for member in (cls.EQUALS_0, cls.GREATER_THAN_0, cls.LESS_THAN_0, cls.ANY):
            if member.value.lower() == key:
                return member
        return cls.UNRECOGNIZED


class CheckDefinition(BaseModel):
    """One catalog entry: a query plus its pass/fail policy and display metadata."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    id: str
    name: str = ""
    description: str = ""
    category: str = ""
    severity: str = "Warning"
    sql_query: str = ""
    expected_value: int = 0
    enabled: bool = True
    recommended_action: str = ""
    source: str = "Custom"
    execution_type: ExecutionType = ExecutionType.BINARY
    row_count_condition: RowCountCondition = RowCountCondition.EQUALS_0
    result_interpretation: str = "PassFail"
    priority: int = 1
    severity_score: int = 1
    weight: float = 0.0
    # Pass/fail message templates; "@" is replaced with the measured value.
    expected_state: str = ""
    check_triggered: str = ""
    check_cleared: str = ""
    detailed_remediation: str = ""
    support_type: str = "Reactive, Proactive"
    impact_score: int = 3
    additional_notes: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def non_empty_id(cls, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("execution_type", mode="before")
    @classmethod
    def parse_execution_type(cls, value: object) -> ExecutionType:
        return ExecutionType.parse(value)

    @field_validator("row_count_condition", mode="before")
    @classmethod
    def parse_row_count_condition(cls, value: object) -> RowCountCondition:
        return RowCountCondition.parse(value)

    @field_validator(
        "name",
        "description",
        "category",
        "severity",
        "sql_query",
        "recommended_action",
        "expected_state",
        "check_triggered",
        "check_cleared",
        "detailed_remediation",
        "additional_notes",
        mode="before",
    )
    @classmethod
    def none_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def pass_template(self) -> str:
        return self.check_cleared or self.expected_state

    @property
    def fail_template(self) -> str:
        return self.check_triggered


class CatalogSource(Protocol):
    def get_enabled_checks(self) -> list[CheckDefinition]: ...


def load_catalog_payload(path: Path) -> list:
    raw = path.read_bytes()
    if path.suffix.lower() == ".json":
        payload = orjson.loads(raw) if raw.strip() else []
    else:
        payload = yaml.safe_load(raw) or []
    if isinstance(payload, dict) and "checks" in payload:
        payload = payload["checks"]
    if not isinstance(payload, list):
        raise ValueError("catalog root must be a list of checks (or a mapping with 'checks')")
    return payload


def load_catalog(path: str | Path) -> list[CheckDefinition]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Check catalog not found: {path}")
    payload = load_catalog_payload(path)
    checks: list[CheckDefinition] = []
    for idx, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ValueError(f"checks[{idx}] must be a mapping/object")
        try:
            checks.append(CheckDefinition.model_validate(entry))
        except ValidationError as exc:
            ident = entry.get("id") or entry.get("Id") or f"#{idx}"
            raise ValueError(f"invalid check {ident}: {exc}") from exc
    return checks


class FileCatalog:
    """CatalogSource backed by a JSON/YAML file, loaded once on first use."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._checks: list[CheckDefinition] | None = None

    def _loaded(self) -> list[CheckDefinition]:
        if self._checks is None:
            self._checks = load_catalog(self.path)
        return self._checks

    def reload(self) -> None:
        self._checks = load_catalog(self.path)

    def get_all_checks(self) -> list[CheckDefinition]:
        return list(self._loaded())

    def get_enabled_checks(self) -> list[CheckDefinition]:
        return [c for c in self._loaded() if c.enabled]

    def get_checks_by_category(self, category: str) -> list[CheckDefinition]:
        wanted = category.casefold()
        return [c for c in self._loaded() if c.category.casefold() == wanted]


@dataclass(frozen=True)
class CatalogIssue:
    check_id: str
    level: Literal["error", "warning", "info"]
    message: str

    def __str__(self) -> str:
        return f"  [{self.level.upper()}] {self.check_id}: {self.message}"


def lint_catalog(checks: list[CheckDefinition]) -> list[CatalogIssue]:
    """Flag catalog-author mistakes the engine tolerates at run time."""
    issues: list[CatalogIssue] = []

    ids = [c.id for c in checks]
    for dup in sorted({i for i in ids if ids.count(i) > 1}):
        issues.append(CatalogIssue(dup, "error", f"duplicate id ({ids.count(dup)} entries)"))

    for check in checks:
        if not check.sql_query.strip():
            issues.append(CatalogIssue(check.id, "error", "empty sql_query"))

        if check.execution_type is ExecutionType.UNRECOGNIZED:
            issues.append(
                CatalogIssue(
                    check.id,
                    "warning",
                    "unrecognized execution_type; interpreted as Binary",
                )
            )

        if check.execution_type is ExecutionType.ROW_COUNT:
            if check.row_count_condition is RowCountCondition.UNRECOGNIZED:
                issues.append(
                    CatalogIssue(
                        check.id,
                        "warning",
                        "unrecognized row_count_condition; row count is compared "
                        f"with expected_value={check.expected_value}",
                    )
                )
            elif check.row_count_condition is RowCountCondition.LESS_THAN_0:
                issues.append(
                    CatalogIssue(
                        check.id,
                        "info",
                        "row_count_condition LessThan0 never passes (always-fail marker)",
                    )
                )

        for field_name in ("check_triggered", "check_cleared", "expected_state"):
            template = getattr(check, field_name)
            if template.count(PLACEHOLDER) > 1:
                issues.append(
                    CatalogIssue(
                        check.id,
                        "warning",
                        f"{field_name} has more than one '{PLACEHOLDER}' placeholder",
                    )
                )

    return issues

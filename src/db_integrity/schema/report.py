"""Drift report models: drifts, summary, recommendations, pass results."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from db_integrity.schema.changes import SchemaChange


class DriftType(str, Enum):
    MISSING_TABLE = "missing_table"
    MISSING_COLUMN = "missing_column"
    EXTRA_COLUMN = "extra_column"
    TYPE_MISMATCH = "type_mismatch"
    NULLABILITY_MISMATCH = "nullability_mismatch"
    ENUM_MISMATCH = "enum_mismatch"
    INDEX_MISMATCH = "index_mismatch"
    MANUAL_CHANGE = "manual_change"


class DriftSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)


# Highest first; the fixed reporting order
SEVERITY_ORDER = [
    DriftSeverity.CRITICAL,
    DriftSeverity.HIGH,
    DriftSeverity.MEDIUM,
    DriftSeverity.LOW,
]


# ============================================================================
# Drift
# ============================================================================


class Drift(BaseModel):
    """One discrepancy between the declared and the live schema.

    ``fix_sql`` is present only for fixable live-database repairs;
    ``declarative_fix`` only when the repair is an edit to the declarative
    document.  The two never coexist.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: DriftType
    severity: DriftSeverity
    object: str
    expected: Any = None
    actual: Any = None
    description: str = ""
    impact: str = ""
    fixable: bool = False
    fix_sql: str | None = None
    declarative_fix: str | None = None
    change: SchemaChange | None = None

    @model_validator(mode="after")
    def _exclusive_fixes(self) -> "Drift":
        if self.fix_sql is not None and self.declarative_fix is not None:
            raise ValueError("fix_sql and declarative_fix are mutually exclusive")
        if self.fix_sql is not None and not self.fixable:
            raise ValueError("fix_sql requires fixable=True")
        return self


class DriftSummary(BaseModel):
    """Pure reduction over a drift list."""

    model_config = ConfigDict(frozen=True)

    total_drifts: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    fixable: int = 0
    requires_manual_intervention: int = 0

    @classmethod
    def from_drifts(cls, drifts: list[Drift] | tuple[Drift, ...]) -> "DriftSummary":
        by_severity = {s.value: 0 for s in SEVERITY_ORDER}
        by_type: dict[str, int] = {}
        fixable = 0
        for drift in drifts:
            by_severity[drift.severity.value] += 1
            by_type[drift.type.value] = by_type.get(drift.type.value, 0) + 1
            if drift.fixable:
                fixable += 1
        return cls(
            total_drifts=len(drifts),
            by_severity=by_severity,
            by_type=by_type,
            fixable=fixable,
            requires_manual_intervention=len(drifts) - fixable,
        )


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: int
    action: str
    reason: str
    commands: tuple[str, ...] = ()


class DriftReport(BaseModel):
    """Immutable, severity-ordered drift report."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    drifts: tuple[Drift, ...] = ()
    summary: DriftSummary = Field(default_factory=DriftSummary)
    recommendations: tuple[Recommendation, ...] = ()

    @property
    def has_drift(self) -> bool:
        return bool(self.drifts)

    @property
    def fixable_drifts(self) -> list[Drift]:
        return [d for d in self.drifts if d.fixable]

    def by_severity(self, severity: DriftSeverity) -> list[Drift]:
        return [d for d in self.drifts if d.severity == severity]

    def format_report(self) -> str:
        """Format as a human-readable report."""
        if not self.drifts:
            return "No schema drift detected"

        lines = [f"Schema drift detected ({self.summary.total_drifts} issues):"]
        for severity in SEVERITY_ORDER:
            drifts = self.by_severity(severity)
            if not drifts:
                continue
            lines.append(f"\n  {severity.value.upper()} ({len(drifts)}):")
            for drift in drifts:
                lines.append(f"    - [{drift.type.value}] {drift.object}: {drift.description}")
        return "\n".join(lines)


# ============================================================================
# Pass Result
# ============================================================================


class DriftCheckResult(BaseModel):
    """Tagged result of one detection pass.

    Parse and introspection failures come back as ``success=False`` with
    ``error`` set, never as a partial report.
    """

    success: bool
    profile_name: str | None = None
    report: DriftReport | None = None
    error: str | None = None
    error_type: str | None = None

"""Schema drift detection: compare the declared schema against the live one.

Pure sync logic: both sides are already-fetched ``DeclarativeSchema`` /
``DatabaseSchema`` snapshots, so detection needs no connection and no
locking.

Usage:
    from db_integrity.schema.comparator import DriftDetector

    detector = DriftDetector()
    report = detector.detect(declared, actual, tracked_tables={"user"})
    for drift in report.drifts:
        print(drift.severity, drift.object, drift.fix_sql)
"""

import re
from collections.abc import Iterable

from db_integrity.events import (
    EventCategory,
    EventLevel,
    EventSink,
    LoggingEventSink,
    track_operation,
)
from db_integrity.schema.changes import (
    AddColumn,
    AddEnumValues,
    AdoptTable,
    AlterColumn,
    CreateEnum,
    CreateIndex,
    CreateTable,
    SchemaChange,
)
from db_integrity.schema.models import (
    DatabaseSchema,
    DeclarativeSchema,
    EnumType,
    Index,
    ModelDef,
    Table,
    snapshot_value,
)
from db_integrity.schema.report import (
    Drift,
    DriftReport,
    DriftSeverity,
    DriftSummary,
    DriftType,
    Recommendation,
)
from db_integrity.schema.types import types_match


def _fix_sql(change: SchemaChange) -> str:
    return "\n".join(change.to_sql())


def _fixable(change: SchemaChange, **kwargs) -> Drift:
    return Drift(fixable=True, fix_sql=_fix_sql(change), change=change, **kwargs)


class DriftDetector:
    """Diffs a declarative schema against an introspected one.

    Args:
        sink: Event receiver; defaults to ``LoggingEventSink``.
    """

    COMPONENT = "DriftDetector"

    def __init__(self, sink: EventSink | None = None) -> None:
        self._sink = sink or LoggingEventSink()

    def detect(
        self,
        declared: DeclarativeSchema,
        actual: DatabaseSchema,
        tracked_tables: Iterable[str] | None = None,
        ignore_patterns: Iterable[str] = (),
        correlation_id: str | None = None,
    ) -> DriftReport:
        """Produce a severity-ordered drift report.

        Args:
            declared: Parsed declarative schema.
            actual: Introspected live schema.
            tracked_tables: Tables created by tracked migrations.  ``None``
                disables manual-change detection (no history available).
            ignore_patterns: Regexes matched (``re.search``) against each
                drift's ``object``; matches are dropped from the report.
            correlation_id: Optional id attached to the emitted event.

        Returns:
            ``DriftReport`` whose drifts are ordered CRITICAL > HIGH >
            MEDIUM > LOW, detection order preserved within a severity.
        """
        with track_operation(
            self._sink,
            EventCategory.DRIFT_DETECTION,
            "detect",
            self.COMPONENT,
            correlation_id=correlation_id,
        ) as op:
            drifts: list[Drift] = []
            for model in declared.models:
                drifts.extend(self._check_model(declared, model, actual))
            for enum in declared.enums:
                drifts.extend(self._check_enum(enum, actual))
            if tracked_tables is not None:
                drifts.extend(self._check_manual_changes(actual, set(tracked_tables)))

            ordered = sorted(drifts, key=lambda d: d.severity.rank)
            visible = filter_ignored(ordered, ignore_patterns)

            report = DriftReport(
                drifts=tuple(visible),
                summary=DriftSummary.from_drifts(visible),
                recommendations=tuple(build_recommendations(visible)),
            )

            op.details.update(report.summary.model_dump())
            op.details["ignored"] = len(ordered) - len(visible)
            op.message = f"Detected {len(visible)} drift(s)"
            if report.summary.by_severity.get(DriftSeverity.CRITICAL.value):
                op.level = EventLevel.CRITICAL
            elif visible:
                op.level = EventLevel.WARN

        return report

    # ------------------------------------------------------------------
    # Per-model checks
    # ------------------------------------------------------------------

    def _check_model(
        self, declared: DeclarativeSchema, model: ModelDef, actual: DatabaseSchema
    ) -> list[Drift]:
        expected_table = declared.to_table(model)
        table = actual.table(model.table_name)

        if table is None:
            return [
                _fixable(
                    CreateTable(table=expected_table),
                    type=DriftType.MISSING_TABLE,
                    severity=DriftSeverity.CRITICAL,
                    object=model.table_name,
                    expected=snapshot_value(expected_table),
                    actual=None,
                    description=f"Table '{model.table_name}' for model '{model.name}' does not exist",
                    impact=f"Every query touching model '{model.name}' will fail",
                )
            ]

        drifts: list[Drift] = []
        declared_columns: set[str] = set()

        for field in model.scalar_fields:
            expected = declared.to_column(field)
            declared_columns.add(expected.name)
            live = table.column(expected.name)
            locator = f"{table.name}.{expected.name}"

            if live is None:
                drifts.append(
                    _fixable(
                        AddColumn(table_name=table.name, column=expected),
                        type=DriftType.MISSING_COLUMN,
                        severity=DriftSeverity.HIGH,
                        object=locator,
                        expected=snapshot_value(expected),
                        actual=None,
                        description=f"Column '{locator}' declared by '{model.name}.{field.name}' does not exist",
                        impact="Reads and writes of this field will fail",
                    )
                )
                continue

            if not types_match(expected.type, live.type):
                drifts.append(
                    _fixable(
                        AlterColumn(
                            table_name=table.name,
                            column_name=expected.name,
                            from_type=live.type,
                            to_type=expected.type,
                        ),
                        type=DriftType.TYPE_MISMATCH,
                        severity=DriftSeverity.HIGH,
                        object=locator,
                        expected=expected.type,
                        actual=live.type,
                        description=f"Column '{locator}' is {live.type}, declared {expected.type}",
                        impact="Values may be rejected, truncated or mis-compared",
                    )
                )

            if expected.nullable != live.nullable:
                drifts.append(
                    _fixable(
                        AlterColumn(
                            table_name=table.name,
                            column_name=expected.name,
                            from_nullable=live.nullable,
                            to_nullable=expected.nullable,
                        ),
                        type=DriftType.NULLABILITY_MISMATCH,
                        severity=DriftSeverity.MEDIUM,
                        object=locator,
                        expected="nullable" if expected.nullable else "not null",
                        actual="nullable" if live.nullable else "not null",
                        description=(
                            f"Column '{locator}' is "
                            f"{'nullable' if live.nullable else 'NOT NULL'}, declared "
                            f"{'optional' if expected.nullable else 'required'}"
                        ),
                        impact=(
                            "Inserts without this value will fail"
                            if not live.nullable
                            else "NULLs can be stored where the application expects a value"
                        ),
                    )
                )

        for live in table.columns:
            if live.name in declared_columns:
                continue
            locator = f"{table.name}.{live.name}"
            # Never proposes DROP COLUMN; the repair lives in the declarative document
            drifts.append(
                Drift(
                    type=DriftType.EXTRA_COLUMN,
                    severity=DriftSeverity.LOW,
                    object=locator,
                    expected=None,
                    actual=snapshot_value(live),
                    description=f"Column '{locator}' exists in the database but no field declares it",
                    impact="Invisible to the application; may hold data nobody maintains",
                    fixable=False,
                    declarative_fix=f"Add field '{live.name}' to model '{model.name}'",
                )
            )

        drifts.extend(self._check_indexes(expected_table, table))
        return drifts

    def _check_indexes(self, expected_table: Table, table: Table) -> list[Drift]:
        wanted = list(expected_table.indexes) + [
            Index(columns=(col.name,), unique=True)
            for col in expected_table.columns
            if col.unique and (col.name,) != expected_table.primary_key
        ]

        drifts: list[Drift] = []
        for index in wanted:
            if any(
                live.columns == index.columns and (live.unique or not index.unique)
                for live in table.indexes
            ):
                continue
            kind = "unique index" if index.unique else "index"
            locator = f"{table.name}({', '.join(index.columns)})"
            drifts.append(
                _fixable(
                    CreateIndex(table_name=table.name, index=index),
                    type=DriftType.INDEX_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=locator,
                    expected=snapshot_value(index),
                    actual=None,
                    description=f"Declared {kind} on {locator} does not exist",
                    impact=(
                        "Duplicate values can be inserted"
                        if index.unique
                        else "Queries filtering on these columns scan the table"
                    ),
                )
            )
        return drifts

    # ------------------------------------------------------------------
    # Enums
    # ------------------------------------------------------------------

    def _check_enum(self, enum: EnumType, actual: DatabaseSchema) -> list[Drift]:
        name = enum.storage_name
        live = next((e for e in actual.enums if e.name.lower() == name.lower()), None)

        if live is None:
            return [
                _fixable(
                    CreateEnum(enum_name=name, values=enum.values),
                    type=DriftType.ENUM_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=name,
                    expected=list(enum.values),
                    actual=None,
                    description=f"Enum '{name}' does not exist",
                    impact="Columns typed by this enum cannot be created",
                )
            ]

        drifts: list[Drift] = []
        added = tuple(v for v in enum.values if v not in live.values)
        removed = [v for v in live.values if v not in enum.values]

        if added:
            drifts.append(
                _fixable(
                    AddEnumValues(enum_name=live.name, values=added),
                    type=DriftType.ENUM_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=live.name,
                    expected=list(enum.values),
                    actual=list(live.values),
                    description=f"Enum '{live.name}' is missing values: {', '.join(added)}",
                    impact="Writing the missing values will fail",
                )
            )
        if removed:
            # PostgreSQL cannot drop enum labels safely
            drifts.append(
                Drift(
                    type=DriftType.ENUM_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=live.name,
                    expected=list(enum.values),
                    actual=list(live.values),
                    description=f"Enum '{live.name}' has undeclared values: {', '.join(removed)}",
                    impact="Rows may hold values the application cannot represent",
                    fixable=False,
                    declarative_fix=(
                        f"Add values {', '.join(removed)} to enum '{enum.name}'"
                    ),
                )
            )
        return drifts

    # ------------------------------------------------------------------
    # Manual changes
    # ------------------------------------------------------------------

    def _check_manual_changes(self, actual: DatabaseSchema, tracked: set[str]) -> list[Drift]:
        drifts: list[Drift] = []
        for table in actual.tables:
            if table.name in tracked:
                continue
            drifts.append(
                _fixable(
                    AdoptTable(table=table),
                    type=DriftType.MANUAL_CHANGE,
                    severity=DriftSeverity.HIGH,
                    object=table.name,
                    expected=None,
                    actual=snapshot_value(table),
                    description=(
                        f"Table '{table.name}' exists but was not created by a tracked migration"
                    ),
                    impact="Environments rebuilt from migrations will not have this table",
                )
            )
        return drifts


# ============================================================================
# Report helpers
# ============================================================================


def filter_ignored(drifts: list[Drift], patterns: Iterable[str]) -> list[Drift]:
    """Drop drifts whose ``object`` matches any ignore pattern."""
    compiled = [re.compile(p) for p in patterns]
    if not compiled:
        return list(drifts)
    return [d for d in drifts if not any(p.search(d.object) for p in compiled)]


def build_recommendations(drifts: list[Drift]) -> list[Recommendation]:
    """Derive prioritized recommendations (1 = most urgent)."""
    recommendations: list[Recommendation] = []

    critical = [d for d in drifts if d.severity == DriftSeverity.CRITICAL]
    if critical:
        recommendations.append(
            Recommendation(
                priority=1,
                action="Fix critical schema mismatches immediately",
                reason=f"{len(critical)} critical drift(s) break queries at runtime",
                commands=(
                    "db-integrity generate --name fix_critical_drift",
                    "db-integrity migrate",
                ),
            )
        )

    high = [
        d for d in drifts
        if d.severity == DriftSeverity.HIGH and d.type != DriftType.MANUAL_CHANGE
    ]
    if high:
        recommendations.append(
            Recommendation(
                priority=2,
                action="Resolve high-severity drift",
                reason=f"{len(high)} high-severity drift(s) affect reads or writes",
                commands=("db-integrity generate", "db-integrity migrate"),
            )
        )

    manual = [d for d in drifts if d.type == DriftType.MANUAL_CHANGE]
    if manual:
        recommendations.append(
            Recommendation(
                priority=3,
                action="Create migrations for manual database changes",
                reason=f"{len(manual)} table(s) were created outside tracked migrations",
                commands=("db-integrity generate --name adopt_manual_changes",),
            )
        )

    declarative = [d for d in drifts if d.declarative_fix]
    if declarative:
        recommendations.append(
            Recommendation(
                priority=4,
                action="Update the declarative schema",
                reason=f"{len(declarative)} drift(s) can only be resolved in the schema document",
            )
        )

    return recommendations


def detect_drift(
    declared: DeclarativeSchema,
    actual: DatabaseSchema,
    tracked_tables: Iterable[str] | None = None,
    ignore_patterns: Iterable[str] = (),
    sink: EventSink | None = None,
) -> DriftReport:
    """Convenience wrapper around ``DriftDetector.detect``."""
    return DriftDetector(sink=sink).detect(
        declared, actual, tracked_tables=tracked_tables, ignore_patterns=ignore_patterns
    )

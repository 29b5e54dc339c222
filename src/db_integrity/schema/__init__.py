"""Schema parsing, introspection, normalization and drift detection.

Provides the declarative parser (``parse_schema``), live database
introspection (``SchemaIntrospector``), the canonical snapshot models, and
the drift detector (``DriftDetector``) with its report types.

Usage:
    from db_integrity.schema import parse_schema, SchemaIntrospector, DriftDetector

    declared = parse_schema(Path("schema.prisma").read_text())
    async with SchemaIntrospector(url) as introspector:
        actual = await introspector.introspect()
    report = DriftDetector().detect(declared, actual)
"""

from db_integrity.schema.changes import SchemaChange, diff_schemas
from db_integrity.schema.comparator import DriftDetector, detect_drift
from db_integrity.schema.introspector import SchemaIntrospector
from db_integrity.schema.models import (
    Column,
    ColumnDefault,
    DatabaseSchema,
    DeclarativeSchema,
    DefaultKind,
    EnumType,
    FieldDef,
    ForeignKey,
    Index,
    ModelDef,
    Table,
)
from db_integrity.schema.parser import parse_schema, render_schema
from db_integrity.schema.report import (
    Drift,
    DriftCheckResult,
    DriftReport,
    DriftSeverity,
    DriftSummary,
    DriftType,
    Recommendation,
)
from db_integrity.schema.types import canonical_type, types_match

__all__ = [
    "parse_schema",
    "render_schema",
    "SchemaIntrospector",
    "DriftDetector",
    "detect_drift",
    "diff_schemas",
    "SchemaChange",
    "canonical_type",
    "types_match",
    "Column",
    "ColumnDefault",
    "DefaultKind",
    "Index",
    "ForeignKey",
    "Table",
    "EnumType",
    "DatabaseSchema",
    "FieldDef",
    "ModelDef",
    "DeclarativeSchema",
    "Drift",
    "DriftType",
    "DriftSeverity",
    "DriftSummary",
    "DriftReport",
    "DriftCheckResult",
    "Recommendation",
]

"""Tests for schema changes: forward SQL, inverses, and model-to-model diffs."""

from pydantic import TypeAdapter

from db_integrity.schema.changes import (
    AddColumn,
    AddEnumValues,
    AdoptTable,
    AlterColumn,
    CreateEnum,
    CreateIndex,
    CreateTable,
    DropColumn,
    DropTable,
    SchemaChange,
    diff_schemas,
)
from db_integrity.schema.models import Column, DatabaseSchema, EnumType, Index, Table


USER = Table(
    name="user",
    columns=(
        Column(name="id", type="text", nullable=False),
        Column(name="email", type="text", nullable=False),
    ),
    primary_key=("id",),
)


class TestChangeSql:
    """Each change renders forward SQL and, where one exists, its inverse."""

    def test_add_column_inverse(self) -> None:
        change = AddColumn(table_name="user", column=Column(name="name", type="text"))
        assert change.to_sql() == ["ALTER TABLE user ADD COLUMN name text;"]
        assert change.rollback_sql() == ["ALTER TABLE user DROP COLUMN IF EXISTS name;"]

    def test_create_table_inverse(self) -> None:
        change = CreateTable(table=USER)
        assert change.to_sql()[0].startswith("CREATE TABLE user (")
        assert change.rollback_sql() == ["DROP TABLE IF EXISTS user CASCADE;"]
        assert change.created_tables == ["user"]

    def test_drop_table_restores_snapshot(self) -> None:
        change = DropTable(table=USER)
        assert change.rollback_sql() == CreateTable(table=USER).to_sql()
        assert change.created_tables == []

    def test_drop_column_inverse(self) -> None:
        change = DropColumn(table_name="user", column=Column(name="name", type="text"))
        assert change.rollback_sql() == ["ALTER TABLE user ADD COLUMN name text;"]

    def test_alter_column_both_parts(self) -> None:
        """Type and nullability changes produce two statements, inverted in reverse order."""
        change = AlterColumn(
            table_name="user",
            column_name="age",
            from_type="text",
            to_type="integer",
            from_nullable=True,
            to_nullable=False,
        )
        assert change.to_sql() == [
            "ALTER TABLE user ALTER COLUMN age TYPE integer USING age::integer;",
            "ALTER TABLE user ALTER COLUMN age SET NOT NULL;",
        ]
        assert change.rollback_sql() == [
            "ALTER TABLE user ALTER COLUMN age DROP NOT NULL;",
            "ALTER TABLE user ALTER COLUMN age TYPE text USING age::text;",
        ]

    def test_alter_column_without_from_value_has_no_rollback(self) -> None:
        change = AlterColumn(table_name="user", column_name="age", to_type="integer")
        assert change.to_sql()
        assert change.rollback_sql() is None

    def test_alter_column_equivalent_types_is_noop(self) -> None:
        change = AlterColumn(table_name="t", column_name="c", from_type="int4", to_type="integer")
        assert change.to_sql() == []

    def test_enum_changes(self) -> None:
        create = CreateEnum(enum_name="status", values=("A",))
        add = AddEnumValues(enum_name="status", values=("B", "C"))
        assert create.rollback_sql() == ["DROP TYPE IF EXISTS status;"]
        assert add.to_sql() == [
            "ALTER TYPE status ADD VALUE 'B';",
            "ALTER TYPE status ADD VALUE 'C';",
        ]
        assert add.rollback_sql() is None

    def test_create_index_inverse(self) -> None:
        change = CreateIndex(table_name="user", index=Index(columns=("email",), unique=True))
        assert change.rollback_sql() == ["DROP INDEX IF EXISTS user_email_key;"]

    def test_adopt_table_is_non_destructive(self) -> None:
        change = AdoptTable(table=USER)
        assert change.to_sql()[0].startswith("CREATE TABLE IF NOT EXISTS user (")
        assert change.rollback_sql() is None
        assert change.created_tables == ["user"]


class TestDiscriminatedUnion:
    def test_round_trip_through_json(self) -> None:
        """Changes serialize with their kind and validate back to the same class."""
        adapter = TypeAdapter(SchemaChange)
        change = AddColumn(table_name="user", column=Column(name="name", type="text"))
        restored = adapter.validate_python(change.model_dump(mode="json"))
        assert isinstance(restored, AddColumn)
        assert restored == change


class TestDiffSchemas:
    """diff_schemas() turns one snapshot into another."""

    def test_identical_snapshots(self) -> None:
        schema = DatabaseSchema(tables=(USER,))
        assert diff_schemas(schema, schema) == []

    def test_new_table_and_enum(self) -> None:
        old = DatabaseSchema()
        new = DatabaseSchema(tables=(USER,), enums=(EnumType(name="status", values=("A",)),))
        changes = diff_schemas(old, new)
        assert [type(c) for c in changes] == [CreateEnum, CreateTable]

    def test_column_changes(self) -> None:
        new_user = USER.model_copy(
            update={
                "columns": (
                    Column(name="id", type="text", nullable=False),
                    Column(name="email", type="text", nullable=True),
                    Column(name="name", type="text"),
                )
            }
        )
        changes = diff_schemas(DatabaseSchema(tables=(USER,)), DatabaseSchema(tables=(new_user,)))
        assert [type(c) for c in changes] == [AlterColumn, AddColumn]
        alter = changes[0]
        assert alter.from_nullable is False
        assert alter.to_nullable is True
        assert alter.to_type is None

    def test_dropped_column_and_table(self) -> None:
        other = Table(name="audit", columns=(Column(name="id", type="integer"),))
        slim_user = USER.model_copy(update={"columns": USER.columns[:1]})
        changes = diff_schemas(
            DatabaseSchema(tables=(USER, other)),
            DatabaseSchema(tables=(slim_user,)),
        )
        assert [type(c) for c in changes] == [DropColumn, DropTable]
        assert changes[0].column.name == "email"
        assert changes[1].table.name == "audit"

    def test_enum_values_appended(self) -> None:
        old = DatabaseSchema(enums=(EnumType(name="status", values=("A",)),))
        new = DatabaseSchema(enums=(EnumType(name="status", values=("A", "B")),))
        changes = diff_schemas(old, new)
        assert changes == [AddEnumValues(enum_name="status", values=("B",))]

"""Tests for package exports and module structure.

Verifies that every ``__init__.py`` exports what it lists in ``__all__``,
and that the CLI and introspector keep their structural contracts.
"""

import ast
import importlib
import pkgutil
from pathlib import Path

import pytest

SRC = Path(__file__).resolve().parent.parent / "src" / "db_integrity"


class TestExports:
    """Every name in ``__all__`` is importable from its package."""

    @pytest.mark.parametrize(
        "module_name",
        [
            "db_integrity",
            "db_integrity.adapters",
            "db_integrity.config",
            "db_integrity.migrations",
            "db_integrity.schema",
        ],
    )
    def test_all_names_accessible(self, module_name: str) -> None:
        module = importlib.import_module(module_name)
        assert isinstance(module.__all__, list)
        for name in module.__all__:
            assert hasattr(module, name), f"'{name}' is in __all__ but not on {module_name}"

    def test_every_submodule_imports(self) -> None:
        """Class bodies evaluate their annotations at import time."""
        import db_integrity

        names = [
            info.name
            for info in pkgutil.walk_packages(db_integrity.__path__, "db_integrity.")
        ]
        assert "db_integrity.migrations.tracking" in names
        for name in names:
            importlib.import_module(name)

    def test_tracking_store_annotations(self) -> None:
        from db_integrity.migrations.models import Migration
        from db_integrity.migrations.tracking import TrackingStore

        assert TrackingStore.pending.__annotations__["return"] == list[Migration]
        assert TrackingStore.list_all.__annotations__["return"] == list[Migration]

    def test_version(self) -> None:
        import db_integrity

        assert db_integrity.__version__ == "0.1.0"

    def test_errors_share_base(self) -> None:
        from db_integrity import (
            DatabaseConnectionError,
            GenerationError,
            IntegrityError,
            IntrospectionError,
            MigrationStateError,
            ParseError,
            TransactionError,
        )

        for error in (
            ParseError,
            IntrospectionError,
            DatabaseConnectionError,
            GenerationError,
            TransactionError,
            MigrationStateError,
        ):
            assert issubclass(error, IntegrityError)


class TestStructure:
    def test_cli_commands_wrap_coroutines(self) -> None:
        """Async commands go through asyncio.run via _run()."""
        tree = ast.parse((SRC / "cli" / "__init__.py").read_text())
        funcs = {
            node.name: node for node in ast.walk(tree) if isinstance(node, ast.FunctionDef)
        }
        for name in ("cmd_connect", "cmd_drift", "cmd_generate", "cmd_migrate",
                     "cmd_rollback", "cmd_ledger"):
            calls = [
                n.func.id
                for n in ast.walk(funcs[name])
                if isinstance(n, ast.Call) and isinstance(n.func, ast.Name)
            ]
            assert "_run" in calls, f"{name} does not use _run()"

        async_funcs = [
            node.name for node in ast.walk(tree) if isinstance(node, ast.AsyncFunctionDef)
        ]
        assert "_async_drift" in async_funcs

    def test_introspector_uses_driver_directly(self) -> None:
        """Catalog reads go through psycopg, never a subprocess."""
        source = (SRC / "schema" / "introspector.py").read_text()
        tree = ast.parse(source)
        imported = set()
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                imported.update(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.module:
                imported.add(node.module)
        assert "psycopg" in imported
        assert "subprocess" not in imported

    def test_detector_is_connection_free(self) -> None:
        """The comparator works on snapshots and imports no driver."""
        tree = ast.parse((SRC / "schema" / "comparator.py").read_text())
        for node in ast.walk(tree):
            if isinstance(node, ast.ImportFrom) and node.module:
                assert not node.module.startswith(("psycopg", "sqlalchemy", "asyncpg"))
            if isinstance(node, ast.Import):
                for alias in node.names:
                    assert alias.name not in ("psycopg", "sqlalchemy", "asyncpg")

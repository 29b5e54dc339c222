"""Exception taxonomy for drift detection and migration execution.

Reconciliation mismatches are not exceptions; they are reported as
``LedgerIssue`` values.
"""


class IntegrityError(Exception):
    """Base class for all db-integrity errors."""

    pass


class ParseError(IntegrityError):
    """Raised when a declarative schema document is malformed.

    Attributes:
        line: 1-based line of the offending token.
        column: 1-based column of the offending token.
    """

    def __init__(self, message: str, line: int = 0, column: int = 0) -> None:
        self.message = message
        self.line = line
        self.column = column
        location = f" (line {line}, column {column})" if line else ""
        super().__init__(f"{message}{location}")


class IntrospectionError(IntegrityError):
    """Raised when reading the live database catalog fails."""

    pass


class DatabaseConnectionError(IntegrityError):
    """Raised when a connection cannot be established after all retries."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message)


class GenerationError(IntegrityError):
    """Raised when a migration is requested for something with no safe SQL."""

    pass


class TransactionError(IntegrityError):
    """Raised when a statement fails mid-migration.

    The transaction has already been rolled back when this is raised.
    ``original`` holds the driver's error message verbatim.
    """

    def __init__(
        self,
        message: str,
        statement: str | None = None,
        statement_index: int | None = None,
        original: str | None = None,
    ) -> None:
        self.statement = statement
        self.statement_index = statement_index
        self.original = original if original is not None else message
        super().__init__(message)


class MigrationStateError(IntegrityError):
    """Raised on an illegal migration status transition."""

    pass

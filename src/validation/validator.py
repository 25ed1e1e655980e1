"""
Two-Stage Snapshot Validation

DESIGN DECISION: Rows fetched from the remote store are validated in two
distinct stages before they become part of a Repository snapshot:

STAGE 1 - SCHEMA VALIDATION:
- Row → record model (types, required fields, period bounds)
- A row that cannot be shaped means the stored schema does not match
  what the engine expects. This is non-retryable and is raised as a
  SCHEMA_MISMATCH QueryError carrying a remediation hint.

STAGE 2 - SEMANTIC VALIDATION:
- Does the record belong to the active workspace scope?
- Duplicate identifiers
- Rows that fail here are dropped and reported as issues

WHY TWO STAGES:
1. Separation of concerns (structural vs scope)
2. Better error messages (know exactly what kind of issue)
3. Stage 2 only ever sees fully-shaped records

CRITICAL: Stage 2 is what keeps personal budgets from counting group
expenses and vice versa, even if the store ignores a filter.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from src.models.records import (
    Budget,
    Category,
    Expense,
    Group,
    GroupScope,
    Income,
    PersonalScope,
    SavingsGoal,
    Table,
    WorkspaceScope,
)
from src.services.storage.interface import QueryError, QueryErrorKind


logger = structlog.get_logger(__name__)


RECORD_MODELS: dict[Table, type[BaseModel]] = {
    Table.EXPENSES: Expense,
    Table.INCOME: Income,
    Table.CATEGORIES: Category,
    Table.BUDGETS: Budget,
    Table.SAVINGS_GOALS: SavingsGoal,
    Table.GROUPS: Group,
}

# Columns whose type problems are usually an identifier column stored
# with the wrong type (uuid vs text) in the remote store.
_IDENTIFIER_COLUMNS = {"id", "user_id", "group_id", "category_id", "owner_id"}


class ValidationIssue(BaseModel):
    """A single problem found in a fetched row."""

    table: Table
    row_id: Optional[str] = None
    issue_type: str = Field(..., description="e.g. 'out_of_scope', 'duplicate'")
    message: str
    severity: str = Field(default="warning", pattern="^(warning|error)$")
    suggested_fix: Optional[str] = None


class SnapshotValidationResult(BaseModel):
    """Records that passed both stages plus everything that was dropped."""

    table: Table
    records: list = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.issues)


def schema_hint(table: Table, column: str) -> str:
    """Remediation hint for a column that does not match the record model."""
    if column in _IDENTIFIER_COLUMNS:
        return (
            f"Column '{column}' of '{table.value}' holds values the engine cannot read. "
            f"Store identifiers as text (e.g. ALTER TABLE {table.value} "
            f"ALTER COLUMN {column} TYPE text)."
        )
    return (
        f"Column '{column}' of '{table.value}' is missing or has the wrong type. "
        f"Check the '{table.value}' header row and column types."
    )


class SnapshotValidator:
    """
    Validates fetched rows for one table against the active scope.

    Stateless: the scope and principal are passed per call, so one
    validator serves every repository.
    """

    def _validate_schema(self, table: Table, rows: list[dict]) -> list:
        """
        Stage 1: Schema validation.

        Raises:
            QueryError: SCHEMA_MISMATCH on the first row that cannot be shaped
        """
        model = RECORD_MODELS[table]
        records = []
        for row in rows:
            try:
                records.append(model.model_validate(row))
            except ValidationError as e:
                first = e.errors()[0]
                column = str(first["loc"][0]) if first.get("loc") else "?"
                raise QueryError(
                    QueryErrorKind.SCHEMA_MISMATCH,
                    f"Row {row.get('id')!r} of {table.value} failed validation: "
                    f"{column}: {first['msg']}",
                    table=table,
                    hint=schema_hint(table, column),
                ) from e
        return records

    def _in_scope(
        self,
        table: Table,
        record: BaseModel,
        scope: WorkspaceScope,
        principal_id: str,
    ) -> bool:
        if table == Table.GROUPS:
            return record.has_member(principal_id)

        if table in (Table.CATEGORIES, Table.SAVINGS_GOALS):
            # Always the principal's own, even inside a group
            if record.user_id != principal_id:
                return False
            return getattr(record, "is_active", True)

        if table == Table.BUDGETS and not record.is_active:
            return False

        if isinstance(scope, PersonalScope):
            return record.group_id is None and record.user_id == scope.principal_id
        if isinstance(scope, GroupScope):
            return record.group_id == scope.group_id
        return False

    def _validate_semantic(
        self,
        table: Table,
        records: list,
        scope: WorkspaceScope,
        principal_id: str,
    ) -> tuple[list, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (kept_records, list_of_issues)
        """
        kept = []
        issues = []
        seen: set[str] = set()

        for record in records:
            if record.id in seen:
                issues.append(ValidationIssue(
                    table=table,
                    row_id=record.id,
                    issue_type="duplicate",
                    message=f"Duplicate {table.value} id {record.id}; keeping the first row",
                    suggested_fix="Remove the duplicated row from the store",
                ))
                continue

            if not self._in_scope(table, record, scope, principal_id):
                issues.append(ValidationIssue(
                    table=table,
                    row_id=record.id,
                    issue_type="out_of_scope",
                    message=f"{table.value} row {record.id} does not belong to {scope.key}",
                ))
                continue

            seen.add(record.id)
            kept.append(record)

        return kept, issues

    def validate(
        self,
        table: Table,
        rows: list[dict],
        scope: WorkspaceScope,
        principal_id: str,
    ) -> SnapshotValidationResult:
        """
        Run the full two-stage pipeline for one fetched table.

        Args:
            table: Table the rows came from
            rows: Raw rows as returned by the remote store
            scope: Active workspace scope
            principal_id: Principal the engine acts for

        Returns:
            SnapshotValidationResult with the kept records and dropped issues

        Raises:
            QueryError: SCHEMA_MISMATCH if any row cannot be shaped
        """
        records = self._validate_schema(table, rows)
        kept, issues = self._validate_semantic(table, records, scope, principal_id)

        for issue in issues:
            logger.warning(
                "snapshot_row_dropped",
                table=table.value,
                row_id=issue.row_id,
                issue_type=issue.issue_type,
                scope=scope.key,
            )

        return SnapshotValidationResult(table=table, records=kept, issues=issues)

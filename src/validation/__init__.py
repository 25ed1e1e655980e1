"""Snapshot validation package."""

from src.validation.validator import (
    RECORD_MODELS,
    SnapshotValidationResult,
    SnapshotValidator,
    ValidationIssue,
    schema_hint,
)

__all__ = [
    "RECORD_MODELS",
    "SnapshotValidationResult",
    "SnapshotValidator",
    "ValidationIssue",
    "schema_hint",
]

"""
Validation DTOs -- error and warning channels shared by every validator.

Responsibility:
    Defines ValidationIssue (one finding) and ValidationReport (the error
    and warning channels for one aggregate). Validators always return a
    report; they never raise for data problems.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - A report is valid iff it carries zero ERROR-severity issues.
      Warnings never affect validity.
    - Issues are partitioned by severity on construction, so ``errors``
      contains only errors and ``warnings`` only warnings.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from billing_kernel.exceptions import SchemaError


class Severity(str, Enum):
    """How a validation finding affects the aggregate."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """
    A single validation finding.

    Carries a machine-readable code, a human-readable message, an optional
    dotted field path, and optional structured details.
    """

    code: str
    message: str
    field: str | None = None
    severity: Severity = Severity.ERROR
    details: dict[str, Any] | None = None

    @classmethod
    def error(cls, code: str, message: str, field: str | None = None, **details: Any) -> ValidationIssue:
        return cls(code, message, field, Severity.ERROR, details or None)

    @classmethod
    def warning(cls, code: str, message: str, field: str | None = None, **details: Any) -> ValidationIssue:
        return cls(code, message, field, Severity.WARNING, details or None)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


@dataclass(frozen=True)
class ValidationReport:
    """
    Result of validating one aggregate.

    Contract:
        ``errors`` make the aggregate invalid. ``warnings`` are advisory and
        must be surfaced to the caller but never block.

    Guarantees:
        - Immutable; both channels are tuples (never None)
        - ``bool(report) == report.is_valid``
    """

    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)
    warnings: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationReport:
        return cls()

    @classmethod
    def from_issues(cls, issues: Iterable[ValidationIssue]) -> ValidationReport:
        """Partition a flat issue list into the error and warning channels."""
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        for issue in issues:
            (errors if issue.is_error else warnings).append(issue)
        return cls(errors=tuple(errors), warnings=tuple(warnings))

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]

    @property
    def warning_messages(self) -> list[str]:
        return [w.message for w in self.warnings]

    @property
    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    @property
    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]

    def field_errors(self) -> dict[str, str]:
        """
        Field path -> message map of the error channel.

        Errors without a field are keyed by their code. When a field has
        several errors the first one wins.
        """
        result: dict[str, str] = {}
        for issue in self.errors:
            result.setdefault(issue.field or issue.code, issue.message)
        return result

    def merge(self, *others: ValidationReport) -> ValidationReport:
        """Concatenate channels, preserving order."""
        errors = list(self.errors)
        warnings = list(self.warnings)
        for other in others:
            errors.extend(other.errors)
            warnings.extend(other.warnings)
        return ValidationReport(errors=tuple(errors), warnings=tuple(warnings))

    def raise_for_errors(self, entity: str) -> None:
        """Raise SchemaError carrying the field map if the report is invalid."""
        if self.errors:
            raise SchemaError(entity, self.field_errors())

    def __bool__(self) -> bool:
        return self.is_valid

"""RecordValidator -- Pure structural validation of record payloads against schemas."""

import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.dtos import ValidationIssue
from billing_kernel.domain.schemas import FieldSchema, FieldType, RecordSchema
from billing_kernel.logging_config import get_logger

logger = get_logger("domain.record_validator")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_record(
    payload: Mapping[str, Any],
    schema: RecordSchema,
) -> list[ValidationIssue]:
    """Validate a record payload against a schema. Returns error issues only."""
    errors: list[ValidationIssue] = []

    def validate_field(value: Any, field: FieldSchema, path: str) -> list[ValidationIssue]:
        field_errors: list[ValidationIssue] = []

        if _is_blank(value):
            if field.required:
                field_errors.append(ValidationIssue.error(
                    "MISSING_REQUIRED_FIELD",
                    field.message or f"Required field missing: {path}",
                    path,
                ))
            return field_errors

        type_error = validate_field_type(value, field.field_type, path)
        if type_error:
            field_errors.append(type_error)
            return field_errors

        field_errors.extend(validate_field_constraints(value, field, path))

        if field.field_type == FieldType.ARRAY:
            for i, item in enumerate(value):
                item_path = f"{path}[{i}]"
                if field.item_schema:
                    if isinstance(item, Mapping):
                        for item_field in field.item_schema:
                            field_errors.extend(validate_field(
                                item.get(item_field.name), item_field,
                                f"{item_path}.{item_field.name}",
                            ))
                    else:
                        field_errors.append(ValidationIssue.error(
                            "INVALID_TYPE",
                            f"Expected object at {item_path}, got {type(item).__name__}",
                            item_path,
                        ))
                elif field.item_type:
                    type_error = validate_field_type(item, field.item_type, item_path)
                    if type_error:
                        field_errors.append(type_error)

        return field_errors

    for field in schema.fields:
        errors.extend(validate_field(payload.get(field.name), field, field.name))

    if errors:
        logger.debug(
            "schema_validation_failed",
            extra={
                "entity": schema.entity,
                "error_count": len(errors),
                "error_codes": [e.code for e in errors],
            },
        )
    return errors


def validate_field_type(
    value: Any,
    field_type: FieldType,
    path: str,
) -> ValidationIssue | None:
    """Validate that a value matches the expected type."""
    if field_type == FieldType.STRING:
        if not isinstance(value, str):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected string at {path}, got {type(value).__name__}", path,
            )

    elif field_type == FieldType.INTEGER:
        if not isinstance(value, int) or isinstance(value, bool):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected integer at {path}, got {type(value).__name__}", path,
            )

    elif field_type == FieldType.DECIMAL:
        if isinstance(value, bool):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected decimal at {path}, got bool", path,
            )
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected decimal at {path}, got {type(value).__name__}", path,
            )
        if not parsed.is_finite():
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected finite decimal at {path}", path,
            )

    elif field_type == FieldType.BOOLEAN:
        if not isinstance(value, bool):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected boolean at {path}, got {type(value).__name__}", path,
            )

    elif field_type == FieldType.DATE:
        if isinstance(value, str):
            try:
                datetime.strptime(value, "%Y-%m-%d")
            except ValueError:
                return ValidationIssue.error(
                    "INVALID_DATE_FORMAT",
                    f"Invalid date format at {path}: expected YYYY-MM-DD",
                    path,
                )
        elif not isinstance(value, date):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected date at {path}, got {type(value).__name__}", path,
            )

    elif field_type == FieldType.CURRENCY:
        if not isinstance(value, str):
            return ValidationIssue.error(
                "INVALID_TYPE",
                f"Expected currency code (string) at {path}, got {type(value).__name__}",
                path,
            )
        if not CurrencyRegistry.is_valid(value):
            return ValidationIssue.error(
                "INVALID_CURRENCY",
                f"Unsupported currency at {path}: {value}. "
                f"Supported: {', '.join(sorted(CurrencyRegistry.all_codes()))}",
                path,
            )

    elif field_type == FieldType.ARRAY:
        if not isinstance(value, (list, tuple)):
            return ValidationIssue.error(
                "INVALID_TYPE", f"Expected array at {path}, got {type(value).__name__}", path,
            )

    return None


def validate_field_constraints(
    value: Any,
    field: FieldSchema,
    path: str,
) -> list[ValidationIssue]:
    """Validate field constraints (min/max, length, pattern, allowed_values, min_items)."""
    errors: list[ValidationIssue] = []

    if field.field_type in (FieldType.INTEGER, FieldType.DECIMAL):
        numeric_value = Decimal(str(value))

        if field.min_value is not None and numeric_value < Decimal(str(field.min_value)):
            errors.append(ValidationIssue.error(
                "VALUE_TOO_SMALL",
                field.message or f"Value at {path} is {value}, minimum is {field.min_value}",
                path,
            ))

        if field.max_value is not None and numeric_value > Decimal(str(field.max_value)):
            errors.append(ValidationIssue.error(
                "VALUE_TOO_LARGE",
                field.message or f"Value at {path} is {value}, maximum is {field.max_value}",
                path,
            ))

    if field.field_type == FieldType.STRING and isinstance(value, str):
        if field.min_length is not None and len(value) < field.min_length:
            errors.append(ValidationIssue.error(
                "STRING_TOO_SHORT",
                field.message or f"String at {path} is {len(value)} chars, minimum is {field.min_length}",
                path,
            ))

        if field.max_length is not None and len(value) > field.max_length:
            errors.append(ValidationIssue.error(
                "STRING_TOO_LONG",
                f"String at {path} is {len(value)} chars, maximum is {field.max_length}",
                path,
            ))

        if field.pattern is not None and not re.match(field.pattern, value):
            errors.append(ValidationIssue.error(
                "PATTERN_MISMATCH",
                field.message or f"String at {path} does not match pattern: {field.pattern}",
                path,
            ))

    if field.field_type == FieldType.ARRAY and field.min_items is not None:
        if len(value) < field.min_items:
            errors.append(ValidationIssue.error(
                "TOO_FEW_ITEMS",
                field.message or f"Array at {path} has {len(value)} items, minimum is {field.min_items}",
                path,
            ))

    if field.allowed_values is not None and value not in field.allowed_values:
        errors.append(ValidationIssue.error(
            "VALUE_NOT_ALLOWED",
            f"Value '{value}' at {path} not in allowed values: {sorted(field.allowed_values)}",
            path,
        ))

    return errors

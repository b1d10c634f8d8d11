"""
Record schema data structures.

Immutable, hashable field definitions for the structural validation pass
over quotes, contracts, milestones, invoices and line items. This is part of
the functional core - no I/O.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class FieldType(str, Enum):
    """Supported field types in record schemas."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"  # ISO 8601 date (YYYY-MM-DD) or datetime.date
    CURRENCY = "currency"  # supported ISO 4217 code
    ARRAY = "array"


@dataclass(frozen=True)
class FieldSchema:
    """Schema definition for a single field."""

    name: str
    field_type: FieldType
    required: bool = True
    description: str | None = None

    # For ARRAY type
    item_type: FieldType | None = None
    item_schema: tuple["FieldSchema", ...] | None = None
    min_items: int | None = None

    min_value: Decimal | int | None = None
    max_value: Decimal | int | None = None

    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None

    allowed_values: frozenset[str] | None = None

    # Message used when the field is missing or violates a constraint,
    # overriding the generic one.
    message: str | None = None

    def __post_init__(self) -> None:
        if self.field_type == FieldType.ARRAY and not self.item_type and not self.item_schema:
            raise ValueError(
                f"Field '{self.name}' of type ARRAY must have item_type or item_schema"
            )


@dataclass(frozen=True)
class RecordSchema:
    """Complete schema for one record kind."""

    entity: str
    fields: tuple[FieldSchema, ...]
    description: str | None = None


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------

LINE_ITEM_FIELDS: tuple[FieldSchema, ...] = (
    FieldSchema("description", FieldType.STRING, min_length=1,
                message="Description is required"),
    FieldSchema("quantity", FieldType.DECIMAL, min_value=1,
                message="Quantity must be at least 1"),
    FieldSchema("unit_price", FieldType.DECIMAL, min_value=0,
                message="Price cannot be negative"),
)

MILESTONE_FIELDS: tuple[FieldSchema, ...] = (
    FieldSchema("name", FieldType.STRING, min_length=1,
                message="Milestone name is required"),
    FieldSchema("percentage", FieldType.DECIMAL, min_value=0, max_value=100,
                message="Milestone percentage must be between 0 and 100"),
    FieldSchema("due_date", FieldType.DATE),
    FieldSchema("deliverables", FieldType.ARRAY, item_type=FieldType.STRING),
)

QUOTE_SCHEMA = RecordSchema(
    entity="quote",
    description="Accepted sales quote handed to the conversion engine",
    fields=(
        FieldSchema("id", FieldType.STRING, min_length=1, message="Quote id is required"),
        FieldSchema("business_name", FieldType.STRING, min_length=1,
                    message="Business name is required"),
        FieldSchema("industry", FieldType.STRING),
        FieldSchema("page_count", FieldType.INTEGER, min_value=0),
        FieldSchema("features", FieldType.ARRAY, item_type=FieldType.STRING),
        FieldSchema("timeline", FieldType.STRING),
        FieldSchema("final_price", FieldType.DECIMAL, min_value=0,
                    message="Final price cannot be negative"),
        FieldSchema("total_hours", FieldType.DECIMAL, required=False, min_value=0),
        FieldSchema("client_email", FieldType.STRING, required=False, pattern=EMAIL_PATTERN,
                    message="Invalid email address"),
    ),
)

CONTRACT_SCHEMA = RecordSchema(
    entity="contract",
    description="Contract generated from a quote",
    fields=(
        FieldSchema("contract_number", FieldType.STRING, required=False),
        FieldSchema("contract_title", FieldType.STRING, min_length=1,
                    message="Contract title is required"),
        FieldSchema("client_name", FieldType.STRING, min_length=1,
                    message="Client name is required"),
        FieldSchema("client_email", FieldType.STRING, required=False, pattern=EMAIL_PATTERN,
                    message="Invalid email address"),
        FieldSchema("start_date", FieldType.DATE),
        FieldSchema("end_date", FieldType.DATE),
        FieldSchema("terms", FieldType.STRING, min_length=50,
                    message="Terms must be at least 50 characters"),
        FieldSchema("total_amount", FieldType.DECIMAL, min_value=0,
                    message="Total amount cannot be negative"),
        FieldSchema("currency", FieldType.CURRENCY),
        FieldSchema("milestones", FieldType.ARRAY, item_schema=MILESTONE_FIELDS, min_items=1,
                    message="Payment schedule is required"),
        FieldSchema("scope_of_work", FieldType.STRING, min_length=20,
                    message="Scope of work must be at least 20 characters"),
        FieldSchema("status", FieldType.STRING, allowed_values=frozenset({
            "draft", "sent", "under_review", "signed", "active", "completed", "terminated",
        })),
    ),
)

INVOICE_SCHEMA = RecordSchema(
    entity="invoice",
    description="Invoice derived from a milestone or issued ad hoc",
    fields=(
        FieldSchema("invoice_number", FieldType.STRING, min_length=1,
                    message="Invoice number is required"),
        FieldSchema("client_name", FieldType.STRING, min_length=1,
                    message="Client name is required"),
        FieldSchema("client_email", FieldType.STRING, required=False, pattern=EMAIL_PATTERN,
                    message="Invalid email address"),
        FieldSchema("issue_date", FieldType.DATE),
        FieldSchema("due_date", FieldType.DATE),
        FieldSchema("items", FieldType.ARRAY, item_schema=LINE_ITEM_FIELDS, min_items=1,
                    message="At least one item is required"),
        FieldSchema("total", FieldType.DECIMAL, min_value=0),
        FieldSchema("currency", FieldType.CURRENCY),
        FieldSchema("invoice_type", FieldType.STRING, allowed_values=frozenset({
            "deposit", "milestone", "final", "progress", "custom",
        })),
        FieldSchema("status", FieldType.STRING, allowed_values=frozenset({
            "draft", "sent", "viewed", "paid", "overdue", "cancelled",
        })),
    ),
)

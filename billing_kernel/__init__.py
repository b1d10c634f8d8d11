"""
Billing Kernel

Domain core for the quote -> contract -> invoice conversion engine:
- Typed, coded exceptions
- Structured JSON logging with request-scoped context
- Immutable value objects (Currency, Money) and aggregates
- Injectable clocks for deterministic replay of schedules and aging
"""

__version__ = "0.1.0"

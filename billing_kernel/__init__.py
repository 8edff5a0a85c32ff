"""
Billing Kernel

The persistence and domain foundation for retail billing with:
- Decimal-only money arithmetic with explicit rounding
- Typed, coded exceptions
- Structured JSON logging
- Versioned document storage with optimistic locking
- Monotonic per-tenant sequence counters
"""

__version__ = "0.1.0"

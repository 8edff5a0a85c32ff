"""
billing_engines.tracer -- engine invocation tracer emitting BILLING_ENGINE_TRACE.

``@traced_engine`` wraps a pure engine function and emits one record per
call: engine name and version, a fingerprint of the selected inputs, the
duration and whether the call raised. Inputs are bound through the
function signature, so positional and keyword calls fingerprint alike.

Usage:
    @traced_engine("schedule", "1.0", fingerprint_fields=("emi_amount",))
    def generate_schedule(emi_amount, number_of_installments, start_date):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from billing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE = "BILLING_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """Stable text for fingerprinting; Decimal("10") and Decimal("10.00") differ."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (str, int, Decimal)):
        return str(value)
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{k}:{_canonicalize(v)}" for k, v in sorted(value.items())
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_canonicalize, value)) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """First 16 hex chars of SHA-256 over ``name=value`` pairs; absent names count as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.monotonic()
            outcome = "ok"
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                _logger.info(
                    TRACE,
                    extra={
                        "trace_type": TRACE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator

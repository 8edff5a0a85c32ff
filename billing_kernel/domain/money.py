"""
Money -- round-to-cent arithmetic helpers.

Responsibility:
    The single sanctioned place where amounts are parsed, rounded and
    split. Every monetary value in the billing core is a ``Decimal`` with
    two decimal places, rounded ROUND_HALF_UP at each accumulation
    boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ``require_positive_amount`` raises InvalidAmountError for zero,
      negative, NaN, infinite or unparseable input.
    - ``to_money`` never raises: unusable input becomes 0.00 and a DEBUG
      ``money_coerced_to_zero`` record is emitted so the coercion is
      observable in logs and tests.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Sequence

from billing_kernel.exceptions import InvalidAmountError, ValidationError
from billing_kernel.logging_config import get_logger

logger = get_logger("domain.money")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
ONE_CENT_TOLERANCE = CENT


def round_money(value: Decimal | int | str) -> Decimal:
    """Round to cents with ROUND_HALF_UP."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _parse(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def to_money(value: object, field: str | None = None) -> Decimal:
    """
    Coerce a user-supplied value to a rounded amount.

    Missing, blank, NaN, infinite and unparseable values become 0.00. This
    mirrors how quantities and rates left empty on a form behave: the line
    contributes nothing rather than poisoning the totals.
    """
    parsed = _parse(value)
    if parsed is None:
        if value is not None:
            logger.debug(
                "money_coerced_to_zero",
                extra={"field": field, "raw_value": repr(value)},
            )
        return ZERO
    return round_money(parsed)


def to_decimal(value: object, field: str | None = None) -> Decimal:
    """Like ``to_money`` but without rounding (quantities, tax slabs)."""
    parsed = _parse(value)
    if parsed is None:
        if value is not None:
            logger.debug(
                "money_coerced_to_zero",
                extra={"field": field, "raw_value": repr(value)},
            )
        return Decimal(0)
    return parsed


def require_positive_amount(value: object, field: str = "amount") -> Decimal:
    """Parse a payment amount. Payments are never silently coerced."""
    parsed = _parse(value)
    if parsed is None:
        raise InvalidAmountError(field, value, "must be a finite number")
    rounded = round_money(parsed)
    if rounded <= ZERO:
        raise InvalidAmountError(field, value)
    return rounded


def require_non_negative_amount(value: object, field: str) -> Decimal:
    parsed = _parse(value)
    if parsed is None:
        raise InvalidAmountError(field, value, "must be a finite number")
    rounded = round_money(parsed)
    if rounded < ZERO:
        raise InvalidAmountError(field, value, "must not be negative")
    return rounded


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return round_money(sum(values, ZERO))


def split_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """
    Split ``total`` into ``parts`` rounded shares.

    Every share but the last is ``round(total / parts)``; the last absorbs
    the remainder so the shares sum to ``total`` exactly. When rounding up
    would leave the last share negative (tiny totals over many parts) the
    shares are truncated instead.

        >>> split_evenly(Decimal("100.00"), 3)
        [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
    """
    if parts < 1:
        raise ValidationError(f"Cannot split an amount into {parts} parts")
    total = round_money(total)
    share = round_money(total / parts)
    if total >= ZERO and share * (parts - 1) > total:
        share = (total / parts).quantize(CENT, rounding=ROUND_DOWN)
    shares = [share] * (parts - 1)
    shares.append(total - share * (parts - 1))
    return shares


def split_proportionally(total: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """
    Split ``total`` in proportion to ``weights``.

    Shares are rounded individually and the last absorbs the remainder.
    When every weight is zero the split falls back to ``split_evenly``.
    """
    if not weights:
        raise ValidationError("Cannot split an amount across zero weights")
    total = round_money(total)
    weight_sum = sum(weights, Decimal(0))
    if weight_sum == 0:
        return split_evenly(total, len(weights))
    shares = [round_money(total * w / weight_sum) for w in weights[:-1]]
    if total >= ZERO and sum(shares, ZERO) > total:
        shares = [
            (total * w / weight_sum).quantize(CENT, rounding=ROUND_DOWN)
            for w in weights[:-1]
        ]
    shares.append(total - sum(shares, ZERO))
    return shares

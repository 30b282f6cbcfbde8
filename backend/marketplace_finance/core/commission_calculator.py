# marketplace_finance/core/commission_calculator.py
"""
Commission math. Pure functions, no I/O.

    commission = round_half_up(order_amount * rate / 100, 2)
    commission = max(commission, minimum)      when order_amount > 0
    commission = 0                             when order_amount == 0

Adjustments (preview only; crud/commission.py persists them):
    refund      new = current * (1 - amount / order_amount)     floored at 0
    penalty     new = current + amount
    bonus       new = max(0, current - amount)
    correction  new = current + amount (signed)                 floored at 0
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from marketplace_finance.core.config import settings
from marketplace_finance.core.errors import InvalidAdjustmentError
from marketplace_finance.core.money import HUNDRED, ZERO, percentage_of, quantize_money, to_decimal
from marketplace_finance.core.rate_schedule import validate_rate


class AdjustmentType(str, enum.Enum):
    REFUND = "refund"
    PENALTY = "penalty"
    BONUS = "bonus"
    CORRECTION = "correction"


@dataclass(frozen=True)
class AdjustmentPreview:
    adjustment_type: AdjustmentType
    adjustment_amount: Decimal
    original_commission: Decimal
    new_commission: Decimal
    impact: Decimal
    impact_percentage: Decimal
    record_version: int


def _parse_amount(value, *, label: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as e:
        raise InvalidAdjustmentError(f"{label} is not a number", value=str(value)) from e


def compute_commission(order_amount, rate, minimum: Optional[Decimal] = None) -> Decimal:
    amount = _parse_amount(order_amount, label="order_amount")
    if amount < 0:
        raise InvalidAdjustmentError("order_amount must not be negative", order_amount=str(amount))
    r = validate_rate(rate)
    floor = settings.MIN_COMMISSION if minimum is None else to_decimal(minimum)

    if amount == 0:
        return quantize_money(ZERO)

    commission = quantize_money(percentage_of(amount, r))
    return max(commission, quantize_money(floor))


def supplier_amount(order_amount, commission_amount) -> Decimal:
    return quantize_money(to_decimal(order_amount) - to_decimal(commission_amount))


def preview_adjustment(
    *,
    order_amount,
    current_commission,
    adjustment_type: AdjustmentType | str,
    amount,
    record_version: int = 0,
    stamped_commission=None,
    refunded_total=0,
) -> AdjustmentPreview:
    """
    Compute what an adjustment would do to a commission. Never mutates anything.

    `current_commission` is the record's commission as of `record_version`;
    apply_adjustment uses the same version as its optimistic-concurrency stamp.

    A refund takes back its share of the commission stamped at order time
    (`stamped_commission`, defaulting to the current one), so equal partial
    refunds remove equal amounts. `refunded_total` is what earlier refunds
    already returned; together they may not exceed the order amount.
    """
    try:
        kind = AdjustmentType(adjustment_type)
    except ValueError as e:
        raise InvalidAdjustmentError(
            "Unknown adjustment type",
            adjustment_type=str(adjustment_type),
            allowed=[t.value for t in AdjustmentType],
        ) from e

    order_total = _parse_amount(order_amount, label="order_amount")
    current = quantize_money(_parse_amount(current_commission, label="current_commission"))
    value = _parse_amount(amount, label="amount")

    if not value.is_finite():
        raise InvalidAdjustmentError("amount must be a finite number", amount=str(value))
    if kind is AdjustmentType.CORRECTION:
        if value == 0:
            raise InvalidAdjustmentError("Correction amount must not be zero")
    elif value <= 0:
        raise InvalidAdjustmentError(f"{kind.value} amount must be positive", amount=str(value))

    if kind is AdjustmentType.REFUND:
        if order_total == 0:
            raise InvalidAdjustmentError("Cannot refund against a zero-amount order")
        if value > order_total:
            raise InvalidAdjustmentError(
                "Refund exceeds the order amount",
                amount=str(value),
                order_amount=str(order_total),
            )
        already = _parse_amount(refunded_total, label="refunded_total")
        if already + value > order_total:
            raise InvalidAdjustmentError(
                "Refunds exceed the order amount",
                amount=str(value),
                refunded_total=str(already),
                order_amount=str(order_total),
            )
        basis = current if stamped_commission is None else _parse_amount(stamped_commission, label="stamped_commission")
        new = current - basis * value / order_total
    elif kind is AdjustmentType.PENALTY:
        new = current + value
    elif kind is AdjustmentType.BONUS:
        new = current - value
    else:
        new = current + value

    new_commission = max(quantize_money(new), quantize_money(ZERO))
    impact = new_commission - current
    if current == 0:
        impact_pct = quantize_money(ZERO)
    else:
        impact_pct = quantize_money(impact / current * HUNDRED)

    return AdjustmentPreview(
        adjustment_type=kind,
        adjustment_amount=quantize_money(value),
        original_commission=current,
        new_commission=new_commission,
        impact=impact,
        impact_percentage=impact_pct,
        record_version=record_version,
    )

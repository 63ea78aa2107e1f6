"""Earnings calculator.

Pure functions over :class:`OrderTerms`. Nothing here touches storage; the
lifecycle coordinator persists the returned credits as ``EarningsEvent`` rows
and applies the matching ``Balance`` deltas in the same transaction.

All arithmetic runs on ``Decimal`` in major units and is quantized to cents
only when a credit is emitted.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from jobflow.utils.pricing import PricingConfig

EARNING_ASSIGNMENT_FEE = "assignment_fee"
EARNING_SUBMISSION_FEE = "submission_fee"
EARNING_COMPLETION_PAYOUT = "completion_payout"

ROLE_WRITER = "writer"
ROLE_MANAGER = "manager"

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value if value is not None else 0))
    except Exception:
        return _ZERO


def quantize_money(amount) -> Decimal:
    return _to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)


def money_major_to_minor(amount) -> int:
    minor = (_to_decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def money_minor_to_major(minor) -> Decimal:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = _ZERO
    return (parsed / Decimal("100")).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTerms:
    order_id: int | None
    writer_id: int | None
    manager_id: int | None
    unit_count: int
    amount: Decimal
    writer_earnings: Decimal
    manager_earnings: Decimal

    @classmethod
    def from_order(cls, order) -> "OrderTerms":
        return cls(
            order_id=int(order.id) if order.id is not None else None,
            writer_id=int(order.writer_id) if order.writer_id is not None else None,
            manager_id=int(order.manager_id) if order.manager_id is not None else None,
            unit_count=int(order.unit_count),
            amount=money_minor_to_major(order.amount_minor),
            writer_earnings=money_minor_to_major(order.writer_earnings_minor),
            manager_earnings=money_minor_to_major(order.manager_earnings_minor),
        )


@dataclass(frozen=True)
class EarningsCredit:
    beneficiary_id: int
    role: str
    amount: Decimal
    earning_type: str

    @property
    def amount_minor(self) -> int:
        return money_major_to_minor(self.amount)

    def to_dict(self) -> dict:
        return {
            "beneficiary_id": int(self.beneficiary_id),
            "role": self.role,
            "amount": str(self.amount),
            "earning_type": self.earning_type,
        }


def manager_submission_fee(unit_count: int, config: PricingConfig) -> Decimal:
    units = max(1, int(unit_count or 0))
    return config.manager_submit_base + config.manager_submit_per_extra_unit * (units - 1)


def on_assignment(terms: OrderTerms, config: PricingConfig) -> list[EarningsCredit]:
    if terms.manager_id is None:
        return []
    fee = quantize_money(config.manager_assign_fee)
    if fee <= 0:
        return []
    return [EarningsCredit(terms.manager_id, ROLE_MANAGER, fee, EARNING_ASSIGNMENT_FEE)]


def on_submission(terms: OrderTerms, config: PricingConfig) -> list[EarningsCredit]:
    if terms.manager_id is None:
        return []
    fee = quantize_money(manager_submission_fee(terms.unit_count, config))
    if fee <= 0:
        return []
    return [EarningsCredit(terms.manager_id, ROLE_MANAGER, fee, EARNING_SUBMISSION_FEE)]


def on_completion(terms: OrderTerms) -> list[EarningsCredit]:
    if terms.writer_id is None:
        return []
    payout = quantize_money(terms.writer_earnings)
    if payout <= 0:
        return []
    return [EarningsCredit(terms.writer_id, ROLE_WRITER, payout, EARNING_COMPLETION_PAYOUT)]


def platform_profit(terms: OrderTerms) -> Decimal:
    # A pricing error must never produce a negative profit record.
    residual = terms.amount - terms.writer_earnings - terms.manager_earnings
    if residual < 0:
        return quantize_money(_ZERO)
    return quantize_money(residual)


def split_within_amount(amount, writer_earnings, manager_earnings, profit) -> bool:
    total = _to_decimal(writer_earnings) + _to_decimal(manager_earnings) + _to_decimal(profit)
    return total <= _to_decimal(amount)


def manager_fee_reserve(
    unit_count: int,
    config: PricingConfig,
    *,
    assignment_credited: bool = False,
    submission_credited: bool = False,
) -> Decimal:
    """Manager fees an order can still accrue through assignment and submission."""
    reserve = _ZERO
    if not assignment_credited:
        reserve += quantize_money(config.manager_assign_fee)
    if not submission_credited:
        reserve += quantize_money(manager_submission_fee(unit_count, config))
    return quantize_money(reserve)

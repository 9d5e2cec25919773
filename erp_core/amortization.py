"""
Amortization Module

Builds loan schedules that mix the real payment history of a financial
obligation with a month-by-month projection of the remaining installments.
All math is Decimal; this module performs no I/O.

History rows take their balance straight from the recorded payments, so any
correction already made in the books is preserved even if it does not match
a theoretical curve. Projected rows use the level-payment installment of the
original loan terms unless another InstallmentPolicy is requested.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Any, Union
from enum import Enum
import calendar

from .logging_config import get_logger, log_action


Number = Union[Decimal, int, float, str]

DEFAULT_MAX_PERIODS = 360              # 30 years of monthly periods
DEFAULT_BALANCE_CUTOFF = Decimal('100')  # currency units

# Decimal division leaves residue far below a cent on the closing installment
RESIDUE_TOLERANCE = Decimal('1E-9')

ZERO = Decimal('0')
ONE = Decimal('1')

logger = get_logger("erp.amortization")


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class InstallmentPolicy(Enum):
    """How projected installments are sized once history exists"""
    ORIGINAL = "original"              # Keep the installment of the original terms
    REMAINING_TERM = "remaining_term"  # Re-amortize balance over the periods left


@dataclass
class PaymentRecord:
    """A payment actually made against the loan"""
    date: date
    amount_paid: Decimal
    interest_portion: Decimal
    principal_portion: Decimal
    balance_after: Decimal

    def __post_init__(self):
        for name in ('amount_paid', 'interest_portion', 'principal_portion', 'balance_after'):
            value = getattr(self, name)
            setattr(self, name, ZERO if value is None else _to_decimal(value))


@dataclass
class ScheduleRow:
    """One period of the schedule, real or projected"""
    period: int
    date: date
    installment: Decimal
    interest: Decimal
    principal: Decimal
    balance: Decimal
    is_actual: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "date": self.date.isoformat(),
            "installment": str(self.installment),
            "interest": str(self.interest),
            "principal": str(self.principal),
            "balance": str(self.balance),
            "is_actual": self.is_actual,
        }


@dataclass
class ScheduleSummary:
    """Totals over a computed schedule"""
    rows: List[ScheduleRow]
    reference_installment: Decimal
    total_interest: Decimal = ZERO
    total_principal: Decimal = ZERO
    total_paid: Decimal = ZERO
    actual_periods: int = 0
    projected_periods: int = 0
    payoff_date: Optional[date] = None
    is_truncated: bool = False


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def reference_installment(principal: Number, periodic_rate: Number, term_periods: int) -> Decimal:
    """
    Level-payment installment for the given terms

    Standard annuity formula P * [r(1+r)^n] / [(1+r)^n - 1], or P / n for
    interest-free loans. A non-positive term has no annuity; the whole
    principal is treated as due in one installment.
    """
    principal = _to_decimal(principal)
    rate = _to_decimal(periodic_rate)

    if term_periods <= 0:
        return principal
    if rate == ZERO:
        return principal / Decimal(term_periods)

    factor = (ONE + rate) ** term_periods
    return principal * (rate * factor) / (factor - ONE)


def effective_annual_to_periodic(annual_rate: Number, periods_per_year: int = 12) -> Decimal:
    """Convert an effective annual rate (E.A.) to the equivalent periodic rate"""
    annual_rate = _to_decimal(annual_rate)
    if annual_rate == ZERO:
        return ZERO
    return (ONE + annual_rate) ** (ONE / Decimal(periods_per_year)) - ONE


def projection_installment(
    principal: Number,
    periodic_rate: Number,
    original_term_periods: int,
    payments: Optional[Iterable[PaymentRecord]] = None,
    policy: InstallmentPolicy = InstallmentPolicy.ORIGINAL
) -> Decimal:
    """Installment the projected rows use under the given policy"""
    installment = reference_installment(principal, periodic_rate, original_term_periods)
    if policy is InstallmentPolicy.REMAINING_TERM:
        history = sorted(payments or [], key=lambda p: p.date)
        remaining_periods = original_term_periods - len(history)
        if history and remaining_periods > 0:
            installment = reference_installment(history[-1].balance_after, periodic_rate, remaining_periods)
    return installment


def compute_schedule(
    principal: Number,
    periodic_rate: Number,
    original_term_periods: int,
    start_date: date,
    payments: Optional[Iterable[PaymentRecord]] = None,
    *,
    max_periods: int = DEFAULT_MAX_PERIODS,
    balance_cutoff: Number = DEFAULT_BALANCE_CUTOFF,
    policy: InstallmentPolicy = InstallmentPolicy.ORIGINAL
) -> List[ScheduleRow]:
    """
    Compute the full schedule (history + projection) for a loan

    Args:
        principal: Original amount borrowed
        periodic_rate: Interest per period as a fraction (0.02 = 2%)
        original_term_periods: Planned number of periods
        start_date: Loan start; projection starts the month after it when
            there is no payment history
        payments: Payments already made, in any order
        max_periods: Ceiling on the period counter (history included)
        balance_cutoff: Projection stops once the balance is at or below this
        policy: Installment sizing for projected rows

    Returns:
        Rows numbered 1..N, actual rows first
    """
    principal = _to_decimal(principal)
    rate = _to_decimal(periodic_rate)
    cutoff = _to_decimal(balance_cutoff)

    rows: List[ScheduleRow] = []
    balance = principal
    anchor = start_date

    history = sorted(payments or [], key=lambda p: p.date)
    for index, payment in enumerate(history, start=1):
        rows.append(ScheduleRow(
            period=index,
            date=payment.date,
            installment=payment.amount_paid,
            interest=payment.interest_portion,
            principal=payment.principal_portion,
            balance=payment.balance_after,
            is_actual=True
        ))
        balance = payment.balance_after
        anchor = payment.date

    installment = projection_installment(principal, rate, original_term_periods, history, policy)

    period = len(rows) + 1
    months_ahead = 1

    while balance > cutoff and period <= max_periods:
        # Offsets from a fixed anchor keep day 31 from drifting after February
        projection_date = add_months(anchor, months_ahead)

        interest = balance * rate
        if balance + interest - installment <= RESIDUE_TOLERANCE:
            # Closing installment: pay exactly what is left
            due = balance + interest
            principal_part = balance
            new_balance = ZERO
        else:
            due = installment
            principal_part = due - interest
            new_balance = balance - principal_part

        rows.append(ScheduleRow(
            period=period,
            date=projection_date,
            installment=due,
            interest=interest,
            principal=principal_part,
            balance=new_balance if new_balance > ZERO else ZERO,
            is_actual=False
        ))

        balance = new_balance
        period += 1
        months_ahead += 1

    if balance > cutoff and rows:
        log_action(
            logger, "warning", "Amortization projection truncated at period ceiling",
            action="compute_schedule",
            extra={"max_periods": max_periods, "remaining_balance": str(balance)}
        )

    return rows


def summarize_schedule(
    rows: List[ScheduleRow],
    installment: Decimal,
    max_periods: int = DEFAULT_MAX_PERIODS
) -> ScheduleSummary:
    """
    Aggregate a schedule

    A schedule is truncated when it hit the period ceiling while still
    carrying a balance; callers should re-check the loan parameters then.
    """
    summary = ScheduleSummary(rows=rows, reference_installment=installment)

    for row in rows:
        summary.total_interest += row.interest
        summary.total_principal += row.principal
        summary.total_paid += row.installment
        if row.is_actual:
            summary.actual_periods += 1
        else:
            summary.projected_periods += 1

    if rows:
        last = rows[-1]
        if last.balance == ZERO:
            summary.payoff_date = last.date
        summary.is_truncated = last.period >= max_periods and last.balance > ZERO

    return summary

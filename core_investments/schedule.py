"""
Schedule Generation Module

Produces the per-period obligation schedule for a resolved configuration.
The period-stepping loop is shared with returns quoting so a quote shown
before contract creation always matches the schedule generated afterwards.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional
from enum import Enum
import calendar

from .errors import ConfigurationError, ValidationError
from .logging_config import get_logger
from .money import ZERO, round_money, within_tolerance
from .plans import InterestType
from .resolver import ResolvedConfig


logger = get_logger("schedule")


class EntryStatus(Enum):
    """Per-period obligation status"""
    PENDING = "pending"      # Not yet due or not yet swept
    PARTIAL = "partial"      # Some payment received, less than total
    PAID = "paid"            # Paid in full
    OVERDUE = "overdue"      # Due date passed with nothing received


@dataclass
class ScheduleEntry:
    """Single period of a contract schedule"""
    period: int
    due_date: date
    interest_amount: Decimal
    principal_amount: Decimal
    total_amount: Decimal
    remaining_principal_after: Decimal
    status: EntryStatus = EntryStatus.PENDING
    paid_amount: Decimal = ZERO
    paid_date: Optional[date] = None

    def __post_init__(self):
        # Validate that total equals interest + principal
        calculated_total = self.interest_amount + self.principal_amount
        if not within_tolerance(calculated_total, self.total_amount):
            raise ValidationError(
                f"Period {self.period} total {self.total_amount} does not equal "
                f"interest {self.interest_amount} + principal {self.principal_amount}"
            )

    @property
    def outstanding_amount(self) -> Decimal:
        """Amount still owed on this period"""
        return max(ZERO, self.total_amount - self.paid_amount)

    @property
    def is_settled(self) -> bool:
        return self.status == EntryStatus.PAID

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'period': self.period,
            'due_date': self.due_date.isoformat(),
            'interest_amount': str(self.interest_amount),
            'principal_amount': str(self.principal_amount),
            'total_amount': str(self.total_amount),
            'remaining_principal_after': str(self.remaining_principal_after),
            'status': self.status.value,
            'paid_amount': str(self.paid_amount),
            'paid_date': self.paid_date.isoformat() if self.paid_date else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleEntry':
        """Create instance from dictionary"""
        return cls(
            period=data['period'],
            due_date=date.fromisoformat(data['due_date']),
            interest_amount=Decimal(data['interest_amount']),
            principal_amount=Decimal(data['principal_amount']),
            total_amount=Decimal(data['total_amount']),
            remaining_principal_after=Decimal(data['remaining_principal_after']),
            status=EntryStatus(data.get('status', EntryStatus.PENDING.value)),
            paid_amount=Decimal(data.get('paid_amount', '0')),
            paid_date=date.fromisoformat(data['paid_date']) if data.get('paid_date') else None
        )


@dataclass(frozen=True)
class PeriodStep:
    """Rounded figures for one period of the stepping loop"""
    period: int
    interest: Decimal
    principal: Decimal
    remaining_after: Decimal

    @property
    def total(self) -> Decimal:
        return round_money(self.interest + self.principal)


def step_periods(config: ResolvedConfig) -> Iterator[PeriodStep]:
    """
    Walk periods 1..tenure and yield each period's rounded figures

    Args:
        config: Resolved configuration

    Yields:
        PeriodStep per period

    Raises:
        ConfigurationError: If tenure < 1 or the monthly rate is negative
    """
    if config.tenure_months < 1:
        raise ConfigurationError(f"Tenure must be at least 1 month, got {config.tenure_months}")
    if config.monthly_rate < ZERO:
        raise ConfigurationError(f"Monthly rate cannot be negative, got {config.monthly_rate}")

    principal = round_money(config.principal)
    remaining = principal

    for period in range(1, config.tenure_months + 1):
        # Interest on the balance before this period's repayment
        if config.interest_type == InterestType.FLAT:
            interest = round_money(principal * config.monthly_rate)
        else:
            interest = round_money(remaining * config.monthly_rate)

        if period == config.tenure_months:
            principal_due = remaining
        else:
            principal_due = round_money(config.principal_policy(period, remaining))
            principal_due = min(max(principal_due, ZERO), remaining)

        remaining = max(ZERO, round_money(remaining - principal_due))

        yield PeriodStep(
            period=period,
            interest=interest,
            principal=principal_due,
            remaining_after=remaining
        )


def generate_schedule(config: ResolvedConfig, start_date: date) -> List[ScheduleEntry]:
    """
    Generate the obligation schedule for a contract

    Args:
        config: Resolved configuration
        start_date: Contract start (investment) date

    Returns:
        List of ScheduleEntry, one per period, all pending and unpaid
    """
    schedule = [
        ScheduleEntry(
            period=step.period,
            due_date=add_months(start_date, step.period),
            interest_amount=step.interest,
            principal_amount=step.principal,
            total_amount=step.total,
            remaining_principal_after=step.remaining_after
        )
        for step in step_periods(config)
    ]

    logger.debug(
        f"Generated {len(schedule)} period schedule",
        extra={"plan_id": config.plan_id, "action": "generate_schedule"}
    )
    return schedule


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def maturity_date(start_date: date, tenure_months: int) -> date:
    """Date the final period falls due"""
    return add_months(start_date, tenure_months)


def upcoming_due_entries(
    schedule: List[ScheduleEntry],
    as_of: date,
    days: int = 7
) -> List[ScheduleEntry]:
    """Pending entries falling due within `days` of `as_of`, soonest first"""
    window_end = as_of + timedelta(days=days)
    upcoming = [
        entry for entry in schedule
        if entry.status == EntryStatus.PENDING and as_of <= entry.due_date <= window_end
    ]
    upcoming.sort(key=lambda entry: entry.due_date)
    return upcoming


def summarize_schedule(schedule: List[ScheduleEntry]) -> Dict[str, Any]:
    """Totals across a schedule, and entry counts per status"""
    summary = {
        'periods': len(schedule),
        'total_interest': round_money(sum((e.interest_amount for e in schedule), ZERO)),
        'total_principal': round_money(sum((e.principal_amount for e in schedule), ZERO)),
        'total_amount': round_money(sum((e.total_amount for e in schedule), ZERO)),
        'total_paid': round_money(sum((e.paid_amount for e in schedule), ZERO)),
        'total_outstanding': round_money(sum((e.outstanding_amount for e in schedule), ZERO)),
        'status_counts': {status.value: 0 for status in EntryStatus},
    }
    for entry in schedule:
        summary['status_counts'][entry.status.value] += 1
    return summary

"""
Payment Reconciliation Module

Applies recorded payments to a contract schedule, sweeps overdue periods,
and re-derives contract aggregates and status from the schedule. Aggregates
are never incremented in place: every run recomputes them from the entries,
so stored totals cannot drift from the schedule they summarize.

Reconciliation is not safe to run concurrently against the same contract.
Callers must serialize payments per contract (see ContractManager).
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
from enum import Enum

from .config import get_config
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger
from .money import ZERO, round_money, to_decimal, within_tolerance
from .schedule import ScheduleEntry, EntryStatus


logger = get_logger("reconciliation")


class ContractStatus(Enum):
    """Contract lifecycle states"""
    ACTIVE = "active"           # Payments outstanding
    COMPLETED = "completed"     # Expected returns fully paid
    CLOSED = "closed"           # Administratively closed
    DEFAULTED = "defaulted"     # Administratively marked as defaulted


ADMINISTRATIVE_STATUSES = (ContractStatus.CLOSED, ContractStatus.DEFAULTED)


@dataclass(frozen=True)
class PaymentBreakdown:
    """How a payment splits across interest, principal, penalty and bonus"""
    interest: Decimal = ZERO
    principal: Decimal = ZERO
    penalty: Decimal = ZERO
    bonus: Decimal = ZERO

    def __post_init__(self):
        for name in ('interest', 'principal', 'penalty', 'bonus'):
            value = round_money(to_decimal(getattr(self, name), name))
            if value < ZERO:
                raise ValidationError(f"{name.capitalize()} amount must be non-negative")
            object.__setattr__(self, name, value)

    @property
    def total(self) -> Decimal:
        return self.interest + self.principal + self.penalty + self.bonus

    def to_dict(self) -> Dict[str, str]:
        return {
            'interest': str(self.interest),
            'principal': str(self.principal),
            'penalty': str(self.penalty),
            'bonus': str(self.bonus)
        }


@dataclass(frozen=True)
class PaymentApplication:
    """A recorded payment to apply against one schedule period"""
    target_period: int
    amount: Decimal
    payment_date: Optional[date] = None
    breakdown: Optional[PaymentBreakdown] = None
    payment_id: Optional[str] = None

    def __post_init__(self):
        amount = round_money(to_decimal(self.amount, "amount"))
        if amount <= ZERO:
            raise ValidationError(f"Payment amount must be greater than 0, got {amount}")
        object.__setattr__(self, 'amount', amount)

        if self.breakdown is not None:
            tolerance = get_config().breakdown_tolerance_amount
            if not within_tolerance(self.breakdown.total, amount, tolerance):
                raise ValidationError(
                    f"Payment amount {amount} does not match the sum of breakdown "
                    f"amounts {self.breakdown.total}"
                )


@dataclass
class ContractAggregates:
    """Contract-level totals derived from the schedule"""
    total_expected_returns: Decimal
    total_interest_expected: Decimal
    total_paid_amount: Decimal = ZERO
    total_interest_paid: Decimal = ZERO
    total_principal_paid: Decimal = ZERO
    remaining_amount: Optional[Decimal] = None
    excess_paid: Decimal = ZERO                 # Paid beyond expected returns
    status: ContractStatus = ContractStatus.ACTIVE

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = max(ZERO, self.total_expected_returns - self.total_paid_amount)

    @classmethod
    def from_quote(cls, quote) -> 'ContractAggregates':
        """Initial aggregates for a new contract from its ReturnsQuote"""
        return cls(
            total_expected_returns=quote.total_returns,
            total_interest_expected=quote.total_interest,
            remaining_amount=quote.total_returns
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_expected_returns': str(self.total_expected_returns),
            'total_interest_expected': str(self.total_interest_expected),
            'total_paid_amount': str(self.total_paid_amount),
            'total_interest_paid': str(self.total_interest_paid),
            'total_principal_paid': str(self.total_principal_paid),
            'remaining_amount': str(self.remaining_amount),
            'excess_paid': str(self.excess_paid),
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContractAggregates':
        return cls(
            total_expected_returns=Decimal(data['total_expected_returns']),
            total_interest_expected=Decimal(data['total_interest_expected']),
            total_paid_amount=Decimal(data.get('total_paid_amount', '0')),
            total_interest_paid=Decimal(data.get('total_interest_paid', '0')),
            total_principal_paid=Decimal(data.get('total_principal_paid', '0')),
            remaining_amount=Decimal(data['remaining_amount']) if data.get('remaining_amount') else None,
            excess_paid=Decimal(data.get('excess_paid', '0')),
            status=ContractStatus(data.get('status', ContractStatus.ACTIVE.value))
        )


@dataclass
class ReconciliationResult:
    """Updated schedule, aggregates and status after a reconciliation run"""
    schedule: List[ScheduleEntry]
    aggregates: ContractAggregates
    previous_status: ContractStatus
    breakdown: Optional[PaymentBreakdown] = None
    newly_overdue: List[int] = field(default_factory=list)

    @property
    def status(self) -> ContractStatus:
        return self.aggregates.status

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.aggregates.status


def allocate_payment(entry: ScheduleEntry, amount: Decimal) -> PaymentBreakdown:
    """
    Split a payment interest-first against an entry's unpaid interest

    The remainder counts as principal. Uses the entry's paid amount before
    this payment is added.
    """
    remaining_interest = entry.interest_amount - min(entry.paid_amount, entry.interest_amount)
    interest_portion = min(amount, remaining_interest)
    return PaymentBreakdown(
        interest=interest_portion,
        principal=max(ZERO, amount - interest_portion)
    )


def sweep_overdue(schedule: List[ScheduleEntry], as_of: date) -> List[int]:
    """
    Mark pending entries due strictly before `as_of` as overdue, in place

    Returns:
        Periods that changed to overdue
    """
    flipped = []
    for entry in schedule:
        if entry.status == EntryStatus.PENDING and entry.due_date < as_of:
            entry.status = EntryStatus.OVERDUE
            flipped.append(entry.period)
    return flipped


def recompute_aggregates(
    schedule: List[ScheduleEntry],
    aggregates: ContractAggregates
) -> ContractAggregates:
    """Re-derive paid totals and remaining amount from the schedule"""
    total_paid = ZERO
    interest_paid = ZERO
    principal_paid = ZERO
    for entry in schedule:
        total_paid += entry.paid_amount
        interest_paid += min(entry.paid_amount, entry.interest_amount)
        principal_paid += max(ZERO, entry.paid_amount - entry.interest_amount)

    total_paid = round_money(total_paid)
    expected = aggregates.total_expected_returns
    updated = replace(
        aggregates,
        total_paid_amount=total_paid,
        total_interest_paid=round_money(interest_paid),
        total_principal_paid=round_money(principal_paid),
        remaining_amount=round_money(max(ZERO, expected - total_paid)),
        excess_paid=round_money(max(ZERO, total_paid - expected))
    )
    updated.status = derive_status(updated)
    return updated


def derive_status(aggregates: ContractAggregates) -> ContractStatus:
    """
    Contract status implied by the aggregates

    Only active -> completed is derived. Administrative statuses are kept, and
    overdue periods do not change the contract status.
    """
    if aggregates.status in ADMINISTRATIVE_STATUSES:
        return aggregates.status
    if aggregates.remaining_amount <= ZERO:
        return ContractStatus.COMPLETED
    return aggregates.status


def apply_payment(
    schedule: List[ScheduleEntry],
    aggregates: ContractAggregates,
    application: PaymentApplication,
    as_of: Optional[date] = None
) -> ReconciliationResult:
    """
    Apply a payment to a schedule and re-derive the contract aggregates

    Inputs are not modified; the result carries updated copies.

    Args:
        schedule: Current contract schedule
        aggregates: Current contract aggregates
        application: Payment to apply
        as_of: Reconciliation date used for the overdue sweep (defaults to today)

    Returns:
        ReconciliationResult

    Raises:
        ValidationError: If the contract is not active
        NotFoundError: If the schedule has no entry for the target period
    """
    as_of = as_of or date.today()

    if aggregates.status != ContractStatus.ACTIVE:
        raise ValidationError(
            f"Cannot record payment for non-active contract (status {aggregates.status.value})"
        )

    updated_schedule = [replace(entry) for entry in schedule]
    entry = next((e for e in updated_schedule if e.period == application.target_period), None)
    if entry is None:
        raise NotFoundError(f"No schedule entry for period {application.target_period}")

    breakdown = application.breakdown or allocate_payment(entry, application.amount)

    entry.paid_amount = round_money(entry.paid_amount + application.amount)
    if entry.paid_amount >= entry.total_amount:
        entry.status = EntryStatus.PAID
        entry.paid_date = application.payment_date or as_of
    else:
        entry.status = EntryStatus.PARTIAL

    newly_overdue = sweep_overdue(updated_schedule, as_of)
    updated_aggregates = recompute_aggregates(updated_schedule, aggregates)

    logger.debug(
        f"Applied payment of {application.amount} to period {application.target_period}",
        extra={
            "action": "apply_payment",
            "extra": {
                "payment_id": application.payment_id,
                "entry_status": entry.status.value,
                "breakdown": breakdown.to_dict(),
                "contract_status": updated_aggregates.status.value,
            }
        }
    )

    return ReconciliationResult(
        schedule=updated_schedule,
        aggregates=updated_aggregates,
        previous_status=aggregates.status,
        breakdown=breakdown,
        newly_overdue=newly_overdue
    )


def refresh_contract(
    schedule: List[ScheduleEntry],
    aggregates: ContractAggregates,
    as_of: Optional[date] = None
) -> ReconciliationResult:
    """Read-time overdue sweep and aggregate re-derivation, without a payment"""
    as_of = as_of or date.today()
    updated_schedule = [replace(entry) for entry in schedule]
    newly_overdue = sweep_overdue(updated_schedule, as_of)
    return ReconciliationResult(
        schedule=updated_schedule,
        aggregates=recompute_aggregates(updated_schedule, aggregates),
        previous_status=aggregates.status,
        newly_overdue=newly_overdue
    )

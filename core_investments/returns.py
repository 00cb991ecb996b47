"""
Returns Calculation Module

Aggregate expected-returns figures for a resolved configuration, used for
quoting before a contract exists and for initialising contract aggregates.
Runs the same period-stepping loop as schedule generation, accumulating
interest only.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .logging_config import get_logger
from .money import ZERO, HUNDRED, round_money
from .plans import PlanTerms, PaymentType
from .resolver import ResolvedConfig, RepaymentSelection, resolve_config
from .schedule import step_periods


logger = get_logger("returns")


@dataclass(frozen=True)
class ReturnsQuote:
    """Expected returns for a principal under a resolved configuration"""
    principal: Decimal
    total_interest: Decimal
    total_returns: Decimal
    effective_rate: Decimal          # Total interest as a percentage of principal
    payment_type: Optional[PaymentType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'principal': str(self.principal),
            'total_interest': str(self.total_interest),
            'total_returns': str(self.total_returns),
            'effective_rate': str(self.effective_rate),
            'payment_type': self.payment_type.value if self.payment_type else None
        }


def calculate_returns(config: ResolvedConfig) -> ReturnsQuote:
    """
    Calculate total interest, total returns and effective rate

    Args:
        config: Resolved configuration

    Returns:
        ReturnsQuote

    Raises:
        ConfigurationError: If tenure < 1 or the monthly rate is negative
    """
    total_interest = ZERO
    for step in step_periods(config):
        total_interest += step.interest
    total_interest = round_money(total_interest)

    principal = round_money(config.principal)
    quote = ReturnsQuote(
        principal=principal,
        total_interest=total_interest,
        total_returns=round_money(principal + total_interest),
        effective_rate=round_money(total_interest / principal * HUNDRED),
        payment_type=config.payment_type
    )

    logger.debug(
        "Calculated expected returns",
        extra={"plan_id": config.plan_id, "action": "calculate_returns", "extra": quote.to_dict()}
    )
    return quote


def quote_plan(
    plan: PlanTerms,
    principal: Any,
    selection: Optional[RepaymentSelection] = None
) -> ReturnsQuote:
    """Resolve a plan for a principal and quote its returns"""
    return calculate_returns(resolve_config(plan, principal, selection))

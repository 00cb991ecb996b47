"""
Investment Plan Module

Immutable plan templates and their repayment plan variants. A plan carries
legacy top-level interest/repayment fields plus an optional list of variants,
each tagged by payment type with its own nested rate, frequency and
withdrawal configuration.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from .config import get_config
from .errors import ConfigurationError
from .money import ZERO, HUNDRED, to_decimal


class InterestType(Enum):
    """How interest is computed each period"""
    FLAT = "flat"              # On original principal every period
    REDUCING = "reducing"      # On principal remaining before the period's repayment


class PaymentType(Enum):
    """Repayment plan variant tag"""
    INTEREST = "interest"                                  # Interest only, principal per option
    INTEREST_WITH_PRINCIPAL = "interest_with_principal"    # Interest plus periodic principal


class PayoutFrequency(Enum):
    """Payout frequency with its length in months"""
    MONTHLY = ("monthly", 1)
    QUARTERLY = ("quarterly", 3)
    HALF_YEARLY = ("half_yearly", 6)
    YEARLY = ("yearly", 12)
    OTHERS = ("others", 1)  # Explicit payout dates, stepped monthly

    def __init__(self, code: str, months: int):
        self.code = code
        self.months = months

    @classmethod
    def from_code(cls, code: str) -> 'PayoutFrequency':
        normalized = code.strip().lower().replace('-', '_')
        for frequency in cls:
            if frequency.code == normalized:
                return frequency
        raise ConfigurationError(f"Unknown payout frequency: {code}")


class PrincipalRepaymentOption(Enum):
    """Principal handling for interest-only variants"""
    FIXED = "fixed"          # Whole principal in the final period
    FLEXIBLE = "flexible"    # Withdrawal unlocks part-way, then settles over a term


def _decimal_or_none(value: Any, name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return to_decimal(value, name)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from None


def _check_percentage(value: Optional[Decimal], name: str, ceiling: Decimal = HUNDRED) -> None:
    if value is not None and (value < ZERO or value > ceiling):
        raise ConfigurationError(f"{name} must be between 0 and {ceiling}, got {value}")


@dataclass(frozen=True)
class PrincipalRepayment:
    """Legacy plan-level principal repayment rule"""
    percentage: Decimal
    start_month: int

    def __post_init__(self):
        object.__setattr__(self, 'percentage', _decimal_or_none(self.percentage, "percentage"))
        _check_percentage(self.percentage, "Principal repayment percentage")
        if self.start_month < 1:
            raise ConfigurationError("Principal repayment start month must be at least 1")


@dataclass(frozen=True)
class InterestPaymentConfig:
    """Nested configuration for interest-only variants"""
    interest_type: Optional[InterestType] = None
    interest_rate: Optional[Decimal] = None          # Monthly percentage
    interest_frequency: PayoutFrequency = PayoutFrequency.MONTHLY
    principal_repayment_option: Optional[PrincipalRepaymentOption] = None
    withdrawal_after_percentage: Optional[Decimal] = None
    principal_settlement_term: Optional[int] = None
    interest_start_date: Optional[date] = None

    def __post_init__(self):
        for name in ('interest_rate', 'withdrawal_after_percentage'):
            object.__setattr__(self, name, _decimal_or_none(getattr(self, name), name))
        _check_percentage(self.interest_rate, "Interest rate", get_config().max_interest_rate_amount)
        _check_percentage(self.withdrawal_after_percentage, "Withdrawal after percentage")
        if self.principal_settlement_term is not None and self.principal_settlement_term < 0:
            raise ConfigurationError("Principal settlement term cannot be negative")


@dataclass(frozen=True)
class InterestWithPrincipalConfig:
    """Nested configuration for interest-with-principal variants"""
    interest_type: Optional[InterestType] = None
    interest_rate: Optional[Decimal] = None          # Monthly percentage
    principal_repayment_percentage: Optional[Decimal] = None
    payment_frequency: Optional[PayoutFrequency] = None
    interest_payout_date: Optional[date] = None      # Only meaningful for OTHERS
    principal_payout_date: Optional[date] = None     # Only meaningful for OTHERS

    def __post_init__(self):
        for name in ('interest_rate', 'principal_repayment_percentage'):
            object.__setattr__(self, name, _decimal_or_none(getattr(self, name), name))
        _check_percentage(self.interest_rate, "Interest rate", get_config().max_interest_rate_amount)
        _check_percentage(self.principal_repayment_percentage, "Principal repayment percentage")


@dataclass(frozen=True)
class RepaymentPlanVariant:
    """A selectable repayment configuration attached to a plan"""
    id: str
    plan_name: str
    payment_type: PaymentType
    interest_payment: Optional[InterestPaymentConfig] = None
    interest_with_principal_payment: Optional[InterestWithPrincipalConfig] = None
    is_default: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class PlanTerms:
    """
    Immutable plan template.

    `interest_type`, `interest_rate` and `principal_repayment` are the legacy
    top-level fields used when no variant applies.
    """
    plan_id: str
    name: str
    interest_type: InterestType
    interest_rate: Decimal                  # Monthly percentage, e.g. 2.5 for 2.5%/month
    tenure_months: int
    principal_repayment: Optional[PrincipalRepayment] = None
    variants: Tuple[RepaymentPlanVariant, ...] = field(default_factory=tuple)
    min_investment: Optional[Decimal] = None
    max_investment: Optional[Decimal] = None
    description: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        settings = get_config()

        object.__setattr__(self, 'interest_rate', _decimal_or_none(self.interest_rate, "interest_rate"))
        object.__setattr__(self, 'min_investment', _decimal_or_none(self.min_investment, "min_investment"))
        object.__setattr__(self, 'max_investment', _decimal_or_none(self.max_investment, "max_investment"))
        object.__setattr__(self, 'variants', tuple(self.variants))

        if self.interest_rate is None:
            raise ConfigurationError("Interest rate is required")
        _check_percentage(self.interest_rate, "Interest rate", settings.max_interest_rate_amount)

        if self.tenure_months < 1 or self.tenure_months > settings.max_tenure_months:
            raise ConfigurationError(
                f"Tenure must be between 1 and {settings.max_tenure_months} months, "
                f"got {self.tenure_months}"
            )

        if self.principal_repayment and self.principal_repayment.start_month > self.tenure_months:
            raise ConfigurationError("Principal repayment start month cannot exceed tenure")

        if (self.min_investment is not None and self.max_investment is not None
                and self.max_investment < self.min_investment):
            raise ConfigurationError("Maximum investment must be greater than minimum investment")

        variant_ids = [variant.id for variant in self.variants]
        if len(variant_ids) != len(set(variant_ids)):
            raise ConfigurationError("Repayment plan variant ids must be unique")

        if sum(1 for variant in self.variants if variant.is_default) > 1:
            raise ConfigurationError("At most one repayment plan variant can be the default")

    def get_variant(self, variant_id: str) -> Optional[RepaymentPlanVariant]:
        """Get variant by ID regardless of its active flag"""
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def active_variants(self) -> List[RepaymentPlanVariant]:
        """Variants currently selectable for new contracts"""
        return [variant for variant in self.variants if variant.is_active]

    def default_variant(self) -> Optional[RepaymentPlanVariant]:
        """The active default variant, if any"""
        for variant in self.active_variants():
            if variant.is_default:
                return variant
        return None

    def summary(self) -> Dict[str, Any]:
        """Plan fields worth attaching to logs and audit metadata"""
        return {
            "plan_id": self.plan_id,
            "name": self.name,
            "interest_type": self.interest_type.value,
            "interest_rate": str(self.interest_rate),
            "tenure_months": self.tenure_months,
            "variants": len(self.variants),
        }

"""
Repayment Plan Resolution Module

Turns a plan, an optional repayment selection and a principal amount into the
single flattened ResolvedConfig that schedule generation and returns quoting
consume. All variant shapes (legacy fields, interest-only fixed/flexible,
interest-with-principal at a frequency) collapse here into an interest type,
a monthly rate and a principal policy.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum
import math

from .errors import ConfigurationError, NotFoundError, ValidationError
from .logging_config import get_logger
from .money import ZERO, HUNDRED, round_money, percentage_of, to_decimal
from .plans import (
    PlanTerms, RepaymentPlanVariant, InterestType, PaymentType, PayoutFrequency,
    PrincipalRepaymentOption
)


logger = get_logger("resolver")


class ConfigSource(Enum):
    """Where a resolved configuration came from"""
    LEGACY = "legacy"      # Plan top-level fields
    VARIANT = "variant"    # One of the plan's stored variants
    CUSTOM = "custom"      # Ad-hoc variant supplied with the contract


class PrincipalPolicy(ABC):
    """
    Principal due in a period, before the final-period close-out.

    Called once per period in order with the balance remaining before that
    period's repayment.
    """

    @abstractmethod
    def __call__(self, period: int, remaining: Decimal) -> Decimal:
        """Principal requested for `period`"""
        pass

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Policy parameters for logs and audit metadata"""
        pass


@dataclass(frozen=True)
class MaturityPolicy(PrincipalPolicy):
    """Nothing before maturity; the final period repays the whole balance"""

    def __call__(self, period: int, remaining: Decimal) -> Decimal:
        return ZERO

    def describe(self) -> Dict[str, Any]:
        return {"policy": "maturity"}


@dataclass(frozen=True)
class InstallmentPolicy(PrincipalPolicy):
    """
    Fixed installment every period from `start_month`.

    When `settle_month` is set, that period repays whatever balance remains so
    rounding residue never outlives the settlement window.
    """
    start_month: int
    installment: Decimal
    settle_month: Optional[int] = None

    def __call__(self, period: int, remaining: Decimal) -> Decimal:
        if period < self.start_month:
            return ZERO
        if self.settle_month is not None and period >= self.settle_month:
            return remaining
        return self.installment

    def describe(self) -> Dict[str, Any]:
        return {
            "policy": "installment",
            "start_month": self.start_month,
            "installment": str(self.installment),
            "settle_month": self.settle_month,
        }


@dataclass(frozen=True)
class FrequencyPolicy(PrincipalPolicy):
    """Fixed installment on every period that is a multiple of `frequency_months`"""
    frequency_months: int
    installment: Decimal

    def __call__(self, period: int, remaining: Decimal) -> Decimal:
        if period % self.frequency_months == 0:
            return self.installment
        return ZERO

    def describe(self) -> Dict[str, Any]:
        return {
            "policy": "frequency",
            "frequency_months": self.frequency_months,
            "installment": str(self.installment),
        }


@dataclass(frozen=True)
class ResolvedConfig:
    """Flattened numeric parameters for one calculation. Never mutated."""
    principal: Decimal
    tenure_months: int
    monthly_rate: Decimal               # Fraction, e.g. 0.025 for 2.5%/month
    interest_type: InterestType
    principal_policy: PrincipalPolicy
    source: ConfigSource = ConfigSource.LEGACY
    payment_type: Optional[PaymentType] = None
    payout_frequency: PayoutFrequency = PayoutFrequency.MONTHLY
    plan_id: Optional[str] = None
    variant_id: Optional[str] = None

    @property
    def interest_rate(self) -> Decimal:
        """Monthly rate as a percentage"""
        return self.monthly_rate * HUNDRED

    def describe(self) -> Dict[str, Any]:
        return {
            "principal": str(self.principal),
            "tenure_months": self.tenure_months,
            "monthly_rate": str(self.monthly_rate),
            "interest_type": self.interest_type.value,
            "source": self.source.value,
            "payment_type": self.payment_type.value if self.payment_type else None,
            "payout_frequency": self.payout_frequency.code,
            "plan_id": self.plan_id,
            "variant_id": self.variant_id,
            "principal_policy": self.principal_policy.describe(),
        }


@dataclass(frozen=True)
class RepaymentSelection:
    """Either an existing variant of the plan or an ad-hoc custom variant"""
    variant_id: Optional[str] = None
    custom_variant: Optional[RepaymentPlanVariant] = None

    def __post_init__(self):
        if self.variant_id is not None and self.custom_variant is not None:
            raise ValidationError("Select either an existing repayment plan or a custom one, not both")

    @classmethod
    def existing(cls, variant_id: str) -> 'RepaymentSelection':
        return cls(variant_id=variant_id)

    @classmethod
    def custom(cls, variant: RepaymentPlanVariant) -> 'RepaymentSelection':
        return cls(custom_variant=variant)


def resolve_config(
    plan: PlanTerms,
    principal: Any,
    selection: Optional[RepaymentSelection] = None
) -> ResolvedConfig:
    """
    Resolve the concrete repayment configuration for a calculation

    Args:
        plan: Plan template
        principal: Amount invested
        selection: Existing variant id or custom variant; None uses the plan
            default variant, falling back to the legacy plan fields

    Returns:
        ResolvedConfig

    Raises:
        NotFoundError: If the selected variant is absent or inactive
        ConfigurationError: If the chosen variant lacks required fields
        ValidationError: If the principal is not positive or outside plan bounds
    """
    amount = round_money(to_decimal(principal, "principal"))
    _validate_principal(plan, amount)

    selection = selection or RepaymentSelection()

    if selection.variant_id is not None:
        variant = plan.get_variant(selection.variant_id)
        if variant is None or not variant.is_active:
            raise NotFoundError(
                f"Repayment plan {selection.variant_id} not found on plan {plan.plan_id}"
            )
        config = _resolve_variant(plan, amount, variant, ConfigSource.VARIANT)
    elif selection.custom_variant is not None:
        config = _resolve_variant(plan, amount, selection.custom_variant, ConfigSource.CUSTOM)
    else:
        default = plan.default_variant()
        if default is not None:
            config = _resolve_variant(plan, amount, default, ConfigSource.VARIANT)
        else:
            config = _resolve_legacy(plan, amount)

    logger.debug(
        "Resolved repayment configuration",
        extra={"plan_id": plan.plan_id, "action": "resolve_config", "extra": config.describe()}
    )
    return config


def _validate_principal(plan: PlanTerms, principal: Decimal) -> None:
    if principal <= ZERO:
        raise ValidationError(f"Principal amount must be greater than 0, got {principal}")
    if plan.min_investment is not None and principal < plan.min_investment:
        raise ValidationError(
            f"Investment amount must be between {plan.min_investment} and {plan.max_investment}"
        )
    if plan.max_investment is not None and principal > plan.max_investment:
        raise ValidationError(
            f"Investment amount must be between {plan.min_investment} and {plan.max_investment}"
        )


def _resolve_legacy(plan: PlanTerms, principal: Decimal) -> ResolvedConfig:
    tenure = plan.tenure_months

    if plan.principal_repayment is not None:
        percentage = plan.principal_repayment.percentage
        start_month = plan.principal_repayment.start_month
    elif plan.interest_type == InterestType.FLAT:
        percentage, start_month = HUNDRED, tenure
    else:
        percentage, start_month = Decimal('50'), max(1, tenure // 2)

    installments = max(1, tenure - start_month + 1)
    installment = round_money(percentage_of(principal, percentage) / installments)

    return ResolvedConfig(
        principal=principal,
        tenure_months=tenure,
        monthly_rate=plan.interest_rate / HUNDRED,
        interest_type=plan.interest_type,
        principal_policy=InstallmentPolicy(start_month=start_month, installment=installment),
        source=ConfigSource.LEGACY,
        plan_id=plan.plan_id
    )


def _resolve_variant(
    plan: PlanTerms,
    principal: Decimal,
    variant: RepaymentPlanVariant,
    source: ConfigSource
) -> ResolvedConfig:
    if variant.payment_type == PaymentType.INTEREST:
        return _resolve_interest_only(plan, principal, variant, source)
    if variant.payment_type == PaymentType.INTEREST_WITH_PRINCIPAL:
        return _resolve_interest_with_principal(plan, principal, variant, source)
    raise ConfigurationError(f"Unsupported payment type: {variant.payment_type}")


def _require(value: Any, field: str, variant: RepaymentPlanVariant) -> Any:
    if value is None:
        raise ConfigurationError(
            f"Repayment plan {variant.id} ({variant.payment_type.value}) is missing {field}"
        )
    return value


def _resolve_interest_only(
    plan: PlanTerms,
    principal: Decimal,
    variant: RepaymentPlanVariant,
    source: ConfigSource
) -> ResolvedConfig:
    settings = _require(variant.interest_payment, "interest payment configuration", variant)
    interest_type = _require(settings.interest_type, "interest type", variant)
    interest_rate = _require(settings.interest_rate, "interest rate", variant)
    option = _require(settings.principal_repayment_option, "principal repayment option", variant)
    tenure = plan.tenure_months

    if option == PrincipalRepaymentOption.FIXED:
        policy: PrincipalPolicy = MaturityPolicy()
    else:
        withdrawal_after = _require(
            settings.withdrawal_after_percentage, "withdrawal after percentage", variant
        )
        settlement_term = _require(
            settings.principal_settlement_term, "principal settlement term", variant
        )
        settlement_start = max(1, math.ceil(Decimal(tenure) * withdrawal_after / HUNDRED))
        term = max(1, settlement_term)
        policy = InstallmentPolicy(
            start_month=settlement_start,
            installment=round_money(principal / term),
            settle_month=settlement_start + term - 1
        )

    return ResolvedConfig(
        principal=principal,
        tenure_months=tenure,
        monthly_rate=interest_rate / HUNDRED,
        interest_type=interest_type,
        principal_policy=policy,
        source=source,
        payment_type=PaymentType.INTEREST,
        payout_frequency=settings.interest_frequency,
        plan_id=plan.plan_id,
        variant_id=variant.id
    )


def _resolve_interest_with_principal(
    plan: PlanTerms,
    principal: Decimal,
    variant: RepaymentPlanVariant,
    source: ConfigSource
) -> ResolvedConfig:
    settings = _require(
        variant.interest_with_principal_payment, "interest with principal configuration", variant
    )
    interest_type = _require(settings.interest_type, "interest type", variant)
    interest_rate = _require(settings.interest_rate, "interest rate", variant)
    percentage = _require(
        settings.principal_repayment_percentage, "principal repayment percentage", variant
    )
    frequency = _require(settings.payment_frequency, "payment frequency", variant)
    tenure = plan.tenure_months

    if frequency == PayoutFrequency.OTHERS:
        logger.warning(
            "Custom payout frequency stepped monthly; explicit payout dates are not scheduled",
            extra={"plan_id": plan.plan_id, "action": "resolve_config"}
        )

    total_payments = math.ceil(tenure / frequency.months)
    installment = round_money(percentage_of(principal, percentage) / total_payments)

    return ResolvedConfig(
        principal=principal,
        tenure_months=tenure,
        monthly_rate=interest_rate / HUNDRED,
        interest_type=interest_type,
        principal_policy=FrequencyPolicy(frequency_months=frequency.months, installment=installment),
        source=source,
        payment_type=PaymentType.INTEREST_WITH_PRINCIPAL,
        payout_frequency=frequency,
        plan_id=plan.plan_id,
        variant_id=variant.id
    )

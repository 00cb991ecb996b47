"""
Pydantic schemas for plan, repayment variant, selection and payment payloads

Collaborators hand the engine raw mappings (request bodies, stored
documents). These models validate them and convert to the engine's
immutable value objects. Keys are accepted in snake_case or camelCase.
"""

from decimal import Decimal
from datetime import date
from typing import Any, List, Literal, Mapping, Optional, Type, TypeVar
from enum import Enum
import re

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError, ValidationError
from .plans import (
    PlanTerms, PrincipalRepayment, RepaymentPlanVariant, InterestPaymentConfig,
    InterestWithPrincipalConfig, InterestType, PaymentType, PayoutFrequency,
    PrincipalRepaymentOption
)
from .reconciliation import PaymentApplication, PaymentBreakdown
from .resolver import RepaymentSelection


E = TypeVar('E', bound=Enum)

CUSTOM_VARIANT_ID = "custom"


def _enum_value(enum_cls: Type[E], raw: Optional[str], field: str) -> Optional[E]:
    """Map 'interestWithPrincipal' / 'half-yearly' style codes onto enum members"""
    if raw is None:
        return None
    normalized = re.sub(r'(?<!^)(?=[A-Z])', '_', raw.strip()).lower().replace('-', '_')
    try:
        return enum_cls(normalized)
    except ValueError:
        raise ConfigurationError(f"Invalid {field}: {raw}") from None


def _frequency(raw: Optional[str]) -> Optional[PayoutFrequency]:
    if raw is None:
        return None
    return PayoutFrequency.from_code(raw)


class PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InterestPaymentModel(PayloadModel):
    interest_type: Optional[str] = Field(None, description="flat or reducing")
    interest_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Monthly percentage")
    interest_frequency: str = Field("monthly", description="monthly, quarterly, half-yearly, yearly, others")
    principal_repayment_option: Optional[str] = Field(None, description="fixed or flexible")
    withdrawal_after_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    principal_settlement_term: Optional[int] = Field(None, ge=0)
    interest_start_date: Optional[date] = None

    def to_config(self) -> InterestPaymentConfig:
        return InterestPaymentConfig(
            interest_type=_enum_value(InterestType, self.interest_type, "interest type"),
            interest_rate=self.interest_rate,
            interest_frequency=_frequency(self.interest_frequency),
            principal_repayment_option=_enum_value(
                PrincipalRepaymentOption, self.principal_repayment_option, "principal repayment option"
            ),
            withdrawal_after_percentage=self.withdrawal_after_percentage,
            principal_settlement_term=self.principal_settlement_term,
            interest_start_date=self.interest_start_date
        )


class InterestWithPrincipalPaymentModel(PayloadModel):
    interest_type: Optional[str] = None
    interest_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Monthly percentage")
    principal_repayment_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    payment_frequency: Optional[str] = None
    interest_payout_date: Optional[date] = None
    principal_payout_date: Optional[date] = None

    def to_config(self) -> InterestWithPrincipalConfig:
        return InterestWithPrincipalConfig(
            interest_type=_enum_value(InterestType, self.interest_type, "interest type"),
            interest_rate=self.interest_rate,
            principal_repayment_percentage=self.principal_repayment_percentage,
            payment_frequency=_frequency(self.payment_frequency),
            interest_payout_date=self.interest_payout_date,
            principal_payout_date=self.principal_payout_date
        )


class RepaymentPlanVariantModel(PayloadModel):
    id: Optional[str] = None
    plan_name: str = "Custom plan"
    payment_type: str = Field(..., description="interest or interestWithPrincipal")
    interest_payment: Optional[InterestPaymentModel] = None
    interest_with_principal_payment: Optional[InterestWithPrincipalPaymentModel] = None
    is_default: bool = False
    is_active: bool = True

    def to_variant(self, default_id: str = CUSTOM_VARIANT_ID) -> RepaymentPlanVariant:
        return RepaymentPlanVariant(
            id=self.id or default_id,
            plan_name=self.plan_name,
            payment_type=_enum_value(PaymentType, self.payment_type, "payment type"),
            interest_payment=self.interest_payment.to_config() if self.interest_payment else None,
            interest_with_principal_payment=(
                self.interest_with_principal_payment.to_config()
                if self.interest_with_principal_payment else None
            ),
            is_default=self.is_default,
            is_active=self.is_active
        )


class SelectedRepaymentPlanModel(PayloadModel):
    plan_type: Literal["existing", "new"] = "existing"
    existing_plan_id: Optional[str] = None
    custom_plan: Optional[RepaymentPlanVariantModel] = None

    @model_validator(mode='after')
    def check_plan_type(self) -> 'SelectedRepaymentPlanModel':
        if self.plan_type == "existing" and not self.existing_plan_id:
            raise ValueError("existingPlanId is required for an existing repayment plan")
        if self.plan_type == "new" and self.custom_plan is None:
            raise ValueError("customPlan is required for a new repayment plan")
        return self

    def to_selection(self) -> RepaymentSelection:
        if self.plan_type == "existing":
            return RepaymentSelection.existing(self.existing_plan_id)
        return RepaymentSelection.custom(self.custom_plan.to_variant())


class PrincipalRepaymentModel(PayloadModel):
    percentage: Decimal = Field(..., ge=0, le=100)
    start_month: int = Field(..., ge=1)


class PlanTermsModel(PayloadModel):
    plan_id: str
    name: str = Field(..., max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    interest_type: str
    interest_rate: Decimal = Field(..., ge=0, le=100, description="Monthly percentage")
    tenure_months: int = Field(..., ge=1)
    principal_repayment: Optional[PrincipalRepaymentModel] = None
    repayment_plans: List[RepaymentPlanVariantModel] = Field(default_factory=list)
    min_investment: Optional[Decimal] = Field(None, gt=0)
    max_investment: Optional[Decimal] = Field(None, gt=0)
    is_active: bool = True

    def to_plan_terms(self) -> PlanTerms:
        principal_repayment = None
        if self.principal_repayment:
            principal_repayment = PrincipalRepayment(
                percentage=self.principal_repayment.percentage,
                start_month=self.principal_repayment.start_month
            )
        return PlanTerms(
            plan_id=self.plan_id,
            name=self.name,
            description=self.description,
            interest_type=_enum_value(InterestType, self.interest_type, "interest type"),
            interest_rate=self.interest_rate,
            tenure_months=self.tenure_months,
            principal_repayment=principal_repayment,
            variants=tuple(
                variant.to_variant(default_id=f"RP{index + 1:03d}")
                for index, variant in enumerate(self.repayment_plans)
            ),
            min_investment=self.min_investment,
            max_investment=self.max_investment,
            is_active=self.is_active
        )


class PaymentApplicationModel(PayloadModel):
    target_period: int = Field(..., ge=1, description="Schedule period the payment settles")
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[date] = None
    payment_id: Optional[str] = None
    interest_amount: Optional[Decimal] = Field(None, ge=0)
    principal_amount: Optional[Decimal] = Field(None, ge=0)
    penalty_amount: Optional[Decimal] = Field(None, ge=0)
    bonus_amount: Optional[Decimal] = Field(None, ge=0)

    def to_application(self) -> PaymentApplication:
        parts = (self.interest_amount, self.principal_amount, self.penalty_amount, self.bonus_amount)
        breakdown = None
        # All-zero components count as no breakdown and fall back to the auto split
        if any(parts):
            breakdown = PaymentBreakdown(
                interest=self.interest_amount or Decimal('0'),
                principal=self.principal_amount or Decimal('0'),
                penalty=self.penalty_amount or Decimal('0'),
                bonus=self.bonus_amount or Decimal('0')
            )
        return PaymentApplication(
            target_period=self.target_period,
            amount=self.amount,
            payment_date=self.payment_date,
            payment_id=self.payment_id,
            breakdown=breakdown
        )


def _summarize(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )


def parse_variant_payload(payload: Mapping[str, Any]) -> RepaymentPlanVariant:
    """Validate an ad-hoc repayment variant payload"""
    try:
        model = RepaymentPlanVariantModel.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid repayment plan: {_summarize(exc)}") from exc
    return model.to_variant()


def parse_selection_payload(payload: Mapping[str, Any]) -> RepaymentSelection:
    """Validate a selected repayment plan: an existing variant id or a custom plan"""
    try:
        model = SelectedRepaymentPlanModel.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid repayment plan selection: {_summarize(exc)}") from exc
    return model.to_selection()


def parse_plan_payload(payload: Mapping[str, Any]) -> PlanTerms:
    """Validate a plan document including its repayment plan variants"""
    try:
        model = PlanTermsModel.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid plan: {_summarize(exc)}") from exc
    return model.to_plan_terms()


def parse_payment_payload(payload: Mapping[str, Any]) -> PaymentApplication:
    """Validate a recorded payment payload"""
    try:
        model = PaymentApplicationModel.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid payment: {_summarize(exc)}") from exc
    return model.to_application()

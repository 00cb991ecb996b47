"""
Test suite for repayment plan resolution

Tests the legacy plan path, stored and custom variants, principal policies and
the selection and principal validation rules.
"""

import logging

import pytest
from decimal import Decimal

from core_investments.errors import ConfigurationError, NotFoundError, ValidationError
from core_investments.money import ZERO
from core_investments.plans import (
    PlanTerms, PrincipalRepayment, RepaymentPlanVariant, InterestPaymentConfig,
    InterestWithPrincipalConfig, InterestType, PaymentType, PayoutFrequency,
    PrincipalRepaymentOption
)
from core_investments.resolver import (
    ConfigSource, RepaymentSelection, ResolvedConfig, PrincipalPolicy, MaturityPolicy,
    InstallmentPolicy, FrequencyPolicy, resolve_config
)
from core_investments.schemas import parse_selection_payload


def interest_only(variant_id, option, interest_type=InterestType.FLAT, rate='2',
                  withdrawal_after=None, settlement_term=None, **kwargs):
    return RepaymentPlanVariant(
        id=variant_id,
        plan_name=f"Interest only {variant_id}",
        payment_type=PaymentType.INTEREST,
        interest_payment=InterestPaymentConfig(
            interest_type=interest_type,
            interest_rate=Decimal(rate),
            principal_repayment_option=option,
            withdrawal_after_percentage=withdrawal_after,
            principal_settlement_term=settlement_term
        ),
        **kwargs
    )


def with_principal(variant_id, frequency, percentage='100', rate='1.5',
                   interest_type=InterestType.REDUCING, **kwargs):
    return RepaymentPlanVariant(
        id=variant_id,
        plan_name=f"With principal {variant_id}",
        payment_type=PaymentType.INTEREST_WITH_PRINCIPAL,
        interest_with_principal_payment=InterestWithPrincipalConfig(
            interest_type=interest_type,
            interest_rate=Decimal(rate),
            principal_repayment_percentage=Decimal(percentage),
            payment_frequency=frequency
        ),
        **kwargs
    )


def make_plan(variants=(), **overrides):
    fields = dict(
        plan_id="PLN001",
        name="Growth 12",
        interest_type=InterestType.FLAT,
        interest_rate=Decimal('2.5'),
        tenure_months=12,
        principal_repayment=PrincipalRepayment(percentage=Decimal('100'), start_month=12),
        variants=variants
    )
    fields.update(overrides)
    return PlanTerms(**fields)


class TestPrincipalPolicies:
    """Test per-period principal policies"""

    def test_policy_base_is_abstract(self):
        with pytest.raises(TypeError):
            PrincipalPolicy()

        class NoDescribe(PrincipalPolicy):
            def __call__(self, period, remaining):
                return ZERO

        with pytest.raises(TypeError):
            NoDescribe()

    def test_maturity_policy(self):
        policy = MaturityPolicy()
        assert policy(1, Decimal('1000')) == Decimal('0')
        assert policy.describe() == {"policy": "maturity"}

    def test_installment_policy(self):
        policy = InstallmentPolicy(start_month=3, installment=Decimal('100'))

        assert policy(2, Decimal('1000')) == Decimal('0')
        assert policy(3, Decimal('1000')) == Decimal('100')
        assert policy(9, Decimal('400')) == Decimal('100')

    def test_installment_policy_settles_remaining(self):
        policy = InstallmentPolicy(start_month=6, installment=Decimal('20000'), settle_month=8)

        assert policy(7, Decimal('40000')) == Decimal('20000')
        assert policy(8, Decimal('20000.01')) == Decimal('20000.01')
        assert policy(10, Decimal('0')) == Decimal('0')

    def test_frequency_policy(self):
        policy = FrequencyPolicy(frequency_months=3, installment=Decimal('30000'))

        assert [policy(p, Decimal('120000')) for p in range(1, 7)] == [
            Decimal('0'), Decimal('0'), Decimal('30000'),
            Decimal('0'), Decimal('0'), Decimal('30000')
        ]


class TestLegacyResolution:
    """Test resolution from top-level plan fields"""

    def test_scenario_a_plan(self):
        config = resolve_config(make_plan(), Decimal('100000'))

        assert config.source == ConfigSource.LEGACY
        assert config.principal == Decimal('100000.00')
        assert config.tenure_months == 12
        assert config.monthly_rate == Decimal('0.025')
        assert config.interest_rate == Decimal('2.5')
        assert config.interest_type == InterestType.FLAT
        assert config.payment_type is None
        assert config.principal_policy == InstallmentPolicy(start_month=12, installment=Decimal('100000.00'))

    def test_partial_repayment_installment(self):
        plan = make_plan(
            interest_type=InterestType.REDUCING,
            interest_rate=Decimal('2.0'),
            tenure_months=18,
            principal_repayment=PrincipalRepayment(percentage=Decimal('50'), start_month=6)
        )
        config = resolve_config(plan, 75000)

        # 37500 over periods 6..18
        assert config.principal_policy == InstallmentPolicy(start_month=6, installment=Decimal('2884.62'))

    def test_flat_fallback_without_repayment_block(self):
        config = resolve_config(make_plan(principal_repayment=None), Decimal('60000'))
        assert config.principal_policy == InstallmentPolicy(start_month=12, installment=Decimal('60000.00'))

    def test_reducing_fallback_without_repayment_block(self):
        plan = make_plan(interest_type=InterestType.REDUCING, principal_repayment=None)
        config = resolve_config(plan, Decimal('70000'))

        # Half the principal from month 6 over 7 periods
        assert config.principal_policy == InstallmentPolicy(start_month=6, installment=Decimal('5000.00'))

    def test_reducing_fallback_single_month(self):
        plan = make_plan(interest_type=InterestType.REDUCING, tenure_months=1, principal_repayment=None)
        config = resolve_config(plan, Decimal('1000'))
        assert config.principal_policy.start_month == 1

    def test_describe(self):
        described = resolve_config(make_plan(), Decimal('100000')).describe()

        assert described["source"] == "legacy"
        assert described["payout_frequency"] == "monthly"
        assert described["principal_policy"]["policy"] == "installment"


class TestVariantResolution:
    """Test resolution from repayment plan variants"""

    def test_default_variant_used_without_selection(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FIXED),
            interest_only("RP002", PrincipalRepaymentOption.FIXED, rate='3', is_default=True)
        ))
        config = resolve_config(plan, Decimal('50000'))

        assert config.source == ConfigSource.VARIANT
        assert config.variant_id == "RP002"
        assert config.monthly_rate == Decimal('0.03')

    def test_legacy_used_when_no_active_default(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FIXED, is_default=True, is_active=False),
        ))
        assert resolve_config(plan, Decimal('50000')).source == ConfigSource.LEGACY

    def test_interest_only_fixed(self):
        plan = make_plan(variants=(interest_only("RP001", PrincipalRepaymentOption.FIXED),))
        config = resolve_config(plan, Decimal('50000'), RepaymentSelection.existing("RP001"))

        assert config.payment_type == PaymentType.INTEREST
        assert config.principal_policy == MaturityPolicy()
        assert config.monthly_rate == Decimal('0.02')
        assert config.tenure_months == 12

    def test_interest_only_flexible(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FLEXIBLE, InterestType.REDUCING, '1',
                          withdrawal_after=Decimal('50'), settlement_term=3),
        ))
        config = resolve_config(plan, Decimal('60000'), RepaymentSelection.existing("RP001"))

        assert config.interest_type == InterestType.REDUCING
        assert config.principal_policy == InstallmentPolicy(
            start_month=6, installment=Decimal('20000.00'), settle_month=8
        )

    def test_flexible_settlement_start_rounds_up(self):
        plan = make_plan(tenure_months=10, principal_repayment=None, variants=(
            interest_only("RP001", PrincipalRepaymentOption.FLEXIBLE,
                          withdrawal_after=Decimal('25'), settlement_term=2),
        ))
        config = resolve_config(plan, Decimal('10000'), RepaymentSelection.existing("RP001"))

        # ceil(10 * 25 / 100) = 3
        assert config.principal_policy.start_month == 3
        assert config.principal_policy.settle_month == 4

    def test_flexible_zero_withdrawal_and_term_clamped(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FLEXIBLE,
                          withdrawal_after=Decimal('0'), settlement_term=0),
        ))
        config = resolve_config(plan, Decimal('12000'), RepaymentSelection.existing("RP001"))

        assert config.principal_policy == InstallmentPolicy(
            start_month=1, installment=Decimal('12000.00'), settle_month=1
        )

    def test_flexible_missing_term(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FLEXIBLE, withdrawal_after=Decimal('50')),
        ))
        with pytest.raises(ConfigurationError, match="principal settlement term"):
            resolve_config(plan, Decimal('12000'), RepaymentSelection.existing("RP001"))

    def test_interest_with_principal_quarterly(self):
        plan = make_plan(variants=(with_principal("RP001", PayoutFrequency.QUARTERLY),))
        config = resolve_config(plan, Decimal('120000'), RepaymentSelection.existing("RP001"))

        assert config.payment_type == PaymentType.INTEREST_WITH_PRINCIPAL
        assert config.payout_frequency == PayoutFrequency.QUARTERLY
        assert config.principal_policy == FrequencyPolicy(frequency_months=3, installment=Decimal('30000.00'))

    def test_interest_with_principal_payment_count_rounds_up(self):
        plan = make_plan(tenure_months=18, principal_repayment=None, variants=(
            with_principal("RP001", PayoutFrequency.YEARLY, percentage='50'),
        ))
        config = resolve_config(plan, Decimal('100000'), RepaymentSelection.existing("RP001"))

        # ceil(18 / 12) = 2 payments of 25000
        assert config.principal_policy == FrequencyPolicy(frequency_months=12, installment=Decimal('25000.00'))

    def test_others_frequency_stepped_monthly(self, caplog):
        plan = make_plan(variants=(with_principal("RP001", PayoutFrequency.OTHERS),))
        with caplog.at_level(logging.WARNING, logger="investments.resolver"):
            config = resolve_config(plan, Decimal('12000'), RepaymentSelection.existing("RP001"))

        assert config.principal_policy == FrequencyPolicy(frequency_months=1, installment=Decimal('1000.00'))
        assert any("stepped monthly" in record.getMessage() for record in caplog.records)

    def test_missing_nested_configuration(self):
        variant = RepaymentPlanVariant(id="RP001", plan_name="Broken", payment_type=PaymentType.INTEREST)
        plan = make_plan(variants=(variant,))
        with pytest.raises(ConfigurationError, match="interest payment configuration"):
            resolve_config(plan, Decimal('1000'), RepaymentSelection.existing("RP001"))

    def test_missing_rate(self):
        variant = RepaymentPlanVariant(
            id="RP001",
            plan_name="No rate",
            payment_type=PaymentType.INTEREST,
            interest_payment=InterestPaymentConfig(
                interest_type=InterestType.FLAT,
                principal_repayment_option=PrincipalRepaymentOption.FIXED
            )
        )
        with pytest.raises(ConfigurationError, match="interest rate"):
            resolve_config(make_plan(variants=(variant,)), Decimal('1000'), RepaymentSelection.existing("RP001"))


class TestSelection:
    """Test variant selection rules"""

    def test_unknown_variant(self):
        with pytest.raises(NotFoundError, match="RP404"):
            resolve_config(make_plan(), Decimal('1000'), RepaymentSelection.existing("RP404"))

    def test_inactive_variant(self):
        plan = make_plan(variants=(
            interest_only("RP001", PrincipalRepaymentOption.FIXED, is_active=False),
        ))
        with pytest.raises(NotFoundError):
            resolve_config(plan, Decimal('1000'), RepaymentSelection.existing("RP001"))

    def test_both_selected(self):
        with pytest.raises(ValidationError, match="not both"):
            RepaymentSelection(
                variant_id="RP001",
                custom_variant=interest_only("X", PrincipalRepaymentOption.FIXED)
            )

    def test_custom_variant_object(self):
        custom = with_principal("mine", PayoutFrequency.MONTHLY, percentage='60', rate='2',
                                interest_type=InterestType.FLAT)
        config = resolve_config(make_plan(), Decimal('30000'), RepaymentSelection.custom(custom))

        assert config.source == ConfigSource.CUSTOM
        assert config.variant_id == "mine"
        assert config.principal_policy == FrequencyPolicy(frequency_months=1, installment=Decimal('1500.00'))

    def test_custom_variant_payload(self):
        selection = parse_selection_payload({
            "planType": "new",
            "customPlan": {
                "paymentType": "interest",
                "interestPayment": {
                    "interestType": "flat",
                    "interestRate": "1.25",
                    "principalRepaymentOption": "fixed"
                }
            }
        })
        config = resolve_config(make_plan(), Decimal('40000'), selection)

        assert config.source == ConfigSource.CUSTOM
        assert config.variant_id == "custom"
        assert config.monthly_rate == Decimal('0.0125')
        assert config.principal_policy == MaturityPolicy()

    def test_custom_variant_payload_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_selection_payload({"planType": "new", "customPlan": {"paymentType": "bogus"}})


class TestPrincipalValidation:
    """Test principal checks"""

    def test_principal_must_be_positive(self):
        with pytest.raises(ValidationError, match="greater than 0"):
            resolve_config(make_plan(), Decimal('0'))
        with pytest.raises(ValidationError):
            resolve_config(make_plan(), -100)

    def test_principal_must_be_numeric(self):
        with pytest.raises(ValidationError):
            resolve_config(make_plan(), None)

    @pytest.mark.parametrize("principal", [float('nan'), float('inf'), Decimal('NaN'), Decimal('-Infinity')])
    def test_principal_must_be_finite(self, principal):
        with pytest.raises(ValidationError, match="principal must be a finite number"):
            resolve_config(make_plan(), principal)

    def test_principal_exponent_string(self):
        assert resolve_config(make_plan(), "1e5").principal == Decimal('100000.00')

    def test_investment_bounds(self):
        plan = make_plan(min_investment=Decimal('10000'), max_investment=Decimal('500000'))

        with pytest.raises(ValidationError, match="between 10000 and 500000"):
            resolve_config(plan, Decimal('9999.99'))
        with pytest.raises(ValidationError):
            resolve_config(plan, Decimal('500000.01'))
        assert resolve_config(plan, Decimal('10000')).principal == Decimal('10000.00')

    def test_principal_rounded_to_cents(self):
        assert resolve_config(make_plan(), "1,000.555").principal == Decimal('1000.56')

    def test_resolved_config_is_frozen(self):
        config = resolve_config(make_plan(), Decimal('1000'))
        assert isinstance(config, ResolvedConfig)
        with pytest.raises(AttributeError):
            config.tenure_months = 24

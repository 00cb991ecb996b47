"""
Investment Contract Module

Persists plans and contracts and wires the engine together: resolve, quote
and schedule on creation; reconcile on payment; sweep overdue periods on read.
Every lifecycle step is recorded on the hash-chained audit trail.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union
import threading
import uuid

from .audit import AuditTrail, AuditEvent, AuditEventType
from .config import get_config
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .money import ZERO
from .plans import PlanTerms, InterestType, PaymentType
from .reconciliation import (
    ContractAggregates, ContractStatus, PaymentApplication, ReconciliationResult,
    apply_payment, refresh_contract, recompute_aggregates
)
from .resolver import ConfigSource, RepaymentSelection, resolve_config
from .returns import ReturnsQuote, calculate_returns
from .schedule import ScheduleEntry, generate_schedule, maturity_date, upcoming_due_entries
from .schemas import parse_plan_payload, parse_payment_payload
from .storage import StorageInterface, StorageRecord


logger = get_logger("contracts")


# Administrative transitions; active -> completed is derived, never set
STATUS_TRANSITIONS = {
    ContractStatus.ACTIVE: (ContractStatus.CLOSED, ContractStatus.DEFAULTED),
    ContractStatus.COMPLETED: (ContractStatus.CLOSED,),
    ContractStatus.CLOSED: (ContractStatus.ACTIVE,),
    ContractStatus.DEFAULTED: (ContractStatus.ACTIVE, ContractStatus.CLOSED),
}


@dataclass
class InvestmentContract(StorageRecord):
    """An investor's contract: terms as resolved at creation plus live schedule state"""
    investor_id: str
    plan_id: str
    principal: Decimal
    start_date: date
    maturity_date: date
    tenure_months: int
    interest_type: InterestType
    interest_rate: Decimal                  # Monthly percentage
    config_source: ConfigSource
    aggregates: ContractAggregates
    schedule: List[ScheduleEntry]
    payment_type: Optional[PaymentType] = None
    variant_id: Optional[str] = None
    notes: Optional[str] = None
    applied_payment_ids: List[str] = field(default_factory=list)

    @property
    def status(self) -> ContractStatus:
        return self.aggregates.status

    @property
    def is_active(self) -> bool:
        return self.aggregates.status == ContractStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'investor_id': self.investor_id,
            'plan_id': self.plan_id,
            'principal': str(self.principal),
            'start_date': self.start_date.isoformat(),
            'maturity_date': self.maturity_date.isoformat(),
            'tenure_months': self.tenure_months,
            'interest_type': self.interest_type.value,
            'interest_rate': str(self.interest_rate),
            'config_source': self.config_source.value,
            'status': self.aggregates.status.value,
            'aggregates': self.aggregates.to_dict(),
            'schedule': [entry.to_dict() for entry in self.schedule],
            'payment_type': self.payment_type.value if self.payment_type else None,
            'variant_id': self.variant_id,
            'notes': self.notes,
            'applied_payment_ids': list(self.applied_payment_ids)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvestmentContract':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            investor_id=data['investor_id'],
            plan_id=data['plan_id'],
            principal=Decimal(data['principal']),
            start_date=date.fromisoformat(data['start_date']),
            maturity_date=date.fromisoformat(data['maturity_date']),
            tenure_months=data['tenure_months'],
            interest_type=InterestType(data['interest_type']),
            interest_rate=Decimal(data['interest_rate']),
            config_source=ConfigSource(data['config_source']),
            aggregates=ContractAggregates.from_dict(data['aggregates']),
            schedule=[ScheduleEntry.from_dict(entry) for entry in data['schedule']],
            payment_type=PaymentType(data['payment_type']) if data.get('payment_type') else None,
            variant_id=data.get('variant_id'),
            notes=data.get('notes'),
            applied_payment_ids=list(data.get('applied_payment_ids', []))
        )


@dataclass
class InvestmentPayment(StorageRecord):
    """A payment as recorded against a contract, with its breakdown"""
    contract_id: str
    target_period: int
    amount: Decimal
    payment_date: date
    interest_amount: Decimal = ZERO
    principal_amount: Decimal = ZERO
    penalty_amount: Decimal = ZERO
    bonus_amount: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['payment_date'] = self.payment_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvestmentPayment':
        data['payment_date'] = date.fromisoformat(data['payment_date'])
        for key in ('amount', 'interest_amount', 'principal_amount', 'penalty_amount', 'bonus_amount'):
            data[key] = Decimal(data[key])
        return super().from_dict(data)


class ContractManager:
    """
    Manages investment contracts from creation through completion
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail

        self.plans_table = "investment_plans"
        self.contracts_table = "investments"
        self.payments_table = "investment_payments"

        self._id_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._contract_locks: Dict[str, threading.Lock] = {}

    # Plans

    def register_plan(self, payload: Mapping[str, Any]) -> PlanTerms:
        """
        Validate and store a plan document

        Args:
            payload: Plan document including its repayment plan variants

        Returns:
            Parsed PlanTerms

        Raises:
            ConfigurationError: If the document is malformed
        """
        plan = parse_plan_payload(payload)
        self.storage.save(self.plans_table, plan.plan_id, dict(payload))

        self.audit_trail.log_event(
            event_type=AuditEventType.PLAN_REGISTERED,
            entity_type="plan",
            entity_id=plan.plan_id,
            metadata=plan.summary()
        )
        return plan

    def get_plan(self, plan_id: str) -> PlanTerms:
        payload = self.storage.load(self.plans_table, plan_id)
        if payload is None:
            raise NotFoundError(f"Plan {plan_id} not found")
        return parse_plan_payload(payload)

    def quote(
        self,
        plan_id: str,
        principal: Any,
        selection: Optional[RepaymentSelection] = None
    ) -> ReturnsQuote:
        """Expected returns for a registered plan, without creating a contract"""
        return calculate_returns(resolve_config(self.get_plan(plan_id), principal, selection))

    # Contracts

    def create_contract(
        self,
        investor_id: str,
        plan: Union[PlanTerms, str],
        principal: Any,
        start_date: Optional[date] = None,
        selection: Optional[RepaymentSelection] = None,
        notes: Optional[str] = None
    ) -> InvestmentContract:
        """
        Create a contract and its schedule

        Args:
            investor_id: Investor the contract belongs to
            plan: PlanTerms, or the id of a registered plan
            principal: Amount invested
            start_date: Investment date (defaults to today)
            selection: Repayment plan selection (defaults to the plan's default)
            notes: Free-form notes

        Returns:
            Created InvestmentContract

        Raises:
            NotFoundError: If the plan or selected variant does not exist
            ConfigurationError: If the plan or variant is malformed
            ValidationError: If the plan is inactive or the principal is out of bounds
        """
        if isinstance(plan, str):
            plan = self.get_plan(plan)
        if not plan.is_active:
            raise ValidationError(f"Plan {plan.plan_id} is not active")

        start_date = start_date or date.today()
        resolved = resolve_config(plan, principal, selection)
        quote = calculate_returns(resolved)
        schedule = generate_schedule(resolved, start_date)

        now = datetime.now(timezone.utc)
        with self._id_lock:
            contract = InvestmentContract(
                id=self._next_contract_id(),
                created_at=now,
                updated_at=now,
                investor_id=investor_id,
                plan_id=plan.plan_id,
                principal=resolved.principal,
                start_date=start_date,
                maturity_date=maturity_date(start_date, resolved.tenure_months),
                tenure_months=resolved.tenure_months,
                interest_type=resolved.interest_type,
                interest_rate=resolved.interest_rate,
                config_source=resolved.source,
                aggregates=ContractAggregates.from_quote(quote),
                schedule=schedule,
                payment_type=resolved.payment_type,
                variant_id=resolved.variant_id,
                notes=notes
            )
            self._save_contract(contract)

        self.audit_trail.log_event(
            event_type=AuditEventType.CONTRACT_CREATED,
            entity_type="contract",
            entity_id=contract.id,
            metadata={
                "investor_id": investor_id,
                "plan_id": plan.plan_id,
                "variant_id": resolved.variant_id,
                "config_source": resolved.source,
                "principal": resolved.principal,
                "start_date": start_date,
                "maturity_date": contract.maturity_date,
                "total_interest_expected": quote.total_interest,
                "total_expected_returns": quote.total_returns
            }
        )
        return contract

    def get_contract(self, contract_id: str, as_of: Optional[date] = None) -> InvestmentContract:
        """
        Load a contract, sweeping periods that fell overdue since the last read

        Raises:
            NotFoundError: If the contract does not exist
        """
        with self._lock_for(contract_id):
            contract = self._load_contract(contract_id)
            result = refresh_contract(contract.schedule, contract.aggregates, as_of)
            if result.newly_overdue or result.aggregates != contract.aggregates:
                self._store_result(contract, result)
                self._log_reconciliation(contract, result)
            return contract

    def get_schedule(self, contract_id: str, as_of: Optional[date] = None) -> List[ScheduleEntry]:
        return self.get_contract(contract_id, as_of).schedule

    def list_contracts(
        self,
        status: Optional[ContractStatus] = None,
        investor_id: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> List[InvestmentContract]:
        """
        Contracts filtered by status and investor, in id order

        Each contract is read through get_contract, so overdue periods are
        swept before the status filter applies.
        """
        filters = {}
        if investor_id is not None:
            filters['investor_id'] = investor_id
        contracts = [
            self.get_contract(data['id'], as_of)
            for data in self.storage.find(self.contracts_table, filters)
        ]
        if status is not None:
            contracts = [contract for contract in contracts if contract.status == status]
        return sorted(contracts, key=lambda contract: contract.id)

    # Payments

    def record_payment(
        self,
        contract_id: str,
        application: Union[PaymentApplication, Mapping[str, Any]],
        as_of: Optional[date] = None
    ) -> InvestmentContract:
        """
        Apply a recorded payment to a contract

        Payments are serialized per contract. A payment whose payment_id was
        already applied is ignored and the stored contract returned.

        Args:
            contract_id: Contract ID
            application: PaymentApplication or raw payment payload
            as_of: Reconciliation date (defaults to today)

        Returns:
            Updated InvestmentContract

        Raises:
            NotFoundError: If the contract or target period does not exist
            ValidationError: If the contract is not active, the payment is invalid,
                or its payment_id is already recorded for another contract
        """
        if not isinstance(application, PaymentApplication):
            application = parse_payment_payload(application)
        as_of = as_of or date.today()

        with self._lock_for(contract_id):
            contract = self._load_contract(contract_id)

            if application.payment_id and application.payment_id in contract.applied_payment_ids:
                log_action(
                    logger, "info", f"Payment {application.payment_id} already applied",
                    contract_id=contract_id, action="record_payment"
                )
                return contract

            result = apply_payment(contract.schedule, contract.aggregates, application, as_of)
            payment = InvestmentPayment(
                id=application.payment_id or str(uuid.uuid4()),
                created_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
                contract_id=contract_id,
                target_period=application.target_period,
                amount=application.amount,
                payment_date=application.payment_date or as_of,
                interest_amount=result.breakdown.interest,
                principal_amount=result.breakdown.principal,
                penalty_amount=result.breakdown.penalty,
                bonus_amount=result.breakdown.bonus
            )
            if application.payment_id:
                contract.applied_payment_ids.append(application.payment_id)

            with self.storage.atomic():
                existing = self.storage.load(self.payments_table, payment.id)
                if existing is not None:
                    raise ValidationError(
                        f"Payment {payment.id} is already recorded for investment {existing['contract_id']}"
                    )
                self.storage.save(self.payments_table, payment.id, payment.to_dict())
                self._store_result(contract, result)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RECEIVED,
                entity_type="contract",
                entity_id=contract_id,
                metadata={
                    "payment_id": payment.id,
                    "target_period": payment.target_period,
                    "amount": payment.amount,
                    "payment_date": payment.payment_date,
                    "breakdown": result.breakdown.to_dict(),
                    "total_paid_amount": result.aggregates.total_paid_amount,
                    "remaining_amount": result.aggregates.remaining_amount
                }
            )
            self._log_reconciliation(contract, result)
            return contract

    def get_payments(self, contract_id: str) -> List[InvestmentPayment]:
        payments = [
            InvestmentPayment.from_dict(data)
            for data in self.storage.find(self.payments_table, {'contract_id': contract_id})
        ]
        return sorted(payments, key=lambda payment: (payment.payment_date, payment.created_at))

    # Administration

    def update_status(
        self,
        contract_id: str,
        status: ContractStatus,
        reason: Optional[str] = None
    ) -> InvestmentContract:
        """
        Administrative status change (close, default, reactivate)

        Raises:
            NotFoundError: If the contract does not exist
            ValidationError: If the transition is not allowed
        """
        with self._lock_for(contract_id):
            contract = self._load_contract(contract_id)
            previous = contract.status
            if status not in STATUS_TRANSITIONS[previous]:
                raise ValidationError(
                    f"Cannot change contract {contract_id} from {previous.value} to {status.value}"
                )

            contract.aggregates.status = status
            if status == ContractStatus.ACTIVE:
                # Reactivated contracts that are already fully paid complete immediately
                contract.aggregates = recompute_aggregates(contract.schedule, contract.aggregates)
            contract.updated_at = datetime.now(timezone.utc)
            self._save_contract(contract)

            self.audit_trail.log_event(
                event_type=AuditEventType.STATUS_CHANGED,
                entity_type="contract",
                entity_id=contract_id,
                metadata={"from": previous, "to": contract.status, "reason": reason}
            )
            return contract

    def get_upcoming_payments(
        self,
        days: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """
        Pending periods of active contracts falling due within `days`

        Raises:
            ValidationError: If days is outside 1..max_upcoming_window_days
        """
        settings = get_config()
        days = settings.upcoming_window_days if days is None else days
        if days < 1 or days > settings.max_upcoming_window_days:
            raise ValidationError(
                f"Days must be between 1 and {settings.max_upcoming_window_days}, got {days}"
            )
        as_of = as_of or date.today()

        upcoming = []
        for contract in self.list_contracts(status=ContractStatus.ACTIVE, as_of=as_of):
            for entry in upcoming_due_entries(contract.schedule, as_of, days):
                upcoming.append({
                    'contract_id': contract.id,
                    'investor_id': contract.investor_id,
                    'period': entry.period,
                    'due_date': entry.due_date,
                    'interest_amount': entry.interest_amount,
                    'principal_amount': entry.principal_amount,
                    'total_amount': entry.total_amount
                })
        upcoming.sort(key=lambda item: (item['due_date'], item['contract_id']))
        return upcoming

    def get_timeline(self, contract_id: str) -> List[AuditEvent]:
        """Audit events for a contract in the order they happened"""
        return self.audit_trail.get_events_for_entity("contract", contract_id)

    # Internals

    def _next_contract_id(self) -> str:
        return f"INV{self.storage.count(self.contracts_table) + 1:06d}"

    def _lock_for(self, contract_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._contract_locks.get(contract_id)
            if lock is None:
                if not self.storage.exists(self.contracts_table, contract_id):
                    raise NotFoundError(f"Investment {contract_id} not found")
                lock = self._contract_locks[contract_id] = threading.Lock()
            return lock

    def _load_contract(self, contract_id: str) -> InvestmentContract:
        data = self.storage.load(self.contracts_table, contract_id)
        if data is None:
            raise NotFoundError(f"Investment {contract_id} not found")
        return InvestmentContract.from_dict(data)

    def _save_contract(self, contract: InvestmentContract) -> None:
        self.storage.save(self.contracts_table, contract.id, contract.to_dict())

    def _store_result(self, contract: InvestmentContract, result: ReconciliationResult) -> None:
        contract.schedule = result.schedule
        contract.aggregates = result.aggregates
        contract.updated_at = datetime.now(timezone.utc)
        self._save_contract(contract)

    def _log_reconciliation(self, contract: InvestmentContract, result: ReconciliationResult) -> None:
        for period in result.newly_overdue:
            entry = next(e for e in result.schedule if e.period == period)
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_OVERDUE,
                entity_type="contract",
                entity_id=contract.id,
                metadata={"period": period, "due_date": entry.due_date, "total_amount": entry.total_amount}
            )
        if result.status_changed:
            self.audit_trail.log_event(
                event_type=AuditEventType.STATUS_CHANGED,
                entity_type="contract",
                entity_id=contract.id,
                metadata={"from": result.previous_status, "to": result.status, "reason": "reconciliation"}
            )

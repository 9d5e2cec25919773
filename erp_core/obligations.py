"""
Financial Obligations Module

Bank loans, leasing and credit lines owed by the company. Registers payments
with their interest/principal breakdown and builds the amortization schedule
from the original terms plus the recorded payment history.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, RecordNotFoundError
from .audit import AuditTrail, AuditEventType
from .currency import Currency, validate_decimal_precision
from .logging_config import get_logger, log_action, resource_ref
from .amortization import (
    PaymentRecord, ScheduleRow, ScheduleSummary, InstallmentPolicy,
    compute_schedule, summarize_schedule, reference_installment,
    projection_installment,
    effective_annual_to_periodic, DEFAULT_MAX_PERIODS, DEFAULT_BALANCE_CUTOFF
)


class ObligationKind(Enum):
    """Kinds of financial obligation"""
    LOAN = "PRESTAMO"
    LEASING = "LEASING"
    CREDIT_CARD = "TARJETA"
    OTHER = "OTRO"


class RateBasis(Enum):
    """How the stored interest rate is expressed"""
    MONTHLY = "MENSUAL"                    # Periodic monthly rate
    EFFECTIVE_ANNUAL = "EFECTIVA_ANUAL"    # E.A., converted to monthly


class ObligationState(Enum):
    ACTIVE = "ACTIVO"
    PAID_OFF = "PAGADO"


def _decimal(value: Any, default: Decimal = Decimal('0')) -> Decimal:
    """Stored numbers come back as strings; missing ones default to zero"""
    if value is None or value == "":
        return default
    return Decimal(str(value))


def _date(value: Any) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


@dataclass
class Obligation(StorageRecord):
    """A financial obligation and its current status"""
    lender: str
    principal: Decimal
    interest_rate: Decimal
    term_months: int
    start_date: date
    installment: Decimal
    outstanding_balance: Decimal
    kind: ObligationKind = ObligationKind.LOAN
    rate_basis: RateBasis = RateBasis.MONTHLY
    currency: Currency = Currency.COP
    installments_paid: int = 0
    state: ObligationState = ObligationState.ACTIVE
    end_date: Optional[date] = None
    description: Optional[str] = None
    bank_account_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def periodic_rate(self) -> Decimal:
        """Monthly rate used by the schedule"""
        if self.rate_basis == RateBasis.EFFECTIVE_ANNUAL:
            return effective_annual_to_periodic(self.interest_rate)
        return self.interest_rate

    @property
    def is_paid_off(self) -> bool:
        return self.state == ObligationState.PAID_OFF

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'lender': self.lender,
            'principal': str(self.principal),
            'interest_rate': str(self.interest_rate),
            'term_months': self.term_months,
            'start_date': self.start_date.isoformat(),
            'installment': str(self.installment),
            'outstanding_balance': str(self.outstanding_balance),
            'kind': self.kind.value,
            'rate_basis': self.rate_basis.value,
            'currency': self.currency.code,
            'installments_paid': self.installments_paid,
            'state': self.state.value,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'description': self.description,
            'bank_account_id': self.bank_account_id,
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Obligation':
        principal = _decimal(data.get('principal'))
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            lender=data.get('lender') or "",
            principal=principal,
            interest_rate=_decimal(data.get('interest_rate')),
            term_months=int(data.get('term_months') or 0),
            start_date=_date(data.get('start_date')) or datetime.fromisoformat(data['created_at']).date(),
            installment=_decimal(data.get('installment')),
            # An obligation without a recorded balance still owes its principal
            outstanding_balance=_decimal(data.get('outstanding_balance'), principal),
            kind=ObligationKind(data.get('kind') or ObligationKind.LOAN.value),
            rate_basis=RateBasis(data.get('rate_basis') or RateBasis.MONTHLY.value),
            currency=Currency[data.get('currency') or Currency.COP.code],
            installments_paid=int(data.get('installments_paid') or 0),
            state=ObligationState(data.get('state') or ObligationState.ACTIVE.value),
            end_date=_date(data.get('end_date')),
            description=data.get('description'),
            bank_account_id=data.get('bank_account_id'),
            notes=data.get('notes'),
        )


@dataclass
class ObligationPayment(StorageRecord):
    """A payment made against an obligation"""
    obligation_id: str
    payment_date: date
    amount: Decimal
    interest: Decimal
    principal: Decimal
    balance_after: Decimal
    bank_account_id: Optional[str] = None

    def to_payment_record(self) -> PaymentRecord:
        return PaymentRecord(
            date=self.payment_date,
            amount_paid=self.amount,
            interest_portion=self.interest,
            principal_portion=self.principal,
            balance_after=self.balance_after
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'obligation_id': self.obligation_id,
            'payment_date': self.payment_date.isoformat(),
            'amount': str(self.amount),
            'interest': str(self.interest),
            'principal': str(self.principal),
            'balance_after': str(self.balance_after),
            'bank_account_id': self.bank_account_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ObligationPayment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            obligation_id=data['obligation_id'],
            payment_date=_date(data.get('payment_date')),
            amount=_decimal(data.get('amount')),
            interest=_decimal(data.get('interest')),
            principal=_decimal(data.get('principal')),
            balance_after=_decimal(data.get('balance_after')),
            bank_account_id=data.get('bank_account_id'),
        )


class ObligationManager:
    """
    Manages financial obligations, their payments and schedules
    """

    UPDATABLE_FIELDS = {
        'lender', 'description', 'kind', 'principal', 'interest_rate',
        'rate_basis', 'term_months', 'start_date', 'end_date', 'installment',
        'outstanding_balance', 'state', 'bank_account_id', 'notes'
    }

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        max_periods: int = DEFAULT_MAX_PERIODS,
        balance_cutoff: Decimal = DEFAULT_BALANCE_CUTOFF
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.max_periods = max_periods
        self.balance_cutoff = balance_cutoff
        self.logger = get_logger("erp.obligations")

        self.obligations_table = "obligations"
        self.payments_table = "obligation_payments"

    def create_obligation(
        self,
        lender: str,
        principal: Decimal,
        interest_rate: Decimal,
        term_months: int,
        start_date: date,
        kind: ObligationKind = ObligationKind.LOAN,
        rate_basis: RateBasis = RateBasis.MONTHLY,
        installment: Optional[Decimal] = None,
        currency: Currency = Currency.COP,
        end_date: Optional[date] = None,
        description: Optional[str] = None,
        bank_account_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Obligation:
        """
        Register a new obligation

        Args:
            lender: Bank or entity that lent the money
            principal: Amount borrowed
            interest_rate: Rate as a fraction, expressed per rate_basis
            term_months: Planned number of monthly installments
            start_date: Disbursement date
            installment: Agreed installment; defaults to the level-payment
                installment of the terms

        Returns:
            Created Obligation
        """
        self._validate_terms(principal, interest_rate, term_months)
        if not lender or not lender.strip():
            raise ValueError("Lender is required")

        now = datetime.now(timezone.utc)
        obligation = Obligation(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            lender=lender.strip(),
            principal=principal,
            interest_rate=interest_rate,
            term_months=term_months,
            start_date=start_date,
            installment=Decimal('0'),
            outstanding_balance=principal,
            kind=kind,
            rate_basis=rate_basis,
            currency=currency,
            end_date=end_date,
            description=description,
            bank_account_id=bank_account_id,
            notes=notes
        )
        if installment is None:
            installment = validate_decimal_precision(
                reference_installment(principal, obligation.periodic_rate, term_months),
                currency
            )
        obligation.installment = installment

        self._save_obligation(obligation)

        log_action(
            self.logger, "info", f"Obligation created with {obligation.lender}",
            action="create_obligation", resource=resource_ref(self.obligations_table, obligation.id),
            extra={"principal": str(principal), "term_months": term_months}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.OBLIGATION_CREATED,
            entity_type="obligation",
            entity_id=obligation.id,
            metadata={
                "lender": obligation.lender,
                "principal": principal,
                "interest_rate": interest_rate,
                "rate_basis": rate_basis.value,
                "term_months": term_months,
                "installment": installment
            }
        )

        return obligation

    def get_obligation(self, obligation_id: str) -> Optional[Obligation]:
        """Get obligation by ID"""
        data = self.storage.load(self.obligations_table, obligation_id)
        if data:
            return Obligation.from_dict(data)
        return None

    def list_obligations(self) -> List[Obligation]:
        """All obligations, newest first"""
        obligations = [Obligation.from_dict(d) for d in self.storage.load_all(self.obligations_table)]
        obligations.sort(key=lambda o: o.created_at, reverse=True)
        return obligations

    def update_obligation(self, obligation_id: str, **changes) -> Obligation:
        """
        Update obligation fields

        The outstanding balance may be corrected by hand; payments keep their
        own recorded balances.
        """
        obligation = self._require(obligation_id)

        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for name, value in changes.items():
            setattr(obligation, name, value)

        self._validate_terms(obligation.principal, obligation.interest_rate, obligation.term_months)
        if obligation.outstanding_balance < Decimal('0'):
            raise ValueError("Outstanding balance cannot be negative")

        obligation.updated_at = datetime.now(timezone.utc)
        self._save_obligation(obligation)

        self.audit_trail.log_event(
            event_type=AuditEventType.OBLIGATION_UPDATED,
            entity_type="obligation",
            entity_id=obligation.id,
            metadata={"fields": sorted(changes)}
        )
        return obligation

    def delete_obligation(self, obligation_id: str) -> bool:
        """Delete an obligation together with its payments"""
        if not self.storage.exists(self.obligations_table, obligation_id):
            return False

        with self.storage.atomic():
            for payment in self.storage.find(self.payments_table, {"obligation_id": obligation_id}):
                self.storage.delete(self.payments_table, payment['id'])
            self.storage.delete(self.obligations_table, obligation_id)

        self.audit_trail.log_event(
            event_type=AuditEventType.OBLIGATION_DELETED,
            entity_type="obligation",
            entity_id=obligation_id,
            metadata={}
        )
        return True

    def register_payment(
        self,
        obligation_id: str,
        amount: Decimal,
        payment_date: Optional[date] = None,
        bank_account_id: Optional[str] = None
    ) -> ObligationPayment:
        """
        Register a payment and update the obligation balance

        Interest is charged on the outstanding balance at the periodic rate;
        the rest of the amount goes to principal. The balance never goes
        below zero.

        Returns:
            The recorded ObligationPayment
        """
        if amount <= Decimal('0'):
            raise ValueError("Payment amount must be positive")

        obligation = self._require(obligation_id)
        if obligation.is_paid_off:
            raise ValueError(f"Obligation {obligation_id} is already paid off")

        currency = obligation.currency
        balance = obligation.outstanding_balance
        interest = validate_decimal_precision(balance * obligation.periodic_rate, currency)
        if interest < Decimal('0'):
            interest = Decimal('0')
        principal = amount - interest
        balance_after = balance - principal
        if balance_after < Decimal('0'):
            balance_after = Decimal('0')

        now = datetime.now(timezone.utc)
        payment = ObligationPayment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            obligation_id=obligation.id,
            payment_date=payment_date or date.today(),
            amount=amount,
            interest=interest,
            principal=principal,
            balance_after=validate_decimal_precision(balance_after, currency),
            bank_account_id=bank_account_id or obligation.bank_account_id
        )

        obligation.outstanding_balance = payment.balance_after
        obligation.installments_paid += 1
        if payment.balance_after == Decimal('0'):
            obligation.state = ObligationState.PAID_OFF
        obligation.updated_at = now

        with self.storage.atomic():
            self.storage.save(self.payments_table, payment.id, payment.to_dict())
            self._save_obligation(obligation)

        log_action(
            self.logger, "info", "Obligation payment registered",
            action="register_payment", resource=resource_ref(self.obligations_table, obligation.id),
            extra={"amount": str(amount), "balance_after": str(payment.balance_after)}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.OBLIGATION_PAYMENT_REGISTERED,
            entity_type="obligation",
            entity_id=obligation.id,
            metadata={
                "payment_id": payment.id,
                "amount": amount,
                "interest": interest,
                "principal": principal,
                "balance_after": payment.balance_after
            }
        )
        if obligation.is_paid_off:
            self.audit_trail.log_event(
                event_type=AuditEventType.OBLIGATION_PAID_OFF,
                entity_type="obligation",
                entity_id=obligation.id,
                metadata={"payment_id": payment.id}
            )

        return payment

    def get_payments(self, obligation_id: str) -> List[ObligationPayment]:
        """Payment history, oldest first"""
        payments = [
            ObligationPayment.from_dict(d)
            for d in self.storage.find(self.payments_table, {"obligation_id": obligation_id})
        ]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def get_schedule(
        self,
        obligation_id: str,
        policy: InstallmentPolicy = InstallmentPolicy.ORIGINAL
    ) -> List[ScheduleRow]:
        """Real payments followed by the projected installments"""
        obligation = self._require(obligation_id)
        return compute_schedule(
            obligation.principal,
            obligation.periodic_rate,
            obligation.term_months,
            obligation.start_date,
            [p.to_payment_record() for p in self.get_payments(obligation_id)],
            max_periods=self.max_periods,
            balance_cutoff=self.balance_cutoff,
            policy=policy
        )

    def get_schedule_summary(
        self,
        obligation_id: str,
        policy: InstallmentPolicy = InstallmentPolicy.ORIGINAL
    ) -> ScheduleSummary:
        """Schedule totals, reporting the installment the projection uses"""
        obligation = self._require(obligation_id)
        history = [p.to_payment_record() for p in self.get_payments(obligation_id)]
        rows = self.get_schedule(obligation_id, policy)
        installment = projection_installment(
            obligation.principal, obligation.periodic_rate, obligation.term_months,
            history, policy
        )
        return summarize_schedule(rows, installment, self.max_periods)

    def _require(self, obligation_id: str) -> Obligation:
        obligation = self.get_obligation(obligation_id)
        if not obligation:
            raise RecordNotFoundError("Obligation", obligation_id)
        return obligation

    @staticmethod
    def _validate_terms(principal: Decimal, interest_rate: Decimal, term_months: int) -> None:
        if principal <= Decimal('0'):
            raise ValueError("Principal must be positive")
        if term_months <= 0:
            raise ValueError("Term must be at least one month")
        if interest_rate < Decimal('0'):
            raise ValueError("Interest rate cannot be negative")

    def _save_obligation(self, obligation: Obligation) -> None:
        self.storage.save(self.obligations_table, obligation.id, obligation.to_dict())

"""
Accounts Payable Module

Supplier invoices owed by the company and the partial payments ("abonos")
made against them. A payment can never exceed the pending balance.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, timedelta
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, RecordNotFoundError
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency
from .logging_config import get_logger, log_action, resource_ref


class PayableState(Enum):
    PENDING = "PENDIENTE"
    PAID = "PAGADO"
    OVERDUE = "VENCIDO"   # Computed, never stored


@dataclass
class Payable(StorageRecord):
    """Invoice received from a supplier"""
    supplier_id: str
    supplier_invoice_number: str
    invoice_date: date
    due_date: date
    concept: str
    total: Money
    paid: Money
    pending: Money
    state: PayableState = PayableState.PENDING
    work_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.state == PayableState.PAID

    def is_overdue(self, as_of: Optional[date] = None) -> bool:
        as_of = as_of or date.today()
        return not self.is_paid and self.due_date < as_of

    def effective_state(self, as_of: Optional[date] = None) -> PayableState:
        """Stored state, or OVERDUE for unpaid invoices past their due date"""
        if self.is_overdue(as_of):
            return PayableState.OVERDUE
        return self.state

    def days_until_due(self, as_of: Optional[date] = None) -> int:
        return (self.due_date - (as_of or date.today())).days


@dataclass
class PayablePayment(StorageRecord):
    payable_id: str
    payment_date: date
    amount: Money
    bank_account_id: Optional[str] = None


class PayableManager:
    """
    Manages supplier payables and their payments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        default_credit_days: int = 30
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.default_credit_days = default_credit_days
        self.logger = get_logger("erp.payables")

        self.payables_table = "payables"
        self.payments_table = "payable_payments"

    def create_payable(
        self,
        supplier_id: str,
        total: Money,
        invoice_date: date,
        supplier_invoice_number: str = "",
        concept: str = "",
        due_date: Optional[date] = None,
        work_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Payable:
        """
        Register a supplier invoice

        Args:
            supplier_id: Supplier the invoice comes from
            total: Invoice total
            invoice_date: Date on the supplier invoice
            due_date: Defaults to invoice_date plus the default credit days

        Returns:
            Created Payable
        """
        if not supplier_id:
            raise ValueError("Supplier is required")
        if not total.is_positive():
            raise ValueError("Payable total must be positive")

        due_date = due_date or invoice_date + timedelta(days=self.default_credit_days)
        if due_date < invoice_date:
            raise ValueError("Due date cannot be before the invoice date")

        now = datetime.now(timezone.utc)
        payable = Payable(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            supplier_id=supplier_id,
            supplier_invoice_number=supplier_invoice_number,
            invoice_date=invoice_date,
            due_date=due_date,
            concept=concept,
            total=total,
            paid=Money.zero(total.currency),
            pending=total,
            work_id=work_id,
            notes=notes
        )
        self._save_payable(payable)

        log_action(
            self.logger, "info", "Payable created",
            action="create_payable", resource=resource_ref(self.payables_table, payable.id),
            extra={"supplier_id": supplier_id, "total": total.to_string()}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.PAYABLE_CREATED,
            entity_type="payable",
            entity_id=payable.id,
            metadata={
                "supplier_id": supplier_id,
                "supplier_invoice_number": supplier_invoice_number,
                "total": total.amount,
                "currency": total.currency.code,
                "due_date": due_date
            }
        )
        return payable

    def get_payable(self, payable_id: str) -> Optional[Payable]:
        data = self.storage.load(self.payables_table, payable_id)
        if data:
            return self._payable_from_dict(data)
        return None

    def list_payables(self, supplier_id: Optional[str] = None) -> List[Payable]:
        """Payables, newest first, optionally for one supplier"""
        if supplier_id:
            rows = self.storage.find(self.payables_table, {"supplier_id": supplier_id})
        else:
            rows = self.storage.load_all(self.payables_table)
        payables = [self._payable_from_dict(d) for d in rows]
        payables.sort(key=lambda p: p.created_at, reverse=True)
        return payables

    def delete_payable(self, payable_id: str) -> bool:
        if not self.storage.exists(self.payables_table, payable_id):
            return False

        with self.storage.atomic():
            for payment in self.storage.find(self.payments_table, {"payable_id": payable_id}):
                self.storage.delete(self.payments_table, payment['id'])
            self.storage.delete(self.payables_table, payable_id)

        self.audit_trail.log_event(
            event_type=AuditEventType.PAYABLE_DELETED,
            entity_type="payable",
            entity_id=payable_id,
            metadata={}
        )
        return True

    def register_payment(
        self,
        payable_id: str,
        amount: Money,
        payment_date: Optional[date] = None,
        bank_account_id: Optional[str] = None
    ) -> PayablePayment:
        """
        Register a partial or full payment

        Raises:
            ValueError: Unknown payable, non-positive amount, currency mismatch
                or an amount larger than the pending balance
        """
        payable = self.get_payable(payable_id)
        if not payable:
            raise RecordNotFoundError("Payable", payable_id)
        if not amount.is_positive():
            raise ValueError("Payment amount must be positive")
        if amount.currency != payable.pending.currency:
            raise ValueError(
                f"Payment currency {amount.currency.code} does not match payable "
                f"currency {payable.pending.currency.code}"
            )
        if amount > payable.pending:
            raise ValueError(
                f"Payment {amount.to_string()} exceeds pending balance {payable.pending.to_string()}"
            )

        now = datetime.now(timezone.utc)
        payment = PayablePayment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            payable_id=payable.id,
            payment_date=payment_date or date.today(),
            amount=amount,
            bank_account_id=bank_account_id
        )

        payable.paid = payable.paid + amount
        payable.pending = (payable.pending - amount).clamp_zero()
        if payable.pending.is_zero():
            payable.state = PayableState.PAID
        payable.updated_at = now

        with self.storage.atomic():
            self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))
            self._save_payable(payable)

        log_action(
            self.logger, "info", "Payable payment registered",
            action="pay_payable", resource=resource_ref(self.payables_table, payable.id),
            extra={"amount": amount.to_string(), "pending": payable.pending.to_string()}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.PAYABLE_PAYMENT_MADE,
            entity_type="payable",
            entity_id=payable.id,
            metadata={
                "payment_id": payment.id,
                "amount": amount.amount,
                "pending": payable.pending.amount,
                "bank_account_id": bank_account_id
            }
        )
        return payment

    def get_payments(self, payable_id: str) -> List[PayablePayment]:
        payments = [
            self._payment_from_dict(d)
            for d in self.storage.find(self.payments_table, {"payable_id": payable_id})
        ]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def get_overdue(self, as_of: Optional[date] = None) -> List[Payable]:
        """Unpaid payables past their due date, oldest due first"""
        overdue = [p for p in self.list_payables() if p.is_overdue(as_of)]
        overdue.sort(key=lambda p: p.due_date)
        return overdue

    def get_due_within(self, days: int, as_of: Optional[date] = None) -> List[Payable]:
        """Unpaid payables due between as_of and as_of + days"""
        as_of = as_of or date.today()
        horizon = as_of + timedelta(days=days)
        due = [
            p for p in self.list_payables()
            if not p.is_paid and as_of <= p.due_date <= horizon
        ]
        due.sort(key=lambda p: p.due_date)
        return due

    def _save_payable(self, payable: Payable) -> None:
        self.storage.save(self.payables_table, payable.id, self._payable_to_dict(payable))

    def _payable_to_dict(self, payable: Payable) -> Dict:
        return {
            'id': payable.id,
            'created_at': payable.created_at.isoformat(),
            'updated_at': payable.updated_at.isoformat(),
            'supplier_id': payable.supplier_id,
            'supplier_invoice_number': payable.supplier_invoice_number,
            'invoice_date': payable.invoice_date.isoformat(),
            'due_date': payable.due_date.isoformat(),
            'concept': payable.concept,
            'currency': payable.total.currency.code,
            'total_amount': str(payable.total.amount),
            'paid_amount': str(payable.paid.amount),
            'pending_amount': str(payable.pending.amount),
            'state': payable.state.value,
            'work_id': payable.work_id,
            'notes': payable.notes,
        }

    def _payable_from_dict(self, data: Dict) -> Payable:
        currency = Currency[data.get('currency') or Currency.COP.code]
        created_at = datetime.fromisoformat(data['created_at'])
        invoice_date = date.fromisoformat(data['invoice_date']) if data.get('invoice_date') else created_at.date()
        total = Money(Decimal(data.get('total_amount') or '0'), currency)
        paid = Money(Decimal(data.get('paid_amount') or '0'), currency)

        if data.get('pending_amount') is not None:
            pending = Money(Decimal(data['pending_amount']), currency)
        else:
            pending = (total - paid).clamp_zero()

        due_date = (
            date.fromisoformat(data['due_date']) if data.get('due_date')
            else invoice_date + timedelta(days=self.default_credit_days)
        )

        return Payable(
            id=data['id'],
            created_at=created_at,
            updated_at=datetime.fromisoformat(data['updated_at']),
            supplier_id=data.get('supplier_id') or "",
            supplier_invoice_number=data.get('supplier_invoice_number') or "",
            invoice_date=invoice_date,
            due_date=due_date,
            concept=data.get('concept') or "",
            total=total,
            paid=paid,
            pending=pending,
            state=PayableState(data.get('state') or PayableState.PENDING.value),
            work_id=data.get('work_id'),
            notes=data.get('notes'),
        )

    def _payment_to_dict(self, payment: PayablePayment) -> Dict:
        return {
            'id': payment.id,
            'created_at': payment.created_at.isoformat(),
            'updated_at': payment.updated_at.isoformat(),
            'payable_id': payment.payable_id,
            'payment_date': payment.payment_date.isoformat(),
            'amount': str(payment.amount.amount),
            'currency': payment.amount.currency.code,
            'bank_account_id': payment.bank_account_id,
        }

    def _payment_from_dict(self, data: Dict) -> PayablePayment:
        return PayablePayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            payable_id=data['payable_id'],
            payment_date=date.fromisoformat(data['payment_date']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            bank_account_id=data.get('bank_account_id'),
        )

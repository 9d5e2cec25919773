"""
Invoicing Module

Quotes (COT-<year>-NNNN) and invoices (FAC-<year>-NNNN) issued to clients.
Numbers are year-scoped and allocated through the CodeAllocator. The pending
balance of an invoice is its total minus the advance received, the
withholdings and the payments registered so far, never below zero.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, timedelta
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, RecordNotFoundError
from .audit import AuditTrail, AuditEventType
from .codes import CodeAllocator, CodeSequence
from .currency import Money, Currency
from .logging_config import get_logger, log_action, resource_ref


class QuoteState(Enum):
    DRAFT = "BORRADOR"
    SENT = "ENVIADA"
    APPROVED = "APROBADA"
    REJECTED = "RECHAZADA"
    INVOICED = "FINALIZADA"


class InvoiceState(Enum):
    PENDING = "PENDIENTE"
    PAID = "PAGADA"
    VOID = "ANULADA"


QUOTE_TRANSITIONS = {
    QuoteState.DRAFT: {QuoteState.SENT, QuoteState.APPROVED, QuoteState.REJECTED},
    QuoteState.SENT: {QuoteState.APPROVED, QuoteState.REJECTED},
    QuoteState.APPROVED: {QuoteState.INVOICED, QuoteState.REJECTED},
    QuoteState.REJECTED: set(),
    QuoteState.INVOICED: set(),
}

INVOICE_MONEY_FIELDS = [
    'subtotal', 'vat', 'total', 'advance_received', 'withholding_income',
    'withholding_ica', 'withholding_vat', 'paid'
]


@dataclass
class QuoteItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    work_code_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass
class Quote(StorageRecord):
    number: str
    client_id: str
    issue_date: date
    valid_until: date
    items: List[QuoteItem]
    subtotal: Money
    vat: Money
    total: Money
    state: QuoteState = QuoteState.DRAFT
    work_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class Invoice(StorageRecord):
    number: str
    client_id: str
    issue_date: date
    due_date: date
    subtotal: Money
    vat: Money
    total: Money
    advance_received: Money
    withholding_income: Money
    withholding_ica: Money
    withholding_vat: Money
    paid: Money
    state: InvoiceState = InvoiceState.PENDING
    quote_id: Optional[str] = None
    work_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def withholdings(self) -> Money:
        return self.withholding_income + self.withholding_ica + self.withholding_vat

    @property
    def pending(self) -> Money:
        """What the client still owes"""
        return (self.total - self.advance_received - self.withholdings - self.paid).clamp_zero()

    @property
    def currency(self) -> Currency:
        return self.total.currency


@dataclass
class InvoicePayment(StorageRecord):
    invoice_id: str
    payment_date: date
    amount: Money
    bank_account_id: Optional[str] = None


class InvoicingManager:
    """
    Manages quotes, invoices and invoice payments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        allocator: CodeAllocator,
        vat_rate: Decimal = Decimal('0.19'),
        currency: Currency = Currency.COP
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.allocator = allocator
        self.vat_rate = vat_rate
        self.currency = currency
        self.logger = get_logger("erp.invoicing")

        self.quotes_table = CodeSequence.QUOTE.table
        self.invoices_table = CodeSequence.INVOICE.table
        self.payments_table = "invoice_payments"

    # Quotes

    def create_quote(
        self,
        client_id: str,
        items: List[QuoteItem],
        issue_date: Optional[date] = None,
        valid_until: Optional[date] = None,
        work_id: Optional[str] = None,
        notes: Optional[str] = None,
        number: Optional[str] = None
    ) -> Quote:
        """
        Create a quote in DRAFT state

        Totals are computed from the items; VAT uses the manager's rate.
        """
        if not client_id:
            raise ValueError("Client is required")
        if not items:
            raise ValueError("A quote needs at least one item")
        for item in items:
            if item.quantity <= Decimal('0'):
                raise ValueError(f"Quantity must be positive for item '{item.description}'")
            if item.unit_price < Decimal('0'):
                raise ValueError(f"Unit price cannot be negative for item '{item.description}'")

        issue_date = issue_date or date.today()
        subtotal = Money(sum((item.line_total for item in items), Decimal('0')), self.currency)
        vat = subtotal * self.vat_rate
        quote_id = str(uuid.uuid4())

        def build_record(allocated: str) -> Dict[str, Any]:
            now = datetime.now(timezone.utc)
            quote = Quote(
                id=quote_id,
                created_at=now,
                updated_at=now,
                number=allocated,
                client_id=client_id,
                issue_date=issue_date,
                valid_until=valid_until or issue_date + timedelta(days=30),
                items=list(items),
                subtotal=subtotal,
                vat=vat,
                total=subtotal + vat,
                work_id=work_id,
                notes=notes
            )
            return self._quote_to_dict(quote)

        data = self.allocator.allocate_and_insert(
            CodeSequence.QUOTE, build_record, explicit_code=number, year=issue_date.year
        )
        quote = self._quote_from_dict(data)

        log_action(
            self.logger, "info", f"Quote created: {quote.number}",
            action="create_quote", resource=resource_ref(self.quotes_table, quote.id),
            extra={"total": quote.total.to_string()}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.QUOTE_CREATED,
            entity_type="quote",
            entity_id=quote.id,
            metadata={"number": quote.number, "client_id": client_id, "total": quote.total.amount}
        )
        return quote

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        data = self.storage.load(self.quotes_table, quote_id)
        if data:
            return self._quote_from_dict(data)
        return None

    def list_quotes(self, client_id: Optional[str] = None) -> List[Quote]:
        """Quotes, newest first"""
        rows = (
            self.storage.find(self.quotes_table, {"client_id": client_id}) if client_id
            else self.storage.load_all(self.quotes_table)
        )
        quotes = [self._quote_from_dict(d) for d in rows]
        quotes.sort(key=lambda q: q.created_at, reverse=True)
        return quotes

    def change_quote_state(self, quote_id: str, new_state: QuoteState) -> Quote:
        quote = self._require_quote(quote_id)
        if new_state not in QUOTE_TRANSITIONS[quote.state]:
            raise ValueError(
                f"Cannot change quote {quote.number} from {quote.state.value} to {new_state.value}"
            )
        quote.state = new_state
        quote.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.quotes_table, quote.id, self._quote_to_dict(quote))

        self.audit_trail.log_event(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type="quote",
            entity_id=quote.id,
            metadata={"state": new_state.value}
        )
        return quote

    # Invoices

    def create_invoice(
        self,
        client_id: Optional[str] = None,
        subtotal: Optional[Money] = None,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        vat: Optional[Money] = None,
        advance_received: Optional[Money] = None,
        withholding_income: Optional[Money] = None,
        withholding_ica: Optional[Money] = None,
        withholding_vat: Optional[Money] = None,
        quote_id: Optional[str] = None,
        work_id: Optional[str] = None,
        notes: Optional[str] = None,
        number: Optional[str] = None
    ) -> Invoice:
        """
        Issue an invoice, optionally from an approved quote

        Args:
            client_id: Billed client; taken from the quote when omitted
            subtotal: Amount before VAT; taken from the quote when omitted
            issue_date: Defaults to today; its year scopes the number
            due_date: Defaults to the issue date
            vat: Defaults to subtotal times the VAT rate
            quote_id: Quote being invoiced; it moves to the INVOICED state
            number: Explicit invoice number instead of the next in sequence

        Returns:
            Created Invoice
        """
        quote = None
        if quote_id:
            quote = self._require_quote(quote_id)
            if quote.state in (QuoteState.REJECTED, QuoteState.INVOICED):
                raise ValueError(f"Quote {quote.number} cannot be invoiced in state {quote.state.value}")
            client_id = client_id or quote.client_id
            if subtotal is None:
                subtotal = quote.subtotal
                vat = quote.vat if vat is None else vat
            work_id = work_id or quote.work_id

        if not client_id:
            raise ValueError("Client is required")
        if subtotal is None or not subtotal.is_positive():
            raise ValueError("Invoice subtotal must be positive")

        currency = subtotal.currency
        zero = Money.zero(currency)
        vat = vat if vat is not None else subtotal * self.vat_rate
        deductions = {
            'advance_received': advance_received or zero,
            'withholding_income': withholding_income or zero,
            'withholding_ica': withholding_ica or zero,
            'withholding_vat': withholding_vat or zero,
        }
        for name, amount in list(deductions.items()) + [('vat', vat)]:
            if amount.currency != currency:
                raise ValueError(f"{name} must be in {currency.code}")
            if amount.is_negative():
                raise ValueError(f"{name} cannot be negative")

        issue_date = issue_date or date.today()
        due_date = due_date or issue_date
        if due_date < issue_date:
            raise ValueError("Due date cannot be before the issue date")

        invoice_id = str(uuid.uuid4())

        def build_record(allocated: str) -> Dict[str, Any]:
            now = datetime.now(timezone.utc)
            invoice = Invoice(
                id=invoice_id,
                created_at=now,
                updated_at=now,
                number=allocated,
                client_id=client_id,
                issue_date=issue_date,
                due_date=due_date,
                subtotal=subtotal,
                vat=vat,
                total=subtotal + vat,
                paid=zero,
                quote_id=quote_id,
                work_id=work_id,
                notes=notes,
                **deductions
            )
            if invoice.pending.is_zero():
                invoice.state = InvoiceState.PAID
            return self._invoice_to_dict(invoice)

        data = self.allocator.allocate_and_insert(
            CodeSequence.INVOICE, build_record, explicit_code=number, year=issue_date.year
        )
        invoice = self._invoice_from_dict(data)

        if quote:
            quote.state = QuoteState.INVOICED
            quote.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.quotes_table, quote.id, self._quote_to_dict(quote))

        log_action(
            self.logger, "info", f"Invoice created: {invoice.number}",
            action="create_invoice", resource=resource_ref(self.invoices_table, invoice.id),
            extra={"total": invoice.total.to_string(), "pending": invoice.pending.to_string()}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice.id,
            metadata={
                "number": invoice.number,
                "client_id": client_id,
                "quote_id": quote_id,
                "total": invoice.total.amount,
                "pending": invoice.pending.amount
            }
        )
        return invoice

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        data = self.storage.load(self.invoices_table, invoice_id)
        if data:
            return self._invoice_from_dict(data)
        return None

    def list_invoices(self, client_id: Optional[str] = None) -> List[Invoice]:
        """Invoices, newest first"""
        rows = (
            self.storage.find(self.invoices_table, {"client_id": client_id}) if client_id
            else self.storage.load_all(self.invoices_table)
        )
        invoices = [self._invoice_from_dict(d) for d in rows]
        invoices.sort(key=lambda i: i.created_at, reverse=True)
        return invoices

    def register_payment(
        self,
        invoice_id: str,
        amount: Money,
        payment_date: Optional[date] = None,
        bank_account_id: Optional[str] = None
    ) -> InvoicePayment:
        """Register a client payment; it cannot exceed the pending balance"""
        invoice = self._require_invoice(invoice_id)
        if invoice.state == InvoiceState.VOID:
            raise ValueError(f"Invoice {invoice.number} is void")
        if not amount.is_positive():
            raise ValueError("Payment amount must be positive")
        if amount.currency != invoice.currency:
            raise ValueError(f"Payment must be in {invoice.currency.code}")
        if amount > invoice.pending:
            raise ValueError(
                f"Payment {amount.to_string()} exceeds pending balance {invoice.pending.to_string()}"
            )

        now = datetime.now(timezone.utc)
        payment = InvoicePayment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            invoice_id=invoice.id,
            payment_date=payment_date or date.today(),
            amount=amount,
            bank_account_id=bank_account_id
        )

        invoice.paid = invoice.paid + amount
        if invoice.pending.is_zero():
            invoice.state = InvoiceState.PAID
        invoice.updated_at = now

        with self.storage.atomic():
            self.storage.save(self.payments_table, payment.id, {
                'id': payment.id,
                'created_at': payment.created_at.isoformat(),
                'updated_at': payment.updated_at.isoformat(),
                'invoice_id': payment.invoice_id,
                'payment_date': payment.payment_date.isoformat(),
                'amount': str(amount.amount),
                'currency': amount.currency.code,
                'bank_account_id': bank_account_id,
            })
            self.storage.save(self.invoices_table, invoice.id, self._invoice_to_dict(invoice))

        self.audit_trail.log_event(
            event_type=AuditEventType.INVOICE_PAYMENT_REGISTERED,
            entity_type="invoice",
            entity_id=invoice.id,
            metadata={"payment_id": payment.id, "amount": amount.amount, "pending": invoice.pending.amount}
        )
        return payment

    def get_payments(self, invoice_id: str) -> List[InvoicePayment]:
        payments = []
        for data in self.storage.find(self.payments_table, {"invoice_id": invoice_id}):
            payments.append(InvoicePayment(
                id=data['id'],
                created_at=datetime.fromisoformat(data['created_at']),
                updated_at=datetime.fromisoformat(data['updated_at']),
                invoice_id=data['invoice_id'],
                payment_date=date.fromisoformat(data['payment_date']),
                amount=Money(Decimal(data['amount']), Currency[data['currency']]),
                bank_account_id=data.get('bank_account_id')
            ))
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def void_invoice(self, invoice_id: str, reason: str = "") -> Invoice:
        """Void an invoice that has no payments"""
        invoice = self._require_invoice(invoice_id)
        if invoice.state == InvoiceState.VOID:
            raise ValueError(f"Invoice {invoice.number} is already void")
        if invoice.paid.is_positive():
            raise ValueError(f"Invoice {invoice.number} has payments and cannot be voided")

        invoice.state = InvoiceState.VOID
        invoice.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.invoices_table, invoice.id, self._invoice_to_dict(invoice))

        log_action(
            self.logger, "warning", f"Invoice voided: {invoice.number}",
            action="void_invoice", resource=resource_ref(self.invoices_table, invoice.id),
            extra={"reason": reason}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.INVOICE_VOIDED,
            entity_type="invoice",
            entity_id=invoice.id,
            metadata={"number": invoice.number, "reason": reason}
        )
        return invoice

    def _require_quote(self, quote_id: str) -> Quote:
        quote = self.get_quote(quote_id)
        if not quote:
            raise RecordNotFoundError("Quote", quote_id)
        return quote

    def _require_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if not invoice:
            raise RecordNotFoundError("Invoice", invoice_id)
        return invoice

    def _quote_to_dict(self, quote: Quote) -> Dict:
        result = {
            'id': quote.id,
            'created_at': quote.created_at.isoformat(),
            'updated_at': quote.updated_at.isoformat(),
            'number': quote.number,
            'client_id': quote.client_id,
            'issue_date': quote.issue_date.isoformat(),
            'valid_until': quote.valid_until.isoformat(),
            'state': quote.state.value,
            'work_id': quote.work_id,
            'notes': quote.notes,
            'currency': quote.total.currency.code,
            'items': [
                {
                    'description': item.description,
                    'quantity': str(item.quantity),
                    'unit_price': str(item.unit_price),
                    'work_code_id': item.work_code_id,
                }
                for item in quote.items
            ],
        }
        for name in ['subtotal', 'vat', 'total']:
            result[f'{name}_amount'] = str(getattr(quote, name).amount)
        return result

    def _quote_from_dict(self, data: Dict) -> Quote:
        currency = Currency[data.get('currency') or self.currency.code]
        items = [
            QuoteItem(
                description=item.get('description') or "",
                quantity=Decimal(item.get('quantity') or '0'),
                unit_price=Decimal(item.get('unit_price') or '0'),
                work_code_id=item.get('work_code_id')
            )
            for item in data.get('items') or []
        ]
        return Quote(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            number=data['number'],
            client_id=data.get('client_id') or "",
            issue_date=date.fromisoformat(data['issue_date']),
            valid_until=date.fromisoformat(data['valid_until']),
            items=items,
            subtotal=Money(Decimal(data.get('subtotal_amount') or '0'), currency),
            vat=Money(Decimal(data.get('vat_amount') or '0'), currency),
            total=Money(Decimal(data.get('total_amount') or '0'), currency),
            state=QuoteState(data.get('state') or QuoteState.DRAFT.value),
            work_id=data.get('work_id'),
            notes=data.get('notes'),
        )

    def _invoice_to_dict(self, invoice: Invoice) -> Dict:
        result = {
            'id': invoice.id,
            'created_at': invoice.created_at.isoformat(),
            'updated_at': invoice.updated_at.isoformat(),
            'number': invoice.number,
            'client_id': invoice.client_id,
            'issue_date': invoice.issue_date.isoformat(),
            'due_date': invoice.due_date.isoformat(),
            'state': invoice.state.value,
            'quote_id': invoice.quote_id,
            'work_id': invoice.work_id,
            'notes': invoice.notes,
            'currency': invoice.currency.code,
            # Derived; kept for reporting queries
            'pending_amount': str(invoice.pending.amount),
        }
        for name in INVOICE_MONEY_FIELDS:
            result[f'{name}_amount'] = str(getattr(invoice, name).amount)
        return result

    def _invoice_from_dict(self, data: Dict) -> Invoice:
        currency = Currency[data.get('currency') or self.currency.code]
        amounts = {
            name: Money(Decimal(data.get(f'{name}_amount') or '0'), currency)
            for name in INVOICE_MONEY_FIELDS
        }
        issue_date = date.fromisoformat(data['issue_date'])
        return Invoice(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            number=data['number'],
            client_id=data.get('client_id') or "",
            issue_date=issue_date,
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else issue_date,
            state=InvoiceState(data.get('state') or InvoiceState.PENDING.value),
            quote_id=data.get('quote_id'),
            work_id=data.get('work_id'),
            notes=data.get('notes'),
            **amounts
        )

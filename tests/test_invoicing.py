"""
Tests for quotes, invoices and invoice payments
"""

import pytest
from decimal import Decimal
from datetime import date

from erp_core.storage import InMemoryStorage, RecordNotFoundError
from erp_core.audit import AuditTrail, AuditEventType
from erp_core.codes import CodeAllocator, CodeConflictError
from erp_core.currency import Money, Currency
from erp_core.invoicing import (
    InvoicingManager, QuoteItem, QuoteState, InvoiceState
)


def cop(amount: str) -> Money:
    return Money(Decimal(amount), Currency.COP)


class TestQuotes:
    """Test quote lifecycle"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = InvoicingManager(
            self.storage, self.audit_trail, CodeAllocator(self.storage, self.audit_trail)
        )
        self.items = [
            QuoteItem("Pintura fachada", Decimal('10'), Decimal('50000')),
            QuoteItem("Andamio", Decimal('1'), Decimal('100000'), work_code_id="wc-1"),
        ]

    def test_create_quote(self):
        """Test totals and numbering"""
        quote = self.manager.create_quote("client-1", self.items, issue_date=date(2024, 5, 10))

        assert quote.number == "COT-2024-0001"
        assert quote.subtotal == cop('600000')
        assert quote.vat == cop('114000')
        assert quote.total == cop('714000')
        assert quote.state == QuoteState.DRAFT
        assert quote.valid_until == date(2024, 6, 9)
        assert quote.items[1].work_code_id == "wc-1"
        assert quote.items[0].line_total == Decimal('500000')

    def test_quote_numbers_are_per_year(self):
        """Test yearly sequences"""
        self.manager.create_quote("client-1", self.items, issue_date=date(2024, 5, 10))
        second = self.manager.create_quote("client-1", self.items, issue_date=date(2024, 6, 1))
        next_year = self.manager.create_quote("client-1", self.items, issue_date=date(2025, 1, 2))

        assert second.number == "COT-2024-0002"
        assert next_year.number == "COT-2025-0001"

    @pytest.mark.parametrize("client_id, items", [
        ("", [QuoteItem("x", Decimal('1'), Decimal('1'))]),
        ("client-1", []),
        ("client-1", [QuoteItem("x", Decimal('0'), Decimal('1'))]),
        ("client-1", [QuoteItem("x", Decimal('1'), Decimal('-1'))]),
    ])
    def test_quote_validation(self, client_id, items):
        """Test invalid quotes"""
        with pytest.raises(ValueError):
            self.manager.create_quote(client_id, items)

    def test_state_transitions(self):
        """Test allowed and forbidden transitions"""
        quote = self.manager.create_quote("client-1", self.items)

        assert self.manager.change_quote_state(quote.id, QuoteState.SENT).state == QuoteState.SENT
        assert self.manager.change_quote_state(quote.id, QuoteState.APPROVED).state == QuoteState.APPROVED

        with pytest.raises(ValueError):
            self.manager.change_quote_state(quote.id, QuoteState.DRAFT)
        with pytest.raises(RecordNotFoundError):
            self.manager.change_quote_state("missing", QuoteState.SENT)

    def test_list_quotes(self):
        """Test listing by client"""
        self.manager.create_quote("client-1", self.items)
        self.manager.create_quote("client-2", self.items)

        assert len(self.manager.list_quotes()) == 2
        assert len(self.manager.list_quotes("client-2")) == 1


class TestInvoices:
    """Test invoices and payments"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = InvoicingManager(
            self.storage, self.audit_trail, CodeAllocator(self.storage, self.audit_trail)
        )

    def _invoice(self, **overrides):
        values = dict(client_id="client-1", subtotal=cop('1000000'), issue_date=date(2024, 5, 10))
        values.update(overrides)
        return self.manager.create_invoice(**values)

    def test_create_invoice(self):
        """Test defaults for VAT, due date and numbering"""
        invoice = self._invoice()

        assert invoice.number == "FAC-2024-0001"
        assert invoice.vat == cop('190000')
        assert invoice.total == cop('1190000')
        assert invoice.due_date == date(2024, 5, 10)
        assert invoice.pending == cop('1190000')
        assert invoice.state == InvoiceState.PENDING

    def test_next_invoice_number_follows_existing(self):
        """Test numbering continues from the highest stored number"""
        self._invoice(number="FAC-2024-0047")
        assert self._invoice().number == "FAC-2024-0048"

    def test_duplicate_explicit_number(self):
        """Test explicit numbers must be unique"""
        self._invoice(number="FAC-2024-0010")
        with pytest.raises(CodeConflictError):
            self._invoice(number="FAC-2024-0010")

    def test_pending_after_deductions(self):
        """Test advance and withholdings reduce the pending balance"""
        invoice = self._invoice(
            advance_received=cop('200000'),
            withholding_income=cop('25000'),
            withholding_ica=cop('9660'),
            withholding_vat=cop('28500')
        )

        assert invoice.withholdings == cop('63160')
        assert invoice.pending == cop('926840')

        loaded = self.manager.get_invoice(invoice.id)
        assert loaded.pending == cop('926840')
        assert loaded.withholding_ica == cop('9660')

    def test_fully_covered_invoice_is_paid(self):
        """Test an invoice covered by its advance starts as paid"""
        invoice = self._invoice(vat=cop('0'), advance_received=cop('1000000'))

        assert invoice.pending.is_zero()
        assert invoice.state == InvoiceState.PAID

    def test_pending_never_negative(self):
        """Test over-deducted invoices clamp at zero"""
        invoice = self._invoice(advance_received=cop('2000000'))
        assert invoice.pending == cop('0')

    @pytest.mark.parametrize("overrides", [
        {"client_id": ""},
        {"subtotal": None},
        {"subtotal": cop('0')},
        {"advance_received": cop('-1')},
        {"vat": Money(Decimal('10'), Currency.USD)},
        {"due_date": date(2024, 5, 1)},
    ])
    def test_invoice_validation(self, overrides):
        """Test invalid invoices"""
        with pytest.raises(ValueError):
            self._invoice(**overrides)

    def test_invoice_from_quote(self):
        """Test invoicing a quote copies its amounts and closes it"""
        quote = self.manager.create_quote(
            "client-9", [QuoteItem("Obra", Decimal('1'), Decimal('500000'))],
            issue_date=date(2024, 5, 1), work_id="work-3"
        )
        self.manager.change_quote_state(quote.id, QuoteState.APPROVED)

        invoice = self.manager.create_invoice(quote_id=quote.id, issue_date=date(2024, 5, 20))

        assert invoice.client_id == "client-9"
        assert invoice.subtotal == cop('500000')
        assert invoice.vat == cop('95000')
        assert invoice.work_id == "work-3"
        assert invoice.quote_id == quote.id
        assert self.manager.get_quote(quote.id).state == QuoteState.INVOICED

        with pytest.raises(ValueError):
            self.manager.create_invoice(quote_id=quote.id)

    def test_rejected_quote_cannot_be_invoiced(self):
        """Test rejected quotes are refused"""
        quote = self.manager.create_quote("client-9", [QuoteItem("Obra", Decimal('1'), Decimal('1000'))])
        self.manager.change_quote_state(quote.id, QuoteState.REJECTED)

        with pytest.raises(ValueError):
            self.manager.create_invoice(quote_id=quote.id)

    def test_register_payments(self):
        """Test partial then full payment"""
        invoice = self._invoice()

        self.manager.register_payment(invoice.id, cop('190000'), date(2024, 5, 20))
        partially = self.manager.get_invoice(invoice.id)
        assert partially.pending == cop('1000000')
        assert partially.state == InvoiceState.PENDING

        self.manager.register_payment(invoice.id, cop('1000000'), date(2024, 6, 1))
        paid = self.manager.get_invoice(invoice.id)
        assert paid.state == InvoiceState.PAID
        assert paid.paid == cop('1190000')

        payments = self.manager.get_payments(invoice.id)
        assert [p.amount for p in payments] == [cop('190000'), cop('1000000')]
        assert len(self.audit_trail.get_events_by_type(AuditEventType.INVOICE_PAYMENT_REGISTERED)) == 2

    def test_payment_validation(self):
        """Test invalid payments"""
        invoice = self._invoice()

        with pytest.raises(ValueError, match="exceeds pending"):
            self.manager.register_payment(invoice.id, cop('1190000.01'))
        with pytest.raises(ValueError):
            self.manager.register_payment(invoice.id, cop('0'))
        with pytest.raises(ValueError):
            self.manager.register_payment(invoice.id, Money(Decimal('5'), Currency.USD))
        with pytest.raises(RecordNotFoundError):
            self.manager.register_payment("missing", cop('5'))

    def test_void_invoice(self):
        """Test voiding blocks payments"""
        invoice = self._invoice()

        voided = self.manager.void_invoice(invoice.id, "Error en NIT")

        assert voided.state == InvoiceState.VOID
        with pytest.raises(ValueError):
            self.manager.register_payment(invoice.id, cop('10'))
        with pytest.raises(ValueError):
            self.manager.void_invoice(invoice.id)

    def test_invoice_with_payments_cannot_be_voided(self):
        """Test paid amounts protect the invoice"""
        invoice = self._invoice()
        self.manager.register_payment(invoice.id, cop('10'))

        with pytest.raises(ValueError, match="has payments"):
            self.manager.void_invoice(invoice.id)

    def test_list_invoices(self):
        """Test listing by client"""
        self._invoice()
        self._invoice(client_id="client-2")

        assert len(self.manager.list_invoices()) == 2
        assert [i.client_id for i in self.manager.list_invoices("client-2")] == ["client-2"]

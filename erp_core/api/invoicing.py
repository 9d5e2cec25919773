"""
Quote and invoice endpoints
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status

from .system import ErpSystem, get_erp_system, http_error
from .schemas import (
    CreateQuoteRequest, QuoteStateRequest, CreateInvoiceRequest,
    PaymentRequest, VoidInvoiceRequest, MoneyModel
)
from ..invoicing import Quote, Invoice, QuoteState, INVOICE_MONEY_FIELDS


quotes_router = APIRouter()
invoices_router = APIRouter()


def _quote_response(quote: Quote) -> dict:
    return {
        "id": quote.id,
        "number": quote.number,
        "client_id": quote.client_id,
        "issue_date": quote.issue_date.isoformat(),
        "valid_until": quote.valid_until.isoformat(),
        "state": quote.state.value,
        "items": [
            {
                "description": item.description,
                "quantity": str(item.quantity),
                "unit_price": str(item.unit_price),
                "line_total": str(item.line_total),
                "work_code_id": item.work_code_id,
            }
            for item in quote.items
        ],
        "subtotal": MoneyModel.from_money(quote.subtotal).model_dump(),
        "vat": MoneyModel.from_money(quote.vat).model_dump(),
        "total": MoneyModel.from_money(quote.total).model_dump(),
        "work_id": quote.work_id,
        "notes": quote.notes,
    }


def _invoice_response(invoice: Invoice) -> dict:
    result = {
        "id": invoice.id,
        "number": invoice.number,
        "client_id": invoice.client_id,
        "quote_id": invoice.quote_id,
        "work_id": invoice.work_id,
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "state": invoice.state.value,
        "pending": MoneyModel.from_money(invoice.pending).model_dump(),
        "notes": invoice.notes,
    }
    for name in INVOICE_MONEY_FIELDS:
        result[name] = MoneyModel.from_money(getattr(invoice, name)).model_dump()
    return result


@quotes_router.post("", status_code=status.HTTP_201_CREATED)
async def create_quote(
    request: CreateQuoteRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    try:
        quote = system.invoicing_manager.create_quote(
            client_id=request.client_id,
            items=[item.to_quote_item() for item in request.items],
            issue_date=request.issue_date,
            valid_until=request.valid_until,
            work_id=request.work_id,
            notes=request.notes,
            number=request.number
        )
    except ValueError as e:
        raise http_error(e)
    return _quote_response(quote)


@quotes_router.get("")
async def list_quotes(
    client_id: Optional[str] = None,
    system: ErpSystem = Depends(get_erp_system)
):
    return {"quotes": [_quote_response(q) for q in system.invoicing_manager.list_quotes(client_id)]}


@quotes_router.get("/{quote_id}")
async def get_quote(quote_id: str, system: ErpSystem = Depends(get_erp_system)):
    quote = system.invoicing_manager.get_quote(quote_id)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return _quote_response(quote)


@quotes_router.post("/{quote_id}/state")
async def change_quote_state(
    quote_id: str,
    request: QuoteStateRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    try:
        quote = system.invoicing_manager.change_quote_state(quote_id, QuoteState(request.state))
    except ValueError as e:
        raise http_error(e)
    return _quote_response(quote)


@invoices_router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: CreateInvoiceRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Issue an invoice, optionally from a quote"""
    def money(model: Optional[MoneyModel]):
        return model.to_money() if model else None

    try:
        invoice = system.invoicing_manager.create_invoice(
            client_id=request.client_id,
            subtotal=money(request.subtotal),
            issue_date=request.issue_date,
            due_date=request.due_date,
            vat=money(request.vat),
            advance_received=money(request.advance_received),
            withholding_income=money(request.withholding_income),
            withholding_ica=money(request.withholding_ica),
            withholding_vat=money(request.withholding_vat),
            quote_id=request.quote_id,
            work_id=request.work_id,
            notes=request.notes,
            number=request.number
        )
    except ValueError as e:
        raise http_error(e)
    return _invoice_response(invoice)


@invoices_router.get("")
async def list_invoices(
    client_id: Optional[str] = None,
    system: ErpSystem = Depends(get_erp_system)
):
    return {"invoices": [_invoice_response(i) for i in system.invoicing_manager.list_invoices(client_id)]}


@invoices_router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, system: ErpSystem = Depends(get_erp_system)):
    invoice = system.invoicing_manager.get_invoice(invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return _invoice_response(invoice)


@invoices_router.post("/{invoice_id}/payments", status_code=status.HTTP_201_CREATED)
async def register_invoice_payment(
    invoice_id: str,
    request: PaymentRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    try:
        payment = system.invoicing_manager.register_payment(
            invoice_id,
            amount=request.amount.to_money(),
            payment_date=request.payment_date,
            bank_account_id=request.bank_account_id
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "payment_id": payment.id,
        "amount": MoneyModel.from_money(payment.amount).model_dump(),
        "invoice": _invoice_response(system.invoicing_manager.get_invoice(invoice_id)),
    }


@invoices_router.post("/{invoice_id}/void")
async def void_invoice(
    invoice_id: str,
    request: VoidInvoiceRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    try:
        invoice = system.invoicing_manager.void_invoice(invoice_id, request.reason)
    except ValueError as e:
        raise http_error(e)
    return _invoice_response(invoice)

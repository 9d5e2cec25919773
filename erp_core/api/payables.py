"""
Accounts payable endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status

from .system import ErpSystem, get_erp_system, http_error
from .schemas import CreatePayableRequest, PaymentRequest, MoneyModel
from ..payables import Payable, PayablePayment


router = APIRouter()


def _payable_response(payable: Payable, as_of: Optional[date] = None) -> dict:
    return {
        "id": payable.id,
        "supplier_id": payable.supplier_id,
        "supplier_invoice_number": payable.supplier_invoice_number,
        "invoice_date": payable.invoice_date.isoformat(),
        "due_date": payable.due_date.isoformat(),
        "concept": payable.concept,
        "total": MoneyModel.from_money(payable.total).model_dump(),
        "paid": MoneyModel.from_money(payable.paid).model_dump(),
        "pending": MoneyModel.from_money(payable.pending).model_dump(),
        "state": payable.effective_state(as_of).value,
        "work_id": payable.work_id,
        "notes": payable.notes,
    }


def _payment_response(payment: PayablePayment) -> dict:
    return {
        "id": payment.id,
        "payable_id": payment.payable_id,
        "payment_date": payment.payment_date.isoformat(),
        "amount": MoneyModel.from_money(payment.amount).model_dump(),
        "bank_account_id": payment.bank_account_id,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payable(
    request: CreatePayableRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Register a supplier invoice"""
    try:
        payable = system.payable_manager.create_payable(
            supplier_id=request.supplier_id,
            total=request.total.to_money(),
            invoice_date=request.invoice_date,
            supplier_invoice_number=request.supplier_invoice_number,
            concept=request.concept,
            due_date=request.due_date,
            work_id=request.work_id,
            notes=request.notes
        )
    except ValueError as e:
        raise http_error(e)

    return _payable_response(payable)


@router.get("")
async def list_payables(
    supplier_id: Optional[str] = None,
    system: ErpSystem = Depends(get_erp_system)
):
    payables = system.payable_manager.list_payables(supplier_id)
    return {"payables": [_payable_response(p) for p in payables]}


@router.get("/overdue")
async def get_overdue_payables(
    as_of: Optional[date] = None,
    system: ErpSystem = Depends(get_erp_system)
):
    """Unpaid payables past their due date"""
    payables = system.payable_manager.get_overdue(as_of)
    return {"payables": [_payable_response(p, as_of) for p in payables]}


@router.get("/{payable_id}")
async def get_payable(
    payable_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    payable = system.payable_manager.get_payable(payable_id)
    if not payable:
        raise HTTPException(status_code=404, detail="Payable not found")
    return _payable_response(payable)


@router.delete("/{payable_id}")
async def delete_payable(
    payable_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    if not system.payable_manager.delete_payable(payable_id):
        raise HTTPException(status_code=404, detail="Payable not found")
    return {"message": "Payable deleted successfully"}


@router.post("/{payable_id}/payments", status_code=status.HTTP_201_CREATED)
async def pay_payable(
    payable_id: str,
    request: PaymentRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Register a partial or full payment"""
    try:
        payment = system.payable_manager.register_payment(
            payable_id,
            amount=request.amount.to_money(),
            payment_date=request.payment_date,
            bank_account_id=request.bank_account_id
        )
    except ValueError as e:
        raise http_error(e)

    payable = system.payable_manager.get_payable(payable_id)
    return {
        "payment": _payment_response(payment),
        "payable": _payable_response(payable),
    }


@router.get("/{payable_id}/payments")
async def get_payable_payments(
    payable_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    if not system.payable_manager.get_payable(payable_id):
        raise HTTPException(status_code=404, detail="Payable not found")
    payments = system.payable_manager.get_payments(payable_id)
    return {"payments": [_payment_response(p) for p in payments]}

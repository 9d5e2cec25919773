"""
Financial obligation endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .system import ErpSystem, get_erp_system, http_error
from .schemas import (
    CreateObligationRequest, UpdateObligationRequest, ObligationPaymentRequest,
    parse_currency
)
from ..currency import decimal_from_string
from ..obligations import Obligation, ObligationPayment, ObligationKind, RateBasis
from ..amortization import InstallmentPolicy


router = APIRouter()


def _obligation_response(obligation: Obligation) -> dict:
    return {
        "id": obligation.id,
        "kind": obligation.kind.value,
        "lender": obligation.lender,
        "description": obligation.description,
        "principal": str(obligation.principal),
        "interest_rate": str(obligation.interest_rate),
        "rate_basis": obligation.rate_basis.value,
        "term_months": obligation.term_months,
        "start_date": obligation.start_date.isoformat(),
        "end_date": obligation.end_date.isoformat() if obligation.end_date else None,
        "installment": str(obligation.installment),
        "installments_paid": obligation.installments_paid,
        "outstanding_balance": str(obligation.outstanding_balance),
        "currency": obligation.currency.code,
        "state": obligation.state.value,
        "bank_account_id": obligation.bank_account_id,
        "notes": obligation.notes,
    }


def _payment_response(payment: ObligationPayment) -> dict:
    return {
        "id": payment.id,
        "obligation_id": payment.obligation_id,
        "payment_date": payment.payment_date.isoformat(),
        "amount": str(payment.amount),
        "interest": str(payment.interest),
        "principal": str(payment.principal),
        "balance_after": str(payment.balance_after),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_obligation(
    request: CreateObligationRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Register a new financial obligation"""
    try:
        obligation = system.obligation_manager.create_obligation(
            lender=request.lender,
            principal=decimal_from_string(request.principal),
            interest_rate=decimal_from_string(request.interest_rate),
            term_months=request.term_months,
            start_date=request.start_date,
            kind=ObligationKind(request.kind),
            rate_basis=RateBasis(request.rate_basis),
            installment=decimal_from_string(request.installment) if request.installment else None,
            currency=parse_currency(request.currency),
            end_date=request.end_date,
            description=request.description,
            bank_account_id=request.bank_account_id,
            notes=request.notes
        )
    except ValueError as e:
        raise http_error(e)

    return _obligation_response(obligation)


@router.get("")
async def list_obligations(system: ErpSystem = Depends(get_erp_system)):
    """List obligations, newest first"""
    return {
        "obligations": [_obligation_response(o) for o in system.obligation_manager.list_obligations()]
    }


@router.get("/{obligation_id}")
async def get_obligation(
    obligation_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    obligation = system.obligation_manager.get_obligation(obligation_id)
    if not obligation:
        raise HTTPException(status_code=404, detail="Obligation not found")
    return _obligation_response(obligation)


@router.patch("/{obligation_id}")
async def update_obligation(
    obligation_id: str,
    request: UpdateObligationRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Update descriptive fields, the installment or the balance"""
    changes = request.model_dump(exclude_unset=True)
    try:
        for name in ("installment", "outstanding_balance"):
            if changes.get(name) is not None:
                changes[name] = decimal_from_string(changes[name])
        obligation = system.obligation_manager.update_obligation(obligation_id, **changes)
    except ValueError as e:
        raise http_error(e)

    return _obligation_response(obligation)


@router.delete("/{obligation_id}")
async def delete_obligation(
    obligation_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    if not system.obligation_manager.delete_obligation(obligation_id):
        raise HTTPException(status_code=404, detail="Obligation not found")
    return {"message": "Obligation deleted successfully"}


@router.post("/{obligation_id}/payments", status_code=status.HTTP_201_CREATED)
async def register_obligation_payment(
    obligation_id: str,
    request: ObligationPaymentRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Register a payment; interest is charged on the outstanding balance"""
    try:
        payment = system.obligation_manager.register_payment(
            obligation_id,
            amount=decimal_from_string(request.amount),
            payment_date=request.payment_date,
            bank_account_id=request.bank_account_id
        )
    except ValueError as e:
        raise http_error(e)

    return _payment_response(payment)


@router.get("/{obligation_id}/payments")
async def get_obligation_payments(
    obligation_id: str,
    system: ErpSystem = Depends(get_erp_system)
):
    if not system.obligation_manager.get_obligation(obligation_id):
        raise HTTPException(status_code=404, detail="Obligation not found")
    payments = system.obligation_manager.get_payments(obligation_id)
    return {"payments": [_payment_response(p) for p in payments]}


@router.get("/{obligation_id}/schedule")
async def get_obligation_schedule(
    obligation_id: str,
    policy: str = "original",
    system: ErpSystem = Depends(get_erp_system)
):
    """Payment history followed by the projected installments"""
    try:
        summary = system.obligation_manager.get_schedule_summary(
            obligation_id, InstallmentPolicy(policy)
        )
    except ValueError as e:
        raise http_error(e)

    return {
        "obligation_id": obligation_id,
        "policy": policy,
        "reference_installment": str(summary.reference_installment),
        "total_interest": str(summary.total_interest),
        "total_principal": str(summary.total_principal),
        "total_paid": str(summary.total_paid),
        "actual_periods": summary.actual_periods,
        "projected_periods": summary.projected_periods,
        "payoff_date": summary.payoff_date.isoformat() if summary.payoff_date else None,
        "is_truncated": summary.is_truncated,
        "rows": [row.to_dict() for row in summary.rows],
    }

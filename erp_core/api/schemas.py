"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency, decimal_from_string
from ..invoicing import QuoteItem
from ..alerts import VehicleDocuments


def parse_currency(code: str) -> Currency:
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValueError(f"Unsupported currency: {code}")


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field("COP", description="Currency code (COP, USD, EUR)")

    def to_money(self) -> Money:
        return Money(decimal_from_string(self.amount), parse_currency(self.currency))

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Obligation schemas
class CreateObligationRequest(BaseModel):
    lender: str
    principal: str = Field(..., description="Decimal amount as string")
    interest_rate: str = Field(..., description="Rate as a fraction, e.g. 0.015")
    term_months: int
    start_date: date
    kind: str = Field("PRESTAMO", description="PRESTAMO, LEASING, TARJETA or OTRO")
    rate_basis: str = Field("MENSUAL", description="MENSUAL or EFECTIVA_ANUAL")
    installment: Optional[str] = None
    currency: str = "COP"
    end_date: Optional[date] = None
    description: Optional[str] = None
    bank_account_id: Optional[str] = None
    notes: Optional[str] = None


class UpdateObligationRequest(BaseModel):
    lender: Optional[str] = None
    description: Optional[str] = None
    installment: Optional[str] = None
    outstanding_balance: Optional[str] = None
    end_date: Optional[date] = None
    bank_account_id: Optional[str] = None
    notes: Optional[str] = None


class ObligationPaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: Optional[date] = None
    bank_account_id: Optional[str] = None


# Payable schemas
class CreatePayableRequest(BaseModel):
    supplier_id: str
    total: MoneyModel
    invoice_date: date
    supplier_invoice_number: str = ""
    concept: str = ""
    due_date: Optional[date] = None
    work_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: MoneyModel
    payment_date: Optional[date] = None
    bank_account_id: Optional[str] = None


# Directory schemas
class CreateRecordRequest(BaseModel):
    """Directory record; 'code' (or 'sku' for inventory) is optional"""
    code: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class UpdateRecordRequest(BaseModel):
    attributes: Dict[str, Any]


class StockAdjustmentRequest(BaseModel):
    delta: str = Field(..., description="Signed decimal quantity as string")
    reason: str = ""


# Invoicing schemas
class QuoteItemModel(BaseModel):
    description: str
    quantity: str
    unit_price: str
    work_code_id: Optional[str] = None

    def to_quote_item(self) -> QuoteItem:
        return QuoteItem(
            description=self.description,
            quantity=decimal_from_string(self.quantity),
            unit_price=decimal_from_string(self.unit_price),
            work_code_id=self.work_code_id
        )


class CreateQuoteRequest(BaseModel):
    client_id: str
    items: List[QuoteItemModel]
    issue_date: Optional[date] = None
    valid_until: Optional[date] = None
    work_id: Optional[str] = None
    notes: Optional[str] = None
    number: Optional[str] = None


class QuoteStateRequest(BaseModel):
    state: str = Field(..., description="ENVIADA, APROBADA or RECHAZADA")


class CreateInvoiceRequest(BaseModel):
    client_id: Optional[str] = None
    subtotal: Optional[MoneyModel] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    vat: Optional[MoneyModel] = None
    advance_received: Optional[MoneyModel] = None
    withholding_income: Optional[MoneyModel] = None
    withholding_ica: Optional[MoneyModel] = None
    withholding_vat: Optional[MoneyModel] = None
    quote_id: Optional[str] = None
    work_id: Optional[str] = None
    notes: Optional[str] = None
    number: Optional[str] = None


class VoidInvoiceRequest(BaseModel):
    reason: str = ""


# Alert schemas
class VehicleDocumentsModel(BaseModel):
    vehicle_id: str
    plate: str
    soat_expiry: Optional[date] = None
    inspection_expiry: Optional[date] = None

    def to_vehicle(self) -> VehicleDocuments:
        return VehicleDocuments(
            vehicle_id=self.vehicle_id,
            plate=self.plate,
            soat_expiry=self.soat_expiry,
            inspection_expiry=self.inspection_expiry
        )


class EvaluateAlertsRequest(BaseModel):
    vehicles: List[VehicleDocumentsModel] = Field(default_factory=list)
    today: Optional[date] = None

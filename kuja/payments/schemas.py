from pydantic import Field, validator
from typing import List, Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum
import re

from kuja.schemas import CamelModel
from kuja.payments.gateways import normalize_msisdn

class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    BANK = "bank"

class PaymentState(str, Enum):
    """Status of a single payment attempt"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"

# Requests
class MpesaPaymentRequest(CamelModel):
    booking_id: int
    phone_number: str
    amount: Decimal = Field(..., gt=0)

    @validator('phone_number')
    def valid_msisdn(cls, v):
        return normalize_msisdn(v)

class CardInput(CamelModel):
    number: str
    expiry: str
    cvv: str
    name: str = Field(..., min_length=1)
    card_type: str = "credit"

    @validator('number')
    def valid_number(cls, v):
        digits = re.sub(r"[\s-]", "", v)
        if not re.fullmatch(r"\d{13,19}", digits):
            raise ValueError('Invalid card number')
        return digits

    @validator('expiry')
    def valid_expiry(cls, v):
        match = re.fullmatch(r"(0[1-9]|1[0-2])/(\d{2})", v.strip())
        if not match:
            raise ValueError('Expiry must be MM/YY')
        month, year = int(match.group(1)), 2000 + int(match.group(2))
        now = datetime.now()
        if (year, month) < (now.year, now.month):
            raise ValueError('Card has expired')
        return v.strip()

    @validator('cvv')
    def valid_cvv(cls, v):
        if not re.fullmatch(r"\d{3,4}", v):
            raise ValueError('Invalid CVV')
        return v

    @validator('card_type')
    def valid_card_type(cls, v):
        if v not in ("credit", "debit"):
            raise ValueError('Card type must be credit or debit')
        return v

class CardPaymentRequest(CamelModel):
    booking_id: int
    card_details: CardInput
    amount: Decimal = Field(..., gt=0)

class BankPaymentRequest(CamelModel):
    booking_id: int
    amount: Decimal = Field(..., gt=0)

class PaymentDecision(CamelModel):
    """Admin confirmation or rejection of a pending payment"""
    transaction_id: Optional[str] = None
    reason: Optional[str] = None

class RefundRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)

# Responses
class Payment(CamelModel):
    id: int
    booking_id: int
    user_id: int
    amount: Decimal
    payment_method: PaymentMethod
    transaction_type: TransactionType
    status: PaymentState
    reference: str
    transaction_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    mpesa_code: Optional[str] = None
    mpesa_phone: Optional[str] = None
    card_last_four: Optional[str] = None
    card_type: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class PaymentInitiationResponse(CamelModel):
    success: bool
    payment_id: int
    reference: str
    transaction_id: Optional[str] = None
    status: PaymentState
    message: str

class PaymentStatusResponse(CamelModel):
    reference: str
    transaction_id: Optional[str] = None
    payment_status: PaymentState
    booking_status: str
    booking_payment_status: str
    amount: Decimal
    updated_at: Optional[datetime] = None

class PaymentList(CamelModel):
    success: bool = True
    payments: List[Payment]
    summary: Optional[Dict[str, Any]] = None

from fastapi import APIRouter, Depends, Query, Body
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any

from kuja.database import get_db
from kuja.auth.dependencies import get_session, require_admin, SessionContext
from kuja.payments.schemas import (
    MpesaPaymentRequest, CardPaymentRequest, BankPaymentRequest, PaymentDecision, RefundRequest,
    Payment, PaymentInitiationResponse, PaymentStatusResponse, PaymentList, PaymentMethod, PaymentState
)
from kuja.payments.gateways import PaymentGateway, CardDetails, get_gateway
from kuja.payments.service import PaymentService
from kuja.errors import KujaError, to_http_exception

router = APIRouter()
admin_router = APIRouter()

def _initiation_response(payment, message: str) -> PaymentInitiationResponse:
    return PaymentInitiationResponse(
        success=payment.status != PaymentState.FAILED.value,
        payment_id=payment.id,
        reference=payment.reference,
        transaction_id=payment.transaction_id or payment.reference,
        status=payment.status,
        message=message
    )

@router.post("/mpesa", response_model=PaymentInitiationResponse)
def pay_with_mpesa(
    request: MpesaPaymentRequest,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Send an STK push to the customer's phone"""
    try:
        payment = PaymentService(db, gateway).initiate(
            request.booking_id, PaymentMethod.MPESA, request.amount, session, phone=request.phone_number
        )
    except KujaError as e:
        raise to_http_exception(e)

    return _initiation_response(payment, "Payment initiated. Please check your phone for M-Pesa prompt.")

@router.post("/card", response_model=PaymentInitiationResponse)
def pay_with_card(
    request: CardPaymentRequest,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Charge a card; the outcome is known when this returns"""
    details = request.card_details
    card = CardDetails(
        number=details.number,
        expiry=details.expiry,
        cvv=details.cvv,
        name=details.name,
        card_type=details.card_type
    )
    try:
        payment = PaymentService(db, gateway).initiate(
            request.booking_id, PaymentMethod.CARD, request.amount, session, card=card
        )
    except KujaError as e:
        raise to_http_exception(e)

    return _initiation_response(payment, "Payment successful!")

@router.post("/bank", response_model=PaymentInitiationResponse)
def pay_by_bank_transfer(
    request: BankPaymentRequest,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Register a bank transfer awaiting admin confirmation"""
    try:
        payment = PaymentService(db, gateway).initiate(
            request.booking_id, PaymentMethod.BANK, request.amount, session
        )
    except KujaError as e:
        raise to_http_exception(e)

    return _initiation_response(
        payment, f"Use reference {payment.reference} when making the transfer. We will confirm it once received."
    )

@router.get("/status/{transaction_id}", response_model=PaymentStatusResponse)
def get_payment_status(
    transaction_id: str,
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Poll a payment attempt by its reference"""
    try:
        payment = PaymentService(db, gateway).poll_status(transaction_id, session)
    except KujaError as e:
        raise to_http_exception(e)

    booking = payment.booking
    db.refresh(booking)
    return PaymentStatusResponse(
        reference=payment.reference,
        transaction_id=payment.transaction_id,
        payment_status=payment.status,
        booking_status=booking.status,
        booking_payment_status=booking.payment_status,
        amount=payment.amount,
        updated_at=payment.updated_at
    )

@router.post("/mpesa/callback")
def mpesa_callback(
    payload: Dict[str, Any] = Body(...),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Daraja result URL. Always acknowledged so Safaricom stops retrying."""
    PaymentService(db, gateway).handle_mpesa_callback(payload)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}

@router.post("/mpesa/reversal-result")
def mpesa_reversal_result(
    payload: Dict[str, Any] = Body(...),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Daraja reversal result and queue timeout URL"""
    PaymentService(db, gateway).handle_reversal_result(payload)
    return {"ResultCode": 0, "ResultDesc": "Accepted"}

@router.get("", response_model=PaymentList)
def list_payments(
    payment_status: Optional[PaymentState] = Query(None, alias="status"),
    method: Optional[PaymentMethod] = Query(None),
    session: SessionContext = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """All payments for admins, the caller's own otherwise"""
    user_id = None if session.is_admin else session.user_id
    service = PaymentService(db, gateway)
    payments = service.list_payments(user_id=user_id, status=payment_status, method=method)
    return PaymentList(
        payments=[Payment.model_validate(p) for p in payments],
        summary=service.summarize(user_id=user_id)
    )

# Admin reconciliation
@admin_router.post("/{payment_id}/confirm", response_model=Payment)
def confirm_payment(
    payment_id: int,
    decision: Optional[PaymentDecision] = None,
    admin: SessionContext = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Confirm a received bank transfer"""
    decision = decision or PaymentDecision()
    try:
        return PaymentService(db, gateway).confirm(payment_id, transaction_id=decision.transaction_id)
    except KujaError as e:
        raise to_http_exception(e)

@admin_router.post("/{payment_id}/fail", response_model=Payment)
def fail_payment(
    payment_id: int,
    decision: Optional[PaymentDecision] = None,
    admin: SessionContext = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    decision = decision or PaymentDecision()
    try:
        return PaymentService(db, gateway).fail(payment_id, decision.reason or "Rejected by admin")
    except KujaError as e:
        raise to_http_exception(e)

@admin_router.post("/{payment_id}/refund", response_model=Payment)
def refund_payment(
    payment_id: int,
    request: RefundRequest,
    admin: SessionContext = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    """Retry or issue a refund for a completed payment"""
    try:
        return PaymentService(db, gateway).refund(payment_id, request.reason)
    except KujaError as e:
        raise to_http_exception(e)

from typing import List, Dict, Optional, Any
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from kuja.config import settings
from kuja.models import Booking, Payment
from kuja.auth.dependencies import SessionContext
from kuja.bookings.schemas import BookingStatus, PaymentStatus
from kuja.payments.schemas import PaymentMethod, PaymentState, TransactionType
from kuja.payments.gateways import PaymentGateway, CardDetails, get_gateway
from kuja.utils import utcnow, as_utc, new_reference
from kuja.errors import (
    NotFound, Forbidden, AmountMismatch, PaymentNotAllowed, PaymentInProgress,
    PaymentFailed, InvalidTransition, GatewayError
)

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    PaymentMethod.MPESA.value: "MP",
    PaymentMethod.CARD.value: "CD",
    PaymentMethod.BANK.value: "BK",
}
REFUND_PREFIX = "REF-"

# Attempts failed locally that the gateway may still report as paid
LATE_CONFIRMABLE_REASONS = {"timeout", "superseded"}

PAYABLE_BOOKING_STATUSES = [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]
PAYABLE_PAYMENT_STATUSES = [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]

class PaymentService:
    """Reconciles payment attempts with the bookings they settle.

    Every status change on a payment is a conditional update keyed on the
    status that was read, so duplicate confirmations, duplicate callbacks and
    concurrent refunds resolve to a single state change.
    """

    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway or get_gateway()

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------
    def initiate(
        self,
        booking_id: int,
        method: PaymentMethod,
        amount: Decimal,
        actor: SessionContext,
        phone: Optional[str] = None,
        card: Optional[CardDetails] = None
    ) -> Payment:
        """Start a payment attempt for a booking.

        M-Pesa and bank attempts stay pending until confirmed. Card attempts
        are charged synchronously and raise ``PaymentFailed`` on decline.
        """
        method = PaymentMethod(method).value
        booking = self._get_booking(booking_id)

        if not actor.is_admin and not actor.owns(booking.user_id):
            raise Forbidden("Access denied")

        if Decimal(str(amount)) != Decimal(booking.total_amount):
            raise AmountMismatch(
                f"Payment amount {amount} does not match booking total {booking.total_amount}"
            )

        if booking.status not in PAYABLE_BOOKING_STATUSES:
            raise PaymentNotAllowed(f"Cannot pay for a {booking.status} booking")
        if booking.payment_status not in PAYABLE_PAYMENT_STATUSES:
            raise PaymentNotAllowed(f"Booking payment is already {booking.payment_status}")

        if method == PaymentMethod.MPESA.value and not phone:
            raise PaymentNotAllowed("A phone number is required for M-Pesa payments")
        if method == PaymentMethod.CARD.value and card is None:
            raise PaymentNotAllowed("Card details are required for card payments")

        self._supersede_stale_attempts(booking)

        payment = Payment(
            booking_id=booking.id,
            user_id=booking.user_id,
            amount=booking.total_amount,
            payment_method=method,
            transaction_type=TransactionType.PAYMENT.value,
            status=PaymentState.PENDING.value,
            reference=new_reference(REFERENCE_PREFIXES[method]),
            mpesa_phone=phone if method == PaymentMethod.MPESA.value else None,
            card_last_four=card.last_four if card else None,
            card_type=card.card_type if card else None,
            created_at=utcnow()
        )

        # A retry puts a failed booking back to pending; a concurrent settlement wins
        reopened = self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.payment_status.in_(PAYABLE_PAYMENT_STATUSES)
        ).update(
            {
                Booking.payment_status: PaymentStatus.PENDING.value,
                Booking.payment_method: method,
                Booking.updated_at: utcnow(),
            },
            synchronize_session=False
        )
        if reopened == 0:
            self.db.rollback()
            raise PaymentNotAllowed("Booking has already been paid")

        try:
            self.db.add(payment)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(payment)

        logger.info(
            "Payment %s (%s) initiated for booking %s, amount %s",
            payment.reference, method, booking.id, payment.amount
        )

        if method == PaymentMethod.MPESA.value:
            return self._start_stk_push(payment, phone)
        if method == PaymentMethod.CARD.value:
            return self._charge_card(payment, card)
        return payment

    def _start_stk_push(self, payment: Payment, phone: str) -> Payment:
        try:
            result = self.gateway.stk_push(phone, payment.amount, payment.reference, "Kuja booking")
        except GatewayError as e:
            self.fail(payment.id, e.message)
            raise

        if result.status == PaymentState.FAILED.value:
            self.fail(payment.id, result.message or "STK push rejected")
            raise PaymentFailed(result.message or "M-Pesa payment could not be started")

        payment.checkout_request_id = result.checkout_request_id
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def _charge_card(self, payment: Payment, card: CardDetails) -> Payment:
        try:
            result = self.gateway.charge_card(card, payment.amount, payment.reference)
        except GatewayError as e:
            self.fail(payment.id, e.message)
            raise

        if result.status == PaymentState.COMPLETED.value:
            return self.confirm(payment.id, transaction_id=result.transaction_id)

        message = result.message or "Payment failed. Please try again or use a different card."
        self.fail(payment.id, message)
        raise PaymentFailed(message)

    def _supersede_stale_attempts(self, booking: Booking):
        """Fail pending attempts past the gateway timeout; refuse if one is still live"""
        pending = self.db.query(Payment).filter(
            Payment.booking_id == booking.id,
            Payment.transaction_type == TransactionType.PAYMENT.value,
            Payment.status == PaymentState.PENDING.value
        ).all()

        now = utcnow()
        for attempt in pending:
            age = (now - as_utc(attempt.created_at)).total_seconds() if attempt.created_at else None
            if age is not None and age < settings.MPESA_TIMEOUT_SECONDS:
                raise PaymentInProgress(
                    "A payment for this booking is already in progress. Please wait for it to complete."
                )
            self.fail(attempt.id, "superseded")

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------
    def confirm(
        self,
        payment_id: int,
        transaction_id: Optional[str] = None,
        mpesa_code: Optional[str] = None
    ) -> Payment:
        """Mark a payment completed and settle its booking. Idempotent."""
        payment = self._get(payment_id)
        if payment.status == PaymentState.COMPLETED.value:
            logger.info("Payment %s already confirmed", payment.reference)
            return payment

        observed = payment.status
        late = observed == PaymentState.FAILED.value and payment.failure_reason in LATE_CONFIRMABLE_REASONS
        if observed != PaymentState.PENDING.value and not late:
            raise InvalidTransition(f"Cannot confirm a {observed} payment")

        now = utcnow()
        values = {
            Payment.status: PaymentState.COMPLETED.value,
            Payment.completed_at: now,
            Payment.updated_at: now,
        }
        if transaction_id:
            values[Payment.transaction_id] = transaction_id
        if mpesa_code:
            values[Payment.mpesa_code] = mpesa_code
        if late:
            values[Payment.failure_reason] = None

        updated = self.db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.status == observed
        ).update(values, synchronize_session=False)

        if updated == 0:
            self.db.rollback()
            payment = self._get(payment_id)
            if payment.status == PaymentState.COMPLETED.value:
                return payment
            raise InvalidTransition(f"Cannot confirm a {payment.status} payment")

        booking = self._get_booking(payment.booking_id)
        settled_elsewhere = (
            booking.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value)
            and booking.payment_id != payment.id
        )

        if not settled_elsewhere:
            self.db.query(Booking).filter(Booking.id == booking.id).update(
                {
                    Booking.payment_status: PaymentStatus.PAID.value,
                    Booking.payment_id: payment.id,
                    Booking.payment_method: payment.payment_method,
                    Booking.transaction_id: transaction_id or payment.transaction_id or payment.reference,
                    Booking.paid_at: now,
                    Booking.updated_at: now,
                },
                synchronize_session=False
            )
            self.db.query(Booking).filter(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING.value
            ).update(
                {Booking.status: BookingStatus.CONFIRMED.value},
                synchronize_session=False
            )

        self.db.commit()
        payment = self._get(payment_id)
        booking = self._get_booking(payment.booking_id)

        logger.info("Payment %s confirmed for booking %s", payment.reference, booking.id)

        if settled_elsewhere or booking.status == BookingStatus.CANCELLED.value:
            reason = (
                "Duplicate payment for an already settled booking" if settled_elsewhere
                else "Booking was cancelled before payment completed"
            )
            try:
                payment = self.refund(payment.id, reason)
            except GatewayError as e:
                logger.error("Automatic refund of payment %s failed: %s", payment.reference, e.message)

        return payment

    def fail(self, payment_id: int, reason: str) -> Payment:
        """Mark a pending payment failed. Idempotent."""
        now = utcnow()
        updated = self.db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.status == PaymentState.PENDING.value
        ).update(
            {
                Payment.status: PaymentState.FAILED.value,
                Payment.failure_reason: reason,
                Payment.updated_at: now,
            },
            synchronize_session=False
        )

        if updated == 0:
            self.db.rollback()
            payment = self._get(payment_id)
            if payment.status == PaymentState.FAILED.value:
                return payment
            raise InvalidTransition(f"Cannot fail a {payment.status} payment")

        payment = self._get(payment_id)
        # Only a booking still waiting on money reflects the failure
        self.db.query(Booking).filter(
            Booking.id == payment.booking_id,
            Booking.payment_status == PaymentStatus.PENDING.value
        ).update(
            {Booking.payment_status: PaymentStatus.FAILED.value, Booking.updated_at: now},
            synchronize_session=False
        )
        self.db.commit()

        logger.info("Payment %s failed: %s", payment.reference, reason)
        return self._get(payment_id)

    def refund(self, payment_id: int, reason: str) -> Payment:
        """Refund a completed payment through the gateway and record the refund"""
        payment = self._get(payment_id)

        if payment.transaction_type != TransactionType.PAYMENT.value:
            raise InvalidTransition("Refund records cannot be refunded")
        if payment.status == PaymentState.REFUNDED.value:
            return payment
        if payment.status != PaymentState.COMPLETED.value:
            raise InvalidTransition("Only completed payments can be refunded")

        booking = self._get_booking(payment.booking_id)
        if booking.status not in (BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value):
            raise InvalidTransition("Refunds require a confirmed or cancelled booking")

        result = self.gateway.refund(payment)

        now = utcnow()
        updated = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentState.COMPLETED.value
        ).update(
            {
                Payment.status: PaymentState.REFUNDED.value,
                Payment.refund_reason: reason,
                Payment.refunded_at: now,
                Payment.updated_at: now,
            },
            synchronize_session=False
        )
        if updated == 0:
            # A concurrent refund got there first
            self.db.rollback()
            return self._get(payment_id)

        self.db.add(Payment(
            booking_id=payment.booking_id,
            user_id=payment.user_id,
            amount=payment.amount,
            payment_method=payment.payment_method,
            transaction_type=TransactionType.REFUND.value,
            status=PaymentState.REFUNDED.value,
            reference=new_reference(REFUND_PREFIX),
            transaction_id=result.transaction_id,
            refund_reason=reason,
            refunded_at=now,
            completed_at=now,
            created_at=now
        ))

        self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.payment_id == payment.id
        ).update(
            {Booking.payment_status: PaymentStatus.REFUNDED.value, Booking.updated_at: now},
            synchronize_session=False
        )

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Payment %s refunded (%s): %s", payment.reference, result.transaction_id, reason)
        return self._get(payment_id)

    def refund_booking(self, booking: Booking, reason: str) -> bool:
        """Refund the settling payment of a cancelled booking. Returns whether money went back."""
        payment = self.db.query(Payment).filter(
            Payment.booking_id == booking.id,
            Payment.transaction_type == TransactionType.PAYMENT.value,
            Payment.status == PaymentState.COMPLETED.value
        ).order_by(Payment.id.desc()).first()

        if not payment:
            logger.warning("Booking %s is marked paid but has no completed payment", booking.id)
            return False

        try:
            refunded = self.refund(payment.id, reason)
        except GatewayError as e:
            logger.error("Refund for booking %s failed: %s", booking.id, e.message)
            return False
        return refunded.status == PaymentState.REFUNDED.value

    # ------------------------------------------------------------------
    # Gateway feedback
    # ------------------------------------------------------------------
    def handle_mpesa_callback(self, payload: Dict[str, Any]) -> Optional[Payment]:
        """Apply a Daraja STK callback. Unknown or repeated callbacks are ignored."""
        callback = (payload or {}).get("Body", {}).get("stkCallback") or {}
        checkout_request_id = callback.get("CheckoutRequestID")
        if not checkout_request_id:
            logger.warning("M-Pesa callback without CheckoutRequestID")
            return None

        payment = self.db.query(Payment).filter(
            Payment.checkout_request_id == checkout_request_id
        ).first()
        if not payment:
            logger.warning("M-Pesa callback for unknown checkout %s", checkout_request_id)
            return None

        result_code = str(callback.get("ResultCode"))
        try:
            if result_code == "0":
                metadata = {
                    item.get("Name"): item.get("Value")
                    for item in (callback.get("CallbackMetadata") or {}).get("Item", [])
                }
                receipt = metadata.get("MpesaReceiptNumber")
                return self.confirm(payment.id, transaction_id=receipt, mpesa_code=receipt)
            return self.fail(payment.id, callback.get("ResultDesc") or f"M-Pesa result code {result_code}")
        except InvalidTransition as e:
            logger.warning("Ignoring M-Pesa callback for %s: %s", payment.reference, e.message)
            return self._get(payment.id)

    def handle_reversal_result(self, payload: Dict[str, Any]) -> Optional[Payment]:
        """Apply a Daraja reversal result to the refund record it answers.

        A rejected reversal puts the original payment back to completed and
        the booking back to paid, so an admin can retry the refund.
        """
        result = (payload or {}).get("Result") or {}
        conversation_id = result.get("ConversationID")
        if not conversation_id:
            logger.warning("M-Pesa reversal result without ConversationID")
            return None

        refund = self.db.query(Payment).populate_existing().filter(
            Payment.transaction_type == TransactionType.REFUND.value,
            Payment.transaction_id == conversation_id
        ).first()
        if not refund:
            logger.warning("M-Pesa reversal result for unknown conversation %s", conversation_id)
            return None

        if str(result.get("ResultCode")) == "0":
            logger.info("Reversal %s accepted for booking %s", conversation_id, refund.booking_id)
            return refund

        reason = result.get("ResultDesc") or f"M-Pesa result code {result.get('ResultCode')}"
        now = utcnow()
        updated = self.db.query(Payment).filter(
            Payment.id == refund.id,
            Payment.status == PaymentState.REFUNDED.value
        ).update(
            {Payment.status: PaymentState.FAILED.value, Payment.failure_reason: reason, Payment.updated_at: now},
            synchronize_session=False
        )
        if updated == 0:
            return self._get(refund.id)

        original = self.db.query(Payment).filter(
            Payment.booking_id == refund.booking_id,
            Payment.transaction_type == TransactionType.PAYMENT.value,
            Payment.status == PaymentState.REFUNDED.value,
            Payment.amount == refund.amount
        ).order_by(Payment.refunded_at.desc(), Payment.id.desc()).first()

        if original:
            self.db.query(Payment).filter(
                Payment.id == original.id,
                Payment.status == PaymentState.REFUNDED.value
            ).update(
                {
                    Payment.status: PaymentState.COMPLETED.value,
                    Payment.refund_reason: None,
                    Payment.refunded_at: None,
                    Payment.updated_at: now,
                },
                synchronize_session=False
            )
            self.db.query(Booking).filter(
                Booking.id == refund.booking_id,
                Booking.payment_id == original.id,
                Booking.payment_status == PaymentStatus.REFUNDED.value
            ).update(
                {Booking.payment_status: PaymentStatus.PAID.value, Booking.updated_at: now},
                synchronize_session=False
            )

        self.db.commit()
        logger.error("Reversal %s for booking %s was rejected: %s", conversation_id, refund.booking_id, reason)
        return self._get(refund.id)

    def poll_status(self, reference: str, actor: SessionContext) -> Payment:
        """Current state of an attempt, querying the gateway while it is pending"""
        payment = self.get_by_reference(reference)
        if not actor.is_admin and not actor.owns(payment.user_id):
            raise Forbidden("Access denied")

        if payment.status != PaymentState.PENDING.value:
            return payment
        if payment.payment_method != PaymentMethod.MPESA.value or not payment.checkout_request_id:
            return payment

        try:
            result = self.gateway.query_stk(payment.checkout_request_id)
        except GatewayError as e:
            logger.warning("STK query for %s failed: %s", payment.reference, e.message)
            result = None

        if result is not None and result.status == PaymentState.COMPLETED.value:
            return self.confirm(payment.id, transaction_id=result.transaction_id, mpesa_code=result.mpesa_code)
        if result is not None and result.status == PaymentState.FAILED.value:
            return self.fail(payment.id, result.message or "Payment was not completed")

        age = (utcnow() - as_utc(payment.created_at)).total_seconds()
        if age > settings.MPESA_TIMEOUT_SECONDS:
            return self.fail(payment.id, "timeout")
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_by_reference(self, reference: str) -> Payment:
        payment = self.db.query(Payment).filter(Payment.reference == reference).first()
        if not payment:
            # Callers may also hold the gateway transaction id
            payment = self.db.query(Payment).filter(
                Payment.transaction_id == reference,
                Payment.transaction_type == TransactionType.PAYMENT.value
            ).order_by(Payment.id.desc()).first()
        if not payment:
            raise NotFound("Payment not found")
        return payment

    def list_payments(
        self,
        user_id: Optional[int] = None,
        status: Optional[PaymentState] = None,
        method: Optional[PaymentMethod] = None
    ) -> List[Payment]:
        query = self.db.query(Payment)
        if user_id:
            query = query.filter(Payment.user_id == user_id)
        if status:
            query = query.filter(Payment.status == PaymentState(status).value)
        if method:
            query = query.filter(Payment.payment_method == PaymentMethod(method).value)
        return query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()

    def summarize(self, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Totals per status for the payments table header"""
        query = self.db.query(
            Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0)
        ).filter(Payment.transaction_type == TransactionType.PAYMENT.value)
        if user_id:
            query = query.filter(Payment.user_id == user_id)

        summary = {state.value: {"count": 0, "amount": Decimal("0")} for state in PaymentState}
        for state, count, amount in query.group_by(Payment.status).all():
            summary[state] = {"count": count, "amount": Decimal(str(amount))}

        summary["totalCollected"] = summary[PaymentState.COMPLETED.value]["amount"]
        summary["totalRefunded"] = summary[PaymentState.REFUNDED.value]["amount"]
        return summary

    def _get(self, payment_id: int) -> Payment:
        payment = self.db.query(Payment).populate_existing().filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFound("Payment not found")
        return payment

    def _get_booking(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).populate_existing().filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound("Booking not found")
        return booking

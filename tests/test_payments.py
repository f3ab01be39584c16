from datetime import timedelta
from decimal import Decimal

import pytest

from kuja.config import settings
from kuja.models import Payment
from kuja.bookings.booking_service import BookingService
from kuja.payments.gateways import CardDetails, DECLINED_TEST_CARD
from kuja.payments.schemas import PaymentMethod
from kuja.payments.service import PaymentService
from kuja.utils import utcnow
from kuja.errors import (
    AmountMismatch, PaymentNotAllowed, PaymentInProgress, PaymentFailed,
    InvalidTransition, GatewayError, Forbidden, NotFound
)

PHONE = "254712345678"
GOOD_CARD = CardDetails(number="4242424242424242", expiry="12/30", cvv="123", name="Amani Otieno")
BAD_CARD = CardDetails(number=DECLINED_TEST_CARD, expiry="12/30", cvv="123", name="Amani Otieno")


@pytest.fixture
def payments(db, gateway):
    return PaymentService(db, gateway)


@pytest.fixture
def booking(db, gateway, user, customer, travel_date, package):
    return BookingService(db, gateway).create_booking(
        package_id=package.id,
        user_id=user.id,
        customer_info=customer,
        travel_date=travel_date,
        number_of_travelers=2
    )


def start_mpesa(payments, booking, actor):
    return payments.initiate(booking.id, PaymentMethod.MPESA, booking.total_amount, actor, phone=PHONE)


def backdate(db, payment, seconds):
    payment.created_at = utcnow() - timedelta(seconds=seconds)
    db.commit()


def test_mpesa_payment_confirms_booking(db, payments, booking, user_ctx):
    assert booking.total_amount == Decimal("10000")

    payment = start_mpesa(payments, booking, user_ctx)
    assert payment.status == "pending"
    assert payment.reference.startswith("MP")
    assert payment.checkout_request_id

    payments.confirm(payment.id, transaction_id="SGH12XYZ90", mpesa_code="SGH12XYZ90")

    db.refresh(booking)
    assert booking.status == "confirmed"
    assert booking.payment_status == "paid"
    assert booking.payment_method == "mpesa"
    assert booking.transaction_id == "SGH12XYZ90"
    assert booking.payment_id == payment.id


def test_confirm_twice_applies_once(db, payments, booking, user_ctx):
    payment = start_mpesa(payments, booking, user_ctx)

    first = payments.confirm(payment.id, transaction_id="SGH12XYZ90")
    db.refresh(booking)
    paid_at = booking.paid_at

    second = payments.confirm(payment.id, transaction_id="OTHER")

    db.refresh(booking)
    assert first.id == second.id
    assert second.transaction_id == "SGH12XYZ90"
    assert booking.paid_at == paid_at
    assert booking.transaction_id == "SGH12XYZ90"
    assert db.query(Payment).filter(Payment.booking_id == booking.id).count() == 1


def test_amount_must_match_total(payments, booking, user_ctx):
    with pytest.raises(AmountMismatch):
        payments.initiate(booking.id, PaymentMethod.MPESA, Decimal("9999"), user_ctx, phone=PHONE)


def test_cannot_pay_for_someone_elses_booking(payments, booking, other_ctx):
    with pytest.raises(Forbidden):
        start_mpesa(payments, booking, other_ctx)


def test_cannot_pay_for_cancelled_booking(db, gateway, payments, booking, user, user_ctx):
    BookingService(db, gateway).cancel(booking.id, user.id)
    with pytest.raises(PaymentNotAllowed):
        start_mpesa(payments, booking, user_ctx)


def test_cannot_pay_twice(payments, booking, user_ctx):
    payment = start_mpesa(payments, booking, user_ctx)
    payments.confirm(payment.id)
    with pytest.raises(PaymentNotAllowed):
        start_mpesa(payments, booking, user_ctx)


def test_live_attempt_blocks_a_new_one(payments, booking, user_ctx):
    start_mpesa(payments, booking, user_ctx)
    with pytest.raises(PaymentInProgress):
        start_mpesa(payments, booking, user_ctx)


def test_stale_attempt_is_superseded(db, payments, booking, user_ctx):
    stale = start_mpesa(payments, booking, user_ctx)
    backdate(db, stale, settings.MPESA_TIMEOUT_SECONDS + 5)

    fresh = start_mpesa(payments, booking, user_ctx)

    db.refresh(stale)
    assert stale.status == "failed"
    assert stale.failure_reason == "superseded"
    assert fresh.status == "pending"


def test_unreachable_gateway_fails_the_attempt(db, gateway, payments, booking, user_ctx):
    gateway.fail_stk_push = True

    with pytest.raises(GatewayError):
        start_mpesa(payments, booking, user_ctx)

    attempt = db.query(Payment).filter(Payment.booking_id == booking.id).one()
    db.refresh(booking)
    assert attempt.status == "failed"
    assert booking.payment_status == "failed"
    assert booking.status == "pending"


def test_failed_payment_can_be_retried(db, payments, booking, user_ctx):
    payment = start_mpesa(payments, booking, user_ctx)
    payments.fail(payment.id, "Request cancelled by user")

    db.refresh(booking)
    assert booking.status == "pending"
    assert booking.payment_status == "failed"

    retry = start_mpesa(payments, booking, user_ctx)
    payments.confirm(retry.id, transaction_id="SGH12XYZ91")

    db.refresh(booking)
    assert booking.status == "confirmed"
    assert booking.payment_status == "paid"


def test_fail_is_idempotent_and_cannot_undo_a_confirmation(payments, booking, user_ctx):
    payment = start_mpesa(payments, booking, user_ctx)
    payments.fail(payment.id, "Insufficient funds")
    assert payments.fail(payment.id, "Insufficient funds").status == "failed"

    retry = start_mpesa(payments, booking, user_ctx)
    payments.confirm(retry.id)
    with pytest.raises(InvalidTransition):
        payments.fail(retry.id, "too late")


def test_card_payment_is_settled_immediately(db, payments, booking, user_ctx):
    payment = payments.initiate(booking.id, PaymentMethod.CARD, booking.total_amount, user_ctx, card=GOOD_CARD)

    db.refresh(booking)
    assert payment.status == "completed"
    assert payment.card_last_four == "4242"
    assert payment.reference.startswith("CD")
    assert booking.status == "confirmed"
    assert booking.payment_status == "paid"


def test_declined_card(db, payments, booking, user_ctx):
    with pytest.raises(PaymentFailed):
        payments.initiate(booking.id, PaymentMethod.CARD, booking.total_amount, user_ctx, card=BAD_CARD)

    db.refresh(booking)
    assert booking.status == "pending"
    assert booking.payment_status == "failed"

    # A different card goes through
    payments.initiate(booking.id, PaymentMethod.CARD, booking.total_amount, user_ctx, card=GOOD_CARD)
    db.refresh(booking)
    assert booking.payment_status == "paid"


def test_bank_transfer_waits_for_admin(db, payments, booking, user_ctx):
    payment = payments.initiate(booking.id, PaymentMethod.BANK, booking.total_amount, user_ctx)
    assert payment.status == "pending"
    assert payment.reference.startswith("BK")

    payments.confirm(payment.id, transaction_id="FT24100ABC")
    db.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.transaction_id == "FT24100ABC"


def test_payment_confirmed_after_cancellation_is_refunded(db, gateway, payments, booking, user, user_ctx):
    payment = start_mpesa(payments, booking, user_ctx)
    BookingService(db, gateway).cancel(booking.id, user.id, "Changed my mind")

    payment = payments.confirm(payment.id, transaction_id="SGH12XYZ90")

    db.refresh(booking)
    assert payment.status == "refunded"
    assert booking.status == "cancelled"
    assert booking.payment_status == "refunded"
    assert gateway.refund_calls == [payment.id]


class TestRefunds:
    def test_only_completed_payments_refund(self, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        with pytest.raises(InvalidTransition):
            payments.refund(payment.id, "not yet paid")

    def test_refund_requires_confirmed_or_cancelled_booking(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payments.confirm(payment.id)
        db.refresh(booking)
        booking.status = "completed"
        db.commit()

        with pytest.raises(InvalidTransition):
            payments.refund(payment.id, "trip done")

    def test_refund_records_a_ledger_row_once(self, db, gateway, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payments.confirm(payment.id)

        payments.refund(payment.id, "Goodwill refund")
        again = payments.refund(payment.id, "Goodwill refund")

        db.refresh(booking)
        assert again.status == "refunded"
        assert booking.payment_status == "refunded"
        assert len(gateway.refund_calls) == 1
        refunds = db.query(Payment).filter(Payment.transaction_type == "refund").all()
        assert len(refunds) == 1
        assert refunds[0].reference.startswith("REF-")
        assert refunds[0].amount == Decimal("10000")

    def test_refund_records_cannot_be_refunded(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payments.confirm(payment.id)
        payments.refund(payment.id, "Goodwill refund")

        refund_row = db.query(Payment).filter(Payment.transaction_type == "refund").one()
        with pytest.raises(InvalidTransition):
            payments.refund(refund_row.id, "twice")


class TestMpesaCallback:
    def callback(self, checkout_request_id, result_code=0, receipt="SGH12XYZ90"):
        body = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_request_id,
            "ResultCode": result_code,
            "ResultDesc": "The service request is processed successfully." if result_code == 0
            else "Request cancelled by user",
        }
        if result_code == 0:
            body["CallbackMetadata"] = {"Item": [
                {"Name": "Amount", "Value": 10000},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]}
        return {"Body": {"stkCallback": body}}

    def test_success_callback_confirms(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)

        result = payments.handle_mpesa_callback(self.callback(payment.checkout_request_id))

        db.refresh(booking)
        assert result.status == "completed"
        assert result.mpesa_code == "SGH12XYZ90"
        assert booking.payment_status == "paid"
        assert booking.status == "confirmed"

    def test_repeated_callback_is_harmless(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payload = self.callback(payment.checkout_request_id)

        payments.handle_mpesa_callback(payload)
        db.refresh(booking)
        paid_at = booking.paid_at
        payments.handle_mpesa_callback(payload)

        db.refresh(booking)
        assert booking.paid_at == paid_at

    def test_cancelled_on_phone(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)

        result = payments.handle_mpesa_callback(self.callback(payment.checkout_request_id, result_code=1032))

        db.refresh(booking)
        assert result.status == "failed"
        assert result.failure_reason == "Request cancelled by user"
        assert booking.payment_status == "failed"

    def test_unknown_checkout_is_ignored(self, payments):
        assert payments.handle_mpesa_callback(self.callback("ws_CO_UNKNOWN")) is None
        assert payments.handle_mpesa_callback({}) is None

    def test_late_success_after_timeout_still_settles(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payments.fail(payment.id, "timeout")

        result = payments.handle_mpesa_callback(self.callback(payment.checkout_request_id))

        db.refresh(booking)
        assert result.status == "completed"
        assert booking.payment_status == "paid"

    def test_late_success_for_a_settled_booking_is_refunded(self, db, gateway, payments, booking, user_ctx):
        stale = start_mpesa(payments, booking, user_ctx)
        backdate(db, stale, settings.MPESA_TIMEOUT_SECONDS + 5)
        retry = start_mpesa(payments, booking, user_ctx)
        payments.confirm(retry.id, transaction_id="SGH12XYZ91")

        late = payments.handle_mpesa_callback(self.callback(stale.checkout_request_id))

        db.refresh(booking)
        assert late.status == "refunded"
        assert booking.payment_status == "paid"
        assert booking.payment_id == retry.id
        assert gateway.refund_calls == [stale.id]


class TestReversalResult:
    def reversal(self, conversation_id, result_code=0):
        return {"Result": {
            "ResultType": 0,
            "ResultCode": result_code,
            "ResultDesc": "The service request is processed successfully." if result_code == 0
            else "The transaction could not be reversed",
            "OriginatorConversationID": "10571-7910404-1",
            "ConversationID": conversation_id,
            "TransactionID": "SGH12XYZ90",
        }}

    def refunded(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        payments.confirm(payment.id, transaction_id="SGH12XYZ90", mpesa_code="SGH12XYZ90")
        payments.refund(payment.id, "Goodwill refund")
        refund_row = db.query(Payment).filter(Payment.transaction_type == "refund").one()
        return payment, refund_row

    def test_accepted_reversal_keeps_the_refund(self, db, payments, booking, user_ctx):
        payment, refund_row = self.refunded(db, payments, booking, user_ctx)

        result = payments.handle_reversal_result(self.reversal(refund_row.transaction_id))

        db.refresh(booking)
        assert result.id == refund_row.id
        assert result.status == "refunded"
        assert booking.payment_status == "refunded"

    def test_rejected_reversal_reopens_the_payment_for_retry(self, db, gateway, payments, booking, user_ctx):
        payment, refund_row = self.refunded(db, payments, booking, user_ctx)

        result = payments.handle_reversal_result(self.reversal(refund_row.transaction_id, result_code=2001))

        db.refresh(booking)
        assert result.status == "failed"
        assert result.failure_reason == "The transaction could not be reversed"
        assert payments._get(payment.id).status == "completed"
        assert booking.payment_status == "paid"

        retried = payments.refund(payment.id, "Retry after rejected reversal")
        db.refresh(booking)
        assert retried.status == "refunded"
        assert booking.payment_status == "refunded"
        assert gateway.refund_calls == [payment.id, payment.id]

    def test_repeated_rejection_applies_once(self, db, payments, booking, user_ctx):
        payment, refund_row = self.refunded(db, payments, booking, user_ctx)
        payload = self.reversal(refund_row.transaction_id, result_code=2001)

        payments.handle_reversal_result(payload)
        payments.handle_reversal_result(payload)

        assert payments._get(payment.id).status == "completed"
        assert db.query(Payment).filter(Payment.status == "failed").count() == 1

    def test_unknown_conversation_is_ignored(self, payments):
        assert payments.handle_reversal_result(self.reversal("AG_UNKNOWN")) is None
        assert payments.handle_reversal_result({}) is None


class TestPolling:
    def test_poll_applies_gateway_success(self, db, payments, booking, user_ctx):
        payment = start_mpesa(payments, booking, user_ctx)

        polled = payments.poll_status(payment.reference, user_ctx)

        db.refresh(booking)
        assert polled.status == "completed"
        assert polled.mpesa_code
        assert booking.payment_status == "paid"

    def test_poll_applies_gateway_failure(self, db, gateway, payments, booking, user_ctx):
        gateway.stk_outcome = "failed"
        payment = start_mpesa(payments, booking, user_ctx)

        polled = payments.poll_status(payment.reference, user_ctx)

        assert polled.status == "failed"
        assert polled.failure_reason == "Request cancelled by user"

    def test_poll_gives_up_after_timeout(self, db, gateway, payments, booking, user_ctx):
        gateway.stk_outcome = "pending"
        payment = start_mpesa(payments, booking, user_ctx)

        assert payments.poll_status(payment.reference, user_ctx).status == "pending"

        backdate(db, payment, settings.MPESA_TIMEOUT_SECONDS + 1)
        polled = payments.poll_status(payment.reference, user_ctx)

        db.refresh(booking)
        assert polled.status == "failed"
        assert polled.failure_reason == "timeout"
        assert booking.payment_status == "failed"

    def test_poll_is_owner_only(self, payments, booking, user_ctx, other_ctx, admin_ctx):
        payment = start_mpesa(payments, booking, user_ctx)
        with pytest.raises(Forbidden):
            payments.poll_status(payment.reference, other_ctx)
        assert payments.poll_status(payment.reference, admin_ctx).id == payment.id

    def test_unknown_reference(self, payments, user_ctx):
        with pytest.raises(NotFound):
            payments.poll_status("MP000", user_ctx)


def test_summary_counts_by_status(payments, booking, user, user_ctx):
    failed = start_mpesa(payments, booking, user_ctx)
    payments.fail(failed.id, "Insufficient funds")
    paid = start_mpesa(payments, booking, user_ctx)
    payments.confirm(paid.id)

    summary = payments.summarize(user_id=user.id)

    assert summary["failed"]["count"] == 1
    assert summary["completed"]["count"] == 1
    assert summary["totalCollected"] == Decimal("10000")
    assert len(payments.list_payments(user_id=user.id)) == 2

"""
Payment gateway clients.

``DarajaGateway`` talks to Safaricom's Daraja API (STK push, STK query,
reversal). ``SimulatedGateway`` is deterministic and used in development and
tests: STK pushes complete on the first status query and the card number
``4000000000000002`` is always declined.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import base64
import logging
import re
import secrets

import requests
from requests.auth import HTTPBasicAuth

from kuja.config import settings
from kuja.errors import GatewayError

logger = logging.getLogger(__name__)

DECLINED_TEST_CARD = "4000000000000002"

# Daraja STK query answer while the customer has not responded yet
STK_STILL_PROCESSING = "500.001.1001"

@dataclass
class GatewayResult:
    status: str  # pending | completed | failed
    transaction_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    mpesa_code: Optional[str] = None
    message: Optional[str] = None

@dataclass
class CardDetails:
    number: str
    expiry: str
    cvv: str
    name: str
    card_type: str = "credit"

    @property
    def last_four(self) -> str:
        return self.number[-4:]

def normalize_msisdn(phone: str) -> str:
    """Turn 07XXXXXXXX / +2547XXXXXXXX / 7XXXXXXXX into 2547XXXXXXXX"""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9:
        digits = "254" + digits
    if not re.fullmatch(r"254[17]\d{8}", digits):
        raise ValueError("Enter a valid Safaricom number, e.g. 0712345678")
    return digits

class PaymentGateway:
    """Interface every gateway implements"""

    def stk_push(self, phone: str, amount: Decimal, reference: str, description: str) -> GatewayResult:
        raise NotImplementedError

    def query_stk(self, checkout_request_id: str) -> GatewayResult:
        raise NotImplementedError

    def charge_card(self, card: CardDetails, amount: Decimal, reference: str) -> GatewayResult:
        raise NotImplementedError

    def refund(self, payment) -> GatewayResult:
        """Refund a completed payment. Must be idempotent per payment."""
        raise NotImplementedError

class SimulatedGateway(PaymentGateway):
    def __init__(self):
        self._refunded = {}

    def stk_push(self, phone, amount, reference, description):
        checkout_request_id = f"ws_CO_{secrets.token_hex(8).upper()}"
        logger.info("Simulated STK push %s to %s for %s", checkout_request_id, phone, amount)
        return GatewayResult(
            status="pending",
            checkout_request_id=checkout_request_id,
            message="Payment initiated. Please check your phone for M-Pesa prompt."
        )

    def query_stk(self, checkout_request_id):
        code = "S" + secrets.token_hex(5).upper()[:9]
        return GatewayResult(
            status="completed",
            checkout_request_id=checkout_request_id,
            transaction_id=code,
            mpesa_code=code,
            message="The service request is processed successfully."
        )

    def charge_card(self, card, amount, reference):
        if card.number == DECLINED_TEST_CARD:
            return GatewayResult(
                status="failed",
                message="Payment failed. Please try again or use a different card."
            )
        return GatewayResult(
            status="completed",
            transaction_id=f"CD{secrets.token_hex(6).upper()}",
            message="Payment successful!"
        )

    def refund(self, payment):
        # Same payment, same refund id
        refund_id = self._refunded.setdefault(payment.id, f"RF{secrets.token_hex(6).upper()}")
        return GatewayResult(status="completed", transaction_id=refund_id, message="Refund processed")

class DarajaGateway(PaymentGateway):
    """Safaricom Daraja client (Lipa na M-Pesa Online)"""

    def __init__(self, base_url: str = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.MPESA_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = settings.GATEWAY_HTTP_TIMEOUT

    def _access_token(self) -> str:
        if not settings.MPESA_CONSUMER_KEY or not settings.MPESA_CONSUMER_SECRET:
            raise GatewayError("M-Pesa credentials are not configured")

        data = self._request(
            "get",
            "/oauth/v1/generate?grant_type=client_credentials",
            auth=HTTPBasicAuth(settings.MPESA_CONSUMER_KEY, settings.MPESA_CONSUMER_SECRET)
        )
        token = data.get("access_token")
        if not token:
            raise GatewayError("M-Pesa did not return an access token")
        return token

    def _password(self, timestamp: str) -> str:
        raw = f"{settings.MPESA_SHORTCODE}{settings.MPESA_PASSKEY}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            logger.warning("Daraja timeout on %s", path)
            raise GatewayError("Payment gateway timed out")
        except requests.exceptions.RequestException as e:
            logger.warning("Daraja request error on %s: %s", path, e)
            raise GatewayError("Payment gateway unavailable")

        try:
            data = response.json()
        except ValueError:
            data = {}

        # STK query answers "still processing" with a 500 status
        if response.status_code >= 400 and data.get("errorCode") != STK_STILL_PROCESSING:
            logger.warning("Daraja %s returned %s: %s", path, response.status_code, data)
            raise GatewayError(data.get("errorMessage") or "Payment gateway rejected the request")
        return data

    def stk_push(self, phone, amount, reference, description):
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        msisdn = normalize_msisdn(phone)
        payload = {
            "BusinessShortCode": settings.MPESA_SHORTCODE,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(Decimal(amount).to_integral_value()),
            "PartyA": msisdn,
            "PartyB": settings.MPESA_SHORTCODE,
            "PhoneNumber": msisdn,
            "CallBackURL": settings.MPESA_CALLBACK_URL,
            "AccountReference": reference[:12],
            "TransactionDesc": description[:13],
        }
        data = self._request(
            "post", "/mpesa/stkpush/v1/processrequest",
            json=payload, headers={"Authorization": f"Bearer {self._access_token()}"}
        )

        if str(data.get("ResponseCode")) != "0":
            return GatewayResult(status="failed", message=data.get("ResponseDescription"))

        return GatewayResult(
            status="pending",
            checkout_request_id=data.get("CheckoutRequestID"),
            message=data.get("CustomerMessage")
        )

    def query_stk(self, checkout_request_id):
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        data = self._request(
            "post", "/mpesa/stkpushquery/v1/query",
            json={
                "BusinessShortCode": settings.MPESA_SHORTCODE,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            },
            headers={"Authorization": f"Bearer {self._access_token()}"}
        )

        if data.get("errorCode") == STK_STILL_PROCESSING:
            return GatewayResult(status="pending", checkout_request_id=checkout_request_id)

        result_code = str(data.get("ResultCode"))
        if result_code == "0":
            # The query API does not return the receipt; the callback carries it
            return GatewayResult(
                status="completed",
                checkout_request_id=checkout_request_id,
                transaction_id=checkout_request_id,
                message=data.get("ResultDesc")
            )
        return GatewayResult(
            status="failed",
            checkout_request_id=checkout_request_id,
            message=data.get("ResultDesc")
        )

    def charge_card(self, card, amount, reference):
        raise GatewayError("Card payments are not enabled for this gateway")

    def refund(self, payment):
        if payment.payment_method != "mpesa":
            raise GatewayError("Only M-Pesa payments can be reversed through Daraja")
        if not settings.MPESA_INITIATOR_NAME or not settings.MPESA_SECURITY_CREDENTIAL:
            raise GatewayError("M-Pesa reversal credentials are not configured")

        data = self._request(
            "post", "/mpesa/reversal/v1/request",
            json={
                "Initiator": settings.MPESA_INITIATOR_NAME,
                "SecurityCredential": settings.MPESA_SECURITY_CREDENTIAL,
                "CommandID": "TransactionReversal",
                "TransactionID": payment.mpesa_code or payment.transaction_id,
                "Amount": int(Decimal(payment.amount).to_integral_value()),
                "ReceiverParty": settings.MPESA_SHORTCODE,
                "RecieverIdentifierType": "11",
                "ResultURL": settings.MPESA_REVERSAL_RESULT_URL,
                "QueueTimeOutURL": settings.MPESA_REVERSAL_RESULT_URL,
                "Remarks": f"Refund {payment.reference}"[:100],
                "Occasion": "Booking cancellation",
            },
            headers={"Authorization": f"Bearer {self._access_token()}"}
        )

        if str(data.get("ResponseCode")) != "0":
            raise GatewayError(data.get("ResponseDescription") or "Refund was rejected")
        return GatewayResult(
            status="completed",
            transaction_id=data.get("ConversationID"),
            message=data.get("ResponseDescription")
        )

_simulated = SimulatedGateway()

def get_gateway() -> PaymentGateway:
    """FastAPI dependency selecting the configured gateway"""
    if settings.PAYMENT_GATEWAY == "daraja":
        return DarajaGateway()
    return _simulated

"""
Payment provider boundary.

The settlement engine only talks to ``PaymentGateway``; a concrete provider
(mock for development, Razorpay in production) plugs in behind it. Every call
made by the engine goes through ``call_gateway`` so it is bounded by
``GATEWAY_TIMEOUT_SECONDS``.
"""
import json
import secrets
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from decimal import Decimal

from hall_booking.core.config import (
    PAYMENT_GATEWAY,
    PAYMENT_WEBHOOK_SECRET,
    GATEWAY_TIMEOUT_SECONDS,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
)
from hall_booking.core.exceptions import ReservationError, UpstreamFailure
from hall_booking.core.logging_config import get_logger

logger = get_logger("payment")

EVENT_SUCCEEDED = "payment.succeeded"
EVENT_FAILED = "payment.failed"


class WebhookRejected(ReservationError):
    kind = "invalid_webhook"

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message, status_code)


@dataclass
class GatewaySession:
    reference: str
    client_secret: str
    raw: dict = field(default_factory=dict)


@dataclass
class GatewayEvent:
    event_type: str
    event_id: str | None = None
    payment_id: int | None = None
    gateway_ref: str | None = None
    transaction_id: str | None = None
    failure_reason: str | None = None
    payload: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    name = "abstract"

    @abstractmethod
    def create_session(self, payment) -> GatewaySession:
        """Open a provider-side charge session for the payment."""

    @abstractmethod
    def verify_payload(self, payment, payload: dict) -> str | None:
        """Return the provider transaction id if the payload proves the charge, else None."""

    @abstractmethod
    def parse_webhook_event(self, body: bytes, headers: dict) -> GatewayEvent:
        """Authenticate and normalise an incoming webhook delivery."""


# ---------------------------------------------------------------------
# MOCK GATEWAY
# ---------------------------------------------------------------------
class MockGateway(PaymentGateway):
    name = "mock"

    def __init__(self, webhook_secret: str = PAYMENT_WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret

    def create_session(self, payment) -> GatewaySession:
        secret = f"mock_secret_{payment.id}_{secrets.token_hex(8)}"
        return GatewaySession(reference=secret, client_secret=secret, raw={"id": secret})

    def verify_payload(self, payment, payload: dict) -> str | None:
        if not payload or payload.get("clientSecret") != payment.gateway_ref:
            return None
        return payload.get("transactionId") or f"txn_{payment.id}"

    def parse_webhook_event(self, body: bytes, headers: dict) -> GatewayEvent:
        try:
            event = json.loads(body or b"{}")
        except ValueError:
            raise WebhookRejected("Invalid webhook")

        data = event.get("data") or {}
        provided = headers.get("x-webhook-secret") or event.get("secret") or data.get("secret")
        if self.webhook_secret and provided != self.webhook_secret:
            raise WebhookRejected("Invalid webhook signature", 401)

        event_type = event.get("eventType") or event.get("type")
        payment_id = data.get("paymentId")
        if not event_type or payment_id is None:
            raise WebhookRejected("Invalid webhook")

        return GatewayEvent(
            event_type=event_type,
            event_id=event.get("id"),
            payment_id=int(payment_id),
            transaction_id=data.get("transactionId"),
            failure_reason=data.get("reason"),
            payload=event,
        )


# ---------------------------------------------------------------------
# RAZORPAY GATEWAY
# ---------------------------------------------------------------------
RAZORPAY_EVENT_TYPES = {
    "payment.captured": EVENT_SUCCEEDED,
    "order.paid": EVENT_SUCCEEDED,
    "payment.failed": EVENT_FAILED,
}


class RazorpayGateway(PaymentGateway):
    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str = PAYMENT_WEBHOOK_SECRET):
        import razorpay

        self._errors = razorpay.errors
        self.client = razorpay.Client(auth=(key_id, key_secret))
        self.webhook_secret = webhook_secret

    def create_session(self, payment) -> GatewaySession:
        order = self.client.order.create({
            "amount": int(Decimal(payment.amount) * 100),
            "currency": payment.currency,
            "receipt": f"payment_{payment.id}",
        })
        return GatewaySession(reference=order["id"], client_secret=order["id"], raw=order)

    def verify_payload(self, payment, payload: dict) -> str | None:
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": payment.gateway_ref,
                "razorpay_payment_id": payload.get("razorpay_payment_id"),
                "razorpay_signature": payload.get("razorpay_signature"),
            })
        except self._errors.SignatureVerificationError:
            return None
        return payload.get("razorpay_payment_id")

    def parse_webhook_event(self, body: bytes, headers: dict) -> GatewayEvent:
        signature = headers.get("x-razorpay-signature")
        if not signature:
            raise WebhookRejected("Invalid webhook signature", 401)
        try:
            self.client.utility.verify_webhook_signature(body.decode(), signature, self.webhook_secret)
        except self._errors.SignatureVerificationError:
            raise WebhookRejected("Invalid webhook signature", 401)

        event = json.loads(body)
        event_type = RAZORPAY_EVENT_TYPES.get(event.get("event"))
        if event_type is None:
            raise WebhookRejected(f"Unsupported event {event.get('event')}")

        entity = event.get("payload", {}).get("payment", {}).get("entity", {})
        return GatewayEvent(
            event_type=event_type,
            event_id=headers.get("x-razorpay-event-id"),
            gateway_ref=entity.get("order_id"),
            transaction_id=entity.get("id"),
            failure_reason=entity.get("error_description"),
            payload=event,
        )


# ---------------------------------------------------------------------
# TIMEOUT-BOUNDED CALLS
# ---------------------------------------------------------------------
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="gateway")


def call_gateway(fn, *args, timeout: float = GATEWAY_TIMEOUT_SECONDS):
    future = _executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.error(f"Gateway timeout | Call={getattr(fn, '__name__', fn)} | Timeout={timeout}s")
        raise UpstreamFailure("Payment gateway timed out, please retry")
    except ReservationError:
        raise
    except Exception as e:
        logger.opt(exception=e).error(f"Gateway error | Call={getattr(fn, '__name__', fn)}")
        raise UpstreamFailure("Payment gateway unavailable, please retry")


_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _gateway

    if _gateway is not None:
        return _gateway

    if PAYMENT_GATEWAY == "razorpay":
        if not RAZORPAY_KEY_ID or not RAZORPAY_KEY_SECRET:
            raise UpstreamFailure("Razorpay keys not configured")
        _gateway = RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)
    else:
        _gateway = MockGateway()
    return _gateway

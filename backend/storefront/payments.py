"""Stripe payment intents and webhook reconciliation."""

import json
import logging
from typing import Dict, List, Optional

import stripe

from .errors import (
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
    WebhookSignatureError,
)
from .helpers import sanitize_metadata
from .orders import PAYMENT_FAILED, PAYMENT_SUCCEEDED
from .pricing import resolve_line_items, to_minor_units

logger = logging.getLogger(__name__)

PAYMENT_INTENT_PREFIX = "pi_"
WEBHOOK_TOLERANCE_SECONDS = 300
ORDER_ID_METADATA_KEYS = ("orderId", "order_id")
EVENT_PAYMENT_STATUSES = {
    "payment_intent.succeeded": PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": PAYMENT_FAILED,
}


def _stripe_metadata(stripe_object) -> Dict[str, str]:
    metadata = getattr(stripe_object, "metadata", None) or {}
    return {str(key): str(metadata[key]) for key in metadata.keys()}


class StripeGateway:
    """Thin wrapper over a Stripe client that maps its errors onto ours."""

    def __init__(self, api_key: str, timeout: int = 10, client=None):
        self.client = client or stripe.StripeClient(
            api_key, http_client=stripe.RequestsClient(timeout=timeout)
        )

    def _call(self, operation, *args, **kwargs):
        try:
            return operation(*args, **kwargs)
        except stripe.APIConnectionError as exc:
            logger.error("Stripe connection error: %s", exc)
            raise UpstreamError(
                "The payment provider is unreachable. Please try again.",
                status_code=503,
                retryable=True,
            )
        except stripe.InvalidRequestError as exc:
            logger.warning("Stripe rejected the request: %s", exc)
            raise ValidationError(exc.user_message or "The payment request was rejected.")
        except stripe.StripeError as exc:
            logger.error("Stripe error: %s", exc)
            raise UpstreamError("The payment provider returned an error.")

    def create_intent(self, amount: int, currency: str, metadata: Dict[str, str]) -> Dict[str, str]:
        intent = self._call(
            self.client.payment_intents.create,
            params={
                "amount": amount,
                "currency": currency,
                "automatic_payment_methods": {"enabled": True},
                "metadata": metadata,
            },
        )
        return {"id": intent.id, "client_secret": intent.client_secret}

    def retrieve_intent(self, payment_intent_id: str) -> Dict[str, object]:
        intent = self._call(self.client.payment_intents.retrieve, payment_intent_id)
        return {
            "id": intent.id,
            "amount": intent.amount,
            "currency": intent.currency,
            "status": intent.status,
            "metadata": _stripe_metadata(intent),
        }


class PaymentService:
    def __init__(self, catalog, orders, gateway=None, default_currency: str = "inr"):
        self.catalog = catalog
        self.orders = orders
        self.gateway = gateway
        self.default_currency = default_currency

    def _require_gateway(self):
        if self.gateway is None:
            raise ServiceUnavailableError("Payments are not configured on this server.")
        return self.gateway

    def create_payment_intent(
        self, requested_items: List, metadata=None, currency: Optional[str] = None
    ) -> Dict[str, object]:
        gateway = self._require_gateway()
        if not isinstance(requested_items, list) or not requested_items:
            raise ValidationError("Include at least one item to pay for.")

        _, total = resolve_line_items(requested_items, self.catalog)
        currency_code = str(currency or self.default_currency).strip().lower()
        amount = to_minor_units(total, currency_code)
        if amount <= 0:
            raise ValidationError("Invalid amount.")

        intent_metadata = sanitize_metadata(metadata)
        intent = gateway.create_intent(amount, currency_code, intent_metadata)
        logger.info(
            "Created payment intent %s for %s %s", intent["id"], amount, currency_code
        )

        order_id = next(
            (intent_metadata[key] for key in ORDER_ID_METADATA_KEYS if intent_metadata.get(key)),
            None,
        )
        if order_id:
            self.orders.attach_payment_intent(order_id, intent["id"])

        return {
            "clientSecret": intent["client_secret"],
            "transactionId": intent["id"],
            "amount": amount,
            "currency": currency_code,
        }

    def get_payment_intent(self, payment_intent_id: str) -> Dict[str, object]:
        gateway = self._require_gateway()
        normalized_id = str(payment_intent_id or "").strip()
        if not normalized_id.startswith(PAYMENT_INTENT_PREFIX):
            raise ValidationError("Invalid payment intent identifier.")
        return gateway.retrieve_intent(normalized_id)


def verify_webhook_event(payload: bytes, signature: Optional[str], secret: Optional[str]) -> Dict:
    """Check the Stripe signature over the raw body and decode the event.

    Without a signing secret the event is decoded unverified.
    """
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise WebhookSignatureError("Webhook payload is not valid UTF-8.")

    if secret:
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header.")
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, secret, WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise WebhookSignatureError()
    else:
        logger.warning("Accepting unverified webhook: STRIPE_WEBHOOK_SECRET is not set")

    try:
        event = json.loads(body)
    except ValueError:
        raise WebhookSignatureError("Webhook payload is not valid JSON.")
    if not isinstance(event, dict):
        raise WebhookSignatureError("Webhook payload must be a JSON object.")
    return event


class PaymentReconciler:
    def __init__(self, orders):
        self.orders = orders

    def handle_event(self, event: Dict) -> str:
        """Apply a verified gateway event; returns a short outcome label."""
        event_type = str(event.get("type") or "")
        target_status = EVENT_PAYMENT_STATUSES.get(event_type)
        if target_status is None:
            logger.info("Unhandled stripe event: %s", event_type or "<missing type>")
            return "ignored"

        data = event.get("data")
        if not isinstance(data, dict):
            data = {}
        payment_intent = data.get("object") or {}
        if not isinstance(payment_intent, dict):
            payment_intent = {}
        payment_intent_id = str(payment_intent.get("id") or "").strip()
        metadata = payment_intent.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        order_id = next(
            (metadata[key] for key in ORDER_ID_METADATA_KEYS if metadata.get(key)), None
        )

        logger.info(
            "PaymentIntent %s %s (orderId: %s)", payment_intent_id, target_status, order_id
        )
        order_document = self.orders.apply_payment_result(
            payment_intent_id, target_status, order_id=order_id
        )
        if order_document is None:
            logger.warning(
                "Webhook: no order found for payment intent %s (orderId: %s)",
                payment_intent_id,
                order_id,
            )
            return "unmatched"
        return target_status

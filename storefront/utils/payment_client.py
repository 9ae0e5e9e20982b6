# storefront/utils/payment_client.py
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from storefront.config import Settings, settings
from storefront.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)

ALREADY_REFUNDED_MARKER = "already been fully refunded"


@dataclass(frozen=True)
class PaymentIntent:
    gateway_order_id: str
    amount: int  # minor units
    currency: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: int
    already_refunded: bool = False


def sign_payment(gateway_order_id: str, payment_id: str, secret: str) -> str:
    # HMAC-SHA256 over "order_id|payment_id", hex encoded
    message = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("description") or str(error)
    return str(body)


class PaymentGatewayClient:
    """Order/refund API of the card gateway plus local signature checks."""

    def __init__(self, cfg: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = cfg.PAYMENT_API_URL
        self.key_id = cfg.PAYMENT_KEY_ID
        self.key_secret = cfg.PAYMENT_KEY_SECRET
        self.currency = cfg.CURRENCY
        self.timeout = cfg.EXTERNAL_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_payment_intent(self, amount: int, currency: Optional[str] = None, receipt: Optional[str] = None) -> PaymentIntent:
        currency = currency or self.currency
        payload = {"amount": amount, "currency": currency}
        if receipt:
            payload["receipt"] = receipt

        async with self._client() as client:
            try:
                response = await client.post("/v1/orders", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error("Payment intent rejected: %s", _error_description(e.response))
                raise ExternalServiceError("Payment gateway rejected the order.", amount=amount) from e
            except httpx.HTTPError as e:
                logger.error("Payment gateway unreachable: %s", e)
                raise ExternalServiceError("Payment gateway is unavailable.", amount=amount) from e

        data = response.json()
        return PaymentIntent(gateway_order_id=data["id"], amount=int(data.get("amount", amount)), currency=data.get("currency", currency))

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not (gateway_order_id and payment_id and signature):
            return False
        expected = sign_payment(gateway_order_id, payment_id, self.key_secret)
        return hmac.compare_digest(expected, signature)

    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        payload = {
            "amount": amount,
            "speed": "normal",
            "notes": {"reason": "Order cancelled by customer or admin."},
        }
        async with self._client() as client:
            try:
                response = await client.post(f"/v1/payments/{payment_id}/refund", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                description = _error_description(e.response)
                # A repeated refund after a partial failure is a success, not an error
                if ALREADY_REFUNDED_MARKER in description:
                    logger.info("Payment %s was already refunded", payment_id)
                    return RefundResult(refund_id="already_refunded", status="processed", amount=amount, already_refunded=True)
                logger.error("Refund for payment %s failed: %s", payment_id, description)
                raise ExternalServiceError(f"Refund failed: {description}", payment_id=payment_id) from e
            except httpx.HTTPError as e:
                logger.error("Refund for payment %s failed: %s", payment_id, e)
                raise ExternalServiceError("Payment gateway is unavailable.", payment_id=payment_id) from e

        data = response.json()
        return RefundResult(
            refund_id=data["id"],
            status=data.get("status", "processed"),
            amount=int(data.get("amount", amount)),
        )


payment_client = PaymentGatewayClient()


def get_gateway() -> PaymentGatewayClient:
    return payment_client

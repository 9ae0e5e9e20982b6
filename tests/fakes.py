"""In-memory stand-ins for the payment gateway, carrier and notifier."""

from decimal import Decimal
from itertools import count

from storefront.config import settings
from storefront.services.errors import ExternalServiceError
from storefront.utils.payment_client import PaymentIntent, RefundResult, sign_payment


def signature_for(gateway_order_id: str, payment_id: str) -> str:
    return sign_payment(gateway_order_id, payment_id, settings.PAYMENT_KEY_SECRET)


class FakeGateway:
    def __init__(self):
        self.calls = []
        self.refund_mode = "ok"  # ok | already_refunded | fail
        self._ids = count(1)

    async def create_payment_intent(self, amount, currency=None, receipt=None):
        self.calls.append({"method": "create_payment_intent", "amount": amount, "currency": currency})
        return PaymentIntent(gateway_order_id=f"order_fake_{next(self._ids)}", amount=amount, currency=currency or "INR")

    def verify_signature(self, gateway_order_id, payment_id, signature):
        return bool(signature) and signature == signature_for(gateway_order_id, payment_id)

    async def refund(self, payment_id, amount):
        self.calls.append({"method": "refund", "payment_id": payment_id, "amount": amount})
        if self.refund_mode == "fail":
            raise ExternalServiceError("Refund failed: gateway down", payment_id=payment_id)
        if self.refund_mode == "already_refunded":
            return RefundResult(refund_id="already_refunded", status="processed", amount=amount, already_refunded=True)
        return RefundResult(refund_id=f"rfnd_{next(self._ids)}", status="processed", amount=amount)

    def calls_to(self, method):
        return [c for c in self.calls if c["method"] == method]


class FakeCarrier:
    pickup_location = "Primary"

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.pickup_status = "scheduled"
        self.serviceable = True
        self._ids = count(100)

    def _maybe_fail(self, method):
        self.calls.append(method)
        if method in self.fail_on:
            raise ExternalServiceError(f"Carrier call {method} failed.")

    async def create_shipment(self, payload):
        self._maybe_fail("create_shipment")
        self.last_payload = payload
        n = next(self._ids)
        return {"carrier_order_id": f"CO{n}", "shipment_id": f"SH{n}"}

    async def assign_waybill(self, shipment_id):
        self._maybe_fail("assign_waybill")
        return {
            "tracking_number": f"AWB-{shipment_id}",
            "courier_name": "Fast Couriers",
            "tracking_url": f"https://track.example/{shipment_id}",
        }

    async def schedule_pickup(self, shipment_id):
        self._maybe_fail("schedule_pickup")
        return {"status": self.pickup_status}

    async def check_serviceability(self, pickup_postcode, delivery_postcode, weight):
        self._maybe_fail("check_serviceability")
        self.last_rate_check = (pickup_postcode, delivery_postcode, weight)
        if not self.serviceable:
            return {"available": False, "shipping_price": None, "courier_name": None}
        return {"available": True, "shipping_price": Decimal("85.50"), "courier_name": "Fast Couriers"}

    async def track(self, shipment_id=None, tracking_number=None):
        self._maybe_fail("track")
        return {
            "status": "IN TRANSIT",
            "history": [{"status": "picked_up"}],
            "tracking_url": f"https://track.example/{shipment_id}",
        }


class FakeNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_order_confirmation(self, email, order):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append(("order_confirmation", email, order["id"]))
        return True

    async def send_admin_service_notice(self, order):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append(("admin_service_notice", None, order["id"]))
        return True

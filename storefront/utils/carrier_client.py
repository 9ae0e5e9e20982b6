# storefront/utils/carrier_client.py
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import httpx

from storefront.config import Settings, settings
from storefront.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)

# Carrier tokens live ten days; refresh a day early
TOKEN_TTL = timedelta(days=9)


class CarrierClient:
    """Shipping carrier API: rates, shipment creation, waybill, pickup and tracking.

    Every call returns the decoded JSON body. Transport failures, timeouts and
    non-2xx responses surface as ``ExternalServiceError``.
    """

    def __init__(self, cfg: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = cfg.CARRIER_API_URL
        self.email = cfg.CARRIER_EMAIL
        self.password = cfg.CARRIER_PASSWORD
        self.pickup_location = cfg.CARRIER_PICKUP_LOCATION
        self.timeout = cfg.EXTERNAL_TIMEOUT_SECONDS
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires: Optional[datetime] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.api_url, timeout=self.timeout, transport=self._transport)

    async def get_auth_token(self) -> str:
        if self._token and self._token_expires and datetime.utcnow() < self._token_expires:
            return self._token

        logger.info("Requesting new carrier auth token")
        async with self._client() as client:
            try:
                response = await client.post("/auth/login", json={"email": self.email, "password": self.password})
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("Carrier auth error: %s", e)
                raise ExternalServiceError("Could not authenticate with the shipping service.") from e

        token = response.json().get("token")
        if not token:
            raise ExternalServiceError("Carrier auth response carried no token.")
        self._token = token
        self._token_expires = datetime.utcnow() + TOKEN_TTL
        return token

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        token = await self.get_auth_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        async with self._client() as client:
            try:
                response = await client.request(method, path, headers=headers, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 401:
                    # Token revoked early; drop it so the next call logs in again
                    self._token = None
                logger.error("Carrier %s %s failed: %s", method, path, e.response.text)
                raise ExternalServiceError(f"Carrier call {path} failed with {e.response.status_code}.") from e
            except httpx.HTTPError as e:
                logger.error("Carrier %s %s failed: %s", method, path, e)
                raise ExternalServiceError(f"Carrier call {path} failed.") from e
        return response.json()

    async def create_shipment(self, payload: dict) -> dict:
        data = await self._request("POST", "/orders/create/adhoc", json=payload)
        return {"carrier_order_id": data.get("order_id"), "shipment_id": data.get("shipment_id")}

    async def assign_waybill(self, shipment_id) -> dict:
        data = await self._request("POST", "/courier/assign/awb", json={"shipment_id": shipment_id})
        awb = ((data.get("response") or {}).get("data")) or {}
        return {
            "tracking_number": awb.get("awb_code"),
            "courier_name": awb.get("courier_name"),
            "tracking_url": awb.get("awb_code_url"),
            "message": data.get("message"),
        }

    async def schedule_pickup(self, shipment_id) -> dict:
        # The pickup endpoint takes a list of shipments
        data = await self._request("POST", "/courier/generate/pickup", json={"shipment_id": [shipment_id]})
        return {"status": data.get("pickup_status"), "response": data.get("response")}

    async def check_serviceability(self, pickup_postcode: str, delivery_postcode: str, weight: float) -> dict:
        """Courier availability and rate for a parcel between two postcodes.

        Uses the carrier's recommended courier when it is in the list, else
        the first one offered. ``available`` is False when nobody delivers.
        """
        params = {
            "pickup_postcode": pickup_postcode,
            "delivery_postcode": delivery_postcode,
            "weight": weight,
            "cod": 1,
        }
        data = await self._request("GET", "/courier/serviceability/", params=params)
        body = data.get("data") or {}
        couriers = body.get("available_courier_companies") or []
        if data.get("status") != 200 or not couriers:
            return {"available": False, "shipping_price": None, "courier_name": None}

        recommended = body.get("recommended_courier_company_id")
        choice = next(
            (c for c in couriers if str(c.get("courier_company_id")) == str(recommended)),
            couriers[0],
        )
        rate = choice.get("rate")
        return {
            "available": True,
            "shipping_price": Decimal(str(rate)) if rate is not None else None,
            "courier_name": choice.get("courier_name"),
        }

    async def track(self, shipment_id=None, tracking_number=None) -> dict:
        params = {}
        if tracking_number:
            params["awb"] = tracking_number
        if shipment_id:
            params["shipment_id"] = shipment_id
        if not params:
            raise ExternalServiceError("Tracking needs a shipment id or tracking number.")

        data = await self._request("GET", "/courier/track", params=params)
        tracking = data.get("tracking_data") or {}
        return {
            "status": tracking.get("shipment_status") or tracking.get("track_status"),
            "history": tracking.get("shipment_track_activities") or [],
            "tracking_url": tracking.get("track_url"),
            "raw": tracking,
        }


carrier_client = CarrierClient()


def get_carrier() -> CarrierClient:
    return carrier_client

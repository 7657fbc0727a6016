"""Courier pickup scheduling for customer returns.

The workflow only sees four operations (slots, book, cancel, track); all
courier-specific protocol details stay in this module.
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

import httpx

from returndesk.errors import ProviderUnavailableError, SlotNoLongerAvailableError
from returndesk.services.returns import PickupRequest

logger = logging.getLogger(__name__)

DEFAULT_PICKUP_SLOTS = (
    "9:00 AM - 12:00 PM",
    "12:00 PM - 3:00 PM",
    "3:00 PM - 6:00 PM",
    "6:00 PM - 9:00 PM",
)

_SLOT_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%I %p", "%I%p", "%H:%M")


def slot_start_time(label: str) -> Optional[time]:
    """Parse the start of a slot label such as '9:00 AM - 12:00 PM' or '10am-12pm'."""
    start = label.split("-", 1)[0].strip().upper()
    for fmt in _SLOT_TIME_FORMATS:
        try:
            return datetime.strptime(start, fmt).time()
        except ValueError:
            continue
    return None


@dataclass
class ReturnParcel:
    """What the courier needs to know about the item being collected."""
    return_id: str
    order_id: str
    product_title: str
    quantity: int
    reason: str
    weight_kg: float = 0.5


@dataclass
class PickupTracking:
    tracking_number: str
    status: str
    location: str = ""
    updated_at: Optional[str] = None


class PickupProvider:
    """Capability the workflow relies on; implementations own the protocol."""

    name = "base"

    async def available_slots(self, pincode: str, pickup_date: date) -> list[str]:
        raise NotImplementedError

    async def book_pickup(self, request: PickupRequest, parcel: ReturnParcel) -> str:
        """Book the slot and return the courier's tracking number."""
        raise NotImplementedError

    async def cancel_pickup(self, tracking_number: str) -> None:
        raise NotImplementedError

    async def track_pickup(self, tracking_number: str) -> PickupTracking:
        raise NotImplementedError


# ── In-memory courier ───────────────────────────────────

class InMemoryPickupProvider(PickupProvider):
    """Local courier simulation with per-slot capacity.

    Used for development (``courier_provider=memory``) and tests. ``outage``
    makes every call fail with ``ProviderUnavailableError``.
    """

    name = "memory"

    def __init__(
        self,
        slots: Optional[list[str]] = None,
        capacity: int = 5,
        unserviceable: Optional[set[str]] = None,
        outage: bool = False,
    ):
        self.slots = list(DEFAULT_PICKUP_SLOTS if slots is None else slots)
        self.capacity = capacity
        self.unserviceable = set(unserviceable or ())
        self.outage = outage
        self._booked: dict[tuple[str, date, str], int] = {}
        self._bookings: dict[str, dict] = {}
        self._counter = itertools.count(1)

    def _check_up(self) -> None:
        if self.outage:
            raise ProviderUnavailableError("Courier provider is unavailable")

    def take_slot(self, pincode: str, pickup_date: date, slot: str, count: int = 1) -> None:
        """Consume capacity as if another customer had booked the slot."""
        key = (pincode, pickup_date, slot)
        self._booked[key] = self._booked.get(key, 0) + count

    async def available_slots(self, pincode: str, pickup_date: date) -> list[str]:
        self._check_up()
        if pincode in self.unserviceable:
            return []
        return [
            slot for slot in self.slots
            if self._booked.get((pincode, pickup_date, slot), 0) < self.capacity
        ]

    async def book_pickup(self, request: PickupRequest, parcel: ReturnParcel) -> str:
        self._check_up()
        key = (request.pincode, request.pickup_date, request.time_slot)
        if (
            request.pincode in self.unserviceable
            or request.time_slot not in self.slots
            or self._booked.get(key, 0) >= self.capacity
        ):
            raise SlotNoLongerAvailableError()
        self._booked[key] = self._booked.get(key, 0) + 1
        tracking_number = f"RP{next(self._counter):010d}"
        self._bookings[tracking_number] = {"key": key, "status": "scheduled", "parcel": parcel}
        return tracking_number

    async def cancel_pickup(self, tracking_number: str) -> None:
        self._check_up()
        booking = self._bookings.get(tracking_number)
        if booking is None or booking["status"] == "cancelled":
            return
        booking["status"] = "cancelled"
        self._booked[booking["key"]] -= 1

    async def track_pickup(self, tracking_number: str) -> PickupTracking:
        self._check_up()
        booking = self._bookings.get(tracking_number)
        status = booking["status"] if booking else "unknown"
        return PickupTracking(tracking_number=tracking_number, status=status)


# ── Delhivery ───────────────────────────────────────────

class DelhiveryPickupProvider(PickupProvider):
    """Reverse pickups through the Delhivery express API."""

    name = "delhivery"

    def __init__(
        self,
        base_url: str,
        token: str,
        pickup_location: str,
        slots: Optional[list[str]] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.pickup_location = pickup_location
        self.slots = list(DEFAULT_PICKUP_SLOTS if slots is None else slots)
        self.timeout = timeout
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Token {self.token}",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._http().request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Delhivery {method} {url} timed out: {e}")
            raise ProviderUnavailableError("Courier provider timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Delhivery {method} {url} failed: {e}")
            raise ProviderUnavailableError(f"Courier provider unreachable: {e}") from e

        if resp.status_code == 409 or (
            400 <= resp.status_code < 500 and "slot" in resp.text.lower()
        ):
            raise SlotNoLongerAvailableError()
        if resp.status_code >= 400:
            logger.warning(f"Delhivery {method} {url} returned {resp.status_code}: {resp.text[:200]}")
            raise ProviderUnavailableError(
                f"Courier provider returned HTTP {resp.status_code}"
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderUnavailableError("Courier provider sent an unreadable response") from e

    async def is_serviceable(self, pincode: str) -> bool:
        """Reverse pickup must be offered at the customer's pincode."""
        resp = await self._request("GET", "/c/api/pin-codes/json/", params={"filter_codes": pincode})
        for entry in self._json(resp).get("delivery_codes", []):
            code = entry.get("postal_code", entry)
            if str(code.get("pin")) == pincode:
                return code.get("pickup") == "Y" and code.get("reverse", "Y") == "Y"
        return False

    async def available_slots(self, pincode: str, pickup_date: date) -> list[str]:
        if not await self.is_serviceable(pincode):
            return []
        return list(self.slots)

    async def book_pickup(self, request: PickupRequest, parcel: ReturnParcel) -> str:
        shipment = {
            "name": request.customer_name,
            "add": request.address,
            "pin": request.pincode,
            "city": request.city,
            "state": request.state,
            "country": "India",
            "phone": request.phone,
            "order": f"{parcel.order_id}-R-{parcel.return_id[:8]}",
            "payment_mode": "Pickup",
            "products_desc": f"{parcel.product_title} - Return Request",
            "quantity": str(parcel.quantity),
            "weight": str(parcel.weight_kg),
            "return_reason": parcel.reason,
            "shipping_mode": "Surface",
        }
        manifest = {"shipments": [shipment], "pickup_location": {"name": self.pickup_location}}
        resp = await self._request(
            "POST",
            "/api/cmu/create.json",
            data={"format": "json", "data": json.dumps(manifest)},
        )
        body = self._json(resp)
        packages = body.get("packages") or []
        waybill = packages[0].get("waybill") if packages else None
        if not body.get("success", True) or not waybill:
            remarks = " ".join(str(r) for p in packages for r in p.get("remarks", []))
            if "slot" in remarks.lower():
                raise SlotNoLongerAvailableError()
            raise ProviderUnavailableError(
                f"Courier did not accept the pickup: {remarks or body.get('rmk', 'no waybill')}"
            )

        start = slot_start_time(request.time_slot)
        await self._request(
            "POST",
            "/fm/request/new/",
            json={
                "pickup_location": self.pickup_location,
                "pickup_date": request.pickup_date.isoformat(),
                "pickup_time": start.strftime("%H:%M:%S") if start else "10:00:00",
                "expected_package_count": 1,
            },
        )
        logger.info(f"Delhivery reverse pickup booked: waybill={waybill} slot={request.time_slot}")
        return str(waybill)

    async def cancel_pickup(self, tracking_number: str) -> None:
        await self._request(
            "POST", "/api/p/edit", json={"waybill": tracking_number, "cancellation": True},
        )

    async def track_pickup(self, tracking_number: str) -> PickupTracking:
        resp = await self._request("GET", "/api/v1/packages/json/", params={"waybill": tracking_number})
        shipments = self._json(resp).get("ShipmentData") or []
        if not shipments:
            return PickupTracking(tracking_number=tracking_number, status="unknown")
        status = shipments[0].get("Shipment", {}).get("Status", {})
        return PickupTracking(
            tracking_number=tracking_number,
            status=status.get("Status", "unknown"),
            location=status.get("StatusLocation", ""),
            updated_at=status.get("StatusDateTime"),
        )


def build_pickup_provider(settings) -> PickupProvider:
    if settings.courier_provider == "memory":
        return InMemoryPickupProvider(slots=settings.pickup_slots)
    if settings.courier_provider == "delhivery":
        return DelhiveryPickupProvider(
            base_url=settings.delhivery_base_url,
            token=settings.delhivery_token,
            pickup_location=settings.delhivery_pickup_location,
            slots=settings.pickup_slots,
            timeout=settings.courier_timeout_seconds,
        )
    raise ValueError(f"Unknown courier provider: {settings.courier_provider}")

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import ConfigDict, field_validator, model_validator

from libs.common.currency import money_to_decimal
from libs.common.datetime_utils import ensure_aware
from services.storefront_service.models.base import BackendModel
from services.storefront_service.models.enums import DeliveryType


class PickupPoint(BackendModel):
    """A pickup point; only points with a backend ``id`` are deliverable."""

    id: Optional[str] = None
    name: str = ""
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def blank_id_is_missing(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def is_selectable(self) -> bool:
        return self.id is not None

    @property
    def label(self) -> str:
        return self.name or self.address


class MapBounds(BackendModel):
    latitude_from: float
    latitude_to: float
    longitude_from: float
    longitude_to: float

    @model_validator(mode="after")
    def normalize(self):
        lat_from, lat_to = sorted((self.latitude_from, self.latitude_to))
        lon_from, lon_to = sorted((self.longitude_from, self.longitude_to))
        self.latitude_from, self.latitude_to = lat_from, lat_to
        self.longitude_from, self.longitude_to = lon_from, lon_to
        return self

    @property
    def token(self) -> str:
        return "|".join(
            f"{value:.4f}"
            for value in (
                self.latitude_from,
                self.latitude_to,
                self.longitude_from,
                self.longitude_to,
            )
        )


class DeliveryOffer(BackendModel):
    """A point-in-time delivery quote. Immutable once issued."""

    model_config = ConfigDict(frozen=True)

    offer_id: str
    delivery_type: Optional[DeliveryType] = None
    pricing: Decimal = Decimal("0")
    interval_from: Optional[datetime] = None
    interval_to: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def prefer_pricing_total(cls, data: Any):
        if isinstance(data, dict) and data.get("pricingTotal") is not None:
            data = dict(data)
            data["pricing"] = data.pop("pricingTotal")
        return data

    @field_validator("offer_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("pricing", mode="before")
    @classmethod
    def parse_money(cls, v):
        return money_to_decimal(v)

    @field_validator("interval_from", "interval_to", "expires_at")
    @classmethod
    def aware(cls, v):
        return ensure_aware(v)

    def is_expired(self, now: datetime) -> bool:
        # Offers without an expiry are left to the backend to reject.
        if self.expires_at is None:
            return False
        return now > self.expires_at


class Recipient(BackendModel):
    first_name: str = ""
    last_name: Optional[str] = None
    phone: str = ""
    email: Optional[str] = None

    @field_validator("first_name", "phone", mode="before")
    @classmethod
    def strip_required(cls, v):
        return (v or "").strip()

    @field_validator("last_name", "email", mode="before")
    @classmethod
    def strip_optional(cls, v):
        if v is None:
            return None
        return v.strip() or None


class Destination(BackendModel):
    delivery_type: DeliveryType
    address: Optional[str] = None
    pickup_point_id: Optional[str] = None
    pickup_point_name: Optional[str] = None

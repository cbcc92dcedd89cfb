from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from services.storefront_service.models.base import BackendModel
from services.storefront_service.models.enums import StockAdjustmentReason


class StockAdjustment(BackendModel):
    """One intended stock mutation. Retries reuse the same instance."""

    model_config = ConfigDict(frozen=True)

    variant_id: str
    delta: int
    reason: StockAdjustmentReason
    idempotency_key: str


class StockAdjustmentResult(BackendModel):
    stock: int


class VariantStock(BackendModel):
    id: str
    sku: Optional[str] = None
    stock: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v


class ProductStock(BackendModel):
    id: str
    name: Optional[str] = None
    variants: list[VariantStock] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.schema.full_schema import Product


class ListItemIn(BaseModel):
    """One selected cart line; productId may arrive populated as a product object."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(alias="productId")
    quantity: int = Field(default=1, ge=1)

    @field_validator("product_id", mode="before")
    @classmethod
    def unwrap_product_ref(cls, value: Any):
        if isinstance(value, dict):
            return value.get("_id", value.get("id"))
        return value


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    list_items: List[ListItemIn] = Field(default_factory=list)
    address_id: Optional[int] = Field(default=None, alias="addressId")
    sub_total_amt: Optional[Decimal] = Field(default=None, alias="subTotalAmt")
    total_amt: Optional[Decimal] = Field(default=None, alias="totalAmt")


@dataclass
class ResolvedLine:
    product: Product
    quantity: int

from decimal import Decimal
from typing import Optional, List

from pydantic import Field, field_validator

from farmapay.api.schemas.base_schema import AppBaseModel
from farmapay.api.schemas.customer import CustomerIdentity
from farmapay.core.utils.enums import ShippingType, DiscountType


class OrderItemCreate(AppBaseModel):
    name: str = Field(min_length=1)
    dosage: Optional[str] = None
    actives: Optional[List[str]] = None
    price: Optional[Decimal] = Field(default=None, ge=0)


class OrderCreate(AppBaseModel):
    """
    Pedido gerado pelo atendente.

    Sem `customerId` nem `newCustomer.name`, o pedido nasce com um
    cliente placeholder que será identificado no checkout.
    """
    user_id: Optional[str] = Field(default=None, alias="userId")
    customer_id: Optional[str] = Field(default=None, alias="customerId")
    new_customer: Optional[CustomerIdentity] = Field(default=None, alias="newCustomer")
    total_value: Decimal = Field(alias="totalValue", ge=0)
    shipping_value: Decimal = Field(default=Decimal("0"), alias="shippingValue", ge=0)
    shipping_type: ShippingType = Field(default=ShippingType.FIXED, alias="shippingType")
    discount_value: Optional[Decimal] = Field(default=None, alias="discountValue", ge=0)
    discount_type: Optional[DiscountType] = Field(default=None, alias="discountType")
    items: List[OrderItemCreate] = []
    internal_notes: Optional[str] = Field(default=None, alias="internalNotes")

    @field_validator("new_customer", mode="before")
    @classmethod
    def ignore_nameless_customer(cls, v):
        if isinstance(v, dict) and not (v.get("name") or "").strip():
            return None
        return v

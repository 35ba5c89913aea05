# schemas/__init__.py
from .base_schema import AppBaseModel, Money
from .customer import CustomerIdentity, CustomerCreate, CustomerOut, AddressOut
from .order import OrderCreate, OrderItemCreate
from .checkout import (
    AddressInput, CustomerFieldsUpdate, CheckoutSubmission, CardData, CustomerData,
    DirectPaymentRequest, CheckoutOrderOut,
)

__all__ = [
    "AppBaseModel", "Money",
    "CustomerIdentity", "CustomerCreate", "CustomerOut", "AddressOut",
    "OrderCreate", "OrderItemCreate",
    "AddressInput", "CustomerFieldsUpdate", "CheckoutSubmission", "CardData", "CustomerData",
    "DirectPaymentRequest", "CheckoutOrderOut",
]

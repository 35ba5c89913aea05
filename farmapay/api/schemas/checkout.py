from datetime import datetime
from typing import Optional, List, Any

from pydantic import Field, field_validator, model_validator

from farmapay.api.schemas.base_schema import AppBaseModel, Money
from farmapay.api.schemas.customer import CustomerOut
from farmapay.core.utils.enums import (
    DeliveryMethod, PaymentMethod, OrderStatus, DiscountType, ShippingType, NoteAuthorType, TransactionStatus,
)
from farmapay.core.utils.validators import only_digits, validate_cpf


# ═══════════════════════════════════════════════════════════
# ENTRADA: ETAPAS DO CHECKOUT
# ═══════════════════════════════════════════════════════════

class AddressInput(AppBaseModel):
    type: Optional[str] = None
    zip: str = ""
    street: str = ""
    number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    complement: Optional[str] = None


class CustomerFieldsUpdate(AppBaseModel):
    """
    Campos do cliente que uma etapa pode alterar. Só o que veio preenchido
    é aplicado; `cpf` é omitido quando o CPF pertence a outro cadastro.
    """
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    rg: Optional[str] = None
    birth_date: Optional[str] = None


class CheckoutSubmission(AppBaseModel):
    partial: bool = False
    name: Optional[str] = None
    cpf: Optional[str] = None
    rg: Optional[str] = None
    birth_date: Optional[str] = Field(default=None, alias="birthDate")
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[AddressInput] = None
    address_id: Optional[str] = Field(default=None, alias="addressId")
    notes: Optional[str] = None
    delivery_method: Optional[DeliveryMethod] = Field(default=None, alias="deliveryMethod")
    pickup_location: Optional[str] = Field(default=None, alias="pickupLocation")

    @field_validator("cpf")
    @classmethod
    def validate_cpf_digits(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        digits = only_digits(v)
        if not validate_cpf(digits):
            raise ValueError("CPF inválido")
        return digits

    @model_validator(mode="after")
    def require_identity_on_final(self):
        if not self.partial:
            missing = [f for f in ("name", "cpf", "phone") if not getattr(self, f)]
            if missing:
                raise ValueError(f"Campos obrigatórios para finalizar: {', '.join(missing)}")
        return self

    def customer_fields(self, include_cpf: bool = True) -> CustomerFieldsUpdate:
        return CustomerFieldsUpdate(
            name=self.name or None,
            email=self.email or None,
            phone=self.phone or None,
            cpf=self.cpf if include_cpf else None,
            rg=self.rg or None,
            birth_date=self.birth_date or None,
        )


class CardData(AppBaseModel):
    number: str
    holder_name: str = Field(alias="holderName")
    month: str
    year: str
    cvv: str
    installments: int = Field(default=1, ge=1, le=12)

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: str) -> str:
        digits = only_digits(v)
        if not 13 <= len(digits) <= 19:
            raise ValueError("Número do cartão inválido")
        return digits

    @field_validator("cvv")
    @classmethod
    def validate_cvv(cls, v: str) -> str:
        if not v.isdigit() or len(v) not in (3, 4):
            raise ValueError("CVV inválido")
        return v


class CustomerData(AppBaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    cpf: Optional[str] = None


class DirectPaymentRequest(AppBaseModel):
    # Valor exibido ao cliente; o valor cobrado é sempre recalculado no servidor
    amount: Optional[Money] = None
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    card_data: Optional[CardData] = Field(default=None, alias="cardData")
    customer_data: Optional[CustomerData] = Field(default=None, alias="customerData")

    @model_validator(mode="after")
    def require_card_for_credit(self):
        if self.payment_method == PaymentMethod.CREDIT_CARD and self.card_data is None:
            raise ValueError("Dados do cartão são obrigatórios para pagamento com cartão")
        return self


# ═══════════════════════════════════════════════════════════
# SAÍDA: VISÃO PÚBLICA DO PEDIDO
# ═══════════════════════════════════════════════════════════

class OrderItemOut(AppBaseModel):
    id: str
    name: str
    dosage: Optional[str] = None
    actives: Optional[List[str]] = None
    price: Optional[Money] = None


class OrderNoteOut(AppBaseModel):
    id: str
    content: str
    author_type: NoteAuthorType = Field(serialization_alias="authorType")
    created_at: datetime = Field(serialization_alias="createdAt")


class PaymentLinkOut(AppBaseModel):
    id: str
    status: str
    asaas_payment_id: Optional[str] = Field(default=None, serialization_alias="asaasPaymentId")
    asaas_url: Optional[str] = Field(default=None, serialization_alias="asaasUrl")


class PaymentTransactionOut(AppBaseModel):
    id: str
    gateway_id: str = Field(serialization_alias="gatewayId")
    type: str
    status: TransactionStatus
    amount: Money
    details: Optional[Any] = Field(default=None, serialization_alias="metadata")
    created_at: datetime = Field(serialization_alias="createdAt")


class CheckoutOrderOut(AppBaseModel):
    id: str
    status: OrderStatus
    total_value: Money = Field(serialization_alias="totalValue")
    shipping_value: Money = Field(serialization_alias="shippingValue")
    shipping_type: ShippingType = Field(serialization_alias="shippingType")
    discount_value: Optional[Money] = Field(default=None, serialization_alias="discountValue")
    discount_type: Optional[DiscountType] = Field(default=None, serialization_alias="discountType")
    address_id: Optional[str] = Field(default=None, serialization_alias="addressId")
    delivery_method: Optional[DeliveryMethod] = Field(default=None, serialization_alias="deliveryMethod")
    attachment_url: Optional[str] = Field(default=None, serialization_alias="attachmentUrl")
    customer: Optional[CustomerOut] = None
    items: List[OrderItemOut] = []
    notes: List[OrderNoteOut] = []
    payment_link: Optional[PaymentLinkOut] = Field(default=None, serialization_alias="paymentLink")
    transactions: List[PaymentTransactionOut] = []

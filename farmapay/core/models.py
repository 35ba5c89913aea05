from __future__ import annotations

import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import JSON, Date, DateTime, Enum, ForeignKey, Numeric, String, Text, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from farmapay.core.exceptions import BadRequestError
from farmapay.core.utils.enums import (
    ProfileRole, OrderStatus, ShippingType, DiscountType, DeliveryMethod, NoteAuthorType,
    PaymentLinkStatus, TransactionStatus, WebhookEventStatus,
)

# Nome reservado do cliente anônimo criado quando o link é gerado sem identificação
PLACEHOLDER_CUSTOMER_NAME = "Cliente Não Identificado"


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )


# ═══════════════════════════════════════════════════════════
# EQUIPE
# ═══════════════════════════════════════════════════════════

class Profile(Base, TimestampMixin):
    """Atendente/gestor que gera os links. Autenticação fica fora deste serviço."""
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(150))
    email: Mapped[str] = mapped_column(String(150), unique=True, index=True)
    role: Mapped[ProfileRole] = mapped_column(
        Enum(ProfileRole, name="profile_role_enum"),
        default=ProfileRole.ATTENDANT
    )

    orders: Mapped[List["Order"]] = relationship(back_populates="user")


# ═══════════════════════════════════════════════════════════
# CLIENTES
# ═══════════════════════════════════════════════════════════

class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(150))
    phone: Mapped[str] = mapped_column(String(30), default="")
    email: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    cpf: Mapped[Optional[str]] = mapped_column(String(14), unique=True, index=True, nullable=True)
    rg: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ID do cliente no Asaas (preenchido no checkout final)
    asaas_id: Mapped[Optional[str]] = mapped_column(String(60), nullable=True, index=True)

    created_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )

    addresses: Mapped[List["Address"]] = relationship(
        back_populates="customer",
        cascade="all, delete-orphan",
        order_by="Address.created_at.desc()"
    )
    orders: Mapped[List["Order"]] = relationship(back_populates="customer")

    @property
    def is_placeholder(self) -> bool:
        return self.name == PLACEHOLDER_CUSTOMER_NAME and not self.cpf

    @property
    def primary_address(self) -> Optional["Address"]:
        for address in self.addresses:
            if address.is_primary:
                return address
        return self.addresses[0] if self.addresses else None

    def __repr__(self):
        return f"<Customer(id='{self.id}', name='{self.name}', placeholder={self.is_placeholder})>"


class Address(Base, TimestampMixin):
    __tablename__ = "addresses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(30), default="Casa")
    zip: Mapped[str] = mapped_column(String(10), default="")
    street: Mapped[str] = mapped_column(String(200), default="")
    number: Mapped[str] = mapped_column(String(20), default="")
    neighborhood: Mapped[str] = mapped_column(String(120), default="")
    city: Mapped[str] = mapped_column(String(120), default="")
    state: Mapped[str] = mapped_column(String(2), default="")
    complement: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)

    customer: Mapped["Customer"] = relationship(back_populates="addresses")


# ═══════════════════════════════════════════════════════════
# PEDIDOS
# ═══════════════════════════════════════════════════════════

class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    ALLOWED_TRANSITIONS = {
        OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELED, OrderStatus.EXPIRED},
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Referência fraca: o endereço pode ter sido editado ou removido depois
    address_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status_enum"),
        default=OrderStatus.PENDING,
        index=True
    )

    total_value: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    shipping_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    # Frete configurado pelo atendente; base para recálculo no checkout
    original_shipping_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    shipping_type: Mapped[ShippingType] = mapped_column(
        Enum(ShippingType, name="shipping_type_enum"),
        default=ShippingType.FIXED
    )
    discount_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    discount_type: Mapped[Optional[DiscountType]] = mapped_column(
        Enum(DiscountType, name="discount_type_enum"),
        nullable=True
    )
    # Escolha do cliente no checkout (entrega ou retirada)
    delivery_method: Mapped[Optional[DeliveryMethod]] = mapped_column(
        Enum(DeliveryMethod, name="delivery_method_enum"),
        nullable=True
    )
    attachment_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    user: Mapped[Optional["Profile"]] = relationship(back_populates="orders")
    customer: Mapped[Optional["Customer"]] = relationship(back_populates="orders")
    address: Mapped[Optional["Address"]] = relationship(foreign_keys=[address_id])

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )
    notes: Mapped[List["OrderNote"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderNote.created_at"
    )
    payment_link: Mapped[Optional["PaymentLink"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", uselist=False
    )
    transactions: Mapped[List["PaymentTransaction"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PaymentTransaction.created_at"
    )

    @property
    def base_shipping_value(self) -> Decimal:
        if self.original_shipping_value is not None:
            return self.original_shipping_value
        return self.shipping_value or Decimal("0.00")

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in self.ALLOWED_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: OrderStatus) -> None:
        """Aplica a transição de status respeitando PENDING -> {PAID, CANCELED, EXPIRED}"""
        if self.status == new_status:
            return
        if not self.can_transition_to(new_status):
            raise BadRequestError(
                f"Transição de status inválida: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def __repr__(self):
        return f"<Order(id='{self.id}', status={self.status})>"


class OrderItem(Base, TimestampMixin):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    dosage: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actives: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    order: Mapped["Order"] = relationship(back_populates="items")


class OrderNote(Base, TimestampMixin):
    __tablename__ = "order_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    content: Mapped[str] = mapped_column(Text)
    author_type: Mapped[NoteAuthorType] = mapped_column(
        Enum(NoteAuthorType, name="note_author_type_enum")
    )
    author_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )

    order: Mapped["Order"] = relationship(back_populates="notes")


# ═══════════════════════════════════════════════════════════
# PAGAMENTOS
# ═══════════════════════════════════════════════════════════

class PaymentLink(Base, TimestampMixin):
    """
    Link de pagamento 1:1 com o pedido.

    Criado como rascunho (WAITING_CUSTOMER) junto com o pedido; só recebe
    `asaas_payment_id`/`asaas_url` no envio final do checkout.
    """
    __tablename__ = "payment_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), unique=True, index=True
    )
    status: Mapped[str] = mapped_column(String(30), default=PaymentLinkStatus.WAITING_CUSTOMER.value)
    asaas_payment_id: Mapped[Optional[str]] = mapped_column(String(60), unique=True, nullable=True, index=True)
    asaas_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship(back_populates="payment_link")


class PaymentTransaction(Base, TimestampMixin):
    """Linha de livro-razão por tentativa de cobrança (append-only)"""
    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    gateway_id: Mapped[str] = mapped_column(String(100), index=True)
    type: Mapped[str] = mapped_column(String(30))
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="transaction_status_enum")
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    # `metadata` é reservado no DeclarativeBase
    details: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="transactions")


class WebhookEvent(Base, TimestampMixin):
    """
    Registra eventos de webhook para garantir idempotência.

    Um registro SUCCESS para o `event_id` torna a reentrega um no-op.
    """
    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
        doc="ID único do evento fornecido pelo gateway"
    )
    event_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON)
    status: Mapped[WebhookEventStatus] = mapped_column(
        Enum(WebhookEventStatus, name="webhook_event_status_enum"),
        default=WebhookEventStatus.PROCESSING
    )

    def __repr__(self):
        return (
            f"<WebhookEvent(event_id='{self.event_id}', "
            f"event_type='{self.event_type}', status={self.status})>"
        )

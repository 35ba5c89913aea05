"""
Calculadora financeira do checkout
==================================

Funções puras (sem I/O) que determinam quanto cobrar do cliente:
subtotal dos itens, desconto, frete conforme política e cidade.

Todos os valores em `Decimal`; arredondamento ROUND_HALF_UP em 2 casas.
"""

import math
import unicodedata
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from farmapay.core.utils.enums import ShippingType, DeliveryMethod, DiscountType

Number = Union[Decimal, int, float, str]

TWO_PLACES = Decimal("0.01")

# Cidades atendidas pela entrega própria da farmácia (taxa fixa)
LOCAL_CITIES = ("ALFENAS", "MACHADO", "POCOS DE CALDAS")
LOCAL_SHIPPING_RATE = Decimal("7.00")


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # float -> str evita carregar o erro binário para o Decimal
    return Decimal(str(value))


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _normalize_city(city: str) -> str:
    """Maiúsculas, sem espaços nas bordas e sem acentos (`Poços` -> `POCOS`)"""
    decomposed = unicodedata.normalize("NFKD", city.strip().upper())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def is_local_city(city: Optional[str]) -> bool:
    """True se a cidade contém algum nome da lista de entrega local."""
    if not city:
        return False
    normalized = _normalize_city(city)
    return any(local in normalized for local in LOCAL_CITIES)


def resolve_shipping(
    shipping_type: ShippingType,
    base_shipping: Optional[Number],
    delivery_method: DeliveryMethod = DeliveryMethod.SHIP,
    delivery_city: Optional[str] = None,
) -> Decimal:
    """
    Frete efetivo do pedido.

    - Retirada na loja ou frete grátis: 0
    - FIXED/DYNAMIC: frete base, trocado pela taxa local (R$ 7,00)
      quando a cidade de entrega é atendida pela farmácia
    """
    if delivery_method == DeliveryMethod.PICKUP:
        return Decimal("0.00")

    if shipping_type == ShippingType.FREE:
        return Decimal("0.00")

    if is_local_city(delivery_city):
        return LOCAL_SHIPPING_RATE

    return _quantize(_to_decimal(base_shipping))


def compute_discount_amount(
    subtotal: Number,
    discount_type: Optional[DiscountType],
    discount_value: Optional[Number],
) -> Decimal:
    """Desconto absoluto. Percentual incide apenas sobre o subtotal dos itens."""
    value = _to_decimal(discount_value)
    if not discount_type or value <= 0:
        return Decimal("0.00")

    if discount_type == DiscountType.PERCENTAGE:
        return _quantize(_to_decimal(subtotal) * value / Decimal("100"))

    return _quantize(value)


def compute_charge(
    total_value: Number,
    shipping_type: ShippingType,
    base_shipping: Optional[Number],
    delivery_method: DeliveryMethod = DeliveryMethod.SHIP,
    discount_type: Optional[DiscountType] = None,
    discount_value: Optional[Number] = None,
    delivery_city: Optional[str] = None,
) -> Decimal:
    """
    Valor final a cobrar: subtotal - desconto + frete, nunca negativo.

    Examples:
        >>> compute_charge(Decimal("100"), ShippingType.FIXED, Decimal("15"),
        ...                discount_type=DiscountType.PERCENTAGE, discount_value=10)
        Decimal('105.00')
    """
    subtotal = _to_decimal(total_value)
    discount = compute_discount_amount(subtotal, discount_type, discount_value)
    shipping = resolve_shipping(shipping_type, base_shipping, delivery_method, delivery_city)

    final = _quantize(subtotal - discount + shipping)
    if final < 0:
        return Decimal("0.00")
    return final


def to_cents(amount: Number) -> int:
    """Cartão: `round(amount * 100)`"""
    return int((_to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pix_amount_in_cents(amount: Number) -> int:
    """
    PIX: o sandbox da maxiPago só aceita valores inteiros em reais,
    então o valor é arredondado para cima antes de virar centavos.
    """
    return math.ceil(_to_decimal(amount)) * 100

import enum


class ProfileRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ATTENDANT = "ATTENDANT"


class OrderStatus(str, enum.Enum):
    """
    Ciclo de vida do pedido.

    Transições permitidas: PENDING -> PAID | CANCELED | EXPIRED.
    """
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class ShippingType(str, enum.Enum):
    DYNAMIC = "DYNAMIC"
    FIXED = "FIXED"
    FREE = "FREE"


class DiscountType(str, enum.Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class DeliveryMethod(str, enum.Enum):
    SHIP = "SHIP"
    PICKUP = "PICKUP"


class NoteAuthorType(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    ATTENDANT = "ATTENDANT"


class PaymentMethod(str, enum.Enum):
    CREDIT_CARD = "CREDIT_CARD"
    PIX = "PIX"


class PaymentLinkStatus(str, enum.Enum):
    # Rascunho interno: link gerado pelo atendente, cliente ainda não finalizou
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class WebhookEventStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AsaasEvent(str, enum.Enum):
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_OVERDUE = "PAYMENT_OVERDUE"

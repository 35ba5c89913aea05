import logging

from sqlalchemy.orm import Session

from farmapay.api.schemas.order import OrderCreate
from farmapay.api.services.customer_service import CustomerService
from farmapay.core import models
from farmapay.core.database import transaction
from farmapay.core.exceptions import NotFoundError, UnauthorizedError
from farmapay.core.utils.enums import OrderStatus, NoteAuthorType, PaymentLinkStatus

logger = logging.getLogger(__name__)


class OrderService:
    """Criação de pedidos pelo atendente"""

    def __init__(self, db: Session):
        self.db = db
        self.customers = CustomerService(db)

    def create_order(self, data: OrderCreate) -> models.Order:
        """
        Cria pedido, itens, nota interna e o link de pagamento em rascunho.

        O link nasce como WAITING_CUSTOMER, sem id/URL do Asaas: a cobrança
        só é gerada quando o cliente finaliza o checkout.
        """
        if data.user_id and self.db.get(models.Profile, data.user_id) is None:
            raise UnauthorizedError("Sessão inválida. Por favor, faça login novamente.")

        with transaction(self.db):
            if data.customer_id:
                customer = self.db.get(models.Customer, data.customer_id)
                if customer is None:
                    raise NotFoundError("Cliente não encontrado")
            elif data.new_customer is not None:
                customer = self.customers.find_or_create(data.new_customer, created_by_id=data.user_id)
            else:
                customer = self.customers.create_anonymous(created_by_id=data.user_id)

            order = models.Order(
                user_id=data.user_id,
                customer=customer,
                status=OrderStatus.PENDING,
                total_value=data.total_value,
                shipping_value=data.shipping_value,
                original_shipping_value=data.shipping_value,
                shipping_type=data.shipping_type,
                discount_value=data.discount_value,
                discount_type=data.discount_type,
            )

            for item in data.items:
                order.items.append(models.OrderItem(
                    name=item.name,
                    dosage=item.dosage,
                    actives=item.actives,
                    price=item.price,
                ))

            if data.internal_notes and data.internal_notes.strip():
                order.notes.append(models.OrderNote(
                    content=data.internal_notes.strip(),
                    author_type=NoteAuthorType.ATTENDANT,
                    author_id=data.user_id,
                ))

            order.payment_link = models.PaymentLink(status=PaymentLinkStatus.WAITING_CUSTOMER.value)
            self.db.add(order)

        logger.info("order_created", extra={
            "order_id": order.id,
            "user_id": data.user_id,
            "customer_id": customer.id,
            "placeholder_customer": customer.is_placeholder,
        })
        return order

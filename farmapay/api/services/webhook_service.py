"""
Reconciliação de webhooks do Asaas
==================================

1. Autenticação por segredo compartilhado (header `asaas-access-token`)
2. Idempotência pelo `id` do evento: evento com status SUCCESS é no-op
3. Aplicação atômica: WebhookEvent + PaymentLink + Order + PaymentTransaction
   na mesma transação
4. Falha: rollback, evento marcado FAILED e erro propagado (HTTP 500)
   para o Asaas reenviar
"""

import logging
import secrets
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from farmapay.core import models
from farmapay.core.config import config
from farmapay.core.database import transaction
from farmapay.core.exceptions import AppError, BadRequestError, UnauthorizedError, WebhookProcessingError
from farmapay.core.utils.enums import (
    AsaasEvent, OrderStatus, PaymentLinkStatus, TransactionStatus, WebhookEventStatus,
)

logger = logging.getLogger(__name__)

PAID_EVENTS = (AsaasEvent.PAYMENT_RECEIVED.value, AsaasEvent.PAYMENT_CONFIRMED.value)


class DuplicateDelivery(Exception):
    """Outra entrega do mesmo evento gravou o registro primeiro"""


def verify_asaas_token(provided: Optional[str], expected: Optional[str] = None) -> None:
    """
    Valida o header `asaas-access-token` com comparação timing-safe.
    Sem segredo configurado (dev/teste) a checagem é desativada.
    """
    expected = expected if expected is not None else config.ASAAS_WEBHOOK_SECRET

    if not expected:
        logger.warning("asaas_webhook_secret_not_configured")
        return

    if not provided or not secrets.compare_digest(provided.encode("utf8"), expected.encode("utf8")):
        logger.warning("asaas_webhook_invalid_token", extra={"token_provided": bool(provided)})
        raise UnauthorizedError("Token de webhook inválido")


class WebhookService:
    """Aplica eventos do Asaas sobre pedidos e links de pagamento"""

    def __init__(self, db: Session):
        self.db = db

    def process_asaas_event(self, payload: Dict) -> Dict:
        event_id = payload.get("id")
        event_type = payload.get("event")

        if not event_id:
            raise BadRequestError("Evento sem id")

        logger.info("asaas_webhook_received", extra={
            "event_id": event_id,
            "event_type": event_type,
        })

        # ═══════════════════════════════════════════════════════
        # IDEMPOTÊNCIA
        # ═══════════════════════════════════════════════════════

        existing = self.db.query(models.WebhookEvent).filter_by(event_id=event_id).first()

        if existing and existing.status == WebhookEventStatus.SUCCESS:
            logger.info("asaas_webhook_already_processed", extra={
                "event_id": event_id,
                "event_type": event_type,
            })
            return {"received": True, "duplicate": True}

        # ═══════════════════════════════════════════════════════
        # APLICAÇÃO ATÔMICA
        # ═══════════════════════════════════════════════════════

        try:
            with transaction(self.db):
                event = self._claim_event(existing, event_id, event_type, payload)
                self._apply(event_type, payload.get("payment") or {})
                event.status = WebhookEventStatus.SUCCESS
        except DuplicateDelivery:
            logger.info("asaas_webhook_concurrent_duplicate", extra={"event_id": event_id})
            return {"received": True, "duplicate": True}
        except Exception as e:
            logger.error("asaas_webhook_processing_failed", extra={
                "event_id": event_id,
                "event_type": event_type,
                "error": str(e),
            }, exc_info=True)
            self._mark_failed(event_id, event_type, payload)
            if isinstance(e, AppError) and e.status_code < 500:
                raise WebhookProcessingError(f"Falha ao processar evento {event_id}: {e.message}") from e
            raise

        logger.info("asaas_webhook_processed", extra={"event_id": event_id, "event_type": event_type})
        return {"received": True}

    def _claim_event(
        self,
        existing: Optional[models.WebhookEvent],
        event_id: str,
        event_type: Optional[str],
        payload: Dict,
    ) -> models.WebhookEvent:
        if existing is not None:
            # Evento que falhou antes: nova tentativa
            existing.status = WebhookEventStatus.PROCESSING
            existing.payload = payload
            return existing

        event = models.WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WebhookEventStatus.PROCESSING,
        )
        self.db.add(event)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise DuplicateDelivery(event_id) from e
        return event

    def _mark_failed(self, event_id: str, event_type: Optional[str], payload: Dict) -> None:
        """Best effort: registra FAILED para reconciliação manual"""
        try:
            event = self.db.query(models.WebhookEvent).filter_by(event_id=event_id).first()
            if event is None:
                event = models.WebhookEvent(event_id=event_id, event_type=event_type, payload=payload)
                self.db.add(event)
            event.status = WebhookEventStatus.FAILED
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("asaas_webhook_mark_failed_error", extra={"event_id": event_id, "error": str(e)})

    # ═══════════════════════════════════════════════════════════
    # EFEITOS POR TIPO DE EVENTO
    # ═══════════════════════════════════════════════════════════

    def _find_order(self, payment: Dict) -> tuple:
        link = None
        payment_id = payment.get("id")
        if payment_id:
            link = self.db.query(models.PaymentLink).filter_by(asaas_payment_id=payment_id).first()

        if link is not None:
            return link, link.order

        external_reference = payment.get("externalReference")
        order = None
        if external_reference:
            order = self.db.query(models.Order).filter_by(id=external_reference).first()
        return (order.payment_link if order else None), order

    def _apply(self, event_type: Optional[str], payment: Dict) -> None:
        link, order = self._find_order(payment)

        if order is None:
            logger.warning("asaas_webhook_order_not_found", extra={
                "event_type": event_type,
                "payment_id": payment.get("id"),
                "external_reference": payment.get("externalReference"),
            })
            return

        if event_type in PAID_EVENTS:
            self._apply_payment_received(order, link, payment)
        elif event_type == AsaasEvent.PAYMENT_OVERDUE.value:
            self._apply_payment_overdue(order, link)
        else:
            logger.info("asaas_webhook_event_ignored", extra={"event_type": event_type, "order_id": order.id})

    def _apply_payment_received(
        self,
        order: models.Order,
        link: Optional[models.PaymentLink],
        payment: Dict,
    ) -> None:
        payment_id = payment.get("id") or ""

        if link is not None:
            link.status = PaymentLinkStatus.PAID.value

        old_status = order.status
        if order.can_transition_to(OrderStatus.PAID):
            order.transition_to(OrderStatus.PAID)
        elif order.status != OrderStatus.PAID:
            # Pagamento de pedido já expirado/cancelado: o dinheiro entrou,
            # registra a transação e deixa o status para o atendente
            logger.warning("asaas_payment_for_closed_order", extra={
                "order_id": order.id,
                "order_status": order.status.value,
                "payment_id": payment_id,
            })

        already_recorded = self.db.query(models.PaymentTransaction).filter_by(
            order_id=order.id,
            gateway_id=payment_id,
            status=TransactionStatus.CONFIRMED,
        ).first()

        if already_recorded is None:
            order.transactions.append(models.PaymentTransaction(
                gateway_id=payment_id,
                type=payment.get("billingType") or "UNDEFINED",
                status=TransactionStatus.CONFIRMED,
                amount=_to_amount(payment.get("value")),
                details=payment,
            ))

        logger.info("asaas_webhook_order_paid", extra={
            "order_id": order.id,
            "old_status": old_status.value,
            "new_status": order.status.value,
            "payment_id": payment_id,
            "transaction_recorded": already_recorded is None,
        })

    def _apply_payment_overdue(self, order: models.Order, link: Optional[models.PaymentLink]) -> None:
        if link is not None and link.status != PaymentLinkStatus.PAID.value:
            link.status = PaymentLinkStatus.OVERDUE.value

        if order.can_transition_to(OrderStatus.EXPIRED):
            order.transition_to(OrderStatus.EXPIRED)
            logger.info("asaas_webhook_order_expired", extra={"order_id": order.id})
        else:
            logger.info("asaas_webhook_overdue_ignored", extra={
                "order_id": order.id,
                "order_status": order.status.value,
            })


def _to_amount(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError):
        raise WebhookProcessingError(f"Valor de pagamento inválido: {value!r}")

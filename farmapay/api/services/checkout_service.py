"""
Checkout público
================

Fluxo retomável: identificação -> endereço -> contato/anexo -> pagamento.

- Etapas parciais (`partial=True`) só gravam dados locais, nunca chamam gateway
- Etapa final cria no máximo UMA cobrança no Asaas por pedido
- Pagamento direto (transparente) via maxiPago: PIX ou cartão tokenizado
"""

import logging
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional

from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from farmapay.api.schemas.checkout import (
    CheckoutSubmission, CustomerFieldsUpdate, AddressInput, DirectPaymentRequest, CustomerData,
)
from farmapay.api.schemas.customer import CustomerOut
from farmapay.api.services.asaas_service import AsaasService, asaas_service
from farmapay.api.services.customer_service import CustomerService
from farmapay.api.services.financial import (
    compute_charge, compute_discount_amount, resolve_shipping, to_cents, pix_amount_in_cents,
)
from farmapay.api.services.maxipago_service import MaxiPagoService, TransactionResult, maxipago_service
from farmapay.api.services.maxipago_xml import BuyerContact, CardDetails
from farmapay.core import models
from farmapay.core.config import config
from farmapay.core.exceptions import (
    BadRequestError, ConflictError, NotFoundError, AsaasError,
    ConsumerRegistrationError, CardTokenizationError,
)
from farmapay.core.storage import upload_order_attachment
from farmapay.core.utils.enums import (
    OrderStatus, DeliveryMethod, NoteAuthorType, PaymentMethod, PaymentLinkStatus, TransactionStatus,
)
from farmapay.core.utils.validators import only_digits, parse_birth_date

logger = logging.getLogger(__name__)

PICKUP_NOTE_PREFIX = "[Sistema] Retirada na loja:"


class CheckoutService:
    """Orquestra as etapas do checkout público de um pedido"""

    def __init__(
        self,
        db: Session,
        asaas: Optional[AsaasService] = None,
        maxipago: Optional[MaxiPagoService] = None,
    ):
        self.db = db
        self.asaas = asaas or asaas_service
        self.maxipago = maxipago or maxipago_service
        self.customers = CustomerService(db)

    # ═══════════════════════════════════════════════════════════
    # CONSULTA
    # ═══════════════════════════════════════════════════════════

    def get_checkout(self, order_id: str) -> models.Order:
        order = self.db.query(models.Order).options(
            selectinload(models.Order.customer).selectinload(models.Customer.addresses),
            selectinload(models.Order.items),
            selectinload(models.Order.notes),
            selectinload(models.Order.payment_link),
            selectinload(models.Order.transactions),
        ).filter(models.Order.id == order_id).first()

        if not order:
            raise NotFoundError("Pedido não encontrado ou link expirado.")
        return order

    # ═══════════════════════════════════════════════════════════
    # ENVIO DAS ETAPAS
    # ═══════════════════════════════════════════════════════════

    def submit(self, order_id: str, data: CheckoutSubmission) -> Dict:
        """
        Salva uma etapa do checkout.

        Parcial: grava e retorna `{success, message}` (ou `customerFound`
        quando o CPF já pertence a outro cliente). Final: grava e devolve
        `{redirectUrl}` da fatura do Asaas, criando-a se ainda não existir.
        """
        order = self.get_checkout(order_id)

        if order.status != OrderStatus.PENDING:
            raise BadRequestError("Pedido não está pendente")

        # 1. Identidade
        resolution = self.customers.resolve_for_order(order, data.cpf)
        customer = resolution.customer

        if resolution.customer_found and data.partial:
            # Não sobrescreve o cadastro encontrado com dados incompletos do formulário
            self._commit()
            return {
                "success": True,
                "customerFound": True,
                "message": "Cliente identificado.",
                "customer": CustomerOut.model_validate(customer).model_dump(by_alias=True, mode="json"),
                "orderId": order.id,
            }

        if customer is None:
            customer = self.customers.create_anonymous()
            order.customer = customer

        # 2. Dados do cliente
        self._apply_customer_fields(customer, data.customer_fields(include_cpf=not resolution.customer_found))

        # 3. Endereço
        if data.address is not None:
            order.address = self._upsert_primary_address(customer, data.address)
        elif data.address_id:
            order.address = self._get_customer_address(customer, data.address_id)

        # 4. Frete
        if data.delivery_method is not None:
            order.delivery_method = data.delivery_method
        if data.delivery_method is not None or data.address is not None or data.address_id:
            self._recompute_shipping(order, data.address)

        # 5. Notas
        self._add_customer_note(order, data.notes)
        if order.delivery_method == DeliveryMethod.PICKUP and data.pickup_location:
            self._add_pickup_note(order, data.pickup_location)

        self._commit()

        if data.partial:
            logger.info("checkout_progress_saved", extra={"order_id": order.id})
            return {
                "success": True,
                "message": "Dados salvos com sucesso.",
                "customerFound": resolution.customer_found,
            }

        return {"redirectUrl": self._ensure_invoice(order, customer)}

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("CPF já vinculado a outro cliente")

    def _apply_customer_fields(self, customer: models.Customer, fields: CustomerFieldsUpdate) -> None:
        if fields.name:
            customer.name = fields.name.strip()
        if fields.email:
            customer.email = fields.email.strip()
        if fields.phone:
            customer.phone = only_digits(fields.phone)
        if fields.cpf:
            customer.cpf = only_digits(fields.cpf)
        if fields.rg:
            customer.rg = fields.rg.strip()

        birth_date = parse_birth_date(fields.birth_date)
        if birth_date:
            customer.birth_date = birth_date

    def _upsert_primary_address(self, customer: models.Customer, data: AddressInput) -> models.Address:
        """Desmarca o principal anterior e reaproveita (CEP+rua+número) ou cria o novo principal"""
        for address in customer.addresses:
            address.is_primary = False

        zip_digits = only_digits(data.zip)
        existing = next((
            a for a in customer.addresses
            if only_digits(a.zip) == zip_digits and a.street == data.street and a.number == data.number
        ), None)

        if existing is not None:
            existing.is_primary = True
            existing.neighborhood = data.neighborhood or existing.neighborhood
            existing.city = data.city or existing.city
            existing.state = data.state or existing.state
            existing.complement = data.complement
            existing.type = data.type or existing.type
            return existing

        address = models.Address(
            type=data.type or "Casa",
            zip=zip_digits,
            street=data.street,
            number=data.number,
            neighborhood=data.neighborhood,
            city=data.city,
            state=data.state,
            complement=data.complement,
            is_primary=True,
        )
        customer.addresses.append(address)
        self.db.flush()
        return address

    def _get_customer_address(self, customer: models.Customer, address_id: str) -> models.Address:
        address = self.db.query(models.Address).filter(
            models.Address.id == address_id,
            models.Address.customer_id == customer.id,
        ).first()
        if not address:
            raise NotFoundError("Endereço não encontrado para este cliente")
        return address

    def _recompute_shipping(self, order: models.Order, address: Optional[AddressInput]) -> None:
        city = address.city if address is not None and address.city else None
        if city is None:
            known = order.address or (order.customer.primary_address if order.customer else None)
            city = known.city if known is not None else None

        old_value = order.shipping_value
        order.shipping_value = resolve_shipping(
            order.shipping_type,
            order.base_shipping_value,
            order.delivery_method or DeliveryMethod.SHIP,
            city,
        )

        if old_value != order.shipping_value:
            logger.info("checkout_shipping_recomputed", extra={
                "order_id": order.id,
                "old_value": str(old_value),
                "new_value": str(order.shipping_value),
                "delivery_method": (order.delivery_method or DeliveryMethod.SHIP).value,
            })

    def _add_customer_note(self, order: models.Order, content: Optional[str]) -> None:
        """Ignora nota vazia ou idêntica à última nota do cliente (reenvio da mesma etapa)"""
        if not content or not content.strip():
            return

        last_note = self.db.query(models.OrderNote).filter(
            models.OrderNote.order_id == order.id,
            models.OrderNote.author_type == NoteAuthorType.CUSTOMER,
        ).order_by(models.OrderNote.created_at.desc()).first()

        if last_note is not None and last_note.content == content:
            return

        order.notes.append(models.OrderNote(
            content=content,
            author_type=NoteAuthorType.CUSTOMER,
        ))

    def _add_pickup_note(self, order: models.Order, location: str) -> None:
        existing = self.db.query(models.OrderNote).filter(
            models.OrderNote.order_id == order.id,
            models.OrderNote.author_type == NoteAuthorType.ATTENDANT,
            models.OrderNote.content.startswith(PICKUP_NOTE_PREFIX),
        ).first()

        if existing is None:
            order.notes.append(models.OrderNote(
                content=f"{PICKUP_NOTE_PREFIX} {location}",
                author_type=NoteAuthorType.ATTENDANT,
            ))

    # ═══════════════════════════════════════════════════════════
    # FATURA ASAAS (etapa final)
    # ═══════════════════════════════════════════════════════════

    def _ensure_invoice(self, order: models.Order, customer: models.Customer) -> str:
        link = order.payment_link
        if link is not None and link.asaas_payment_id:
            logger.info("checkout_invoice_reused", extra={
                "order_id": order.id,
                "asaas_payment_id": link.asaas_payment_id,
            })
            return link.asaas_url

        # Mesmo frete que o pagamento direto cobraria (cidade local pode vir do endereço principal)
        self._recompute_shipping(order, None)
        address = order.address or customer.primary_address

        try:
            asaas_customer = self.asaas.create_customer(_without_empty({
                "name": customer.name,
                "cpfCnpj": customer.cpf,
                "email": customer.email,
                "mobilePhone": customer.phone,
                "address": address.street if address else None,
                "addressNumber": address.number if address else None,
                "complement": address.complement if address else None,
                "province": address.neighborhood if address else None,
                "postalCode": only_digits(address.zip) if address else None,
            }))

            customer.asaas_id = asaas_customer["id"]
            self.db.commit()

            payload = {
                "customer": asaas_customer["id"],
                "billingType": "UNDEFINED",
                "value": float(order.total_value + (order.shipping_value or Decimal("0"))),
                "dueDate": (date.today() + timedelta(days=config.ASAAS_DUE_DAYS)).isoformat(),
                "description": f"Pedido Farmapay #{order.id}",
                "externalReference": order.id,
            }

            # Percentual vira valor absoluto (o percentual incide só sobre os itens)
            discount = compute_discount_amount(order.total_value, order.discount_type, order.discount_value)
            if discount > 0:
                payload["discount"] = {"value": float(discount), "type": "FIXED"}

            payment = self.asaas.create_payment_link(payload)
        except AsaasError as e:
            raise AsaasError(f"Erro ao processar checkout. {e.message}", errors=e.errors)

        # Outra requisição pode ter finalizado o mesmo pedido enquanto o Asaas respondia
        if link is not None:
            self.db.refresh(link)
            if link.asaas_payment_id:
                logger.warning("checkout_duplicate_invoice_created", extra={
                    "order_id": order.id,
                    "kept_payment_id": link.asaas_payment_id,
                    "discarded_payment_id": payment.get("id"),
                })
                return link.asaas_url
        else:
            link = models.PaymentLink(order_id=order.id)
            self.db.add(link)

        link.asaas_payment_id = payment["id"]
        link.asaas_url = payment.get("invoiceUrl")
        link.status = payment.get("status") or PaymentLinkStatus.PENDING.value
        self.db.commit()

        logger.info("checkout_invoice_created", extra={
            "order_id": order.id,
            "asaas_payment_id": link.asaas_payment_id,
        })
        return link.asaas_url

    # ═══════════════════════════════════════════════════════════
    # PAGAMENTO DIRETO (maxiPago)
    # ═══════════════════════════════════════════════════════════

    def process_payment(self, order_id: str, data: DirectPaymentRequest) -> Dict:
        """
        Cobra o pedido via maxiPago e registra uma PaymentTransaction
        (aprovada, pendente ou recusada).

        Cartão aprovado marca o pedido como PAID; PIX aprovado fica
        PENDING aguardando a confirmação.
        """
        order = self.get_checkout(order_id)

        if order.status == OrderStatus.PAID:
            raise BadRequestError("Pedido já foi pago")
        if order.status != OrderStatus.PENDING:
            raise BadRequestError("Pedido não está pendente")

        customer = order.customer
        if customer is not None and data.customer_data is not None:
            self._fill_missing_customer_data(customer, data.customer_data)

        address = order.address or (customer.primary_address if customer else None)
        amount = compute_charge(
            order.total_value,
            order.shipping_type,
            order.base_shipping_value,
            order.delivery_method or DeliveryMethod.SHIP,
            order.discount_type,
            order.discount_value,
            address.city if address else None,
        )

        if data.amount is not None and data.amount != amount:
            logger.warning("checkout_amount_mismatch", extra={
                "order_id": order.id,
                "client_amount": str(data.amount),
                "server_amount": str(amount),
            })

        # Sufixo do UUID + timestamp: único e dentro do limite de tamanho da maxiPago
        reference = f"{order.id.split('-')[-1]}-{int(time.time() * 1000)}"
        contact = _buyer_contact(customer, address)

        if data.payment_method == PaymentMethod.PIX:
            result = self.maxipago.create_pix_transaction(reference, pix_amount_in_cents(amount), contact)
            details = {"pixKey": result.qrcode_text}
        else:
            card = CardDetails(
                number=data.card_data.number,
                holder_name=data.card_data.holder_name,
                exp_month=data.card_data.month,
                exp_year=data.card_data.year,
                cvv=data.card_data.cvv,
                installments=data.card_data.installments,
            )
            try:
                result = self.maxipago.create_credit_card_transaction(reference, to_cents(amount), card, contact)
            except (ConsumerRegistrationError, CardTokenizationError) as e:
                result = TransactionResult(
                    success=False,
                    message=e.message,
                    kind="credit_card",
                    return_code=e.provider_code,
                    failed_step=e.step,
                )
            details = {"brand": "Credit Card", "last4": card.last4, "installments": card.installments}

        if not result.success:
            details.update({
                "returnCode": result.return_code,
                "message": result.message,
                "failedStep": result.failed_step,
            })
            status = TransactionStatus.FAILED
        elif data.payment_method == PaymentMethod.CREDIT_CARD:
            status = TransactionStatus.CONFIRMED
            order.transition_to(OrderStatus.PAID)
        else:
            status = TransactionStatus.PENDING

        order.transactions.append(models.PaymentTransaction(
            gateway_id=result.tx_id or f"manual-{int(time.time() * 1000)}",
            type=data.payment_method.value,
            status=status,
            amount=amount,
            details=details,
        ))
        self.db.commit()

        logger.info("checkout_payment_processed", extra={
            "order_id": order.id,
            "method": data.payment_method.value,
            "transaction_status": status.value,
            "amount": str(amount),
            "return_code": result.return_code,
        })

        return {**result.to_dict(), "amount": float(amount)}

    def _fill_missing_customer_data(self, customer: models.Customer, data: CustomerData) -> None:
        """Completa só o que falta no cadastro; nunca troca dados existentes"""
        if data.name and customer.is_placeholder:
            customer.name = data.name.strip()
        if data.email and not customer.email:
            customer.email = data.email.strip()
        cpf = only_digits(data.cpf)
        if cpf and not customer.cpf and self.customers.get_by_cpf(cpf) is None:
            customer.cpf = cpf

    # ═══════════════════════════════════════════════════════════
    # ENDEREÇOS E ANEXOS
    # ═══════════════════════════════════════════════════════════

    def delete_address(self, order_id: str, address_id: str) -> None:
        order = self.get_checkout(order_id)

        if order.status != OrderStatus.PENDING:
            raise BadRequestError("Não é possível remover endereço de um pedido já processado")

        address = self.db.query(models.Address).filter(
            models.Address.id == address_id,
            models.Address.customer_id == order.customer_id,
        ).first()

        if not address:
            raise NotFoundError("Endereço não encontrado para este cliente")

        if order.address_id == address_id:
            order.address = None

        # delete-orphan remove o registro ao sair da coleção do cliente
        order.customer.addresses.remove(address)
        self.db.commit()
        logger.info("checkout_address_deleted", extra={"order_id": order.id, "address_id": address_id})

    def attach_file(self, order_id: str, file: UploadFile) -> str:
        order = self.get_checkout(order_id)

        attachment_url = upload_order_attachment(order.id, file)
        order.attachment_url = attachment_url
        self.db.commit()

        logger.info("checkout_attachment_saved", extra={"order_id": order.id})
        return attachment_url


def _without_empty(data: Dict) -> Dict:
    return {k: v for k, v in data.items() if v not in (None, "")}


def _buyer_contact(
    customer: Optional[models.Customer],
    address: Optional[models.Address],
) -> Optional[BuyerContact]:
    if customer is None:
        return None
    return BuyerContact(
        name=customer.name,
        email=customer.email,
        phone=customer.phone,
        cpf=customer.cpf,
        address=address.street if address else None,
        number=address.number if address else None,
        complement=address.complement if address else None,
        city=address.city if address else None,
        state=address.state if address else None,
        postalcode=address.zip if address else None,
        birth_date=customer.birth_date,
    )

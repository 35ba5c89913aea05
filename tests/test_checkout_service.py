"""
Testes do CheckoutService
=========================
Etapas parciais, etapa final (fatura Asaas) e pagamento direto (maxiPago).
Gateways sempre substituídos por Mock.
"""

from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

import pytest
from fastapi import UploadFile

from farmapay.api.schemas.checkout import CardData, CheckoutSubmission, DirectPaymentRequest
from farmapay.api.services.checkout_service import PICKUP_NOTE_PREFIX, CheckoutService
from farmapay.api.services.maxipago_service import TransactionResult
from farmapay.core import models
from farmapay.core.exceptions import (
    AsaasError, BadRequestError, ConsumerRegistrationError, NotFoundError,
)
from farmapay.core.utils.enums import (
    DeliveryMethod, DiscountType, NoteAuthorType, OrderStatus, PaymentMethod, TransactionStatus,
)


# ═══════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def checkout(db, asaas_mock, maxipago_mock):
    return CheckoutService(db, asaas=asaas_mock, maxipago=maxipago_mock)


@pytest.fixture
def order(make_order):
    """Pedido de R$ 150,00 + R$ 10,00 de frete, com cliente placeholder"""
    return make_order()


@pytest.fixture
def card_data():
    return CardData(
        number="4111 1111 1111 1111",
        holder_name="MARIA SOUZA",
        month="12",
        year="2030",
        cvv="123",
        installments=2,
    )


def _address(**overrides):
    data = {
        "zip": "37130000",
        "street": "Rua das Flores",
        "number": "100",
        "neighborhood": "Centro",
        "city": "Varginha",
        "state": "MG",
    }
    data.update(overrides)
    return data


def _notes(db, order, author_type):
    return db.query(models.OrderNote).filter_by(order_id=order.id, author_type=author_type).all()


# ═══════════════════════════════════════════════════════════
# CONSULTA
# ═══════════════════════════════════════════════════════════

def test_unknown_order_is_not_found(checkout):
    with pytest.raises(NotFoundError):
        checkout.get_checkout("nao-existe")


# ═══════════════════════════════════════════════════════════
# ETAPAS PARCIAIS
# ═══════════════════════════════════════════════════════════

class TestPartialSubmission:

    def test_saves_fields_without_gateway_calls(self, db, checkout, order, asaas_mock, maxipago_mock):
        result = checkout.submit(order.id, CheckoutSubmission(
            partial=True, name="  João Pereira ", phone="(35) 99888-7766", email="joao@example.com",
        ))

        assert result == {"success": True, "message": "Dados salvos com sucesso.", "customerFound": False}
        assert order.customer.name == "João Pereira"
        assert order.customer.phone == "35998887766"
        asaas_mock.create_customer.assert_not_called()
        asaas_mock.create_payment_link.assert_not_called()
        assert not maxipago_mock.method_calls

    def test_existing_cpf_links_order_and_keeps_registration(self, db, checkout, order, existing_customer):
        placeholder_id = order.customer_id

        result = checkout.submit(order.id, CheckoutSubmission(
            partial=True, name="Nome Digitado", cpf="529.982.247-25",
        ))

        assert result["customerFound"] is True
        assert result["orderId"] == order.id
        assert result["customer"]["cpf"] == "52998224725"
        assert order.customer_id == existing_customer.id
        assert existing_customer.name == "Maria Souza"
        assert db.get(models.Customer, placeholder_id) is None

    def test_birth_date_in_brazilian_format(self, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, birthDate="20/05/1990"))

        assert order.customer.birth_date.isoformat() == "1990-05-20"

    def test_rejects_order_not_pending(self, db, checkout, order):
        order.status = OrderStatus.CANCELED
        db.commit()

        with pytest.raises(BadRequestError):
            checkout.submit(order.id, CheckoutSubmission(partial=True, name="X"))


class TestAddressAndShipping:

    def test_same_address_is_reused_as_primary(self, db, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address()))
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(complement="Apto 2")))

        addresses = order.customer.addresses
        assert len(addresses) == 1
        assert addresses[0].is_primary is True
        assert addresses[0].complement == "Apto 2"
        assert order.address_id == addresses[0].id

    def test_masked_zip_reuses_same_address(self, db, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(zip="37130-000")))
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(zip="37130000")))

        addresses = order.customer.addresses
        assert len(addresses) == 1
        assert addresses[0].zip == "37130000"

    def test_new_address_becomes_the_only_primary(self, db, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address()))
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(number="200")))

        primaries = [a for a in order.customer.addresses if a.is_primary]
        assert len(order.customer.addresses) == 2
        assert len(primaries) == 1
        assert primaries[0].number == "200"
        assert order.address_id == primaries[0].id

    def test_local_city_uses_flat_rate(self, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(city="Poços de Caldas")))

        assert order.shipping_value == Decimal("7.00")
        assert order.original_shipping_value == Decimal("10.00")

    def test_switching_back_to_other_city_restores_base(self, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(city="Alfenas")))
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address(city="Varginha", number="9")))

        assert order.shipping_value == Decimal("10.00")

    def test_pickup_zeroes_shipping_and_adds_note_once(self, db, checkout, order):
        submission = CheckoutSubmission(partial=True, deliveryMethod="PICKUP", pickupLocation="Loja Centro")

        checkout.submit(order.id, submission)
        checkout.submit(order.id, submission)

        assert order.delivery_method == DeliveryMethod.PICKUP
        assert order.shipping_value == Decimal("0.00")
        notes = _notes(db, order, NoteAuthorType.ATTENDANT)
        assert len(notes) == 1
        assert notes[0].content == f"{PICKUP_NOTE_PREFIX} Loja Centro"

    def test_repeated_customer_note_is_ignored(self, db, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, notes="Sem lactose, por favor"))
        checkout.submit(order.id, CheckoutSubmission(partial=True, notes="Sem lactose, por favor"))

        assert len(_notes(db, order, NoteAuthorType.CUSTOMER)) == 1

    def test_attendant_note_does_not_hide_customer_note(self, db, checkout, order):
        order.notes.append(models.OrderNote(content="Sem lactose, por favor", author_type=NoteAuthorType.ATTENDANT))
        db.commit()

        checkout.submit(order.id, CheckoutSubmission(partial=True, notes="Sem lactose, por favor"))

        assert len(_notes(db, order, NoteAuthorType.CUSTOMER)) == 1

    def test_address_id_must_belong_to_customer(self, db, checkout, order, existing_customer):
        foreign = models.Address(zip="1", street="Outra", number="1", city="Machado", state="MG")
        existing_customer.addresses.append(foreign)
        db.commit()

        with pytest.raises(NotFoundError):
            checkout.submit(order.id, CheckoutSubmission(partial=True, addressId=foreign.id))


# ═══════════════════════════════════════════════════════════
# ETAPA FINAL (fatura Asaas)
# ═══════════════════════════════════════════════════════════

class TestFinalSubmission:

    def _final(self, **overrides):
        data = {"name": "João Pereira", "cpf": "123.456.789-09", "phone": "35998887766"}
        data.update(overrides)
        return CheckoutSubmission(**data)

    def test_creates_invoice_once(self, db, checkout, make_order, asaas_mock):
        order = make_order(discount_type=DiscountType.PERCENTAGE, discount_value="10")

        first = checkout.submit(order.id, self._final())
        second = checkout.submit(order.id, self._final())

        assert first == {"redirectUrl": "https://sandbox.asaas.com/i/000001"}
        assert second == first
        asaas_mock.create_payment_link.assert_called_once()

        payload = asaas_mock.create_payment_link.call_args.args[0]
        assert payload["customer"] == "cus_000001"
        assert payload["billingType"] == "UNDEFINED"
        assert payload["value"] == 160.0
        assert payload["discount"] == {"value": 15.0, "type": "FIXED"}
        assert payload["externalReference"] == order.id

        customer_payload = asaas_mock.create_customer.call_args.args[0]
        assert customer_payload["cpfCnpj"] == "12345678909"
        assert "email" not in customer_payload

        assert order.payment_link.asaas_payment_id == "pay_000001"
        assert order.payment_link.status == "PENDING"
        assert order.customer.asaas_id == "cus_000001"

    def test_invoice_uses_local_rate_of_primary_address(self, db, checkout, make_order, existing_customer,
                                                        asaas_mock, maxipago_mock):
        existing_customer.addresses.append(models.Address(
            zip="37701000", street="Rua Assis", number="5", city="Poços de Caldas", state="MG", is_primary=True,
        ))
        db.commit()
        order = make_order(shipping_value="20.00", customer_id=existing_customer.id)
        maxipago_mock.create_pix_transaction.return_value = TransactionResult(
            success=True, tx_id="PIX-002", kind="pix", return_code="0", qrcode_text="000201",
        )

        checkout.submit(order.id, self._final(cpf="529.982.247-25"))
        payment = checkout.process_payment(order.id, DirectPaymentRequest(paymentMethod="PIX"))

        payload = asaas_mock.create_payment_link.call_args.args[0]
        assert payload["value"] == 157.0
        assert payload["value"] == payment["amount"]
        assert order.shipping_value == Decimal("7.00")

    def test_merge_on_final_step_recomputes_shipping(self, db, checkout, order, existing_customer, asaas_mock):
        existing_customer.addresses.append(models.Address(
            zip="37130000", street="Rua B", number="8", city="Alfenas", state="MG", is_primary=True,
        ))
        db.commit()
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address()))

        checkout.submit(order.id, self._final(cpf="529.982.247-25"))

        assert order.customer_id == existing_customer.id
        assert order.shipping_value == Decimal("7.00")
        assert asaas_mock.create_payment_link.call_args.args[0]["value"] == 157.0

    def test_missing_required_fields(self):
        with pytest.raises(ValueError):
            CheckoutSubmission(name="João", phone="35998887766")

    def test_gateway_error_is_wrapped(self, checkout, order, asaas_mock):
        asaas_mock.create_payment_link.side_effect = AsaasError("O CPF informado é inválido.")

        with pytest.raises(AsaasError) as exc_info:
            checkout.submit(order.id, self._final())

        assert exc_info.value.message.startswith("Erro ao processar checkout.")
        assert "O CPF informado é inválido." in exc_info.value.message
        assert order.payment_link.asaas_payment_id is None


# ═══════════════════════════════════════════════════════════
# PAGAMENTO DIRETO (maxiPago)
# ═══════════════════════════════════════════════════════════

class TestDirectPayment:

    def test_paid_order_is_rejected(self, db, checkout, order, maxipago_mock):
        order.status = OrderStatus.PAID
        db.commit()

        with pytest.raises(BadRequestError, match="Pedido já foi pago"):
            checkout.process_payment(order.id, DirectPaymentRequest(paymentMethod="PIX"))

        maxipago_mock.create_pix_transaction.assert_not_called()

    def test_pix_is_charged_in_whole_reais_and_stays_pending(self, db, checkout, order, maxipago_mock):
        maxipago_mock.create_pix_transaction.return_value = TransactionResult(
            success=True, tx_id="PIX-001", kind="pix", return_code="0",
            qrcode_text="00020126580014BR.GOV.BCB.PIX",
        )

        result = checkout.process_payment(order.id, DirectPaymentRequest(paymentMethod="PIX", amount=160))

        reference, amount_in_cents, contact = maxipago_mock.create_pix_transaction.call_args.args
        assert amount_in_cents == 16000
        assert reference.startswith(order.id.split("-")[-1] + "-")
        assert contact.name == models.PLACEHOLDER_CUSTOMER_NAME

        assert result["success"] is True
        assert result["qrcodeText"] == "00020126580014BR.GOV.BCB.PIX"
        assert result["amount"] == 160.0

        transaction = order.transactions[-1]
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.gateway_id == "PIX-001"
        assert transaction.details == {"pixKey": "00020126580014BR.GOV.BCB.PIX"}
        assert order.status == OrderStatus.PENDING

    def test_approved_card_marks_order_paid(self, db, checkout, order, maxipago_mock, card_data):
        maxipago_mock.create_credit_card_transaction.return_value = TransactionResult(
            success=True, tx_id="0A0104A3:01", kind="credit_card", return_code="0",
        )

        checkout.process_payment(order.id, DirectPaymentRequest(paymentMethod="CREDIT_CARD", cardData=card_data))

        _, amount_in_cents, card, _ = maxipago_mock.create_credit_card_transaction.call_args.args
        assert amount_in_cents == 16000
        assert card.installments == 2

        transaction = order.transactions[-1]
        assert transaction.status == TransactionStatus.CONFIRMED
        assert transaction.amount == Decimal("160.00")
        assert transaction.details == {"brand": "Credit Card", "last4": "1111", "installments": 2}
        assert order.status == OrderStatus.PAID

    def test_saga_failure_is_recorded(self, db, checkout, order, maxipago_mock, card_data):
        maxipago_mock.create_credit_card_transaction.side_effect = ConsumerRegistrationError(
            "Não foi possível registrar o comprador", provider_code="1", step="add-consumer",
        )

        result = checkout.process_payment(
            order.id, DirectPaymentRequest(paymentMethod="CREDIT_CARD", cardData=card_data)
        )

        assert result["success"] is False
        assert result["failedStep"] == "add-consumer"

        transaction = order.transactions[-1]
        assert transaction.status == TransactionStatus.FAILED
        assert transaction.gateway_id.startswith("manual-")
        assert transaction.details["failedStep"] == "add-consumer"
        assert transaction.details["returnCode"] == "1"
        assert order.status == OrderStatus.PENDING

    def test_declined_card_keeps_order_pending(self, checkout, order, maxipago_mock, card_data):
        maxipago_mock.create_credit_card_transaction.return_value = TransactionResult(
            success=False, tx_id="0A0104A3:02", kind="credit_card", return_code="1",
            message="Pagamento recusado (código 1): DECLINED", failed_step="sale",
        )

        checkout.process_payment(order.id, DirectPaymentRequest(paymentMethod="CREDIT_CARD", cardData=card_data))

        assert order.transactions[-1].status == TransactionStatus.FAILED
        assert order.status == OrderStatus.PENDING

    def test_card_required_for_credit(self):
        with pytest.raises(ValueError):
            DirectPaymentRequest(paymentMethod="CREDIT_CARD")

    def test_missing_customer_data_is_completed(self, checkout, order, maxipago_mock):
        maxipago_mock.create_pix_transaction.return_value = TransactionResult(success=True, tx_id="PIX-2", kind="pix")

        checkout.process_payment(order.id, DirectPaymentRequest(
            paymentMethod="PIX",
            customerData={"name": "Ana Lima", "email": "ana@example.com", "cpf": "123.456.789-09"},
        ))

        assert order.customer.name == "Ana Lima"
        assert order.customer.email == "ana@example.com"
        assert order.customer.cpf == "12345678909"


# ═══════════════════════════════════════════════════════════
# ENDEREÇOS E ANEXOS
# ═══════════════════════════════════════════════════════════

class TestAddressesAndAttachments:

    def test_delete_address_unbinds_order(self, db, checkout, order):
        checkout.submit(order.id, CheckoutSubmission(partial=True, address=_address()))
        address_id = order.address_id

        checkout.delete_address(order.id, address_id)

        assert order.address_id is None
        assert db.get(models.Address, address_id) is None

    def test_cannot_delete_address_of_another_customer(self, db, checkout, order, existing_customer):
        foreign = models.Address(zip="1", street="Outra", number="1", city="Machado", state="MG")
        existing_customer.addresses.append(foreign)
        db.commit()

        with pytest.raises(NotFoundError):
            checkout.delete_address(order.id, foreign.id)

    def test_attach_file_saves_url(self, checkout, order):
        upload = UploadFile(file=BytesIO(b"%PDF-1.4"), filename="receita.pdf")

        with patch(
            "farmapay.api.services.checkout_service.upload_order_attachment",
            return_value="https://bucket.s3.sa-east-1.amazonaws.com/prescriptions/x/receita.pdf",
        ) as upload_mock:
            url = checkout.attach_file(order.id, upload)

        upload_mock.assert_called_once_with(order.id, upload)
        assert order.attachment_url == url

"""
Testes do AsaasService
"""

from unittest.mock import Mock

import pytest
import requests

from farmapay.api.services.asaas_service import AsaasService
from farmapay.core.exceptions import AsaasError


def _response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


@pytest.fixture
def service():
    svc = AsaasService(api_key="$aact_test_key", base_url="https://sandbox.asaas.com/api/v3/")
    svc.session.request = Mock()
    return svc


@pytest.fixture
def customer_payload():
    return {
        "name": "Maria Souza",
        "cpfCnpj": "52998224725",
        "email": "maria@example.com",
        "mobilePhone": "35999991234",
    }


class TestConfiguredService:

    def test_sends_access_token_header(self, service):
        assert service.session.headers["access_token"] == "$aact_test_key"
        assert service.base_url == "https://sandbox.asaas.com/api/v3"

    def test_existing_customer_is_updated(self, service, customer_payload):
        service.session.request.side_effect = [
            _response({"data": [{"id": "cus_000123", "name": "Maria"}]}),
            _response({"id": "cus_000123", "name": "Maria Souza"}),
        ]

        customer = service.create_customer(customer_payload)

        assert customer["id"] == "cus_000123"
        lookup, update = service.session.request.call_args_list
        assert lookup.kwargs["method"] == "GET"
        assert lookup.kwargs["params"] == {"cpfCnpj": "52998224725"}
        assert update.kwargs["method"] == "POST"
        assert update.kwargs["url"].endswith("/customers/cus_000123")
        assert update.kwargs["json"] == customer_payload

    def test_new_customer_is_created(self, service, customer_payload):
        service.session.request.side_effect = [
            _response({"data": []}),
            _response({"id": "cus_000999"}),
        ]

        customer = service.create_customer(customer_payload)

        assert customer["id"] == "cus_000999"
        assert service.session.request.call_args.kwargs["url"].endswith("/customers")

    def test_customer_without_document_skips_lookup(self, service):
        service.session.request.return_value = _response({"id": "cus_000777"})

        service.create_customer({"name": "Sem CPF"})

        assert service.session.request.call_count == 1

    def test_payment_link(self, service):
        service.session.request.return_value = _response({
            "id": "pay_000001",
            "invoiceUrl": "https://www.asaas.com/i/000001",
            "status": "PENDING",
        })

        payment = service.create_payment_link({"customer": "cus_1", "value": 160.0, "externalReference": "order-1"})

        assert payment["invoiceUrl"] == "https://www.asaas.com/i/000001"
        assert service.session.request.call_args.kwargs["url"].endswith("/payments")

    def test_error_descriptions_become_message(self, service):
        service.session.request.return_value = _response(
            {"errors": [
                {"code": "invalid_cpfCnpj", "description": "O CPF informado é inválido."},
                {"code": "invalid_email", "description": "Email inválido."},
            ]},
            status_code=400,
        )

        with pytest.raises(AsaasError) as exc_info:
            service.create_payment_link({"customer": "cus_1", "value": 10})

        assert exc_info.value.message == "O CPF informado é inválido., Email inválido."
        assert len(exc_info.value.errors) == 2

    def test_connection_error(self, service):
        service.session.request.side_effect = requests.exceptions.ConnectTimeout("timeout")

        with pytest.raises(AsaasError):
            service.create_payment_link({"customer": "cus_1", "value": 10})

    def test_masks_document_in_logs(self, service, customer_payload):
        masked = service._mask_sensitive_data(customer_payload)

        assert masked["cpfCnpj"] == "529...25"
        assert masked["name"] == "Maria Souza"


class TestMockMode:

    def test_mock_ids_without_network(self, customer_payload):
        service = AsaasService(api_key="")
        service.session.request = Mock()

        customer = service.create_customer(customer_payload)
        first = service.create_payment_link({"value": 10, "externalReference": "order-1"})
        second = service.create_payment_link({"value": 10, "externalReference": "order-2"})

        assert customer["id"].startswith("cus_mock_")
        assert first["id"].startswith("pay_mock_")
        assert first["invoiceUrl"].startswith("https://sandbox.asaas.com/payment/mock/")
        assert first["status"] == "PENDING"
        assert first["id"] != second["id"]
        assert "access_token" not in service.session.headers
        service.session.request.assert_not_called()

"""
Serviço de integração com Asaas
===============================
Cliente remoto (upsert por CPF) e fatura com link de pagamento hospedado.
A confirmação chega depois, via webhook (ver `webhook_service`).

Sem `ASAAS_API_KEY` as chamadas retornam mocks (`cus_mock_*`, `pay_mock_*`).
"""

import logging
import threading
import time
from typing import Dict, Optional

import requests

from farmapay.core.config import config
from farmapay.core.exceptions import AsaasError

logger = logging.getLogger(__name__)


class AsaasService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else config.ASAAS_API_KEY
        self.base_url = (base_url or config.ASAAS_API_URL).rstrip("/")
        self.timeout = timeout or config.GATEWAY_TIMEOUT_SECONDS

        self._mock_lock = threading.Lock()
        self._last_mock_id = 0

        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if self.api_key:
            self.session.headers["access_token"] = self.api_key
        else:
            logger.warning("⚠️ [AsaasService] ASAAS_API_KEY ausente: respostas serão simuladas (mock)")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    # ═══════════════════════════════════════════════════════════
    # HTTP
    # ═══════════════════════════════════════════════════════════

    def _mask_sensitive_data(self, data: Dict) -> Dict:
        """Mascara documento e contatos nos logs"""
        if not isinstance(data, dict):
            return data

        masked = data.copy()
        sensitive_keys = ["cpfcnpj", "email", "phone", "mobilephone"]

        for key in masked:
            if key.lower() in sensitive_keys and isinstance(masked[key], str):
                value = masked[key]
                masked[key] = f"{value[:3]}...{value[-2:]}" if len(value) > 6 else "****"
            elif isinstance(masked[key], dict):
                masked[key] = self._mask_sensitive_data(masked[key])

        return masked

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """Faz requisição HTTP para a API do Asaas"""
        url = f"{self.base_url}{endpoint}"

        logger.info(f"📤 [Asaas] {method} {url}")
        if data:
            logger.debug(f"📦 [Payload] {self._mask_sensitive_data(data)}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("asaas_connection_error", extra={"url": url, "error": str(e)})
            raise AsaasError(f"Erro de conexão com Asaas: {e}")

        logger.info(f"📥 [Asaas] Status: {response.status_code}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"errors": [{"description": response.text[:200]}]}

            errors = error_data.get("errors") or []
            descriptions = [e.get("description", "") for e in errors if isinstance(e, dict)]
            message = ", ".join(d for d in descriptions if d) or f"HTTP {response.status_code}"

            logger.error("asaas_request_failed", extra={
                "url": url,
                "status_code": response.status_code,
                "errors": descriptions,
            })
            raise AsaasError(message, errors=errors)

        return response.json()

    def _next_mock_id(self) -> int:
        """Timestamp em ms, estritamente crescente dentro do processo"""
        with self._mock_lock:
            now_ms = int(time.time() * 1000)
            self._last_mock_id = max(self._last_mock_id + 1, now_ms)
            return self._last_mock_id

    # ═══════════════════════════════════════════════════════════
    # CLIENTES
    # ═══════════════════════════════════════════════════════════

    def get_customer_by_cpf(self, cpf_cnpj: str) -> Optional[Dict]:
        if not self.is_configured:
            return None

        response = self._make_request("GET", "/customers", params={"cpfCnpj": cpf_cnpj})
        customers = response.get("data") or []
        return customers[0] if customers else None

    def update_customer(self, customer_id: str, data: Dict) -> Dict:
        if not self.is_configured:
            return {"id": customer_id, **data}

        logger.info("asaas_customer_update", extra={"asaas_customer_id": customer_id})
        return self._make_request("POST", f"/customers/{customer_id}", data=data)

    def create_customer(self, data: Dict) -> Dict:
        """
        Upsert por CPF: se já existe cliente com o documento no Asaas,
        atualiza; senão cria.

        Args:
            data: name, cpfCnpj, email, mobilePhone, address, addressNumber,
                  complement, province, postalCode

        Returns:
            Cliente do Asaas (contém `id`)
        """
        if not self.is_configured:
            mock = {"id": f"cus_mock_{self._next_mock_id()}", **data}
            logger.warning("asaas_mock_customer", extra={"asaas_customer_id": mock["id"]})
            return mock

        cpf_cnpj = data.get("cpfCnpj")
        if cpf_cnpj:
            existing = self.get_customer_by_cpf(cpf_cnpj)
            if existing:
                logger.info("asaas_customer_found", extra={"asaas_customer_id": existing["id"]})
                return self.update_customer(existing["id"], data)

        customer = self._make_request("POST", "/customers", data=data)
        logger.info("asaas_customer_created", extra={"asaas_customer_id": customer.get("id")})
        return customer

    # ═══════════════════════════════════════════════════════════
    # COBRANÇAS
    # ═══════════════════════════════════════════════════════════

    def create_payment_link(self, data: Dict) -> Dict:
        """
        Cria a cobrança (POST /payments). `billingType=UNDEFINED` deixa o
        cliente escolher o meio na página hospedada (`invoiceUrl`).
        """
        if not self.is_configured:
            mock_id = self._next_mock_id()
            logger.warning("asaas_mock_payment", extra={"external_reference": data.get("externalReference")})
            return {
                "id": f"pay_mock_{mock_id}",
                "invoiceUrl": f"https://sandbox.asaas.com/payment/mock/{mock_id}",
                "value": data.get("value"),
                "status": "PENDING",
                "externalReference": data.get("externalReference"),
            }

        payment = self._make_request("POST", "/payments", data=data)
        logger.info("asaas_payment_created", extra={
            "asaas_payment_id": payment.get("id"),
            "external_reference": data.get("externalReference"),
        })
        return payment


asaas_service = AsaasService()


def get_asaas_service() -> AsaasService:
    return asaas_service

"""
Serviço de integração com maxiPago
==================================
Cobrança transparente via XML:

- PIX: venda direta em uma única requisição
- Cartão: saga em 3 etapas (add-consumer -> add-card-onfile -> venda onFile),
  o número do cartão nunca vai na requisição de venda
- Health check contra a API de relatórios (não cria transação)

Sem credenciais configuradas o serviço responde com mocks determinísticos.
Nenhuma chamada é repetida automaticamente: o cliente reenvia se quiser.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Union

import requests

from farmapay.api.services.maxipago_xml import (
    MerchantCredentials, BuyerContact, CardDetails, OnFileCard,
    build_sale_request, build_add_consumer_request, build_add_card_request,
    build_report_request, parse_response, to_xml,
)
from farmapay.core.config import config
from farmapay.core.exceptions import MaxiPagoError, ConsumerRegistrationError, CardTokenizationError

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Não foi possível processar o pagamento. Tente novamente em instantes."

SENSITIVE_TAGS = ("merchantKey", "number", "creditCardNumber", "cvvNumber", "token")
_SENSITIVE_RE = re.compile(r"<(%s)>([^<]*)</\1>" % "|".join(SENSITIVE_TAGS))


@dataclass
class TransactionResult:
    success: bool
    tx_id: Optional[str] = None
    message: Optional[str] = None
    kind: Optional[str] = None
    return_code: Optional[str] = None
    qrcode: Optional[str] = None
    qrcode_text: Optional[str] = None
    qr_code_url: Optional[str] = None
    failed_step: Optional[str] = None

    def to_dict(self) -> Dict:
        """Formato exposto ao front-end do checkout"""
        data = asdict(self)
        return {
            "success": data["success"],
            "txId": data["tx_id"],
            "message": data["message"],
            "kind": data["kind"],
            "returnCode": data["return_code"],
            "qrcode": data["qrcode"],
            "qrcodeText": data["qrcode_text"],
            "qrCodeUrl": data["qr_code_url"],
            "failedStep": data["failed_step"],
        }


class MaxiPagoService:
    def __init__(
        self,
        merchant_id: Optional[str] = None,
        merchant_key: Optional[str] = None,
        api_url: Optional[str] = None,
        processor_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.merchant_id = merchant_id if merchant_id is not None else config.MAXIPAGO_MERCHANT_ID
        self.merchant_key = merchant_key if merchant_key is not None else config.MAXIPAGO_MERCHANT_KEY
        self.api_url = api_url or config.MAXIPAGO_API_URL
        self.processor_id = processor_id or config.MAXIPAGO_PROCESSOR_ID
        self.timeout = timeout or config.GATEWAY_TIMEOUT_SECONDS

        # Sem Retry no adapter: cobranças não são idempotentes do lado da maxiPago
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "text/xml; charset=utf-8"})

        if self.is_configured:
            logger.info(f"🔧 [MaxiPagoService] Ambiente: {self.environment} ({self.api_url})")
        else:
            logger.warning("⚠️ [MaxiPagoService] Credenciais ausentes: respostas serão simuladas (mock)")

    # ═══════════════════════════════════════════════════════════
    # CONFIGURAÇÃO
    # ═══════════════════════════════════════════════════════════

    @property
    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.merchant_key)

    @property
    def environment(self) -> str:
        return "SANDBOX" if "testapi" in self.api_url else "PRODUCTION"

    @property
    def credentials(self) -> MerchantCredentials:
        return MerchantCredentials(
            merchant_id=self.merchant_id or "",
            merchant_key=self.merchant_key or "",
            processor_id=self.processor_id,
        )

    @property
    def command_url(self) -> str:
        return self.api_url.replace("/postXML", "/postAPI")

    @property
    def reports_url(self) -> str:
        return self.api_url.replace("/UniversalAPI/postXML", "/ReportsAPI/servlet/ReportsAPI")

    # ═══════════════════════════════════════════════════════════
    # HTTP
    # ═══════════════════════════════════════════════════════════

    def _mask_sensitive_data(self, payload: Union[bytes, str]) -> str:
        """Mascara cartão, CVV, token e merchantKey antes de logar"""
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload

        def _mask(match: re.Match) -> str:
            tag, value = match.group(1), match.group(2)
            masked = f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "****"
            return f"<{tag}>{masked}</{tag}>"

        return _SENSITIVE_RE.sub(_mask, text)

    def _post_xml(self, url: str, payload: bytes, step: str, timeout: Optional[float] = None) -> str:
        """Envia o XML e devolve o corpo da resposta. Falhas de rede viram MaxiPagoError."""
        logger.info(f"📤 [MaxiPago] POST {url} ({step})")
        logger.debug(f"📦 [Payload] {self._mask_sensitive_data(payload)}")

        try:
            response = self.session.request(
                method="POST",
                url=url,
                data=payload,
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error("maxipago_timeout", extra={"step": step, "url": url})
            raise MaxiPagoError(f"Tempo esgotado na comunicação com a maxiPago: {e}", step=step)
        except requests.exceptions.RequestException as e:
            logger.error("maxipago_connection_error", extra={"step": step, "url": url, "error": str(e)})
            raise MaxiPagoError(f"Erro de conexão com a maxiPago: {e}", step=step)

        logger.info(f"📥 [Response] Status: {response.status_code}")
        logger.debug(f"📥 [Response] Body: {self._mask_sensitive_data(response.text[:1000])}")

        if response.status_code >= 400:
            raise MaxiPagoError(
                f"maxiPago respondeu HTTP {response.status_code}",
                provider_code=str(response.status_code),
                step=step,
            )

        return response.text

    # ═══════════════════════════════════════════════════════════
    # PIX (venda direta)
    # ═══════════════════════════════════════════════════════════

    def create_pix_transaction(
        self,
        reference: str,
        amount_in_cents: int,
        customer: Optional[BuyerContact] = None,
    ) -> TransactionResult:
        """
        Gera uma cobrança PIX. Resposta aprovada traz o copia-e-cola (`emv`),
        a imagem do QR code em base64 e a URL de pagamento.
        """
        if not self.is_configured:
            return self._mock_pix(reference, amount_in_cents)

        payload = to_xml(build_sale_request(
            self.credentials, reference, amount_in_cents, customer=customer, pix=True
        ))

        try:
            body = self._post_xml(self.api_url, payload, step="sale")
            return self._parse_transaction(body, kind="pix")
        except MaxiPagoError as e:
            logger.error("pix_charge_failed", extra={"reference": reference, "error": e.message})
            return TransactionResult(success=False, message=GENERIC_FAILURE_MESSAGE, kind="pix", failed_step="sale")

    # ═══════════════════════════════════════════════════════════
    # CARTÃO (saga tokenizada)
    # ═══════════════════════════════════════════════════════════

    def create_credit_card_transaction(
        self,
        reference: str,
        amount_in_cents: int,
        card: CardDetails,
        customer: Optional[BuyerContact] = None,
    ) -> TransactionResult:
        """
        Cobrança no cartão em 3 etapas, cada uma só roda se a anterior deu certo:

        1. add-consumer      -> consumerId   (falha: ConsumerRegistrationError)
        2. add-card-onfile   -> token        (falha: CardTokenizationError)
        3. venda onFile {consumerId, token, CVV}

        Se a etapa 3 falhar, comprador e token ficam registrados na maxiPago
        e o evento `manual_reconciliation_required` é logado.
        """
        if customer is None:
            customer = BuyerContact(name=card.holder_name)

        if not self.is_configured:
            return self._mock_credit_card(reference, amount_in_cents, card)

        consumer_id = self._register_consumer(customer)
        token = self._tokenize_card(consumer_id, card, customer)

        payload = to_xml(build_sale_request(
            self.credentials,
            reference,
            amount_in_cents,
            customer=customer,
            on_file=OnFileCard(consumer_id=consumer_id, token=token, cvv=card.cvv),
            installments=card.installments,
        ))

        try:
            body = self._post_xml(self.api_url, payload, step="sale")
            result = self._parse_transaction(body, kind="credit_card")
        except MaxiPagoError as e:
            self._log_manual_reconciliation(reference, consumer_id, e.message)
            return TransactionResult(
                success=False, message=GENERIC_FAILURE_MESSAGE, kind="credit_card", failed_step="sale"
            )

        if not result.success:
            result.failed_step = "sale"
            self._log_manual_reconciliation(reference, consumer_id, result.message)

        return result

    def _register_consumer(self, customer: BuyerContact) -> str:
        step = "add-consumer"
        payload = to_xml(build_add_consumer_request(self.credentials, customer))

        try:
            data = parse_response(self._post_xml(self.command_url, payload, step=step), "api-response")
        except MaxiPagoError as e:
            raise ConsumerRegistrationError(
                f"Não foi possível registrar o comprador: {e.message}",
                provider_code=e.provider_code,
                step=step,
            ) from e
        except ValueError as e:
            raise ConsumerRegistrationError(f"Não foi possível registrar o comprador: {e}", step=step) from e

        code = data.get("errorCode", "")
        result = data.get("result") or {}
        consumer_id = result.get("customerId") if isinstance(result, dict) else None

        if code != "0" or not consumer_id:
            raise ConsumerRegistrationError(
                f"Não foi possível registrar o comprador (código {code or 'N/A'}): "
                f"{data.get('errorMessage') or 'resposta sem customerId'}",
                provider_code=code or None,
                step=step,
            )

        logger.info("maxipago_consumer_registered", extra={"consumer_id": consumer_id})
        return consumer_id

    def _tokenize_card(self, consumer_id: str, card: CardDetails, customer: BuyerContact) -> str:
        step = "add-card-onfile"
        payload = to_xml(build_add_card_request(self.credentials, consumer_id, card, customer))

        try:
            data = parse_response(self._post_xml(self.command_url, payload, step=step), "api-response")
        except MaxiPagoError as e:
            raise CardTokenizationError(
                f"Não foi possível tokenizar o cartão: {e.message}",
                provider_code=e.provider_code,
                step=step,
            ) from e
        except ValueError as e:
            raise CardTokenizationError(f"Não foi possível tokenizar o cartão: {e}", step=step) from e

        code = data.get("errorCode", "")
        result = data.get("result") or {}
        token = result.get("token") if isinstance(result, dict) else None

        if code != "0" or not token:
            raise CardTokenizationError(
                f"Não foi possível tokenizar o cartão (código {code or 'N/A'}): "
                f"{data.get('errorMessage') or 'resposta sem token'}",
                provider_code=code or None,
                step=step,
            )

        logger.info("maxipago_card_tokenized", extra={"consumer_id": consumer_id, "last4": card.last4})
        return token

    def _log_manual_reconciliation(self, reference: str, consumer_id: str, reason: Optional[str]) -> None:
        logger.warning("manual_reconciliation_required", extra={
            "gateway": "maxipago",
            "reference": reference,
            "consumer_id": consumer_id,
            "completed_steps": ["add-consumer", "add-card-onfile"],
            "failed_step": "sale",
            "reason": reason,
        })

    # ═══════════════════════════════════════════════════════════
    # PARSING
    # ═══════════════════════════════════════════════════════════

    def _parse_transaction(self, body: str, kind: str) -> TransactionResult:
        try:
            data = parse_response(body, "transaction-response")
        except ValueError as e:
            raise MaxiPagoError(f"Resposta inválida da maxiPago: {e}", step="sale")

        code = data.get("responseCode") or data.get("errorCode") or ""

        if code != "0":
            reason = data.get("responseMessage") or data.get("errorMessage") or "Transação não aprovada"
            logger.info("maxipago_transaction_declined", extra={"kind": kind, "code": code, "reason": reason})
            return TransactionResult(
                success=False,
                tx_id=data.get("orderID") or None,
                message=f"Pagamento recusado (código {code or 'N/A'}): {reason}",
                kind=kind,
                return_code=code or None,
            )

        result = TransactionResult(
            success=True,
            tx_id=data.get("orderID") or None,
            message="Transação aprovada",
            kind=kind,
            return_code=code,
        )

        if kind == "pix":
            result.qrcode_text = data.get("emv") or None
            result.qrcode = data.get("imagem_base64") or None
            result.qr_code_url = data.get("onlineDebitUrl") or data.get("onlinePaymentUrl") or None

        return result

    # ═══════════════════════════════════════════════════════════
    # MOCKS (sem credenciais)
    # ═══════════════════════════════════════════════════════════

    def _mock_pix(self, reference: str, amount_in_cents: int) -> TransactionResult:
        logger.warning("maxipago_mock_response", extra={"kind": "pix", "reference": reference})
        return TransactionResult(
            success=True,
            tx_id=f"MOCK-PIX-{reference}",
            message="Transação simulada (maxiPago não configurada)",
            kind="pix",
            return_code="0",
            qrcode_text=f"00020126MOCKPIX{reference}5204000053039865406{amount_in_cents}",
            qr_code_url=None,
        )

    def _mock_credit_card(self, reference: str, amount_in_cents: int, card: CardDetails) -> TransactionResult:
        logger.warning("maxipago_mock_response", extra={"kind": "credit_card", "reference": reference})
        return TransactionResult(
            success=True,
            tx_id=f"MOCK-CC-{reference}",
            message="Transação simulada (maxiPago não configurada)",
            kind="credit_card",
            return_code="0",
        )

    # ═══════════════════════════════════════════════════════════
    # HEALTH CHECK
    # ═══════════════════════════════════════════════════════════

    def health_check(self) -> Dict:
        """
        Valida as credenciais consultando uma transação inexistente.
        errorCode 0 (ok) ou 1 (não encontrada) indicam autenticação válida.
        """
        if not self.is_configured:
            return {
                "success": False,
                "message": "Credenciais maxiPago não configuradas. Defina MAXIPAGO_MERCHANT_ID e MAXIPAGO_MERCHANT_KEY.",
            }

        payload = to_xml(build_report_request(self.credentials, "HEALTH_CHECK_TEST"))

        try:
            body = self._post_xml(
                self.reports_url, payload, step="health-check",
                timeout=config.GATEWAY_HEALTH_TIMEOUT_SECONDS,
            )
            data = parse_response(body, "rapi-response")
        except MaxiPagoError as e:
            return {
                "success": False,
                "message": f"Erro de conexão: {e.message}",
                "details": {"apiUrl": self.api_url, "error": e.provider_code or e.message},
            }
        except ValueError:
            return {"success": False, "message": "Resposta inválida da API maxiPago"}

        error_code = data.get("errorCode", "")
        error_msg = data.get("errorMsg") or data.get("errorMessage")

        if error_code in ("0", "1"):
            return {
                "success": True,
                "message": "Conexão com maxiPago estabelecida com sucesso!",
                "details": {
                    "merchantId": self.merchant_id,
                    "apiUrl": self.api_url,
                    "environment": self.environment,
                },
            }

        return {
            "success": False,
            "message": error_msg or "Erro de autenticação na maxiPago",
            "details": {"errorCode": error_code, "errorMsg": error_msg},
        }


maxipago_service = MaxiPagoService()


def get_maxipago_service() -> MaxiPagoService:
    return maxipago_service

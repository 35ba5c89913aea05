"""
Exceções da aplicação
=====================

`AppError` carrega o status HTTP; os handlers em `main.py` convertem
para resposta JSON sem expor stack trace.
"""

from typing import Any, Optional


class AppError(Exception):
    """Classe base para erros operacionais da aplicação"""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class BadRequestError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class StorageError(AppError):
    """Falha ao gravar anexo no armazenamento externo (S3)"""
    status_code = 502


# ═══════════════════════════════════════════════════════════
# GATEWAYS
# ═══════════════════════════════════════════════════════════

class PaymentGatewayError(AppError):
    """Falha de comunicação ou recusa em um gateway de pagamento"""
    status_code = 502


class MaxiPagoError(PaymentGatewayError):
    """Exceção customizada para erros da maxiPago"""

    def __init__(self, message: str, provider_code: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message)
        self.provider_code = provider_code
        self.step = step


class ConsumerRegistrationError(MaxiPagoError):
    """Etapa 1 do fluxo tokenizado: não foi possível registrar o comprador"""


class CardTokenizationError(MaxiPagoError):
    """Etapa 2 do fluxo tokenizado: não foi possível tokenizar o cartão"""


class AsaasError(PaymentGatewayError):
    """Exceção customizada para erros do Asaas"""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, details=errors)
        self.errors = errors or []


class WebhookProcessingError(AppError):
    """Evento recebido mas não aplicado; 500 faz o Asaas reenviar"""
    status_code = 500

# farmapay/core/config.py
"""
Configurações da Aplicação - Farmapay
=====================================

Gerencia variáveis de ambiente de forma centralizada e tipada.

Credenciais de gateway (maxiPago / Asaas) são opcionais: na ausência delas
os clientes respondem com mocks determinísticos (sandbox).
"""

from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Carrega .env do diretório raiz
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent.parent / ".env")


# Front-end do checkout rodando local (Vite / Next)
DEV_CHECKOUT_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


class Config(BaseSettings):
    """Configurações centralizadas da aplicação"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════
    # 🌍 AMBIENTE
    # ═══════════════════════════════════════════════════════════

    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # ═══════════════════════════════════════════════════════════
    # 🗄️ BANCO DE DADOS
    # ═══════════════════════════════════════════════════════════

    DATABASE_URL: str = "sqlite:///./farmapay.db"

    # ═══════════════════════════════════════════════════════════
    # 💳 MAXIPAGO (cartão / PIX transparente)
    # ═══════════════════════════════════════════════════════════

    MAXIPAGO_MERCHANT_ID: Optional[str] = None
    MAXIPAGO_MERCHANT_KEY: Optional[str] = None
    MAXIPAGO_API_URL: str = "https://api.maxipago.net/UniversalAPI/postXML"
    MAXIPAGO_PROCESSOR_ID: str = "1"  # 1 = simulador

    # ═══════════════════════════════════════════════════════════
    # 🧾 ASAAS (fatura + webhook)
    # ═══════════════════════════════════════════════════════════

    ASAAS_API_KEY: Optional[str] = None
    ASAAS_API_URL: str = "https://sandbox.asaas.com/api/v3"
    ASAAS_WEBHOOK_SECRET: Optional[str] = None
    ASAAS_DUE_DAYS: int = 3

    # Timeout aplicado a TODA chamada de gateway (segundos)
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    GATEWAY_HEALTH_TIMEOUT_SECONDS: float = 10.0

    # ═══════════════════════════════════════════════════════════
    # ☁️ AWS S3 (anexos / receitas)
    # ═══════════════════════════════════════════════════════════

    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: Optional[str] = None
    AWS_BUCKET_NAME: Optional[str] = None

    # ═══════════════════════════════════════════════════════════
    # 🌐 CORS
    # ═══════════════════════════════════════════════════════════

    # Front-end do checkout público (separadas por vírgula)
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    def get_allowed_origins_list(self) -> list[str]:
        """Origens liberadas no CORS, sem duplicatas e na ordem informada"""
        configured = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        if self.ENVIRONMENT.lower() == "development":
            configured += list(DEV_CHECKOUT_ORIGINS)
        return list(dict.fromkeys(configured))

    # ═══════════════════════════════════════════════════════════
    # 🖥️ SERVIDOR
    # ═══════════════════════════════════════════════════════════

    HOST: str = "0.0.0.0"
    PORT: int = 4000
    LOG_LEVEL: str = "INFO"

    # ═══════════════════════════════════════════════════════════
    # 🔧 PROPRIEDADES ÚTEIS
    # ═══════════════════════════════════════════════════════════

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def maxipago_configured(self) -> bool:
        return bool(self.MAXIPAGO_MERCHANT_ID and self.MAXIPAGO_MERCHANT_KEY)

    @property
    def maxipago_is_sandbox(self) -> bool:
        return "testapi" in self.MAXIPAGO_API_URL

    @property
    def asaas_configured(self) -> bool:
        return bool(self.ASAAS_API_KEY)


# ✅ Instância global
config = Config()


def validate_config():
    """Valida configurações críticas"""
    errors = []

    if config.ENVIRONMENT not in ["development", "test", "production"]:
        errors.append("ENVIRONMENT deve ser: development, test ou production")

    if config.GATEWAY_TIMEOUT_SECONDS <= 0:
        errors.append("GATEWAY_TIMEOUT_SECONDS deve ser maior que zero")

    if config.is_production and not config.ASAAS_WEBHOOK_SECRET:
        errors.append("ASAAS_WEBHOOK_SECRET é obrigatório em produção")

    if errors:
        raise ValueError(
            "❌ Erros de configuração:\n" + "\n".join(f"  • {e}" for e in errors)
        )


validate_config()

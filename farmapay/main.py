"""
Aplicação Principal - Farmapay
==============================
Checkout de pedidos manipulados com pagamento via maxiPago e Asaas
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from farmapay.core.middleware.correlation import CorrelationIdMiddleware, CorrelationIdFilter

# Configuração de logging
_handler = logging.StreamHandler(sys.stdout)
_handler.addFilter(CorrelationIdFilter())
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s',
    handlers=[_handler]
)
logger = logging.getLogger(__name__)

from farmapay.core.config import config
from farmapay.core.database import engine, check_database_health
from farmapay.core import models
from farmapay.core.exceptions import AppError

logging.getLogger().setLevel(config.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gerencia o ciclo de vida da aplicação"""

    # STARTUP
    logger.info("=" * 60)
    logger.info("🚀 INICIANDO FARMAPAY")
    logger.info("=" * 60)

    logger.info("📊 Criando tabelas do banco de dados...")
    models.Base.metadata.create_all(bind=engine)

    logger.info(f"🌍 Ambiente: {config.ENVIRONMENT}")
    logger.info(f"💳 maxiPago: {'configurada' if config.maxipago_configured else 'mock'}"
                f"{' (sandbox)' if config.maxipago_is_sandbox else ''}")
    logger.info(f"🧾 Asaas: {'configurado' if config.asaas_configured else 'mock'}")

    logger.info("=" * 60)
    logger.info("✅ APLICAÇÃO PRONTA!")
    logger.info("=" * 60)

    yield

    # SHUTDOWN
    logger.info("👋 ENCERRANDO APLICAÇÃO")
    engine.dispose()


app = FastAPI(
    title="Farmapay API",
    description="Links de pagamento e checkout para pedidos de farmácia de manipulação",
    version="1.0.0",
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
    lifespan=lifespan
)

app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-correlation-id"],
)

# ═══════════════════════════════════════════════════════════
# ROTAS DA API
# ═══════════════════════════════════════════════════════════

from farmapay.api.routes import checkout, webhooks, orders, payments

app.include_router(checkout.router)
app.include_router(webhooks.router)
app.include_router(orders.router)
app.include_router(payments.router)


@app.get("/health")
def health_check():
    """Health check para monitoramento"""
    database = check_database_health()

    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "services": {
            "database": database,
            "maxipago": "configured" if config.maxipago_configured else "mock",
            "asaas": "configured" if config.asaas_configured else "mock",
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# ═══════════════════════════════════════════════════════════
# TRATAMENTO DE ERROS GLOBAL
# ═══════════════════════════════════════════════════════════

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Erros operacionais: status próprio e mensagem segura para o cliente"""
    if exc.status_code >= 500:
        logger.error("app_error", extra={"path": request.url.path, "error": exc.message})

    content = {"error": type(exc).__name__, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Pydantic: 400 com o detalhe por campo"""
    fields = [
        {
            "field": ".".join(str(p) for p in err.get("loc", []) if p != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Validation Error", "message": "Dados inválidos", "fields": fields}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handler para erros de validação"""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation Error",
            "message": str(exc)
        }
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    """Handler para erros internos (sem stack trace na resposta)"""
    logger.error(f"❌ Erro interno: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "Ocorreu um erro interno. Por favor, tente novamente mais tarde.",
            "request_id": getattr(request.state, "correlation_id", "unknown")
        }
    )


# ═══════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════

def main():
    """Função principal para executar o servidor"""
    logger.info(f"🌐 Servidor iniciando em http://{config.HOST}:{config.PORT}")
    uvicorn.run(
        "farmapay.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

"""
Camada de Banco de Dados
========================

- Engine único por processo (pool compartilhado)
- Uma sessão por requisição (dependency `get_db`)
- `transaction(db)`: unidade de trabalho atômica para os fluxos que
  precisam agrupar várias escritas (webhook, merge de cliente/endereço)
"""

import logging
import time
from contextlib import contextmanager
from typing import Annotated, Iterator

from fastapi import Depends
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from farmapay.core.config import config

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# POOL POR AMBIENTE
# ═══════════════════════════════════════════════════════════

# (pool_size, max_overflow, pool_timeout, pool_recycle)
# Checkout é tráfego baixo e em rajadas (links enviados pelo WhatsApp)
POOL_PROFILES = {
    "production": (10, 10, 10, 1800),
    "development": (3, 5, 30, 3600),
}


def get_engine_config(database_url: str) -> dict:
    """
    Monta os kwargs de `create_engine` para a URL e o ambiente atuais.

    SQLite (dev local / testes) não aceita pool configurável nem
    compartilhamento entre threads por padrão.
    """

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": config.DEBUG}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs

    profile = "production" if config.is_production else "development"
    size, overflow, timeout, recycle = POOL_PROFILES[profile]

    kwargs = dict(
        poolclass=QueuePool,
        pool_size=size,
        max_overflow=overflow,
        pool_timeout=timeout,
        pool_recycle=recycle,
        pool_pre_ping=True,
        echo=config.DEBUG and not config.is_production,
    )
    if config.is_production:
        # Postgres: aborta queries presas antes do timeout do gateway
        kwargs["connect_args"] = {
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000",
            "application_name": "farmapay_api",
        }
    return kwargs


# ═══════════════════════════════════════════════════════════
# ENGINE + SESSION
# ═══════════════════════════════════════════════════════════

engine = create_engine(config.DATABASE_URL, **get_engine_config(config.DATABASE_URL))


if config.DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# expire_on_commit=False: as rotas serializam o pedido depois do commit
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# ═══════════════════════════════════════════════════════════
# DEPENDENCIES
# ═══════════════════════════════════════════════════════════

def get_db() -> Iterator[Session]:
    """Abre uma sessão para a requisição; desfaz o que ficou pendente se a rota falhar."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        logger.exception("db_session_error")
        db.rollback()
        raise
    finally:
        db.close()


GetDBDep = Annotated[Session, Depends(get_db)]


# ═══════════════════════════════════════════════════════════
# UNIDADE DE TRABALHO
# ═══════════════════════════════════════════════════════════

@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Executa um bloco de escritas de forma atômica.

    Commit ao final do bloco; rollback (e re-raise) em qualquer exceção.
    Uso:
        with transaction(db):
            ...
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


# ═══════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════

def check_database_health() -> dict:
    """Verifica conexão com o banco com uma query simples"""
    started = time.perf_counter()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).scalar()
        return {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }
    except Exception as e:
        logger.error("database_health_failed", extra={"error": str(e)})
        return {"status": "unhealthy", "error": str(e)}

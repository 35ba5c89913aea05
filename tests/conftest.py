"""
Fixtures compartilhadas
=======================
Banco SQLite em memória por teste e gateways sempre em modo mock.
"""

import os

# Antes de importar farmapay: config é lida na importação
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MAXIPAGO_MERCHANT_ID"] = ""
os.environ["MAXIPAGO_MERCHANT_KEY"] = ""
os.environ["ASAAS_API_KEY"] = ""
os.environ["ASAAS_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["AWS_BUCKET_NAME"] = ""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from farmapay.api.schemas.customer import CustomerIdentity
from farmapay.api.schemas.order import OrderCreate
from farmapay.api.services.asaas_service import AsaasService
from farmapay.api.services.maxipago_service import MaxiPagoService
from farmapay.api.services.order_service import OrderService
from farmapay.core import models
from farmapay.core.utils.enums import ShippingType, ProfileRole


# ═══════════════════════════════════════════════════════════
# BANCO
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _fk_on(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    models.Base.metadata.create_all(engine)
    yield engine
    models.Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Sessão de teste com as mesmas opções do SessionLocal"""
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    yield session
    session.close()


# ═══════════════════════════════════════════════════════════
# DADOS
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def attendant(db):
    profile = models.Profile(name="Atendente Teste", email="atendente@farmapay.test", role=ProfileRole.ATTENDANT)
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def make_order(db, attendant):
    """Cria pedido via OrderService (placeholder + link em rascunho por padrão)"""

    def _make(
        total_value="150.00",
        shipping_value="10.00",
        shipping_type=ShippingType.FIXED,
        discount_value=None,
        discount_type=None,
        new_customer=None,
        **extra,
    ) -> models.Order:
        payload = OrderCreate(
            user_id=attendant.id,
            total_value=Decimal(total_value),
            shipping_value=Decimal(shipping_value),
            shipping_type=shipping_type,
            discount_value=Decimal(discount_value) if discount_value is not None else None,
            discount_type=discount_type,
            new_customer=CustomerIdentity(**new_customer) if new_customer else None,
            items=[{"name": "Cápsulas de Vitamina D", "dosage": "2000UI", "actives": ["Colecalciferol"], "price": "150.00"}],
            **extra,
        )
        return OrderService(db).create_order(payload)

    return _make


@pytest.fixture
def existing_customer(db):
    """Cliente real já cadastrado com CPF válido"""
    customer = models.Customer(
        name="Maria Souza",
        phone="35999991234",
        email="maria@example.com",
        cpf="52998224725",
    )
    db.add(customer)
    db.commit()
    return customer


# ═══════════════════════════════════════════════════════════
# GATEWAYS
# ═══════════════════════════════════════════════════════════

@pytest.fixture
def asaas_mock():
    asaas = Mock(spec=AsaasService)
    asaas.create_customer.return_value = {"id": "cus_000001"}
    asaas.create_payment_link.return_value = {
        "id": "pay_000001",
        "invoiceUrl": "https://sandbox.asaas.com/i/000001",
        "status": "PENDING",
    }
    return asaas


@pytest.fixture
def maxipago_mock():
    return Mock(spec=MaxiPagoService)

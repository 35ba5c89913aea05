"""
Resolução de identidade do cliente
==================================

- Busca/criação por CPF (CPF é único na base)
- Cliente "placeholder" para links gerados sem identificação
- Merge do placeholder no cliente real quando o CPF digitado no checkout
  já pertence a outro cadastro
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from farmapay.api.schemas.customer import CustomerIdentity, CustomerCreate
from farmapay.core import models
from farmapay.core.exceptions import ConflictError
from farmapay.core.utils.validators import only_digits

logger = logging.getLogger(__name__)


@dataclass
class IdentityResolution:
    customer: Optional[models.Customer]
    customer_found: bool = False
    previous_customer_id: Optional[str] = None


class CustomerService:
    """Service para localizar, criar e unificar clientes"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_cpf(self, cpf: Optional[str]) -> Optional[models.Customer]:
        digits = only_digits(cpf)
        if not digits:
            return None
        return self.db.query(models.Customer).options(
            selectinload(models.Customer.addresses)
        ).filter(models.Customer.cpf == digits).first()

    def find_or_create(self, data: CustomerIdentity, created_by_id: Optional[str] = None) -> models.Customer:
        """
        Retorna o cliente existente com o mesmo CPF (sem alterar seus dados)
        ou cria um novo. Email/CPF em branco viram None.
        """
        existing = self.get_by_cpf(data.cpf)
        if existing:
            return existing

        customer = models.Customer(
            name=data.name,
            phone=data.phone or "",
            email=data.email,
            cpf=only_digits(data.cpf) or None,
            created_by_id=created_by_id,
        )
        self.db.add(customer)
        self.db.flush()
        return customer

    def create_anonymous(self, created_by_id: Optional[str] = None) -> models.Customer:
        """Cria o cliente placeholder usado quando o link é gerado sem identificação"""
        customer = models.Customer(
            name=models.PLACEHOLDER_CUSTOMER_NAME,
            phone="",
            created_by_id=created_by_id,
        )
        self.db.add(customer)
        self.db.flush()
        return customer

    def create_customer(self, data: CustomerCreate) -> models.Customer:
        """Cadastro direto pelo painel. CPF já vinculado -> 409."""
        if data.cpf and self.get_by_cpf(data.cpf):
            raise ConflictError("Já existe um cliente com este CPF")

        customer = models.Customer(
            name=data.name,
            phone=data.phone or "",
            email=data.email,
            cpf=data.cpf,
            rg=data.rg,
            birth_date=data.birth_date,
            notes=data.notes,
            created_by_id=data.created_by_id,
        )
        self.db.add(customer)

        try:
            self.db.commit()
        except IntegrityError:
            # Outra requisição gravou o mesmo CPF entre a checagem e o commit
            self.db.rollback()
            raise ConflictError("Já existe um cliente com este CPF")

        self.db.refresh(customer)
        logger.info("customer_created", extra={"customer_id": customer.id})
        return customer

    def resolve_for_order(self, order: models.Order, cpf: Optional[str]) -> IdentityResolution:
        """
        Vincula o pedido ao cliente dono do CPF informado.

        Se o CPF pertence a outro cliente, o pedido passa a apontar para ele
        e o cliente anterior é removido quando ficar sem pedidos. Os dados
        do cliente encontrado nunca são sobrescritos aqui.
        """
        current = order.customer
        existing = self.get_by_cpf(cpf)

        if existing is None or existing.id == order.customer_id:
            return IdentityResolution(customer=current)

        previous_id = order.customer_id
        order.customer = existing

        # Endereço escolhido pertencia ao cliente antigo
        if order.address is not None and order.address.customer_id != existing.id:
            order.address = None

        self.db.flush()

        logger.info("checkout_customer_merged", extra={
            "order_id": order.id,
            "customer_id": existing.id,
            "previous_customer_id": previous_id,
        })

        if current is not None:
            self._cleanup_orphan(current)

        return IdentityResolution(
            customer=existing,
            customer_found=True,
            previous_customer_id=previous_id,
        )

    def _cleanup_orphan(self, customer: models.Customer) -> None:
        """
        Remove o cliente anterior se ele ficou sem pedidos.

        Best effort: uma falha aqui é registrada e ignorada, o merge segue.
        Clientes com CPF são cadastros reais e nunca são removidos.
        """
        if customer.cpf:
            return

        remaining = self.db.query(models.Order).filter(
            models.Order.customer_id == customer.id
        ).count()

        if remaining > 0:
            return

        try:
            # Savepoint: a falha desfaz só a remoção, não o merge
            with self.db.begin_nested():
                self.db.delete(customer)
            logger.info("placeholder_customer_deleted", extra={"customer_id": customer.id})
        except SQLAlchemyError as e:
            logger.warning("placeholder_cleanup_failed", extra={
                "customer_id": customer.id,
                "error": str(e),
            })

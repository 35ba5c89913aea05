from fastapi import APIRouter, status

from farmapay.api.schemas.checkout import CheckoutOrderOut
from farmapay.api.schemas.customer import CustomerCreate, CustomerOut
from farmapay.api.schemas.order import OrderCreate
from farmapay.api.services.customer_service import CustomerService
from farmapay.api.services.order_service import OrderService
from farmapay.core.database import GetDBDep

router = APIRouter(tags=["Pedidos e Clientes"])


@router.post(
    "/orders",
    response_model=CheckoutOrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="Gera um pedido com link de pagamento em rascunho"
)
def create_order(payload: OrderCreate, db: GetDBDep):
    """
    Cria o pedido do atendente. O link de pagamento nasce como
    WAITING_CUSTOMER; a cobrança no Asaas só é gerada no checkout.
    """
    return OrderService(db).create_order(payload)


@router.post(
    "/customers",
    response_model=CustomerOut,
    status_code=status.HTTP_201_CREATED,
    summary="Cadastro direto de cliente (409 se o CPF já existir)"
)
def create_customer(payload: CustomerCreate, db: GetDBDep):
    return CustomerService(db).create_customer(payload)

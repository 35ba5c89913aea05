from typing import Annotated

from fastapi import APIRouter, Depends, File, UploadFile, status

from farmapay.api.schemas.checkout import CheckoutSubmission, DirectPaymentRequest, CheckoutOrderOut
from farmapay.api.services.asaas_service import AsaasService, get_asaas_service
from farmapay.api.services.checkout_service import CheckoutService
from farmapay.api.services.maxipago_service import MaxiPagoService, get_maxipago_service
from farmapay.core.database import GetDBDep

router = APIRouter(prefix="/checkout", tags=["Checkout"])


def get_checkout_service(
    db: GetDBDep,
    asaas: Annotated[AsaasService, Depends(get_asaas_service)],
    maxipago: Annotated[MaxiPagoService, Depends(get_maxipago_service)],
) -> CheckoutService:
    return CheckoutService(db, asaas=asaas, maxipago=maxipago)


CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]


@router.get(
    "/{order_id}",
    response_model=CheckoutOrderOut,
    summary="Dados públicos do pedido para a página de checkout"
)
def get_checkout(order_id: str, service: CheckoutServiceDep):
    return service.get_checkout(order_id)


@router.post("/{order_id}", summary="Salva uma etapa do checkout (parcial ou final)")
def submit_checkout(order_id: str, payload: CheckoutSubmission, service: CheckoutServiceDep):
    """
    - `partial=true`: grava os dados da etapa, sem chamar gateway
    - `partial=false`: grava e retorna `redirectUrl` da fatura do Asaas
    """
    return service.submit(order_id, payload)


@router.post("/{order_id}/pay", summary="Pagamento transparente (PIX ou cartão)")
def pay_checkout(order_id: str, payload: DirectPaymentRequest, service: CheckoutServiceDep):
    return service.process_payment(order_id, payload)


@router.post("/{order_id}/upload", summary="Anexa receita/arquivo ao pedido")
def upload_attachment(order_id: str, service: CheckoutServiceDep, file: UploadFile = File(...)):
    attachment_url = service.attach_file(order_id, file)
    return {"success": True, "attachmentUrl": attachment_url}


@router.delete(
    "/{order_id}/address/{address_id}",
    status_code=status.HTTP_200_OK,
    summary="Remove um endereço do cliente durante o checkout"
)
def delete_checkout_address(order_id: str, address_id: str, service: CheckoutServiceDep):
    service.delete_address(order_id, address_id)
    return {"success": True}

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from farmapay.api.services.maxipago_service import MaxiPagoService, get_maxipago_service

router = APIRouter(prefix="/payments", tags=["Pagamentos"])


@router.get("/maxipago/health", summary="Valida credenciais da maxiPago sem criar transação")
def maxipago_health(service: Annotated[MaxiPagoService, Depends(get_maxipago_service)]):
    result = service.health_check()
    return JSONResponse(status_code=200 if result["success"] else 503, content=result)

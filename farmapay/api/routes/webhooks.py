"""
Webhook do Asaas
================
Autenticado pelo header `asaas-access-token` e idempotente pelo `id` do evento.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Header, Request

from farmapay.api.services.webhook_service import WebhookService, verify_asaas_token
from farmapay.core.database import GetDBDep

router = APIRouter(tags=["Webhooks - Asaas"], prefix="/webhooks")
logger = logging.getLogger(__name__)


@router.post("/asaas")
def asaas_webhook_handler(
        request: Request,
        db: GetDBDep,
        payload: Dict[str, Any] = Body(...),
        asaas_access_token: Optional[str] = Header(default=None, alias="asaas-access-token"),
):
    logger.info("asaas_webhook_request", extra={
        "client_ip": request.client.host if request.client else None,
        "has_token": bool(asaas_access_token),
    })

    verify_asaas_token(asaas_access_token)

    return WebhookService(db).process_asaas_event(payload)

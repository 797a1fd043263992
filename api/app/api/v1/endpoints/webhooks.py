"""
Webhook de Airtable: dispara el sync de la entidad cuya tabla cambio.

Airtable firma el cuerpo con HMAC-SHA256 (header `x-airtable-signature`).
El sync corre en background y el endpoint responde 202 de inmediato.
"""
import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, status
from loguru import logger

from app.api.v1.dependencies.use_case_deps import get_sync_use_cases
from app.application.dto.sync_dto import WebhookAcceptedDTO
from app.application.use_cases.sync_use_cases import SyncUseCases
from app.core.config import settings
from app.core.security import SecurityService
from app.shared.exceptions.auth import UnauthorizedException
from app.shared.exceptions.domain import ValidationException


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/airtable-sync",
    response_model=WebhookAcceptedDTO,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Webhook de cambios en Airtable"
)
async def airtable_sync_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_airtable_signature: Optional[str] = Header(default=None),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> WebhookAcceptedDTO:
    """
    Recibe `{"table": "<tabla>"}`, `{"table": {"name": "<tabla>"}}` (formato
    de Airtable) o `tableName`, y agenda el sync.

    - validation -> users
    - forms -> surveys
    - districts -> districts
    """
    body = await request.body()

    if settings.AIRTABLE_WEBHOOK_SECRET:
        if not SecurityService.verify_webhook_signature(body, x_airtable_signature, settings.AIRTABLE_WEBHOOK_SECRET):
            logger.warning("Webhook Airtable con firma invalida")
            raise UnauthorizedException("Firma de webhook invalida")
    else:
        logger.warning("AIRTABLE_WEBHOOK_SECRET no configurado; webhook aceptado sin verificar firma")

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise ValidationException("Cuerpo del webhook no es JSON valido")
    if not isinstance(payload, dict):
        raise ValidationException("Cuerpo del webhook debe ser un objeto JSON")

    table = payload.get("table") or payload.get("tableName")
    entity_type = use_cases.entity_for_webhook(table)

    background_tasks.add_task(use_cases.run_in_background, entity_type, "webhook")
    logger.info(f"Webhook Airtable: tabla '{table}' -> sync {entity_type} agendado")

    return WebhookAcceptedDTO(
        entity_type=entity_type,
        message=f"Sync de {entity_type} agendado",
    )

"""
Endpoints para sincronizacion del directorio desde Airtable.
Permite disparar el sync desde la UI de administracion y desde un cron
externo, y consultar auditoria y locks.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from loguru import logger

from app.api.v1.dependencies.auth_deps import require_admin_token, require_cron_secret
from app.api.v1.dependencies.use_case_deps import get_sync_use_cases
from app.application.dto.sync_dto import (
    LockStatusDTO,
    SyncAllResultDTO,
    SyncLogsResponseDTO,
    SyncResultDTO,
)
from app.application.use_cases.sync_use_cases import SyncUseCases


router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post(
    "/all",
    response_model=SyncAllResultDTO,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar todas las entidades"
)
async def sync_all(
    triggered_by: str = Depends(require_admin_token),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> SyncAllResultDTO:
    """Ejecuta users, surveys y districts en secuencia."""
    logger.info("Sync-all solicitado desde admin")
    return await use_cases.sync_all(triggered_by)


@router.post(
    "/all/cron",
    response_model=SyncAllResultDTO,
    status_code=status.HTTP_200_OK,
    summary="Sync-all disparado por cron externo"
)
async def sync_all_cron(
    triggered_by: str = Depends(require_cron_secret),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> SyncAllResultDTO:
    """Requiere `Authorization: Bearer <CRON_SECRET>`."""
    logger.info("Sync-all solicitado por cron")
    return await use_cases.sync_all(triggered_by)


@router.get(
    "/logs",
    response_model=SyncLogsResponseDTO,
    summary="Historial de corridas de sync"
)
async def get_sync_logs(
    entity_type: Optional[str] = Query(default=None, description="Filtrar por entidad"),
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    _: str = Depends(require_admin_token),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> SyncLogsResponseDTO:
    """Entradas de auditoria, mas recientes primero."""
    return await use_cases.list_logs(entity_type=entity_type, limit=limit, skip=skip)


@router.get(
    "/locks/{entity_type}",
    response_model=LockStatusDTO,
    summary="Estado del lock de una entidad"
)
async def get_lock_status(
    entity_type: str,
    _: str = Depends(require_admin_token),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> LockStatusDTO:
    return await use_cases.lock_status(entity_type)


@router.delete(
    "/locks/{entity_type}",
    response_model=LockStatusDTO,
    summary="Liberar a la fuerza el lock de una entidad"
)
async def force_release_lock(
    entity_type: str,
    _: str = Depends(require_admin_token),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> LockStatusDTO:
    """
    Libera el lease sin esperar su expiracion. Usar solo si la corrida
    que lo tomaba murio.
    """
    return await use_cases.force_release(entity_type)


@router.post(
    "/{entity_type}",
    response_model=SyncResultDTO,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar una entidad desde Airtable"
)
async def sync_entity(
    entity_type: str,
    triggered_by: str = Depends(require_admin_token),
    use_cases: SyncUseCases = Depends(get_sync_use_cases),
) -> SyncResultDTO:
    """
    Ejecuta el sync de la entidad.

    - 409 si otra corrida tiene el lock
    - 422 si el esquema de Airtable no tiene los campos requeridos
    - 500 si algun registro fallo (se hace rollback completo)

    Las contraseñas generadas para usuarios nuevos no se devuelven; solo
    su cantidad (`passwords_generated`).
    """
    logger.info(f"Sync {entity_type} solicitado desde admin")
    return await use_cases.sync_entity(entity_type, triggered_by)

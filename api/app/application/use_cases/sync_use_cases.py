"""
Casos de uso para el sync de directorio (Airtable -> documentos).
"""
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from app.application.dto.sync_dto import (
    LockStatusDTO,
    PaginationDTO,
    SyncAllResultDTO,
    SyncLogDTO,
    SyncLogsResponseDTO,
    SyncResultDTO,
)
from app.infrastructure.external.airtable_sync.sync_audit import list_sync_logs
from app.infrastructure.external.airtable_sync.sync_service import SyncContainer, SyncResult
from app.infrastructure.external.airtable_sync.table_mappings import (
    entity_for_source_table,
    get_entity_definition,
)
from app.shared.exceptions.domain import ValidationException


MAX_LOGS_LIMIT = 100


def to_result_dto(result: SyncResult) -> SyncResultDTO:
    """Convierte el resultado interno a DTO; nunca incluye contraseñas."""
    summary = result.as_dict()
    return SyncResultDTO(
        success=True,
        message=(
            f"Sync {result.entity_type}: {result.created} creado(s), {result.updated} actualizado(s), "
            f"{result.deleted} eliminado(s), {result.skipped} omitido(s)"
        ),
        **summary,
    )


class SyncUseCases:
    """
    Orquesta los disparadores del sync: admin, cron, webhook y consultas
    de auditoría/locks.
    """

    def __init__(self, container: SyncContainer):
        self.container = container

    async def sync_entity(self, entity_type: str, triggered_by: str) -> SyncResultDTO:
        """
        Ejecuta el sync de una entidad.

        Args:
            entity_type: Tipo de entidad
            triggered_by: Origen del disparo

        Returns:
            SyncResultDTO: Contadores y cantidad de contraseñas generadas
        """
        service = self.container.require_service()
        result = await service.run(entity_type, triggered_by)
        return to_result_dto(result)

    async def sync_all(self, triggered_by: str) -> SyncAllResultDTO:
        service = self.container.require_service()
        results = await service.run_all(triggered_by)
        success = all(r.get("status") in ("success", "partial") for r in results.values())
        return SyncAllResultDTO(success=success, triggered_by=triggered_by, results=results)

    def entity_for_webhook(self, table: Any) -> str:
        """
        Resuelve la entidad a sincronizar a partir de la tabla del webhook.

        Acepta el nombre de la tabla o el objeto `{"id": ..., "name": ...}`
        que envía Airtable.

        Raises:
            ValidationException: Si la tabla no corresponde a ninguna entidad
        """
        table_name = table.get("name") if isinstance(table, Mapping) else table
        if table_name is not None and not isinstance(table_name, str):
            raise ValidationException(
                f"Nombre de tabla inválido en el webhook: {table_name!r}",
                field="table",
            )
        entity_type = entity_for_source_table(table_name or "")
        if not entity_type:
            raise ValidationException(
                f"Tabla de Airtable no soportada: '{table_name}'",
                field="table",
            )
        return entity_type

    async def run_in_background(self, entity_type: str, triggered_by: str) -> None:
        """
        Corre un sync fuera del request (webhook). Los errores ya quedaron
        en la auditoría; aquí solo se registran en el log.
        """
        try:
            result = await self.container.require_service().run(entity_type, triggered_by)
            logger.info(f"Sync {entity_type} por {triggered_by} completado: {result.status}")
        except Exception as e:
            logger.error(f"Sync {entity_type} por {triggered_by} falló: {e}")

    async def list_logs(
        self,
        entity_type: Optional[str] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> SyncLogsResponseDTO:
        limit = max(1, min(limit, MAX_LOGS_LIMIT))
        skip = max(0, skip)
        if entity_type:
            get_entity_definition(entity_type)

        page: Dict[str, Any] = await list_sync_logs(
            self.container.database, entity_type=entity_type, limit=limit, skip=skip
        )
        has_more = skip + len(page["logs"]) < page["total"]
        return SyncLogsResponseDTO(
            logs=[SyncLogDTO(**log) for log in page["logs"]],
            pagination=PaginationDTO(
                limit=limit,
                skip=skip,
                total=page["total"],
                has_more=has_more,
                next_skip=skip + limit if has_more else None,
            ),
        )

    async def lock_status(self, entity_type: str) -> LockStatusDTO:
        get_entity_definition(entity_type)
        status = await self.container.lock.check_lock(entity_type)
        if status is None:
            return LockStatusDTO(entity_type=entity_type, locked=False)
        return LockStatusDTO(
            entity_type=entity_type,
            locked=True,
            locked_by=status.locked_by,
            locked_at=status.locked_at,
            expires_at=status.expires_at,
        )

    async def force_release(self, entity_type: str) -> LockStatusDTO:
        get_entity_definition(entity_type)
        await self.container.lock.force_release(entity_type)
        return LockStatusDTO(entity_type=entity_type, locked=False)

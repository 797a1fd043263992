"""
Excepciones del motor de reconciliación Airtable -> documentos.

Taxonomía:
- Errores de configuración (mapeos, credenciales)
- Errores externos de Airtable (transitorios agotados o permanentes)
- Errores por registro (mapeo/validación), aislados por el orquestador
- Conflicto de concurrencia (sync ya en curso)
- Violación de consistencia (failed > 0 al final de la corrida)
"""
from typing import Any, Dict, List, Optional

from app.shared.exceptions.base import AppException


class SyncException(AppException):
    """Excepción base para errores de sincronización."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class SyncConfigError(SyncException):
    """Error de configuración del pipeline (mapeos inválidos, credenciales faltantes)."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="SYNC_CONFIG_ERROR")


class UnknownEntityTypeError(SyncException):
    """El tipo de entidad solicitado no está registrado."""

    def __init__(self, entity_type: str, known: List[str]):
        self.entity_type = entity_type
        super().__init__(
            message=f"Tipo de entidad desconocido: '{entity_type}'",
            status_code=404,
            error_code="UNKNOWN_ENTITY_TYPE",
            details={"entity_type": entity_type, "known_entity_types": known},
        )


class AirtableApiError(SyncException):
    """
    Error de integración con Airtable.

    `transient` indica si el error era reintentable (red, 429, 5xx) y se
    agotaron los reintentos; si es False el error es permanente (4xx).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
    ):
        self.upstream_status = status_code
        self.transient = transient
        super().__init__(
            message=message,
            status_code=502,
            error_code="AIRTABLE_API_ERROR",
            details={"upstream_status": status_code, "transient": transient},
        )


class MappingError(SyncException):
    """
    Un registro no pudo mapearse a documento canónico.

    `errors` contiene un mensaje por cada campo que falló; todos los campos
    se evalúan antes de lanzar.
    """

    def __init__(
        self,
        errors: List[str],
        record_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ):
        self.errors = list(errors)
        self.record_id = record_id
        self.entity_type = entity_type
        self.warnings = list(warnings or [])
        prefix = f"Registro {record_id}: " if record_id else ""
        super().__init__(
            message=prefix + "; ".join(self.errors),
            status_code=422,
            error_code="MAPPING_ERROR",
            details={
                "record_id": record_id,
                "entity_type": entity_type,
                "errors": self.errors,
            },
        )


class SchemaValidationError(SyncException):
    """El esquema de la tabla Airtable no contiene los campos requeridos."""

    def __init__(self, entity_type: str, errors: List[str]):
        self.entity_type = entity_type
        self.errors = list(errors)
        super().__init__(
            message=f"Esquema de Airtable inválido para '{entity_type}': " + "; ".join(self.errors),
            status_code=422,
            error_code="SCHEMA_VALIDATION_ERROR",
            details={"entity_type": entity_type, "errors": self.errors},
        )


class SyncInProgressError(SyncException):
    """Otra corrida tiene el lease del tipo de entidad."""

    def __init__(self, entity_type: str, locked_by: Optional[str] = None):
        self.entity_type = entity_type
        self.locked_by = locked_by
        super().__init__(
            message=f"Sync de '{entity_type}' ya está en progreso. Reintenta más tarde.",
            status_code=409,
            error_code="SYNC_IN_PROGRESS",
            details={"entity_type": entity_type, "locked_by": locked_by},
        )


class SyncConsistencyError(SyncException):
    """La corrida terminó con registros fallidos; se hizo rollback."""

    def __init__(self, entity_type: str, failed: int):
        self.entity_type = entity_type
        self.failed = failed
        super().__init__(
            message=f"Sync de '{entity_type}' con {failed} registro(s) fallido(s); cambios revertidos",
            error_code="SYNC_CONSISTENCY_ERROR",
            details={"entity_type": entity_type, "failed": failed},
        )

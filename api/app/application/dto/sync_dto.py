"""
DTOs del sync de directorio (Airtable -> documentos).
Definen la estructura de las respuestas de los endpoints de sync.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SyncResultDTO(BaseModel):
    """Resultado de una corrida de sync (sin contraseñas en texto plano)."""

    success: bool = Field(..., description="True si la corrida hizo commit")
    entity_type: str
    sync_id: str
    status: str = Field(..., description="success | partial")
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    passwords_generated: int = Field(0, description="Usuarios nuevos con contraseña generada")
    warnings: List[str] = Field(default_factory=list)
    message: str = ""


class SyncAllResultDTO(BaseModel):
    """Resumen de sync-all por entidad."""

    success: bool
    triggered_by: str
    results: Dict[str, Dict[str, Any]]


class SyncLogDTO(BaseModel):
    """Entrada del log de auditoría."""

    sync_id: str
    entity_type: str
    triggered_by: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_ms: Optional[int] = None
    status: str
    results: Dict[str, int] = Field(default_factory=dict)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    source_snapshot: Optional[Dict[str, Any]] = None


class PaginationDTO(BaseModel):
    limit: int
    skip: int
    total: int
    has_more: bool
    next_skip: Optional[int] = None


class SyncLogsResponseDTO(BaseModel):
    """Listado paginado del log de auditoría."""

    logs: List[SyncLogDTO]
    pagination: PaginationDTO


class LockStatusDTO(BaseModel):
    """Estado del lease de una entidad."""

    entity_type: str
    locked: bool
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class WebhookAcceptedDTO(BaseModel):
    """Respuesta 202 del webhook de Airtable."""

    accepted: bool = True
    entity_type: str
    message: str

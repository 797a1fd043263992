"""
Tipos y utilidades puras para el motor de reconciliación Airtable -> documentos.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# Marca de procedencia de los documentos gestionados por el sync.
SYNC_PROVENANCE = "airtable_sync"


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    SQLite devuelve datetimes naive aunque la columna tenga timezone; aun así,
    normalizamos para comparar/almacenar de forma consistente.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_blank(value: Any) -> bool:
    """
    Indica si un valor de Airtable debe tratarse como ausente.

    Airtable omite los campos vacíos, pero algunos formularios envían
    strings con espacios o listas vacías.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class AirtableRecord:
    """Registro Airtable mínimo para sync."""

    record_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def first_present(self, *names: str) -> Optional[Any]:
        """Retorna el primer campo no vacío entre los nombres dados."""
        for name in names:
            value = self.fields.get(name)
            if not is_blank(value):
                return value
        return None


@dataclass
class SyncCounters:
    """
    Contadores de una corrida.

    `skipped` incluye los registros sin cambios y los descartados
    (sin llave natural o rechazados por el builder).
    """

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def as_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
        }

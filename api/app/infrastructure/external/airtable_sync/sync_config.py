"""
Configuración del sync (entidad Airtable -> colección de documentos).

La idea es que aquí tengas control total de:
- tabla origen Airtable
- colección destino
- llave natural
- post-proceso del documento (roles, defaults, derivaciones)

Los mapeos campo a campo viven en `field_mappings.json`.
Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from .types import AirtableRecord

DocumentBuilder = Callable[[Dict[str, Any], AirtableRecord], Dict[str, Any]]


class SkipRecord(Exception):
    """
    El builder descarta el registro (no es un error: cuenta como skipped).

    Ejemplo: distritos sin país o sin formularios asociados.
    """


def passthrough(mapped: Dict[str, Any], record: AirtableRecord) -> Dict[str, Any]:
    return dict(mapped)


@dataclass(frozen=True)
class EntitySyncDefinition:
    """
    Config de una tabla Airtable -> una colección de documentos.

    NOTA sobre la llave natural:
    - Debe ser un campo canónico del mapeo (p.ej. "username").
    - Es la que empareja registros Airtable con documentos existentes
      entre corridas.
    """

    entity_type: str
    source_table: str
    collection: str
    natural_key: str
    build_document: DocumentBuilder = passthrough
    issues_credentials: bool = False
    extra_mapping_tables: Tuple[str, ...] = ()

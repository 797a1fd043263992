"""
Definiciones de entidades sincronizadas desde Airtable.

| entidad   | tabla Airtable | colección | llave natural |
|-----------|----------------|-----------|---------------|
| users     | validation     | users     | username      |
| surveys   | forms          | surveys   | asset_id      |
| districts | districts      | districts | code          |

Cada builder recibe los campos ya mapeados/validados por el FieldMapper y
completa el documento (defaults, roles, derivaciones).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.shared.exceptions.sync import UnknownEntityTypeError

from .mapping_tables import normalize_country_id
from .sync_config import EntitySyncDefinition, SkipRecord
from .types import AirtableRecord

VALID_ROLES = ("admin", "user")

# Tabla Airtable -> entidad (webhooks)
SOURCE_TABLE_TO_ENTITY = {
    "validation": "users",
    "forms": "surveys",
    "districts": "districts",
}


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def build_user(mapped: Dict[str, Any], record: AirtableRecord) -> Dict[str, Any]:
    """Documento de usuario: rol normalizado y permisos completos."""
    permissions = mapped.get("permissions") or {}
    role = mapped.get("role")
    return {
        "username": mapped["username"],
        "email": mapped.get("email"),
        "name": mapped.get("name") or mapped["username"],
        "role": role if role in VALID_ROLES else "user",
        "country": _as_list(mapped.get("country")),
        "permissions": {
            "surveys": _as_list(permissions.get("surveys")),
            "enumerators": _as_list(permissions.get("enumerators")),
            "gaul_codes": _as_list(permissions.get("gaul_codes")),
        },
    }


def build_survey(mapped: Dict[str, Any], record: AirtableRecord) -> Dict[str, Any]:
    return {
        "asset_id": mapped["asset_id"],
        "name": mapped["name"],
        "country_id": _as_list(mapped.get("country_id")),
        "active": mapped.get("active") is True,
    }


def country_from_district_code(district_code: Optional[str]) -> Optional[str]:
    """
    Deriva el país desde el prefijo del código de distrito ("ZAN-1" -> "zanzibar").
    Solo se usa como fallback cuando el distrito no tiene país vinculado.
    """
    if not district_code:
        return None
    prefix = str(district_code).strip().upper().split("-", 1)[0]
    if prefix == "KEY":
        # Prefijo legacy de Kenya
        return "kenya"
    return normalize_country_id(code=prefix)


def build_district(mapped: Dict[str, Any], record: AirtableRecord) -> Dict[str, Any]:
    """
    Documento de distrito.

    Raises:
        SkipRecord: Si no se puede determinar el país o no tiene formularios
    """
    code = str(mapped["code"]).strip()
    district_code = mapped.get("district_code")
    linked = _as_list(mapped.get("country_id"))
    country_id = linked[0] if linked else country_from_district_code(district_code)

    if not country_id:
        raise SkipRecord(f"Distrito {code} sin país (district_code={district_code})")

    asset_ids = _as_list(mapped.get("asset_ids"))
    if not asset_ids:
        raise SkipRecord(f"Distrito {code} sin Asset ID asociado")

    return {
        "code": code,
        "name": mapped["name"],
        "district_code": district_code,
        "country_id": country_id,
        "asset_ids": asset_ids,
    }


ENTITY_DEFINITIONS: Dict[str, EntitySyncDefinition] = {
    definition.entity_type: definition
    for definition in (
        EntitySyncDefinition(
            entity_type="users",
            source_table="validation",
            collection="users",
            natural_key="username",
            build_document=build_user,
            issues_credentials=True,
        ),
        EntitySyncDefinition(
            entity_type="surveys",
            source_table="forms",
            collection="surveys",
            natural_key="asset_id",
            build_document=build_survey,
        ),
        EntitySyncDefinition(
            entity_type="districts",
            source_table="districts",
            collection="districts",
            natural_key="code",
            build_document=build_district,
        ),
    )
}


def get_entity_definition(entity_type: str) -> EntitySyncDefinition:
    """
    Retorna la definición de sync de la entidad.

    Raises:
        UnknownEntityTypeError: Si la entidad no está registrada
    """
    try:
        return ENTITY_DEFINITIONS[entity_type]
    except KeyError:
        raise UnknownEntityTypeError(entity_type, list(ENTITY_DEFINITIONS)) from None


def entity_for_source_table(table_name: str) -> Optional[str]:
    return SOURCE_TABLE_TO_ENTITY.get(table_name.strip().lower())

"""
Field Mapper: registro Airtable -> campos canónicos validados.

La configuración es declarativa (JSON) y se valida con pydantic al cargarla:
- airtable_fields: nombres candidatos en orden de prioridad (legacy incluidos)
- required: si no se resuelve ningún candidato, error
- validation: transforma y valida (lowercase_trim, email_format, ...)
- allowed_values: conjunto cerrado de valores
- mapping: sustitución literal de valores
- mapping_table: resolución de IDs de Airtable vía tabla de mapeo

Todos los campos se evalúan antes de lanzar MappingError, para que un
único reporte nombre todos los problemas del registro.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError, field_validator

from app.shared.exceptions.sync import MappingError, SyncConfigError

from .types import AirtableRecord, is_blank

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ALNUM_RE = re.compile(r"^[A-Za-z0-9_-]+$")

MappingTables = Mapping[str, Mapping[str, Any]]


class ValidationType(str, Enum):
    LOWERCASE_TRIM = "lowercase_trim"
    EMAIL_FORMAT = "email_format"
    ALPHANUMERIC = "alphanumeric"
    NUMERIC = "numeric"
    COMMA_SEPARATED = "comma_separated"


class FieldMappingRule(BaseModel):
    """Regla de mapeo de un campo canónico."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    airtable_fields: List[str] = Field(min_length=1)
    required: bool = False
    validation: Optional[ValidationType] = None
    allowed_values: Optional[List[str]] = None
    mapping: Optional[Dict[str, Any]] = None
    mapping_table: Optional[str] = None
    default: Any = None

    @field_validator("airtable_fields")
    @classmethod
    def _no_blank_candidates(cls, value: List[str]) -> List[str]:
        if any(not name.strip() for name in value):
            raise ValueError("airtable_fields no puede contener nombres vacíos")
        return value


class EntityFieldMappings(RootModel[Dict[str, FieldMappingRule]]):
    """Campos canónicos de un tipo de entidad (orden preservado)."""


class FieldMappingConfig(RootModel[Dict[str, EntityFieldMappings]]):
    """Configuración completa: tipo de entidad -> campos canónicos."""

    def entity(self, entity_type: str) -> Dict[str, FieldMappingRule]:
        try:
            return self.root[entity_type].root
        except KeyError:
            raise SyncConfigError(f"No hay mapeo de campos para la entidad '{entity_type}'") from None

    @property
    def entity_types(self) -> List[str]:
        return list(self.root)


def load_field_mappings(path: str | Path) -> FieldMappingConfig:
    """
    Carga y valida el JSON de mapeos.

    Raises:
        SyncConfigError: Si el archivo no existe o no cumple el esquema
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise SyncConfigError(f"Archivo de mapeos no encontrado: {path}") from None
    except json.JSONDecodeError as e:
        raise SyncConfigError(f"JSON de mapeos inválido ({path}): {e}") from e

    # Claves que empiezan con "_" son comentarios del archivo
    raw = {k: v for k, v in raw.items() if not k.startswith("_")}
    try:
        config = FieldMappingConfig.model_validate(raw)
    except ValidationError as e:
        raise SyncConfigError(f"Mapeos de campos inválidos ({path}): {e}") from e

    logger.info(f"Mapeos de campos cargados: {', '.join(config.entity_types)}")
    return config


@dataclass
class MappedRecord:
    """Resultado de mapear un registro."""

    mapped: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class _FieldFailure(Exception):
    """Error de un campo; se acumula, nunca sale del mapper."""


def apply_validation(validation: ValidationType, value: Any, field_name: str) -> Any:
    """
    Aplica una validación: transforma el valor y verifica su formato.

    Raises:
        _FieldFailure: Si el valor no cumple la validación
    """
    if validation is ValidationType.LOWERCASE_TRIM:
        return str(value).strip().lower()

    if validation is ValidationType.EMAIL_FORMAT:
        email = str(value).strip().lower()
        if not _EMAIL_RE.match(email):
            raise _FieldFailure(f"{field_name}: formato de email inválido '{value}'")
        return email

    if validation is ValidationType.ALPHANUMERIC:
        text = str(value).strip()
        if not _ALNUM_RE.match(text):
            raise _FieldFailure(f"{field_name}: debe ser alfanumérico '{value}'")
        return text

    if validation is ValidationType.NUMERIC:
        if isinstance(value, bool):
            raise _FieldFailure(f"{field_name}: debe ser numérico '{value}'")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            try:
                return float(text)
            except ValueError:
                raise _FieldFailure(f"{field_name}: debe ser numérico '{value}'") from None

    if validation is ValidationType.COMMA_SEPARATED:
        if isinstance(value, (list, tuple)):
            items: Iterable[Any] = value
        else:
            items = str(value).split(",")
        return [str(item).strip() for item in items if str(item).strip()]

    raise _FieldFailure(f"{field_name}: validación desconocida '{validation}'")


class FieldMapper:
    """
    Mapea registros Airtable a campos canónicos según FieldMappingConfig.

    Los nombres canónicos pueden usar notación con punto
    ("permissions.surveys") para construir documentos anidados.
    """

    def __init__(self, config: FieldMappingConfig) -> None:
        self._config = config

    @property
    def config(self) -> FieldMappingConfig:
        return self._config

    def rules(self, entity_type: str) -> Dict[str, FieldMappingRule]:
        return self._config.entity(entity_type)

    def required_tables(self, entity_type: str) -> List[str]:
        """Tablas de mapeo referenciadas por la entidad."""
        tables: List[str] = []
        for rule in self.rules(entity_type).values():
            if rule.mapping_table and rule.mapping_table not in tables:
                tables.append(rule.mapping_table)
        return tables

    def map_record(
        self,
        entity_type: str,
        record: AirtableRecord,
        mapping_tables: Optional[MappingTables] = None,
    ) -> MappedRecord:
        """
        Mapea un registro completo.

        Args:
            entity_type: Tipo de entidad (clave del JSON de mapeos)
            record: Registro Airtable
            mapping_tables: Tablas de mapeo construidas para esta corrida

        Returns:
            MappedRecord: Campos mapeados y warnings

        Raises:
            MappingError: Con todos los errores de campo del registro
        """
        mapping_tables = mapping_tables or {}
        result = MappedRecord()
        errors: List[str] = []

        for canonical, rule in self.rules(entity_type).items():
            try:
                value = self._map_field(canonical, rule, record, mapping_tables, result.warnings)
            except _FieldFailure as e:
                errors.append(str(e))
                continue
            if value is not _MISSING:
                _assign(result.mapped, canonical, value)

        if errors:
            raise MappingError(errors, record_id=record.record_id, entity_type=entity_type, warnings=result.warnings)
        return result

    def resolve_natural_key(self, entity_type: str, key_field: str, record: AirtableRecord) -> Optional[Any]:
        """
        Resuelve solo la llave natural (sin validar el resto del registro).

        Retorna None si ningún candidato tiene valor; la validación de la
        regla se aplica para que la llave sea comparable entre corridas.
        """
        rule = self.rules(entity_type).get(key_field)
        if rule is None:
            raise SyncConfigError(f"La llave natural '{key_field}' no está mapeada en '{entity_type}'")
        raw = record.first_present(*rule.airtable_fields)
        if raw is None:
            return None
        if rule.validation is None:
            return raw
        try:
            return apply_validation(rule.validation, raw, key_field)
        except _FieldFailure:
            # El mapeo completo reportará el error
            return raw

    def validate_schema(self, entity_type: str, sample_records: Sequence[AirtableRecord]) -> Dict[str, List[str]]:
        """
        Pre-flight barato: cada campo requerido debe tener al menos un
        candidato presente entre las columnas de la muestra.

        Returns:
            Dict con "errors" (campos requeridos sin columna) y "warnings"
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not sample_records:
            warnings.append(f"Tabla de '{entity_type}' sin registros; no se puede validar el esquema")
            return {"errors": errors, "warnings": warnings}

        columns = set()
        for rec in sample_records:
            columns.update(rec.fields.keys())

        for canonical, rule in self.rules(entity_type).items():
            if any(name in columns for name in rule.airtable_fields):
                continue
            tried = ", ".join(rule.airtable_fields)
            if rule.required:
                errors.append(f"Campo requerido '{canonical}' sin columna en Airtable (probados: {tried})")
            else:
                warnings.append(f"Campo opcional '{canonical}' sin columna en la muestra (probados: {tried})")

        return {"errors": errors, "warnings": warnings}

    def _map_field(
        self,
        canonical: str,
        rule: FieldMappingRule,
        record: AirtableRecord,
        mapping_tables: MappingTables,
        warnings: List[str],
    ) -> Any:
        # 1. Resolver valor por candidatos
        value = record.first_present(*rule.airtable_fields)
        if value is None:
            if rule.required:
                raise _FieldFailure(
                    f"{canonical}: campo requerido ausente (probados: {', '.join(rule.airtable_fields)})"
                )
            return _MISSING if rule.default is None else rule.default

        # 2. Validación (transforma)
        if rule.validation is not None:
            value = apply_validation(rule.validation, value, canonical)

        # 3. Valores permitidos
        if rule.allowed_values is not None:
            if str(value) not in rule.allowed_values:
                raise _FieldFailure(
                    f"{canonical}: valor '{value}' no permitido (permitidos: {', '.join(rule.allowed_values)})"
                )

        # 4. Sustitución literal
        if rule.mapping is not None and isinstance(value, str) and value in rule.mapping:
            value = rule.mapping[value]

        # 5. Resolución por tabla de mapeo
        if rule.mapping_table:
            value = self._resolve_through_table(canonical, rule, value, mapping_tables, warnings)

        return value

    def _resolve_through_table(
        self,
        canonical: str,
        rule: FieldMappingRule,
        value: Any,
        mapping_tables: MappingTables,
        warnings: List[str],
    ) -> Any:
        table = mapping_tables.get(rule.mapping_table)
        if table is None:
            if rule.required:
                raise _FieldFailure(f"{canonical}: tabla de mapeo '{rule.mapping_table}' no disponible")
            warnings.append(f"{canonical}: tabla de mapeo '{rule.mapping_table}' no disponible")
            return _MISSING

        items = value if isinstance(value, (list, tuple)) else [value]
        invalid = [item for item in items if not isinstance(item, str)]
        if invalid:
            raise _FieldFailure(
                f"{canonical}: valor no resoluble vía '{rule.mapping_table}' (se esperaba ID de texto): {invalid[0]!r}"
            )

        if isinstance(value, (list, tuple)):
            resolved = [table[item] for item in value if item in table]
            if len(resolved) < len(value):
                if resolved:
                    warnings.append(
                        f"{canonical}: {len(resolved)}/{len(value)} resolved vía '{rule.mapping_table}'"
                    )
                elif rule.required:
                    raise _FieldFailure(
                        f"{canonical}: ningún ID resuelto vía '{rule.mapping_table}' (0/{len(value)} resolved)"
                    )
                else:
                    warnings.append(
                        f"{canonical}: 0/{len(value)} resolved vía '{rule.mapping_table}'"
                    )
            return resolved

        if value in table:
            return table[value]
        if rule.required:
            raise _FieldFailure(f"{canonical}: ID '{value}' no resuelto vía '{rule.mapping_table}'")
        warnings.append(f"{canonical}: ID '{value}' no resuelto vía '{rule.mapping_table}'")
        return _MISSING


class _Missing:
    def __repr__(self) -> str:
        return "<MISSING>"


_MISSING: Any = _Missing()


def _assign(target: Dict[str, Any], dotted: str, value: Any) -> None:
    """Asigna `value` en `target` siguiendo una ruta con puntos."""
    parts = dotted.split(".")
    node = target
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value

"""
Tablas de mapeo: ID de registro Airtable -> valor canónico.

Airtable representa las relaciones como listas de IDs de registro
("recXXXX"). Antes de mapear una entidad se descargan las tablas
auxiliares y se construye un diccionario por tabla.

Las tablas de una corrida se construyen en paralelo (una tarea por tabla
origen); todas comparten el limiter del cliente, así que el volumen de
llamadas nunca supera la cuota configurada.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from app.shared.exceptions.sync import SyncConfigError

from .airtable_client import AirtableClient
from .types import AirtableRecord, is_blank

Extractor = Callable[[AirtableRecord], Optional[Any]]


@dataclass(frozen=True)
class MappingTableSpec:
    """Define cómo construir una tabla de mapeo a partir de una tabla Airtable."""

    name: str
    source_table: str
    extract: Extractor


# Códigos de país (ISO2/ISO3 y prefijos legacy) -> country_id
_COUNTRY_CODES = {
    "KE": "kenya",
    "KEN": "kenya",
    "MZ": "mozambique",
    "MOZ": "mozambique",
    "TZ": "zanzibar",
    "TZA": "zanzibar",
    "ZAN": "zanzibar",
    "TL": "timor",
    "TLS": "timor",
    "TIM": "timor",
}

_COUNTRY_NAMES = ("kenya", "mozambique", "zanzibar", "timor")


def normalize_country_id(code: Optional[str] = None, name: Optional[str] = None) -> Optional[str]:
    """
    Normaliza código o nombre de país a country_id ("kenya", "mozambique", ...).

    El código tiene prioridad; el nombre se compara por contención
    ("Timor-Leste" -> "timor").
    """
    if code:
        country_id = _COUNTRY_CODES.get(str(code).strip().upper())
        if country_id:
            return country_id
    if name:
        lowered = str(name).lower()
        for candidate in _COUNTRY_NAMES:
            if candidate in lowered:
                return candidate
    return None


def _scalar(*names: str, transform: Callable[[Any], Any] = lambda v: v) -> Extractor:
    def extract(record: AirtableRecord) -> Optional[Any]:
        value = record.first_present(*names)
        return None if value is None else transform(value)

    return extract


def _country_id(record: AirtableRecord) -> Optional[str]:
    return normalize_country_id(
        code=record.first_present("Code", "code"),
        name=record.first_present("Country", "Name", "name"),
    )


MAPPING_TABLES: Dict[str, MappingTableSpec] = {
    spec.name: spec
    for spec in (
        MappingTableSpec("forms", "forms", _scalar("Form ID")),
        MappingTableSpec("countries", "countries", _scalar("Country")),
        MappingTableSpec("enumerators", "enumerators", _scalar("Kobo Username", transform=lambda v: str(v).strip())),
        MappingTableSpec("districts", "districts", _scalar("Gaul 2 Code", "gaul_2", "Gaul 2", transform=str)),
        MappingTableSpec("country_ids", "countries", _country_id),
    )
}


def build_table(spec: MappingTableSpec, records: Iterable[AirtableRecord]) -> Dict[str, Any]:
    """Construye una tabla de mapeo a partir de registros ya descargados."""
    table: Dict[str, Any] = {}
    for record in records:
        value = spec.extract(record)
        if not is_blank(value):
            table[record.record_id] = value
    return table


class MappingTableBuilder:
    """
    Descarga tablas auxiliares y construye las tablas de mapeo.

    Cada tabla origen se descarga una sola vez por corrida aunque varias
    tablas de mapeo la usen (p.ej. "countries" y "country_ids").
    """

    def __init__(
        self,
        client: AirtableClient,
        specs: Optional[Dict[str, MappingTableSpec]] = None,
    ) -> None:
        self._client = client
        self._specs = specs if specs is not None else MAPPING_TABLES

    async def build(self, names: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """
        Construye las tablas pedidas en paralelo.

        Args:
            names: Nombres de tablas de mapeo

        Returns:
            Dict nombre -> {record_id: valor}

        Raises:
            SyncConfigError: Si se pide una tabla no registrada
            AirtableApiError: Si falla la descarga de alguna tabla origen
        """
        specs: List[MappingTableSpec] = []
        for name in dict.fromkeys(names):
            spec = self._specs.get(name)
            if spec is None:
                raise SyncConfigError(f"Tabla de mapeo no registrada: '{name}'")
            specs.append(spec)

        if not specs:
            return {}

        sources = list(dict.fromkeys(spec.source_table for spec in specs))
        logger.info(f"Construyendo tablas de mapeo {[s.name for s in specs]} desde {sources}")

        fetched = await self._fetch_all(sources)
        records_by_source = dict(zip(sources, fetched))

        tables: Dict[str, Dict[str, Any]] = {}
        for spec in specs:
            tables[spec.name] = build_table(spec, records_by_source[spec.source_table])
            logger.debug(f"Tabla de mapeo '{spec.name}': {len(tables[spec.name])} entrada(s)")
        return tables

    async def _fetch_all(self, sources: List[str]) -> List[List[AirtableRecord]]:
        """Descarga las tablas en paralelo; si una falla se cancelan las demás."""
        tasks = [asyncio.create_task(self._client.fetch_table(source)) for source in sources]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

"""
Servicio de reconciliación Airtable -> documentos.

Diseño (resumen), por corrida y por tipo de entidad:
- Toma el lease de la entidad (SyncLock); si está ocupado, falla rápido
- Pre-flight: valida el esquema con una muestra (maxRecords=1)
- Checkpoint de los documentos marcados (SyncTransaction)
- Construye las tablas de mapeo en paralelo
- Descarga la tabla origen completa y clasifica cada registro:
  create / update-if-changed / unchanged / skipped / failed
- Borra los documentos del sync cuya llave ya no existe en Airtable
- Commit, o rollback si hubo errores o algún registro falló
- Escribe exactamente una entrada de auditoría
- Libera el lease (finally)

Los usuarios nuevos reciben una contraseña generada; solo se persiste el
hash y el texto plano se retorna una única vez al caller.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.core.security import SecurityService
from app.infrastructure.database.session import Database
from app.infrastructure.repositories.document_repository import DocumentRepository
from app.shared.exceptions.sync import (
    MappingError,
    SchemaValidationError,
    SyncConfigError,
    SyncException,
    SyncInProgressError,
    UnknownEntityTypeError,
)

from .airtable_client import AirtableClient, AirtableCredentials, RetryPolicy
from .field_mapper import FieldMapper, load_field_mappings
from .mapping_tables import MappingTableBuilder
from .rate_limiter import RateLimiterRegistry
from .sync_audit import SyncAuditLogger
from .sync_config import EntitySyncDefinition, SkipRecord
from .sync_lock import SyncLock
from .sync_transaction import SyncTransaction
from .table_mappings import ENTITY_DEFINITIONS
from .types import SYNC_PROVENANCE, SyncCounters, is_blank, utc_now


@dataclass
class SyncResult:
    """
    Resultado de una corrida.

    `generated_credentials` (llave natural -> contraseña en texto plano)
    no debe loguearse; queda fuera del repr.
    """

    entity_type: str
    sync_id: str
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    status: str = "success"
    warnings: List[str] = field(default_factory=list)
    generated_credentials: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def as_dict(self) -> Dict[str, Any]:
        """Resumen sin secretos."""
        return {
            "entity_type": self.entity_type,
            "sync_id": self.sync_id,
            "status": self.status,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
            "passwords_generated": len(self.generated_credentials),
            "warnings": list(self.warnings),
        }


def _result_from_counters(
    entity_type: str, sync_id: str, counters: SyncCounters, generated: Dict[str, str]
) -> SyncResult:
    return SyncResult(
        entity_type=entity_type,
        sync_id=sync_id,
        generated_credentials=generated,
        **counters.as_dict(),
    )


def _has_changes(current: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
    return any(current.get(key) != value for key, value in document.items())


class DirectorySyncService:
    """
    Orquestador de la reconciliación para todas las entidades registradas.
    """

    def __init__(
        self,
        *,
        database: Database,
        airtable: AirtableClient,
        field_mapper: FieldMapper,
        lock: Optional[SyncLock] = None,
        documents: Optional[DocumentRepository] = None,
        table_builder: Optional[MappingTableBuilder] = None,
        definitions: Optional[Mapping[str, EntitySyncDefinition]] = None,
        clock: Callable[[], datetime] = utc_now,
        password_generator: Callable[[], str] = SecurityService.generate_password,
        password_hasher: Callable[[str], str] = SecurityService.hash_password,
    ) -> None:
        self._db = database
        self._airtable = airtable
        self._mapper = field_mapper
        self._lock = lock or SyncLock(database, clock=clock)
        self._docs = documents or DocumentRepository(database)
        self._tables = table_builder or MappingTableBuilder(airtable)
        self._definitions = dict(definitions or ENTITY_DEFINITIONS)
        self._clock = clock
        self._generate_password = password_generator
        self._hash_password = password_hasher
        self._check_definitions()

    def _check_definitions(self) -> None:
        """Cada entidad debe tener mapeo de campos y su llave natural mapeada."""
        for definition in self._definitions.values():
            rules = self._mapper.rules(definition.entity_type)
            if definition.natural_key not in rules:
                raise SyncConfigError(
                    f"La llave natural '{definition.natural_key}' de '{definition.entity_type}' "
                    f"no está en los mapeos de campos"
                )

    @property
    def lock(self) -> SyncLock:
        return self._lock

    @property
    def entity_types(self) -> List[str]:
        return list(self._definitions)

    def definition(self, entity_type: str) -> EntitySyncDefinition:
        if entity_type not in self._definitions:
            raise UnknownEntityTypeError(entity_type, self.entity_types)
        return self._definitions[entity_type]

    async def run(self, entity_type: str, triggered_by: str) -> SyncResult:
        """
        Ejecuta una corrida completa con el lease tomado.

        Args:
            entity_type: "users", "surveys" o "districts"
            triggered_by: Quién dispara (admin, cron, scheduler, webhook, cli)

        Raises:
            SyncInProgressError: Otra corrida tiene el lease
            SchemaValidationError: Faltan columnas requeridas en Airtable
            AirtableApiError: Error permanente o reintentos agotados
            SyncConsistencyError: Hubo registros fallidos (rollback aplicado)
        """
        definition = self.definition(entity_type)
        owner = f"{triggered_by}:{uuid.uuid4().hex[:8]}"
        return await self._lock.execute_with_lock(
            entity_type, owner, lambda: self._run_locked(definition, triggered_by)
        )

    async def run_all(self, triggered_by: str) -> Dict[str, Dict[str, Any]]:
        """
        Ejecuta todas las entidades en secuencia. El fallo o conflicto de
        una entidad no impide las siguientes.
        """
        summary: Dict[str, Dict[str, Any]] = {}
        for entity_type in self.entity_types:
            try:
                result = await self.run(entity_type, triggered_by)
                summary[entity_type] = result.as_dict()
            except SyncInProgressError as e:
                logger.warning(f"sync-all: {e.message}")
                summary[entity_type] = {"status": "conflict", "error": e.message}
            except SyncException as e:
                logger.error(f"sync-all: {entity_type} falló: {e.message}")
                summary[entity_type] = {"status": "failed", "error": e.message}
        return summary

    async def validate_schema(self, entity_type: str) -> Dict[str, List[str]]:
        """Pre-flight sin tomar el lease (usado por el CLI con --validate-only)."""
        definition = self.definition(entity_type)
        sample = await self._airtable.fetch_sample(definition.source_table)
        return self._mapper.validate_schema(entity_type, sample)

    async def _run_locked(self, definition: EntitySyncDefinition, triggered_by: str) -> SyncResult:
        audit = SyncAuditLogger(self._db, definition.entity_type, triggered_by, clock=self._clock)
        logger.info(
            f"Sync {definition.entity_type} [{audit.sync_id}] iniciado por {triggered_by}: "
            f"Airtable '{definition.source_table}' -> '{definition.collection}'"
        )
        status = "failed"
        try:
            await self._preflight(definition, audit)
            transaction = SyncTransaction(self._docs, definition.collection, clock=self._clock)
            result: SyncResult = await transaction.execute(
                lambda tx: self._apply(definition, tx, audit),
                {"entity_type": definition.entity_type, "sync_id": audit.sync_id},
            )
            status = "partial" if audit.warnings else "success"
            result.status = status
            result.warnings = [w["message"] for w in audit.warnings]
            return result
        except Exception as e:
            audit.add_error(e)
            raise
        finally:
            await audit.log_completion(status)

    async def _preflight(self, definition: EntitySyncDefinition, audit: SyncAuditLogger) -> None:
        sample = await self._airtable.fetch_sample(definition.source_table)
        report = self._mapper.validate_schema(definition.entity_type, sample)
        # Columnas opcionales ausentes no afectan el status de la corrida
        for warning in report["warnings"]:
            logger.warning(f"Esquema {definition.entity_type}: {warning}")
        if report["errors"]:
            raise SchemaValidationError(definition.entity_type, report["errors"])

    async def _apply(
        self,
        definition: EntitySyncDefinition,
        transaction: SyncTransaction,
        audit: SyncAuditLogger,
    ) -> SyncResult:
        entity_type = definition.entity_type
        table_names = self._mapper.required_tables(entity_type) + list(definition.extra_mapping_tables)
        tables = await self._tables.build(table_names)

        records = await self._airtable.fetch_table(definition.source_table)
        audit.set_source_snapshot(len(records))
        logger.info(f"Sync {entity_type}: {len(records)} registro(s) en Airtable '{definition.source_table}'")

        existing = await self._docs.get_by_keys(definition.collection)
        seen: set[str] = set()
        generated: Dict[str, str] = {}

        for record in records:
            raw_key = self._mapper.resolve_natural_key(entity_type, definition.natural_key, record)
            key = None if is_blank(raw_key) else str(raw_key).strip()
            if key is None:
                audit.increment_result("skipped")
                audit.add_warning(f"Registro sin llave natural '{definition.natural_key}'", record.record_id)
                continue
            if key in seen:
                audit.increment_result("skipped")
                audit.add_warning(f"Llave natural duplicada '{key}'", record.record_id)
                continue
            seen.add(key)

            try:
                mapped = self._mapper.map_record(entity_type, record, tables)
                document = definition.build_document(mapped.mapped, record)
            except SkipRecord as e:
                audit.increment_result("skipped")
                audit.add_warning(str(e), record.record_id)
                continue
            except MappingError as e:
                logger.warning(f"Sync {entity_type}: {e.message}")
                audit.increment_result("failed")
                audit.add_error(e, record.record_id)
                continue

            for warning in mapped.warnings:
                audit.add_warning(warning, record.record_id)

            try:
                await self._upsert(definition, transaction, key, document, existing, generated, audit)
            except SQLAlchemyError as e:
                logger.error(f"Sync {entity_type}: error guardando '{key}': {e}")
                audit.increment_result("failed")
                audit.add_error(e, record.record_id)

        stale = [
            key
            for key, doc in existing.items()
            if doc.created_by == SYNC_PROVENANCE and key not in seen
        ]
        if stale:
            deleted = await self._docs.delete_by_keys(definition.collection, stale)
            audit.increment_result("deleted", deleted)
            logger.info(f"Sync {entity_type}: {deleted} documento(s) eliminado(s) (ya no están en Airtable)")

        return _result_from_counters(entity_type, audit.sync_id, audit.results, generated)

    async def _upsert(
        self,
        definition: EntitySyncDefinition,
        transaction: SyncTransaction,
        key: str,
        document: Dict[str, Any],
        existing: Mapping[str, Any],
        generated: Dict[str, str],
        audit: SyncAuditLogger,
    ) -> None:
        now = self._clock()
        current = existing.get(key)

        if current is None:
            data = dict(document)
            if definition.issues_credentials:
                password = self._generate_password()
                data["password_hash"] = self._hash_password(password)
                data["active"] = True
                generated[key] = password
            await self._docs.insert_document(
                definition.collection, key, data, created_by=SYNC_PROVENANCE, now=now
            )
            audit.increment_result("created")
            logger.debug(f"Sync {definition.entity_type}: creado '{key}'")
            return

        if not _has_changes(current.data, document):
            audit.increment_result("skipped")
            return

        # Los campos fuera del documento (password_hash, active, ...) se conservan
        await transaction.protect(current)
        await self._docs.update_document(
            definition.collection,
            key,
            {**current.data, **document},
            updated_by=SYNC_PROVENANCE,
            now=now,
        )
        audit.increment_result("updated")
        logger.debug(f"Sync {definition.entity_type}: actualizado '{key}'")


@dataclass
class SyncContainer:
    """
    Recursos del motor de sync con ciclo de vida explícito.

    Se construye en el startup del API (o en el CLI) y se cierra en el
    shutdown; no hay singletons de módulo.
    """

    database: Database
    http_client: httpx.AsyncClient
    limiters: RateLimiterRegistry
    field_mapper: FieldMapper
    lock: SyncLock
    service: Optional[DirectorySyncService] = None
    owns_database: bool = True

    def require_service(self) -> DirectorySyncService:
        if self.service is None:
            raise SyncConfigError("Faltan credenciales de Airtable: AIRTABLE_TOKEN y AIRTABLE_BASE_ID")
        return self.service

    async def close(self) -> None:
        await self.http_client.aclose()
        if self.owns_database:
            await self.database.close()


def build_from_settings(
    settings: Any,
    *,
    database: Optional[Database] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SyncContainer:
    """
    Constructor "oficial" del motor leyendo `Settings`.

    Raises:
        SyncConfigError: Si el JSON de mapeos no existe o es inválido
    """
    field_mapper = FieldMapper(load_field_mappings(settings.FIELD_MAPPINGS_PATH))
    owns_database = database is None
    database = database or Database(
        settings.effective_database_url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    http_client = http_client or httpx.AsyncClient(timeout=settings.AIRTABLE_TIMEOUT_S)
    limiters = RateLimiterRegistry(default_rate=settings.AIRTABLE_REQUESTS_PER_SECOND)
    lock = SyncLock(database, ttl=timedelta(minutes=settings.SYNC_LOCK_TTL_MINUTES))

    service: Optional[DirectorySyncService] = None
    if settings.AIRTABLE_TOKEN and settings.AIRTABLE_BASE_ID:
        airtable = AirtableClient(
            AirtableCredentials(token=settings.AIRTABLE_TOKEN, base_id=settings.AIRTABLE_BASE_ID),
            limiters=limiters,
            http_client=http_client,
            base_url=settings.AIRTABLE_API_URL,
            timeout_s=settings.AIRTABLE_TIMEOUT_S,
            retry=RetryPolicy(
                max_retries=settings.AIRTABLE_MAX_RETRIES,
                base_delay_s=settings.AIRTABLE_BACKOFF_BASE_S,
                max_delay_s=settings.AIRTABLE_BACKOFF_MAX_S,
            ),
            page_size=settings.AIRTABLE_PAGE_SIZE,
        )
        service = DirectorySyncService(
            database=database,
            airtable=airtable,
            field_mapper=field_mapper,
            lock=lock,
        )
    else:
        logger.warning("Airtable sin credenciales: los syncs fallarán hasta configurarlas")

    return SyncContainer(
        database=database,
        http_client=http_client,
        limiters=limiters,
        field_mapper=field_mapper,
        lock=lock,
        service=service,
        owns_database=owns_database,
    )

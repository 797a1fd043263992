"""
Configuración de fixtures para pytest.
"""
from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
import pytest

from app.core.config import DEFAULT_FIELD_MAPPINGS_PATH
from app.infrastructure.database.session import Database
from app.infrastructure.external.airtable_sync.airtable_client import (
    AirtableClient,
    AirtableCredentials,
    RetryPolicy,
)
from app.infrastructure.external.airtable_sync.field_mapper import FieldMapper, load_field_mappings
from app.infrastructure.external.airtable_sync.rate_limiter import RateLimiterRegistry
from app.infrastructure.external.airtable_sync.sync_service import DirectorySyncService


TEST_BASE_ID = "appTEST"
TEST_API_URL = "https://airtable.test/v0"


class FakeAirtableBase:
    """
    Base de Airtable en memoria servida vía httpx.MockTransport.

    Soporta paginación por offset (pageSize), maxRecords y errores
    programados por tabla.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {k: list(v) for k, v in (tables or {}).items()}
        self.requests: List[httpx.Request] = []
        # tabla -> lista de status a responder antes de servir datos
        self.scripted_errors: Dict[str, List[int]] = {}

    def set_table(self, name: str, records: List[Dict[str, Any]]) -> None:
        self.tables[name] = list(records)

    def requests_for(self, table: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.rsplit("/", 1)[-1] == table]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]

        pending = self.scripted_errors.get(table)
        if pending:
            return httpx.Response(pending.pop(0), json={"error": {"type": "SCRIPTED"}})

        if table not in self.tables:
            return httpx.Response(404, json={"error": {"type": "TABLE_NOT_FOUND"}})

        records = self.tables[table]
        params = request.url.params
        if "maxRecords" in params:
            return httpx.Response(200, json={"records": records[: int(params["maxRecords"])]})

        page_size = int(params.get("pageSize", 100))
        offset = int(params.get("offset", 0))
        payload: Dict[str, Any] = {"records": records[offset: offset + page_size]}
        if offset + page_size < len(records):
            payload["offset"] = str(offset + page_size)
        return httpx.Response(200, json=payload)


def record(record_id: str, **fields: Any) -> Dict[str, Any]:
    """Registro con la forma de la API de Airtable."""
    return {"id": record_id, "createdTime": "2026-01-01T00:00:00.000Z", "fields": fields}


class FixedClock:
    """Reloj controlable para leases y auditoría."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture
def make_record():
    return record


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Base de datos SQLite en archivo (una por test) con las tablas creadas.
    En archivo y no en memoria para que sesiones concurrentes compartan datos.
    """
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def fake_airtable() -> FakeAirtableBase:
    return FakeAirtableBase()


@pytest.fixture
async def http_client(fake_airtable: FakeAirtableBase) -> AsyncGenerator[httpx.AsyncClient, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_airtable.handler))
    yield client
    await client.aclose()


@pytest.fixture
def airtable_client(http_client: httpx.AsyncClient) -> AirtableClient:
    """Cliente sin esperas reales: limiter holgado y backoff en cero."""
    return AirtableClient(
        AirtableCredentials(token="patTEST", base_id=TEST_BASE_ID),
        limiters=RateLimiterRegistry(default_rate=1000),
        http_client=http_client,
        base_url=TEST_API_URL,
        retry=RetryPolicy(max_retries=2, base_delay_s=0, max_delay_s=0, jitter_ratio=0),
        page_size=2,
    )


@pytest.fixture
def field_mapper() -> FieldMapper:
    return FieldMapper(load_field_mappings(DEFAULT_FIELD_MAPPINGS_PATH))


@pytest.fixture
def sync_service(database: Database, airtable_client: AirtableClient, field_mapper: FieldMapper) -> DirectorySyncService:
    """
    Orquestador con contraseñas deterministas y hash barato
    (el hash real con bcrypt se prueba en test_security).
    """
    counter = itertools.count(1)
    return DirectorySyncService(
        database=database,
        airtable=airtable_client,
        field_mapper=field_mapper,
        password_generator=lambda: f"pw-{next(counter)}",
        password_hasher=lambda password: f"hashed:{password}",
    )

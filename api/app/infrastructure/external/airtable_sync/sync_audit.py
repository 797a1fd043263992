"""
Auditoría persistente de corridas de sync.

Una instancia por corrida. Los contadores y errores se acumulan en memoria
y la entrada se escribe una sola vez en `log_completion`.
"""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select

from app.infrastructure.database.models import SyncAuditLogModel
from app.infrastructure.database.session import Database

from .types import SyncCounters, ensure_utc, utc_now

VALID_STATUSES = ("success", "failed", "partial")
RESULT_KINDS = ("created", "updated", "deleted", "skipped", "failed")


class SyncAuditLogger:
    """
    Registro estructurado de una corrida.

    Uso:
        audit = SyncAuditLogger(database, "users", "admin")
        audit.increment_result("created")
        audit.add_error(exc, record_id="rec123")
        await audit.log_completion("success")
    """

    def __init__(
        self,
        database: Database,
        entity_type: str,
        triggered_by: str,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._clock = clock
        self.sync_id = str(uuid.uuid4())
        self.entity_type = entity_type
        self.triggered_by = triggered_by
        self.start_time = clock()
        self.results = SyncCounters()
        self.errors: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []
        self.source_snapshot: Optional[Dict[str, Any]] = None
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def increment_result(self, kind: str, amount: int = 1) -> None:
        if kind not in RESULT_KINDS:
            raise ValueError(f"Tipo de resultado inválido: {kind}")
        setattr(self.results, kind, getattr(self.results, kind) + amount)

    def add_error(self, error: BaseException | str, record_id: Optional[str] = None) -> None:
        entry: Dict[str, Any] = {
            "message": str(error),
            "timestamp": self._clock().isoformat(),
        }
        if record_id:
            entry["record_id"] = record_id
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            entry["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))[-4000:]
        self.errors.append(entry)

    def add_warning(self, message: str, record_id: Optional[str] = None) -> None:
        entry: Dict[str, Any] = {"message": message, "timestamp": self._clock().isoformat()}
        if record_id:
            entry["record_id"] = record_id
        self.warnings.append(entry)

    def set_source_snapshot(self, record_count: int) -> None:
        self.source_snapshot = {"record_count": record_count, "timestamp": self._clock().isoformat()}

    def summary(self) -> Dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "entity_type": self.entity_type,
            "triggered_by": self.triggered_by,
            "results": self.results.as_dict(),
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
        }

    async def log_completion(self, status: str) -> Dict[str, Any]:
        """
        Persiste la entrada de auditoría (exactamente una vez).

        Raises:
            ValueError: Si el status no es success/failed/partial
            RuntimeError: Si la entrada ya se escribió
        """
        if status not in VALID_STATUSES:
            raise ValueError(f"Status de auditoría inválido: {status}")
        if self._completed:
            raise RuntimeError(f"La auditoría {self.sync_id} ya fue registrada")

        end_time = self._clock()
        duration_ms = int((end_time - self.start_time).total_seconds() * 1000)
        entry = {
            "sync_id": self.sync_id,
            "entity_type": self.entity_type,
            "triggered_by": self.triggered_by,
            "start_time": self.start_time,
            "end_time": end_time,
            "duration_ms": duration_ms,
            "status": status,
            "results": self.results.as_dict(),
            "errors": self.errors,
            "warnings": self.warnings,
            "source_snapshot": self.source_snapshot,
        }

        async with self._db.session() as db:
            db.add(SyncAuditLogModel(**entry))
        self._completed = True

        results = self.results
        message = (
            f"Sync {self.entity_type} [{self.sync_id}] {status} en {duration_ms}ms: "
            f"created={results.created} updated={results.updated} deleted={results.deleted} "
            f"skipped={results.skipped} failed={results.failed} errores={len(self.errors)}"
        )
        if status == "failed":
            logger.error(message)
        elif status == "partial":
            logger.warning(message)
        else:
            logger.success(message)
        return entry


def audit_entry_to_dict(row: SyncAuditLogModel) -> Dict[str, Any]:
    return {
        "sync_id": row.sync_id,
        "entity_type": row.entity_type,
        "triggered_by": row.triggered_by,
        "start_time": ensure_utc(row.start_time).isoformat() if row.start_time else None,
        "end_time": ensure_utc(row.end_time).isoformat() if row.end_time else None,
        "duration_ms": row.duration_ms,
        "status": row.status,
        "results": row.results or {},
        "errors": row.errors or [],
        "warnings": row.warnings or [],
        "source_snapshot": row.source_snapshot,
    }


async def list_sync_logs(
    database: Database,
    *,
    entity_type: Optional[str] = None,
    limit: int = 50,
    skip: int = 0,
) -> Dict[str, Any]:
    """
    Lista entradas de auditoría, más recientes primero.

    Returns:
        Dict con "logs" y "total"
    """
    query = select(SyncAuditLogModel)
    count_query = select(func.count()).select_from(SyncAuditLogModel)
    if entity_type:
        query = query.where(SyncAuditLogModel.entity_type == entity_type)
        count_query = count_query.where(SyncAuditLogModel.entity_type == entity_type)
    query = query.order_by(SyncAuditLogModel.start_time.desc(), SyncAuditLogModel.id.desc()).offset(skip).limit(limit)

    async with database.session() as db:
        rows = (await db.execute(query)).scalars().all()
        total = (await db.execute(count_query)).scalar_one()
    return {"logs": [audit_entry_to_dict(row) for row in rows], "total": total}

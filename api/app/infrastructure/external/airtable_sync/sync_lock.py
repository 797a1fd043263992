"""
Lock distribuido de sync por tipo de entidad (lease en base de datos).

Motivacion:
- El sync se dispara desde varios lugares (admin, cron, webhook, CLI) y
  desde varios procesos; dos corridas de la misma entidad no deben
  solaparse.
- Un proceso que muere sin liberar deja un lease que expira solo.

Caracteristicas:
- Adquisicion con un unico INSERT ... ON CONFLICT DO UPDATE ... WHERE
  (compare-and-set atomico en el storage, sin leer-y-escribir)
- Lease de duracion fija (10 minutos por defecto)
- Liberacion garantizada en `execute_with_lock` (try/finally)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.dialects import postgresql, sqlite

from app.infrastructure.database.models import SyncLockModel
from app.infrastructure.database.session import Database
from app.shared.exceptions.sync import SyncInProgressError

from .types import ensure_utc, utc_now

T = TypeVar("T")

# Duracion por defecto del lease
DEFAULT_LOCK_TTL = timedelta(minutes=10)


def lock_key(entity_type: str) -> str:
    return f"sync_{entity_type}"


@dataclass(frozen=True)
class LockStatus:
    """Lease vigente de un tipo de entidad."""

    entity_type: str
    locked_by: Optional[str]
    locked_at: Optional[datetime]
    expires_at: Optional[datetime]


class SyncLock:
    """
    Lease por tipo de entidad en la tabla `system_locks`.

    Estados: UNLOCKED -> LOCKED (acquire) -> UNLOCKED (release o expiracion).
    """

    def __init__(
        self,
        database: Database,
        *,
        ttl: timedelta = DEFAULT_LOCK_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._ttl = ttl
        self._clock = clock

    def _insert(self):
        if self._db.dialect == "postgresql":
            return postgresql.insert(SyncLockModel)
        if self._db.dialect == "sqlite":
            return sqlite.insert(SyncLockModel)
        raise NotImplementedError(f"Dialecto sin upsert condicional: {self._db.dialect}")

    async def acquire(self, entity_type: str, owner: str) -> bool:
        """
        Intenta adquirir el lease.

        Tiene exito solo si no existe lease, si esta liberado o si expiro.

        Args:
            entity_type: Tipo de entidad
            owner: Identificador de quien dispara el sync

        Returns:
            bool: True si se adquirio
        """
        now = self._clock()
        expires_at = now + self._ttl
        stmt = self._insert().values(
            key=lock_key(entity_type),
            locked=True,
            locked_by=owner,
            locked_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SyncLockModel.key],
            set_={
                "locked": True,
                "locked_by": owner,
                "locked_at": now,
                "expires_at": expires_at,
            },
            where=or_(
                SyncLockModel.locked.is_(False),
                SyncLockModel.expires_at < now,
            ),
        ).returning(SyncLockModel.key)

        async with self._db.session() as db:
            result = await db.execute(stmt)
            acquired = result.scalar_one_or_none() is not None

        if acquired:
            logger.info(f"Lock '{lock_key(entity_type)}' adquirido por {owner} (expira {expires_at.isoformat()})")
        else:
            logger.warning(f"Lock '{lock_key(entity_type)}' ocupado; {owner} no pudo adquirirlo")
        return acquired

    async def release(self, entity_type: str, owner: Optional[str] = None) -> bool:
        """
        Libera el lease. Si se indica `owner`, solo libera el lease de ese owner.

        Returns:
            bool: True si habia un lease tomado que se libero
        """
        stmt = (
            update(SyncLockModel)
            .where(SyncLockModel.key == lock_key(entity_type), SyncLockModel.locked.is_(True))
            .values(locked=False, expires_at=None)
        )
        if owner is not None:
            stmt = stmt.where(SyncLockModel.locked_by == owner)

        async with self._db.session() as db:
            result = await db.execute(stmt)
            released = result.rowcount > 0

        if released:
            logger.info(f"Lock '{lock_key(entity_type)}' liberado")
        return released

    async def check_lock(self, entity_type: str) -> Optional[LockStatus]:
        """Retorna el lease vigente (no expirado) o None."""
        async with self._db.session() as db:
            row = await db.get(SyncLockModel, lock_key(entity_type))
            if row is None or not row.locked or row.expires_at is None:
                return None
            expires_at = ensure_utc(row.expires_at)
            if expires_at <= self._clock():
                return None
            return LockStatus(
                entity_type=entity_type,
                locked_by=row.locked_by,
                locked_at=ensure_utc(row.locked_at) if row.locked_at else None,
                expires_at=expires_at,
            )

    async def force_release(self, entity_type: str) -> bool:
        """Libera el lease sin importar el owner (uso administrativo)."""
        released = await self.release(entity_type)
        logger.warning(f"Lock '{lock_key(entity_type)}' liberado a la fuerza (habia lease: {released})")
        return released

    @asynccontextmanager
    async def hold(self, entity_type: str, owner: str) -> AsyncIterator[None]:
        """
        Context manager: adquiere o lanza SyncInProgressError; libera al salir.
        """
        if not await self.acquire(entity_type, owner):
            current = await self.check_lock(entity_type)
            raise SyncInProgressError(entity_type, current.locked_by if current else None)
        try:
            yield
        finally:
            await self.release(entity_type, owner)

    async def execute_with_lock(
        self,
        entity_type: str,
        owner: str,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Ejecuta `fn` con el lease tomado. No encola: si esta ocupado lanza
        SyncInProgressError y `fn` nunca se ejecuta.
        """
        async with self.hold(entity_type, owner):
            return await fn()


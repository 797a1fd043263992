"""
Checkpoint / commit / rollback alrededor de una corrida de sync.

El store de documentos no ofrece transacciones multi-documento; el
comportamiento transaccional se fabrica así:

1. checkpoint: copia los documentos marcados por el sync a una colección
   de backup `<coleccion>_backup_<epoch_ms>`
2. se ejecuta la función de sync
3. si `failed > 0` la corrida completa se considera fallida
4. commit: borra el backup
   rollback: borra los documentos marcados, re-inserta el backup y lo borra

Estados: NO_CHECKPOINT -> CHECKPOINTED -> {COMMITTED | ROLLED_BACK}
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from app.infrastructure.repositories.document_repository import DocumentRepository, StoredDocument
from app.shared.exceptions.sync import SyncConsistencyError

from .types import SYNC_PROVENANCE, utc_now


class TransactionState(str, Enum):
    NO_CHECKPOINT = "no_checkpoint"
    CHECKPOINTED = "checkpointed"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def backup_collection_name(collection: str, started_at: datetime) -> str:
    return f"{collection}_backup_{int(started_at.timestamp() * 1000)}"


class SyncTransaction:
    """
    Envuelve una corrida de sync de una colección.

    Una instancia por corrida; el backup pertenece exclusivamente a ella.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        collection: str,
        *,
        marker: str = SYNC_PROVENANCE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._docs = documents
        self.collection = collection
        self._marker = marker
        self.started_at = clock()
        self.backup_collection = backup_collection_name(collection, self.started_at)
        self.state = TransactionState.NO_CHECKPOINT
        self.backed_up = 0
        self._protected: set[str] = set()

    async def create_checkpoint(self) -> int:
        """
        Copia los documentos marcados al backup.

        No-op si la colección no existe o no tiene documentos marcados
        (primera corrida de una entidad nueva).

        Returns:
            int: Documentos respaldados
        """
        if not await self._docs.collection_exists(self.collection):
            logger.info(f"Checkpoint omitido: colección '{self.collection}' aún no existe")
            return 0

        copied = await self._docs.copy_documents(self.collection, self.backup_collection, marker=self._marker)
        if copied == 0:
            logger.info(f"Checkpoint omitido: '{self.collection}' sin documentos de {self._marker}")
            return 0

        self.backed_up = copied
        self.state = TransactionState.CHECKPOINTED
        logger.info(f"Checkpoint '{self.backup_collection}': {copied} documento(s) respaldado(s)")
        return copied

    async def protect(self, document: StoredDocument) -> None:
        """
        Respalda un documento sin marca antes de que el sync lo modifique.

        Los documentos creados manualmente no entran al checkpoint inicial;
        al actualizarlos quedan marcados por `updated_by`, así que se
        respaldan antes para que el rollback los restaure intactos.
        """
        if self._marker in (document.created_by, document.updated_by):
            return
        if document.natural_key in self._protected:
            return
        await self._docs.copy_documents(
            self.collection, self.backup_collection, natural_keys=[document.natural_key]
        )
        self._protected.add(document.natural_key)
        self.backed_up += 1
        self.state = TransactionState.CHECKPOINTED

    async def commit(self) -> None:
        if self.state is TransactionState.CHECKPOINTED:
            await self._docs.drop_collection(self.backup_collection)
            logger.info(f"Commit: backup '{self.backup_collection}' eliminado")
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        """Restaura la colección al estado del checkpoint."""
        deleted = await self._docs.delete_marked(self.collection, self._marker)
        restored = 0
        if self.state is TransactionState.CHECKPOINTED:
            restored = await self._docs.restore_documents(self.backup_collection, self.collection)
            await self._docs.drop_collection(self.backup_collection)
        self.state = TransactionState.ROLLED_BACK
        logger.warning(
            f"Rollback de '{self.collection}': {deleted} documento(s) borrado(s), "
            f"{restored} restaurado(s) desde backup"
        )

    async def execute(
        self,
        sync_fn: Callable[["SyncTransaction"], Awaitable[Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Ejecuta la función de sync dentro del checkpoint.

        Args:
            sync_fn: Recibe esta transacción y retorna un resultado con `failed`
            metadata: Contexto para logs (entity_type, sync_id, ...)

        Returns:
            El resultado de `sync_fn` si hizo commit

        Raises:
            SyncConsistencyError: Si el resultado tiene failed > 0 (tras rollback)
            Cualquier error de `sync_fn` (tras rollback)
        """
        metadata = metadata or {}
        logger.info(f"Transacción de sync sobre '{self.collection}' iniciada {metadata}")
        await self.create_checkpoint()

        try:
            result = await sync_fn(self)
            failed = _failed_count(result)
            if failed > 0:
                raise SyncConsistencyError(metadata.get("entity_type", self.collection), failed)
        except BaseException:
            logger.error(f"Sync de '{self.collection}' falló; ejecutando rollback")
            await self.rollback()
            raise

        await self.commit()
        return result


def _failed_count(result: Any) -> int:
    if isinstance(result, dict):
        return int(result.get("failed", 0))
    return int(getattr(result, "failed", 0))

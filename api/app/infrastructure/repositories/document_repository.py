"""
Repositorio del store de documentos.

Cada operación abre su propia sesión y hace commit: el motor de sync no
depende de transacciones multi-documento (el checkpoint/rollback del
sync es el que provee el comportamiento transaccional).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.sql.elements import ColumnElement

from app.infrastructure.database.models import DocumentModel
from app.infrastructure.database.session import Database


@dataclass
class StoredDocument:
    """Documento tal como está persistido."""

    id: int
    collection: str
    natural_key: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: DocumentModel) -> "StoredDocument":
        return cls(
            id=model.id,
            collection=model.collection,
            natural_key=model.natural_key,
            data=dict(model.data or {}),
            created_by=model.created_by,
            updated_by=model.updated_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def observable(self) -> tuple:
        """Estado comparable del documento (para verificar restauraciones)."""
        return (self.id, self.natural_key, self.data, self.created_by, self.updated_by)


def provenance_filter(marker: str) -> ColumnElement[bool]:
    """Documentos creados o actualizados por el sync."""
    return or_(DocumentModel.created_by == marker, DocumentModel.updated_by == marker)


class DocumentRepository:
    """Colecciones de documentos sobre la tabla `documents`."""

    def __init__(self, database: Database):
        self.database = database

    async def collection_exists(self, collection: str) -> bool:
        async with self.database.session() as db:
            result = await db.execute(
                select(func.count()).select_from(DocumentModel).where(DocumentModel.collection == collection)
            )
            return result.scalar_one() > 0

    async def list_documents(self, collection: str, marker: Optional[str] = None) -> List[StoredDocument]:
        """
        Lista documentos de una colección, opcionalmente solo los marcados.
        """
        query = select(DocumentModel).where(DocumentModel.collection == collection).order_by(DocumentModel.id)
        if marker:
            query = query.where(provenance_filter(marker))
        async with self.database.session() as db:
            result = await db.execute(query)
            return [StoredDocument.from_model(row) for row in result.scalars().all()]

    async def get_by_keys(self, collection: str) -> Dict[str, StoredDocument]:
        """Documentos de la colección indexados por llave natural."""
        return {doc.natural_key: doc for doc in await self.list_documents(collection)}

    async def insert_document(
        self,
        collection: str,
        natural_key: str,
        data: Dict[str, Any],
        *,
        created_by: str,
        now: datetime,
    ) -> StoredDocument:
        async with self.database.session() as db:
            model = DocumentModel(
                collection=collection,
                natural_key=natural_key,
                data=data,
                created_by=created_by,
                updated_by=created_by,
                created_at=now,
                updated_at=now,
            )
            db.add(model)
            await db.flush()
            return StoredDocument.from_model(model)

    async def update_document(
        self,
        collection: str,
        natural_key: str,
        data: Dict[str, Any],
        *,
        updated_by: str,
        now: datetime,
    ) -> int:
        async with self.database.session() as db:
            result = await db.execute(
                update(DocumentModel)
                .where(DocumentModel.collection == collection, DocumentModel.natural_key == natural_key)
                .values(data=data, updated_by=updated_by, updated_at=now)
            )
            return result.rowcount

    async def delete_by_keys(self, collection: str, natural_keys: Iterable[str]) -> int:
        keys = list(natural_keys)
        if not keys:
            return 0
        async with self.database.session() as db:
            result = await db.execute(
                delete(DocumentModel).where(
                    DocumentModel.collection == collection,
                    DocumentModel.natural_key.in_(keys),
                )
            )
            return result.rowcount

    async def delete_marked(self, collection: str, marker: str) -> int:
        """Borra todos los documentos marcados con la procedencia dada."""
        async with self.database.session() as db:
            result = await db.execute(
                delete(DocumentModel).where(
                    DocumentModel.collection == collection,
                    provenance_filter(marker),
                )
            )
            return result.rowcount

    async def copy_documents(
        self,
        source: str,
        target: str,
        *,
        marker: Optional[str] = None,
        natural_keys: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Copia documentos de `source` a `target` conservando el id original
        en `origin_id`.
        """
        query = select(DocumentModel).where(DocumentModel.collection == source)
        if marker:
            query = query.where(provenance_filter(marker))
        if natural_keys is not None:
            query = query.where(DocumentModel.natural_key.in_(list(natural_keys)))

        async with self.database.session() as db:
            rows = (await db.execute(query)).scalars().all()
            if not rows:
                return 0
            await db.execute(
                insert(DocumentModel),
                [
                    {
                        "collection": target,
                        "natural_key": row.natural_key,
                        "data": row.data,
                        "created_by": row.created_by,
                        "updated_by": row.updated_by,
                        "created_at": row.created_at,
                        "updated_at": row.updated_at,
                        "origin_id": row.id,
                    }
                    for row in rows
                ],
            )
            return len(rows)

    async def restore_documents(self, backup: str, target: str) -> int:
        """Re-inserta en `target` los documentos de un backup con su id original."""
        async with self.database.session() as db:
            rows = (
                await db.execute(select(DocumentModel).where(DocumentModel.collection == backup))
            ).scalars().all()
            if not rows:
                return 0
            await db.execute(
                insert(DocumentModel),
                [
                    {
                        "id": row.origin_id,
                        "collection": target,
                        "natural_key": row.natural_key,
                        "data": row.data,
                        "created_by": row.created_by,
                        "updated_by": row.updated_by,
                        "created_at": row.created_at,
                        "updated_at": row.updated_at,
                    }
                    for row in rows
                ],
            )
            return len(rows)

    async def drop_collection(self, collection: str) -> int:
        async with self.database.session() as db:
            result = await db.execute(delete(DocumentModel).where(DocumentModel.collection == collection))
            return result.rowcount

    async def list_collections(self, prefix: str = "") -> List[str]:
        query = select(DocumentModel.collection).distinct()
        if prefix:
            query = query.where(DocumentModel.collection.startswith(prefix))
        async with self.database.session() as db:
            result = await db.execute(query)
            return sorted(result.scalars().all())

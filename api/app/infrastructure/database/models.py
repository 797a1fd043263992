"""
Modelos de base de datos (ORM).

El store de documentos se modela como una tabla genérica `documents`
(colección + llave natural + payload JSON), equivalente a colecciones
de un document store. Las colecciones de backup de los checkpoints son
simplemente otro valor de `collection`.
"""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)

from app.infrastructure.database.session import Base


class DocumentModel(Base):
    """Documento canónico (usuarios, surveys, distritos) o copia de backup."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "natural_key", name="uq_documents_collection_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    collection = Column(String(120), nullable=False, index=True)
    natural_key = Column(String(255), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(64), nullable=True, index=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    # En backups: id del documento original, para restaurarlo con el mismo id
    origin_id = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<Document(id={self.id}, collection={self.collection}, key={self.natural_key})>"


class SyncLockModel(Base):
    """Lease de sync por tipo de entidad."""

    __tablename__ = "system_locks"

    key = Column(String(120), primary_key=True)
    locked = Column(Boolean, nullable=False, default=False)
    locked_by = Column(String(255), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<SyncLock(key={self.key}, locked={self.locked}, by={self.locked_by})>"


class SyncAuditLogModel(Base):
    """Entrada de auditoría; una por corrida."""

    __tablename__ = "sync_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    sync_id = Column(String(36), nullable=False, unique=True, index=True)
    entity_type = Column(String(64), nullable=False, index=True)
    triggered_by = Column(String(255), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False)
    results = Column(JSON, nullable=False, default=dict)
    errors = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)
    source_snapshot = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<SyncAuditLog(sync_id={self.sync_id}, entity={self.entity_type}, status={self.status})>"

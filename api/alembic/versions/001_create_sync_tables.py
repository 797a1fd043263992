"""create_sync_tables

Revision ID: 001_create_sync_tables
Revises:
Create Date: 2026-10-18 10:12:41.305118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_create_sync_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('documents'):
        op.create_table('documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('collection', sa.String(length=120), nullable=False),
        sa.Column('natural_key', sa.String(length=255), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('origin_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('collection', 'natural_key', name='uq_documents_collection_key')
        )
        op.create_index(op.f('ix_documents_id'), 'documents', ['id'], unique=False)
        op.create_index(op.f('ix_documents_collection'), 'documents', ['collection'], unique=False)
        op.create_index(op.f('ix_documents_created_by'), 'documents', ['created_by'], unique=False)

    if not inspector.has_table('system_locks'):
        op.create_table('system_locks',
        sa.Column('key', sa.String(length=120), nullable=False),
        sa.Column('locked', sa.Boolean(), nullable=False),
        sa.Column('locked_by', sa.String(length=255), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('key')
        )

    if not inspector.has_table('sync_audit_log'):
        op.create_table('sync_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sync_id', sa.String(length=36), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('triggered_by', sa.String(length=255), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('results', sa.JSON(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=False),
        sa.Column('source_snapshot', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_audit_log_id'), 'sync_audit_log', ['id'], unique=False)
        op.create_index(op.f('ix_sync_audit_log_sync_id'), 'sync_audit_log', ['sync_id'], unique=True)
        op.create_index(op.f('ix_sync_audit_log_entity_type'), 'sync_audit_log', ['entity_type'], unique=False)
        op.create_index(op.f('ix_sync_audit_log_start_time'), 'sync_audit_log', ['start_time'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table in ('sync_audit_log', 'system_locks', 'documents'):
        if inspector.has_table(table):
            op.drop_table(table)

"""Media assets migration.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'media_assets',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False, server_default=''),
        sa.Column('source_path', sa.String(1024), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('uploading', 'uploaded', 'processing', 'completed', 'failed', name='assetstatus'),
            nullable=False,
            server_default='uploaded',
        ),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('tracks', sa.JSON(), nullable=True),
        sa.Column('manifest_path', sa.String(1024), nullable=True),
        sa.Column('thumbnail_path', sa.String(1024), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_media_assets_status', 'media_assets', ['status'])


def downgrade() -> None:
    op.drop_index('ix_media_assets_status', table_name='media_assets')
    op.drop_table('media_assets')
    op.execute('DROP TYPE IF EXISTS assetstatus')

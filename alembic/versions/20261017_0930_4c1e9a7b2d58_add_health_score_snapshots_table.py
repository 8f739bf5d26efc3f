"""add_health_score_snapshots_table

Revision ID: 4c1e9a7b2d58
Revises:
Create Date: 2026-10-17 09:30:42.318207
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '4c1e9a7b2d58'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply migration: add_health_score_snapshots_table"""
    # Append-only history of computed health scores
    op.create_table('health_score_snapshots',
        sa.Column('organization_id', sa.UUID(), nullable=False, comment='Owning organization'),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False, comment='When the score was computed'),
        sa.Column('overall_score', sa.Float(), nullable=False, comment='Weighted overall score (0-100)'),
        sa.Column('overall_status', sa.String(length=20), nullable=False, comment='excellent, good, fair, poor or critical'),
        sa.Column('category_scores', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Per-category scores'),
        sa.Column('recommendations', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Top recommendations at calculation time'),
        sa.Column('calculation_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Extra calculation context'),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Archived snapshots are excluded from lookups'),
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Latest/previous lookups filter by organization and order by calculated_at
    op.create_index('ix_health_score_snapshots_organization_id', 'health_score_snapshots', ['organization_id'], unique=False)
    op.create_index('ix_health_score_snapshots_org_calculated', 'health_score_snapshots', ['organization_id', 'calculated_at'], unique=False)


def downgrade() -> None:
    """Revert migration: add_health_score_snapshots_table"""
    # Drop indexes
    op.drop_index('ix_health_score_snapshots_org_calculated', table_name='health_score_snapshots')
    op.drop_index('ix_health_score_snapshots_organization_id', table_name='health_score_snapshots')

    # Drop table
    op.drop_table('health_score_snapshots')

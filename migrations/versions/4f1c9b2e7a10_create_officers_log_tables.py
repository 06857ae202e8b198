"""create actors, items and world_settings tables

Revision ID: 4f1c9b2e7a10
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c9b2e7a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'actors',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('type', sa.String(), nullable=True),
        sa.Column('system', sa.JSON(), nullable=True),
        sa.Column('flags', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_actors_id'), 'actors', ['id'], unique=False)

    op.create_table(
        'items',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('img', sa.String(), nullable=True),
        sa.Column('sort', sa.Integer(), nullable=True),
        sa.Column('created_time', sa.Float(), nullable=False),
        sa.Column('system', sa.JSON(), nullable=True),
        sa.Column('flags', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['actor_id'], ['actors.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_items_type'), 'items', ['type'], unique=False)
    op.create_index('ix_items_actor_type', 'items', ['actor_id', 'type'], unique=False)

    op.create_table(
        'world_settings',
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade() -> None:
    op.drop_table('world_settings')
    op.drop_index('ix_items_actor_type', table_name='items')
    op.drop_index(op.f('ix_items_type'), table_name='items')
    op.drop_table('items')
    op.drop_index(op.f('ix_actors_id'), table_name='actors')
    op.drop_table('actors')

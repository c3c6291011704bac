"""add price_cache table

Revision ID: 3c1a9e7d52b4
Revises:
Create Date: 2026-10-18 10:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1a9e7d52b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('price_cache',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('symbol', sa.String(), nullable=False),
    sa.Column('asset_class', sa.String(), nullable=False),
    sa.Column('price', sa.Numeric(precision=24, scale=10), nullable=False),
    sa.Column('change_24h', sa.Numeric(precision=24, scale=10), nullable=True),
    sa.Column('change_percent_24h', sa.Numeric(precision=18, scale=6), nullable=True),
    sa.Column('currency', sa.String(length=8), nullable=False),
    sa.Column('source', sa.String(), nullable=False),
    sa.Column('fetched_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('symbol', 'asset_class', 'currency', name='uix_price_cache_symbol_class_currency')
    )
    op.create_index(op.f('ix_price_cache_symbol'), 'price_cache', ['symbol'], unique=False)
    op.create_index(op.f('ix_price_cache_fetched_at'), 'price_cache', ['fetched_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_price_cache_fetched_at'), table_name='price_cache')
    op.drop_index(op.f('ix_price_cache_symbol'), table_name='price_cache')
    op.drop_table('price_cache')

"""Co-purchase similarities replace product embeddings

Revision ID: 9a41f3c6b2d8
Revises: 5c2e81d4a7b0
Create Date: 2026-10-12 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '9a41f3c6b2d8'
down_revision: Union[str, None] = '5c2e81d4a7b0'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = 'uplift'


def upgrade() -> None:
    op.create_table('product_similarities',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('similar_product_id', sa.String(length=64), nullable=False),
    sa.Column('co_purchase_count', sa.Integer(), nullable=False),
    sa.Column('jaccard', sa.Float(), nullable=False),
    sa.Column('frequency', sa.Float(), nullable=False),
    sa.Column('score', sa.Float(), nullable=False),
    sa.Column('computed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('shop', 'product_id', 'similar_product_id', name='uq_product_similarities_pair'),
    schema=SCHEMA
    )
    op.create_index('ix_product_similarities_shop_product', 'product_similarities', ['shop', 'product_id'], unique=False, schema=SCHEMA)

    op.drop_table('product_embeddings', schema=SCHEMA)


def downgrade() -> None:
    op.create_table('product_embeddings',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('embedding', sa.JSON(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('shop', 'product_id', name='uq_product_embeddings_shop_product'),
    schema=SCHEMA
    )

    op.drop_index('ix_product_similarities_shop_product', table_name='product_similarities', schema=SCHEMA)
    op.drop_table('product_similarities', schema=SCHEMA)

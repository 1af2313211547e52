"""Initial uplift schema

Revision ID: 5c2e81d4a7b0
Revises:
Create Date: 2026-10-01 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c2e81d4a7b0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = 'uplift'


def upgrade() -> None:
    op.create_table('shop_settings',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('enable_recommendations', sa.Boolean(), nullable=False),
    sa.Column('max_recommendations', sa.Integer(), nullable=False),
    sa.Column('free_shipping_threshold', sa.Integer(), nullable=False),
    sa.Column('hide_recommendations_after_threshold', sa.Boolean(), nullable=False),
    sa.Column('enable_threshold_based_suggestions', sa.Boolean(), nullable=False),
    sa.Column('threshold_suggestion_mode', sa.String(length=20), nullable=False),
    sa.Column('enable_manual_recommendations', sa.Boolean(), nullable=False),
    sa.Column('complement_detection_mode', sa.String(length=20), nullable=False),
    sa.Column('manual_recommendation_products', sa.Text(), nullable=True),
    sa.Column('enable_ml_recommendations', sa.Boolean(), nullable=False),
    sa.Column('ml_personalization_mode', sa.String(length=20), nullable=False),
    sa.Column('ml_privacy_level', sa.String(length=20), nullable=False),
    sa.Column('enable_behavior_tracking', sa.Boolean(), nullable=False),
    sa.Column('bundles_on_product_pages', sa.Boolean(), nullable=False),
    sa.Column('enable_smart_bundles', sa.Boolean(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index(op.f('ix_uplift_shop_settings_shop'), 'shop_settings', ['shop'], unique=True, schema=SCHEMA)

    op.create_table('subscriptions',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('order_limit', sa.Integer(), nullable=False),
    sa.Column('order_count', sa.Integer(), nullable=False),
    sa.Column('is_limit_reached', sa.Boolean(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index(op.f('ix_uplift_subscriptions_shop'), 'subscriptions', ['shop'], unique=True, schema=SCHEMA)

    op.create_table('tracking_events',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('event', sa.String(length=50), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=True),
    sa.Column('session_id', sa.String(length=255), nullable=True),
    sa.Column('source', sa.String(length=50), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index('ix_tracking_events_shop_event_created', 'tracking_events', ['shop', 'event', 'created_at'], unique=False, schema=SCHEMA)
    op.create_index('ix_tracking_events_shop_product', 'tracking_events', ['shop', 'product_id'], unique=False, schema=SCHEMA)

    op.create_table('recommendation_attributions',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('order_id', sa.String(length=64), nullable=False),
    sa.Column('attributed_revenue', sa.Float(), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index('ix_attributions_shop_created', 'recommendation_attributions', ['shop', 'created_at'], unique=False, schema=SCHEMA)

    op.create_table('product_performance',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('product_id', sa.String(length=64), nullable=False),
    sa.Column('impressions', sa.Integer(), nullable=False),
    sa.Column('clicks', sa.Integer(), nullable=False),
    sa.Column('purchases', sa.Integer(), nullable=False),
    sa.Column('revenue', sa.Float(), nullable=False),
    sa.Column('ctr', sa.Float(), nullable=False),
    sa.Column('cvr', sa.Float(), nullable=False),
    sa.Column('confidence', sa.Float(), nullable=False),
    sa.Column('is_blacklisted', sa.Boolean(), nullable=False),
    sa.Column('blacklist_reason', sa.String(length=20), nullable=True),
    sa.Column('last_updated', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('shop', 'product_id', name='uq_product_performance_shop_product'),
    schema=SCHEMA
    )

    op.create_table('bundles',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('type', sa.String(length=20), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('discount_type', sa.String(length=20), nullable=False),
    sa.Column('discount_value', sa.Float(), nullable=False),
    sa.Column('product_ids', sa.JSON(), nullable=True),
    sa.Column('collection_ids', sa.JSON(), nullable=True),
    sa.Column('assignment_type', sa.String(length=20), nullable=False),
    sa.Column('assigned_products', sa.JSON(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index('ix_bundles_shop_type_status', 'bundles', ['shop', 'type', 'status'], unique=False, schema=SCHEMA)

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

    op.create_table('experiments',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('test_type', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('attribution', sa.String(length=20), nullable=False),
    sa.Column('active_variant_id', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index(op.f('ix_uplift_experiments_shop'), 'experiments', ['shop'], unique=False, schema=SCHEMA)

    op.create_table('experiment_variants',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('experiment_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('traffic_percentage', sa.Float(), nullable=False),
    sa.Column('config', sa.JSON(), nullable=True),
    sa.ForeignKeyConstraint(['experiment_id'], [f'{SCHEMA}.experiments.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index(op.f('ix_uplift_experiment_variants_experiment_id'), 'experiment_variants', ['experiment_id'], unique=False, schema=SCHEMA)

    op.create_table('job_runs',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('job_name', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.Column('duration_ms', sa.Integer(), nullable=False),
    sa.Column('records_processed', sa.Integer(), nullable=False),
    sa.Column('records_updated', sa.Integer(), nullable=False),
    sa.Column('error_count', sa.Integer(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    schema=SCHEMA
    )
    op.create_index('ix_job_runs_shop_job_started', 'job_runs', ['shop', 'job_name', 'started_at'], unique=False, schema=SCHEMA)


def downgrade() -> None:
    op.drop_index('ix_job_runs_shop_job_started', table_name='job_runs', schema=SCHEMA)
    op.drop_table('job_runs', schema=SCHEMA)
    op.drop_index(op.f('ix_uplift_experiment_variants_experiment_id'), table_name='experiment_variants', schema=SCHEMA)
    op.drop_table('experiment_variants', schema=SCHEMA)
    op.drop_index(op.f('ix_uplift_experiments_shop'), table_name='experiments', schema=SCHEMA)
    op.drop_table('experiments', schema=SCHEMA)
    op.drop_table('product_embeddings', schema=SCHEMA)
    op.drop_index('ix_bundles_shop_type_status', table_name='bundles', schema=SCHEMA)
    op.drop_table('bundles', schema=SCHEMA)
    op.drop_table('product_performance', schema=SCHEMA)
    op.drop_index('ix_attributions_shop_created', table_name='recommendation_attributions', schema=SCHEMA)
    op.drop_table('recommendation_attributions', schema=SCHEMA)
    op.drop_index('ix_tracking_events_shop_product', table_name='tracking_events', schema=SCHEMA)
    op.drop_index('ix_tracking_events_shop_event_created', table_name='tracking_events', schema=SCHEMA)
    op.drop_table('tracking_events', schema=SCHEMA)
    op.drop_index(op.f('ix_uplift_subscriptions_shop'), table_name='subscriptions', schema=SCHEMA)
    op.drop_table('subscriptions', schema=SCHEMA)
    op.drop_index(op.f('ix_uplift_shop_settings_shop'), table_name='shop_settings', schema=SCHEMA)
    op.drop_table('shop_settings', schema=SCHEMA)

"""SQLAlchemy models for the cart uplift engine.

All tables live in the 'uplift' schema. The engine only writes
``product_performance``, ``product_similarities``, ``tracking_events``
(recommendation-served events) and ``job_runs``; everything else is
maintained by the admin app and webhooks and is read here.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Schema for all engine tables
SCHEMA = "uplift"


class Base(DeclarativeBase):
    """Base class for all models."""

    __table_args__ = {"schema": SCHEMA}


# =============================================================================
# Shop Settings
# =============================================================================


class ShopSettingsRow(Base):
    """Per-shop feature flags and thresholds. Validated into ``ShopSettings``."""

    __tablename__ = "shop_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    enable_recommendations: Mapped[bool] = mapped_column(Boolean, default=False)
    max_recommendations: Mapped[int] = mapped_column(Integer, default=6)
    free_shipping_threshold: Mapped[int] = mapped_column(Integer, default=0)  # minor units
    hide_recommendations_after_threshold: Mapped[bool] = mapped_column(Boolean, default=False)
    enable_threshold_based_suggestions: Mapped[bool] = mapped_column(Boolean, default=False)
    threshold_suggestion_mode: Mapped[str] = mapped_column(String(20), default="smart")
    enable_manual_recommendations: Mapped[bool] = mapped_column(Boolean, default=False)
    complement_detection_mode: Mapped[str] = mapped_column(String(20), default="automatic")
    manual_recommendation_products: Mapped[Optional[str]] = mapped_column(Text)  # comma-separated
    enable_ml_recommendations: Mapped[bool] = mapped_column(Boolean, default=False)
    ml_personalization_mode: Mapped[str] = mapped_column(String(20), default="basic")
    ml_privacy_level: Mapped[str] = mapped_column(String(20), default="basic")
    enable_behavior_tracking: Mapped[bool] = mapped_column(Boolean, default=False)
    bundles_on_product_pages: Mapped[bool] = mapped_column(Boolean, default=True)
    enable_smart_bundles: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Subscription(Base):
    """Plan order quota per shop."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    order_limit: Mapped[int] = mapped_column(Integer, default=0)
    order_count: Mapped[int] = mapped_column(Integer, default=0)
    is_limit_reached: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


# =============================================================================
# Tracking & Attribution
# =============================================================================


class TrackingEventRow(Base):
    """Storefront events: impressions, clicks and recommendation-served batches."""

    __tablename__ = "tracking_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(String(64))
    session_id: Mapped[Optional[str]] = mapped_column(String(255))
    source: Mapped[Optional[str]] = mapped_column(String(50))
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_tracking_events_shop_event_created", "shop", "event", "created_at"),
        Index("ix_tracking_events_shop_product", "shop", "product_id"),
        {"schema": SCHEMA},
    )


class RecommendationAttribution(Base):
    """Order revenue attributed to a recommended product."""

    __tablename__ = "recommendation_attributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    attributed_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_attributions_shop_created", "shop", "created_at"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Product Performance (written by the daily learning job)
# =============================================================================


class ProductPerformance(Base):
    """Trailing-window performance per product."""

    __tablename__ = "product_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    purchases: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    ctr: Mapped[float] = mapped_column(Float, default=0.0)
    cvr: Mapped[float] = mapped_column(Float, default=0.0)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, default=False)
    blacklist_reason: Mapped[Optional[str]] = mapped_column(String(20))

    last_updated: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("shop", "product_id", name="uq_product_performance_shop_product"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Bundles
# =============================================================================


class Bundle(Base):
    """Merchant-configured bundle (manual, collection-scoped or ML config)."""

    __tablename__ = "bundles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # manual, collection, ml
    status: Mapped[str] = mapped_column(String(20), default="active")
    discount_type: Mapped[str] = mapped_column(String(20), default="percentage")
    discount_value: Mapped[float] = mapped_column(Float, default=0.0)
    product_ids: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    collection_ids: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    assignment_type: Mapped[str] = mapped_column(String(20), default="specific")
    assigned_products: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_bundles_shop_type_status", "shop", "type", "status"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Co-purchase Similarity (written by the weekly similarity job)
# =============================================================================


class ProductSimilarity(Base):
    """Directed product pair scored from shared orders."""

    __tablename__ = "product_similarities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    similar_product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    co_purchase_count: Mapped[int] = mapped_column(Integer, default=0)
    jaccard: Mapped[float] = mapped_column(Float, default=0.0)
    frequency: Mapped[float] = mapped_column(Float, default=0.0)
    score: Mapped[float] = mapped_column(Float, default=0.0)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("shop", "product_id", "similar_product_id", name="uq_product_similarities_pair"),
        Index("ix_product_similarities_shop_product", "shop", "product_id"),
        {"schema": SCHEMA},
    )


# =============================================================================
# Experiments
# =============================================================================


class Experiment(Base):
    """A/B test over recommendation behaviour."""

    __tablename__ = "experiments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    test_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft")  # draft, running, completed
    attribution: Mapped[str] = mapped_column(String(20), default="session")
    active_variant_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    variants: Mapped[list["ExperimentVariant"]] = relationship(
        back_populates="experiment", cascade="all, delete-orphan"
    )


class ExperimentVariant(Base):
    __tablename__ = "experiment_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    experiment_id: Mapped[int] = mapped_column(
        ForeignKey(f"{SCHEMA}.experiments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    traffic_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    config: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    experiment: Mapped[Experiment] = relationship(back_populates="variants")


# =============================================================================
# Job Health
# =============================================================================


class JobRunRow(Base):
    """One execution of a scheduled job."""

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    job_name: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success, partial, failed, skipped
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    run_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, default=dict)

    __table_args__ = (
        Index("ix_job_runs_shop_job_started", "shop", "job_name", "started_at"),
        {"schema": SCHEMA},
    )

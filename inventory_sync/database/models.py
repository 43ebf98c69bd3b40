"""
Database Models - Inventory Sync Schema

This module defines the persistent records of the ingestion pipeline:

Entity Tables:
- Variant: Inventory variant as delivered by the upstream planner
- ForecastMetric: Derived forecast-accuracy statistics, one row per variant
- BusinessSummary: Aggregate snapshot (singleton, id="current")

Bookkeeping Tables:
- SyncSession: One logical bulk transfer
- SyncChunk: One delivery unit within a session, unique per (session_id, chunk_index)
- SyncError: Write-once record of a failed record or batch
- SyncProgress: Live progress of the most recent ingestion (singleton, id="current")
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, List
import uuid

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _enum_column(enum_cls):
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SessionStatus(str, Enum):
    """Sync session status enumeration"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_SESSION_STATUSES


TERMINAL_SESSION_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)
ACTIVE_SESSION_STATUSES = frozenset(
    {SessionStatus.PENDING, SessionStatus.IN_PROGRESS, SessionStatus.PAUSED}
)


class ChunkStatus(str, Enum):
    """Sync chunk status enumeration"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorType(str, Enum):
    """Sync error classification"""
    VALIDATION = "validation"
    TRANSFORM = "transform"
    DATABASE = "database"
    UNKNOWN = "unknown"


class ProgressStatus(str, Enum):
    """Live progress status enumeration"""
    IDLE = "idle"
    STARTING = "starting"
    PROCESSING = "processing"
    CALCULATING_METRICS = "calculating_metrics"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# ENTITY TABLES
# =============================================================================

class Variant(Base):
    """
    Variant Table

    One inventory record per upstream variant, upserted by id (last writer wins).
    Time series are stored as nested ``{year: {month: value}}`` JSON maps.
    """
    __tablename__ = "variants"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    sku: Mapped[str] = mapped_column(String(255), nullable=False)

    # Catalog
    title: Mapped[Optional[str]] = mapped_column(Text)
    barcode: Mapped[Optional[str]] = mapped_column(String(100))
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    product_type: Mapped[Optional[str]] = mapped_column(String(255))
    image: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing
    price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    cost_price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))

    # Stock (in_stock is signed, negative means oversold)
    in_stock: Mapped[int] = mapped_column(Integer, default=0)
    purchase_orders_qty: Mapped[int] = mapped_column(Integer, default=0)

    # Sales windows
    last_7_days_sales: Mapped[int] = mapped_column(Integer, default=0)
    last_30_days_sales: Mapped[int] = mapped_column(Integer, default=0)
    last_90_days_sales: Mapped[int] = mapped_column(Integer, default=0)
    last_180_days_sales: Mapped[int] = mapped_column(Integer, default=0)
    last_365_days_sales: Mapped[int] = mapped_column(Integer, default=0)
    total_sales: Mapped[int] = mapped_column(Integer, default=0)

    # Time series
    orders_by_month: Mapped[Optional[dict]] = mapped_column(JSONType)
    forecast_by_period: Mapped[Optional[dict]] = mapped_column(JSONType)

    # Planning
    forecasted_stock: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    current_forecast: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    replenishment: Mapped[int] = mapped_column(Integer, default=0)
    to_order: Mapped[int] = mapped_column(Integer, default=0)
    minimum_stock: Mapped[Optional[float]] = mapped_column(Numeric(12, 2, asdecimal=False))
    lead_time: Mapped[Optional[int]] = mapped_column(Integer)
    oos: Mapped[int] = mapped_column(Integer, default=0)
    oos_last_60_days: Mapped[int] = mapped_column(Integer, default=0)
    forecasted_lost_revenue: Mapped[Optional[float]] = mapped_column(Numeric(14, 2, asdecimal=False))

    # Audit
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_variants_sku", "sku"),
        Index("ix_variants_brand", "brand"),
        Index("ix_variants_in_stock", "in_stock"),
        Index("ix_variants_synced_at", "synced_at"),
    )


class ForecastMetric(Base):
    """
    Forecast Metric Table

    Accuracy statistics per variant. Entirely derived from Variant time series
    and recomputed by a full re-scan after every completed ingestion.
    """
    __tablename__ = "forecast_metrics"

    variant_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("variants.id", ondelete="CASCADE"), primary_key=True
    )
    sku: Mapped[str] = mapped_column(String(255), nullable=False)

    # Accuracy statistics (None when the data tier does not allow them)
    mape: Mapped[Optional[float]] = mapped_column(Float)
    wape: Mapped[Optional[float]] = mapped_column(Float)
    rmse: Mapped[Optional[float]] = mapped_column(Float)
    wase: Mapped[Optional[float]] = mapped_column(Float)
    bias: Mapped[Optional[float]] = mapped_column(Float)
    naive_mape: Mapped[Optional[float]] = mapped_column(Float)

    # Series used for the calculation
    actuals: Mapped[Optional[list]] = mapped_column(JSONType)
    forecasts: Mapped[Optional[list]] = mapped_column(JSONType)
    periods: Mapped[Optional[list]] = mapped_column(JSONType)

    # Data quality metadata
    forecast_source: Mapped[str] = mapped_column(String(30), nullable=False)
    data_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[str] = mapped_column(String(20), nullable=False)
    period_count: Mapped[int] = mapped_column(Integer, default=0)
    zero_periods: Mapped[int] = mapped_column(Integer, default=0)
    primary_metric: Mapped[str] = mapped_column(String(10), default="mape")
    mape_method: Mapped[str] = mapped_column(String(10), default="standard")

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_forecast_metrics_sku", "sku"),
        Index("ix_forecast_metrics_tier", "data_tier"),
    )


class BusinessSummary(Base):
    """Aggregate business snapshot, recomputed after every successful ingestion"""
    __tablename__ = "business_summary"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="current")
    total_skus: Mapped[int] = mapped_column(Integer, default=0)
    total_in_stock: Mapped[int] = mapped_column(Integer, default=0)
    total_value: Mapped[float] = mapped_column(Float, default=0.0)
    reorder_count: Mapped[int] = mapped_column(Integer, default=0)
    out_of_stock_count: Mapped[int] = mapped_column(Integer, default=0)
    overstocked_count: Mapped[int] = mapped_column(Integer, default=0)
    total_lost_revenue: Mapped[float] = mapped_column(Float, default=0.0)
    avg_forecast_accuracy: Mapped[Optional[float]] = mapped_column(Float)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# BOOKKEEPING TABLES
# =============================================================================

class SyncSession(Base):
    """
    Sync Session Table

    Groups every chunk of one logical bulk transfer. Counters only grow while
    the session is active, and the transition to ``completed`` happens once.
    """
    __tablename__ = "sync_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    source: Mapped[str] = mapped_column(String(100), default="webhook")

    total_expected_chunks: Mapped[Optional[int]] = mapped_column(Integer)
    total_expected_records: Mapped[Optional[int]] = mapped_column(Integer)
    chunks_received: Mapped[int] = mapped_column(Integer, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    records_skipped: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[SessionStatus] = mapped_column(
        _enum_column(SessionStatus), default=SessionStatus.PENDING, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    chunks: Mapped[List["SyncChunk"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SyncChunk.chunk_index",
    )
    errors: Mapped[List["SyncError"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_sync_sessions_status", "status"),
        Index("ix_sync_sessions_created_at", "created_at"),
    )


class SyncChunk(Base):
    """Sync Chunk Table - unique per (session_id, chunk_index)"""
    __tablename__ = "sync_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sync_sessions.id", ondelete="CASCADE"), nullable=False
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[ChunkStatus] = mapped_column(
        _enum_column(ChunkStatus), default=ChunkStatus.PENDING, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    session: Mapped["SyncSession"] = relationship(back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("session_id", "chunk_index", name="uq_sync_chunks_session_index"),
        Index("ix_sync_chunks_status", "session_id", "status"),
    )


class SyncError(Base):
    """Sync Error Table - write-once, one row per failed record or failed batch"""
    __tablename__ = "sync_errors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("sync_sessions.id", ondelete="CASCADE")
    )
    chunk_index: Mapped[Optional[int]] = mapped_column(Integer)
    record_index: Mapped[Optional[int]] = mapped_column(Integer)
    sku: Mapped[Optional[str]] = mapped_column(String(255))
    variant_id: Mapped[Optional[str]] = mapped_column(String(100))

    error_type: Mapped[ErrorType] = mapped_column(_enum_column(ErrorType), nullable=False)
    error_code: Mapped[Optional[str]] = mapped_column(String(100))
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    field_name: Mapped[Optional[str]] = mapped_column(String(255))
    raw_value: Mapped[Optional[str]] = mapped_column(Text)
    raw_record: Mapped[Optional[Any]] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    session: Mapped[Optional["SyncSession"]] = relationship(back_populates="errors")

    __table_args__ = (
        Index("ix_sync_errors_session", "session_id", "error_type"),
        Index("ix_sync_errors_sku", "sku"),
    )


class SyncProgress(Base):
    """Live progress of the most recent ingestion (singleton, id="current")"""
    __tablename__ = "sync_progress"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="current")
    session_id: Mapped[Optional[str]] = mapped_column(String(36))
    status: Mapped[ProgressStatus] = mapped_column(
        _enum_column(ProgressStatus), default=ProgressStatus.IDLE, nullable=False
    )
    total_records: Mapped[int] = mapped_column(Integer, default=0)
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    current_batch: Mapped[int] = mapped_column(Integer, default=0)
    total_batches: Mapped[int] = mapped_column(Integer, default=0)
    current_chunk: Mapped[Optional[int]] = mapped_column(Integer)
    total_chunks: Mapped[Optional[int]] = mapped_column(Integer)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    current_sku: Mapped[Optional[str]] = mapped_column(String(255))
    message: Mapped[Optional[str]] = mapped_column(Text)
    eta_seconds: Mapped[Optional[float]] = mapped_column(Float)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

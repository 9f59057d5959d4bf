"""
PriceActions Database Models

Tables:
  1. price_actions_jobs    - Watchlist job records (state machine + stored results)
  2. product_snapshots     - Per-SKU, per-store sales and stock facts (upstream feed)
  3. cluster_elasticities  - Price elasticity estimates per cluster (upstream feed)

Only price_actions_jobs is written by this service. The other two tables are
populated by external loaders and read through pricing.sources.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Watchlist Jobs ─────────────────────────────────────────────────────


class PriceActionsJob(Base):
    __tablename__ = "price_actions_jobs"

    job_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    job_type = Column(String(30), nullable=False, default="watchlist")
    status = Column(String(20), nullable=False, default="pending")
    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(String(500))
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    parameters = Column(JSON, nullable=False, default=dict)
    result_data = Column(JSON)
    result_summary = Column(JSON)
    error_message = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_price_actions_jobs_status",
        ),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_price_actions_jobs_progress"),
        Index("ix_price_actions_jobs_status_created", "status", "created_at"),
    )


# ─── 2. Product Snapshots ──────────────────────────────────────────────────


class ProductSnapshot(Base):
    __tablename__ = "product_snapshots"

    snapshot_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    base_col = Column(String(50), nullable=False)
    id_tienda = Column(Integer, nullable=False)
    descripcion = Column(String(255))
    descripcion_corta = Column(String(100))
    id_clase = Column(Integer)
    categoria = Column(String(100))
    id_genero = Column(Integer)
    genero = Column(String(50))
    id_marca = Column(Integer)
    marca = Column(String(100))
    price_band = Column(String(30))
    precio_actual = Column(Float)
    costo = Column(Float)
    stock_on_hand = Column(Float, nullable=False, default=0)
    stock_pendiente = Column(Float, nullable=False, default=0)
    unidades_7 = Column(Float, nullable=False, default=0)
    unidades_14 = Column(Float, nullable=False, default=0)
    unidades_28 = Column(Float, nullable=False, default=0)
    unidades_desde_inicio = Column(Float, nullable=False, default=0)
    fecha_inicio = Column(Date)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("base_col", "id_tienda", name="uq_product_snapshot_store"),
        Index("ix_product_snapshots_cluster", "id_clase", "id_genero", "id_marca"),
    )


# ─── 3. Cluster Elasticities ───────────────────────────────────────────────


class ClusterElasticity(Base):
    __tablename__ = "cluster_elasticities"

    elasticity_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    id_clase = Column(Integer, nullable=False)
    id_genero = Column(Integer, nullable=False)
    id_marca = Column(Integer, nullable=False)
    price_band = Column(String(30), nullable=False)
    value = Column(Float, nullable=False)
    confidence = Column(String(10), nullable=False, default="baja")
    observations = Column(Integer, nullable=False, default=0)
    method = Column(String(20), nullable=False, default="cluster")
    estimated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("id_clase", "id_genero", "id_marca", "price_band", name="uq_cluster_elasticity"),
        CheckConstraint("confidence IN ('alta', 'media', 'baja')", name="ck_cluster_elasticity_confidence"),
    )

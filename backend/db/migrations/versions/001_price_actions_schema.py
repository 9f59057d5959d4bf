"""
Price actions schema: watchlist jobs and upstream snapshot tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "price_actions_jobs",
        sa.Column("job_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.String(length=30), nullable=False, server_default="watchlist"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step", sa.String(length=500), nullable=True),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("result_data", sa.JSON(), nullable=True),
        sa.Column("result_summary", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_price_actions_jobs_status",
        ),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_price_actions_jobs_progress"),
    )
    op.create_index(
        "ix_price_actions_jobs_status_created",
        "price_actions_jobs",
        ["status", "created_at"],
    )

    op.create_table(
        "product_snapshots",
        sa.Column("snapshot_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("base_col", sa.String(length=50), nullable=False),
        sa.Column("id_tienda", sa.Integer(), nullable=False),
        sa.Column("descripcion", sa.String(length=255), nullable=True),
        sa.Column("descripcion_corta", sa.String(length=100), nullable=True),
        sa.Column("id_clase", sa.Integer(), nullable=True),
        sa.Column("categoria", sa.String(length=100), nullable=True),
        sa.Column("id_genero", sa.Integer(), nullable=True),
        sa.Column("genero", sa.String(length=50), nullable=True),
        sa.Column("id_marca", sa.Integer(), nullable=True),
        sa.Column("marca", sa.String(length=100), nullable=True),
        sa.Column("price_band", sa.String(length=30), nullable=True),
        sa.Column("precio_actual", sa.Float(), nullable=True),
        sa.Column("costo", sa.Float(), nullable=True),
        sa.Column("stock_on_hand", sa.Float(), nullable=False, server_default="0"),
        sa.Column("stock_pendiente", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unidades_7", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unidades_14", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unidades_28", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unidades_desde_inicio", sa.Float(), nullable=False, server_default="0"),
        sa.Column("fecha_inicio", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("base_col", "id_tienda", name="uq_product_snapshot_store"),
    )
    op.create_index(
        "ix_product_snapshots_cluster",
        "product_snapshots",
        ["id_clase", "id_genero", "id_marca"],
    )

    op.create_table(
        "cluster_elasticities",
        sa.Column("elasticity_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("id_clase", sa.Integer(), nullable=False),
        sa.Column("id_genero", sa.Integer(), nullable=False),
        sa.Column("id_marca", sa.Integer(), nullable=False),
        sa.Column("price_band", sa.String(length=30), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("confidence", sa.String(length=10), nullable=False, server_default="baja"),
        sa.Column("observations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("method", sa.String(length=20), nullable=False, server_default="cluster"),
        sa.Column("estimated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("id_clase", "id_genero", "id_marca", "price_band", name="uq_cluster_elasticity"),
        sa.CheckConstraint("confidence IN ('alta', 'media', 'baja')", name="ck_cluster_elasticity_confidence"),
    )


def downgrade() -> None:
    op.drop_table("cluster_elasticities")
    op.drop_index("ix_product_snapshots_cluster", table_name="product_snapshots")
    op.drop_table("product_snapshots")
    op.drop_index("ix_price_actions_jobs_status_created", table_name="price_actions_jobs")
    op.drop_table("price_actions_jobs")

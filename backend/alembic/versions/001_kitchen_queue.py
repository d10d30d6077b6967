"""Kitchen queue schema

Revision ID: 001
Revises:
Create Date: 2025-02-10 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

order_status = sa.Enum(
    "RECEIVED", "IN_PREPARATION", "READY", "DELIVERED", "CANCELED", name="orderstatus"
)
order_priority = sa.Enum("HIGH", "NORMAL", name="orderpriority")
setting_type = sa.Enum("INT", "STRING", "BOOLEAN", "JSON", name="settingtype")

CANONICAL_SETTINGS = [
    ("max_concurrent_preparations", "8", "INT", "Maximum number of orders in preparation at the same time"),
    ("tick_interval_seconds", "30", "INT", "Kitchen scheduler tick interval in seconds"),
    ("base_preparation_duration_minutes", "15", "INT", "Default preparation time in minutes"),
    ("kitchen_delay_minutes", "0", "INT", "Predicted queueing delay for a new ASAP order"),
    ("dynamic_capacity_enabled", "false", "BOOLEAN", "Scale capacity by hour of day and weekday"),
    ("adaptive_capacity_enabled", "false", "BOOLEAN", "Use the capacity suggested by the adaptive adjuster"),
]

# Old configuration keys, most authoritative first
LEGACY_KEYS = {
    "max_concurrent_preparations": ["MAX_PEDIDOS_EN_PREPARACION", "max_pedidos_en_preparacion"],
    "base_preparation_duration_minutes": ["TIEMPO_BASE_PEDIDO_MINUTOS", "tiempo_base_preparacion_minutos"],
    "tick_interval_seconds": ["INTERVALO_WORKER_SEGUNDOS", "worker_interval_segundos"],
    "kitchen_delay_minutes": ["DEMORA_COCINA_MANUAL_MINUTOS", "demora_cocina_minutos"],
    "dynamic_capacity_enabled": ["capacidad_dinamica_habilitada"],
}
LEGACY_TABLE = "configuracion_sistema"


def upgrade() -> None:
    op.create_table(
        "kitchen_queue_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", order_status, nullable=False),
        sa.Column("priority", order_priority, nullable=False),
        sa.Column("requested_delivery_time", sa.DateTime(), nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("preparation_start_at", sa.DateTime(), nullable=True),
        sa.Column("expected_finish_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("auto_promote", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("customer_name", sa.String(200), nullable=True),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("customer_address", sa.String(500), nullable=True),
        sa.Column("service_mode", sa.String(30), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_kq_orders_status_priority_created",
        "kitchen_queue_orders",
        ["status", "priority", "created_at"],
    )
    op.create_index(
        "ix_kq_orders_status_prep_start",
        "kitchen_queue_orders",
        ["status", "preparation_start_at"],
    )

    op.create_table(
        "kitchen_queue_order_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "order_id", sa.Integer(),
            sa.ForeignKey("kitchen_queue_orders.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("article_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("customizations", sa.JSON(), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
    )

    op.create_table(
        "kitchen_tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "order_id", sa.Integer(),
            sa.ForeignKey("kitchen_queue_orders.id", ondelete="CASCADE"),
            nullable=False, unique=True, index=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=True),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("customer_address", sa.String(500), nullable=True),
        sa.Column("service_mode", sa.String(30), nullable=True),
        sa.Column("requested_delivery_time", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(50), nullable=False, server_default="SYSTEM"),
    )

    op.create_table(
        "kitchen_ticket_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "ticket_id", sa.Integer(),
            sa.ForeignKey("kitchen_tickets.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("article_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("customizations", sa.JSON(), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
    )

    system_settings = op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(100), unique=True, nullable=False, index=True),
        sa.Column("value", sa.String(255), nullable=False),
        sa.Column("value_type", setting_type, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    values = {key: value for key, value, _, _ in CANONICAL_SETTINGS}
    values.update(_legacy_values())

    op.bulk_insert(
        system_settings,
        [
            {"key": key, "value": values[key], "value_type": value_type, "description": description}
            for key, _, value_type, description in CANONICAL_SETTINGS
        ],
    )


def _legacy_values() -> dict:
    """Carry values over from the old configuration table, if present."""
    bind = op.get_bind()
    if not sa.inspect(bind).has_table(LEGACY_TABLE):
        return {}

    rows = bind.execute(sa.text(f"SELECT clave, valor FROM {LEGACY_TABLE}")).fetchall()
    legacy = {row[0]: row[1] for row in rows}

    migrated = {}
    for key, candidates in LEGACY_KEYS.items():
        for candidate in candidates:
            value = legacy.get(candidate)
            if value is not None and str(value).strip() != "":
                migrated[key] = str(value).strip()
                break
    return migrated


def downgrade() -> None:
    op.drop_table("system_settings")
    op.drop_table("kitchen_ticket_lines")
    op.drop_table("kitchen_tickets")
    op.drop_table("kitchen_queue_order_lines")
    op.drop_index("ix_kq_orders_status_prep_start", table_name="kitchen_queue_orders")
    op.drop_index("ix_kq_orders_status_priority_created", table_name="kitchen_queue_orders")
    op.drop_table("kitchen_queue_orders")
    if op.get_bind().dialect.name != "postgresql":
        return
    op.execute("DROP TYPE IF EXISTS settingtype")
    op.execute("DROP TYPE IF EXISTS orderpriority")
    op.execute("DROP TYPE IF EXISTS orderstatus")

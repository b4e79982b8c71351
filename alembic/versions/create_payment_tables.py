"""create pending_payment_markers and payment_records

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "a1f0c2d3e4b5"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE TYPE payment_type AS ENUM ('full', 'partial')")
    op.execute("CREATE TYPE payment_record_status AS ENUM ('pending', 'confirmed')")

    op.create_table(
        "pending_payment_markers",
        sa.Column("external_reference", sa.String(128), nullable=False),
        sa.Column("bill_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("payment_type", postgresql.ENUM("full", "partial",
                  name="payment_type", create_type=False), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("connection_id", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("connection_id", name="uq_pending_payment_markers_connection"),
        sa.UniqueConstraint("external_reference"),
    )
    op.create_index(op.f("ix_pending_payment_markers_connection_id"), "pending_payment_markers", ["connection_id"], unique=False)
    op.create_index(op.f("ix_pending_payment_markers_created_at"), "pending_payment_markers", ["created_at"], unique=False)

    op.create_table(
        "payment_records",
        sa.Column("external_reference", sa.String(128), nullable=False),
        sa.Column("bill_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("payment_type", postgresql.ENUM("full", "partial",
                  name="payment_type", create_type=False), nullable=False),
        sa.Column("status", postgresql.ENUM("pending", "confirmed",
                  name="payment_record_status", create_type=False), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("connection_id", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_reference", "bill_id", name="uq_payment_records_reference_bill"),
    )
    op.create_index(op.f("ix_payment_records_external_reference"), "payment_records", ["external_reference"], unique=False)
    op.create_index(op.f("ix_payment_records_bill_id"), "payment_records", ["bill_id"], unique=False)
    op.create_index(op.f("ix_payment_records_connection_id"), "payment_records", ["connection_id"], unique=False)
    op.create_index(op.f("ix_payment_records_created_at"), "payment_records", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_payment_records_created_at"), table_name="payment_records")
    op.drop_index(op.f("ix_payment_records_connection_id"), table_name="payment_records")
    op.drop_index(op.f("ix_payment_records_bill_id"), table_name="payment_records")
    op.drop_index(op.f("ix_payment_records_external_reference"), table_name="payment_records")
    op.drop_table("payment_records")

    op.drop_index(op.f("ix_pending_payment_markers_created_at"), table_name="pending_payment_markers")
    op.drop_index(op.f("ix_pending_payment_markers_connection_id"), table_name="pending_payment_markers")
    op.drop_table("pending_payment_markers")

    op.execute("DROP TYPE payment_record_status")
    op.execute("DROP TYPE payment_type")

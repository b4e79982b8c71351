"""add backend_paid to pending_payment_markers and payment_records

Revision ID: b7c41e9d2a60
Revises: a1f0c2d3e4b5
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = "b7c41e9d2a60"
down_revision = "a1f0c2d3e4b5"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("pending_payment_markers", sa.Column("backend_paid", sa.Numeric(12, 2), nullable=True))
    op.add_column("payment_records", sa.Column("backend_paid", sa.Numeric(12, 2), nullable=True))


def downgrade() -> None:
    op.drop_column("payment_records", "backend_paid")
    op.drop_column("pending_payment_markers", "backend_paid")

"""Receipt postings: one row per receipt applied to the ledger

Revision ID: 20261020_receipt_postings
Revises: 20261019_initial_ledger
Create Date: 2026-10-20 10:30:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_receipt_postings"
down_revision = "20261019_initial_ledger"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "receipt_postings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(length=50), nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=False),
        sa.Column("line_count", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_type", "reference_id", name="uq_receipt_postings_reference"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("receipt_postings")

"""reports and ratings

Revision ID: 7d2e9a1b4c83
Revises: 3c1d2e4f5a60
Create Date: 2026-10-19 15:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7d2e9a1b4c83"
down_revision = "3c1d2e4f5a60"
branch_labels = None
depends_on = None


def _create_indexes(insp, table_name: str, indexes) -> None:
    existing = {str(idx.get("name") or "") for idx in insp.get_indexes(table_name)}
    for name, columns, unique in indexes:
        if name not in existing:
            op.create_index(name, table_name, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if not insp.has_table("reports"):
        op.create_table(
            "reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("reported_by_id", sa.Integer(), nullable=False),
            sa.Column("reported_user_id", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=32), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("admin_note", sa.String(length=500), nullable=True),
            sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"]),
            sa.ForeignKeyConstraint(["reported_by_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["reported_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("listing_id", "reported_by_id", name="uq_reports_listing_reporter"),
        )
    _create_indexes(insp, "reports", (
        ("ix_reports_listing_id", ["listing_id"], False),
        ("ix_reports_reported_by_id", ["reported_by_id"], False),
        ("ix_reports_reported_user_id", ["reported_user_id"], False),
        ("ix_reports_status_created", ["status", "created_at"], False),
    ))

    if not insp.has_table("ratings"):
        op.create_table(
            "ratings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("reviewer_id", sa.Integer(), nullable=False),
            sa.Column("reviewee_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=True),
            sa.Column("stars", sa.Integer(), nullable=False),
            sa.Column("message", sa.String(length=500), nullable=False),
            sa.Column("attributes", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["reviewee_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("reviewer_id", "reviewee_id", "listing_id", name="uq_ratings_reviewer_reviewee_listing"),
        )
    _create_indexes(insp, "ratings", (
        ("ix_ratings_reviewer_id", ["reviewer_id"], False),
        ("ix_ratings_reviewee_id", ["reviewee_id"], False),
        ("ix_ratings_listing_id", ["listing_id"], False),
        ("ix_ratings_reviewee_created", ["reviewee_id", "created_at"], False),
    ))


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    for table_name in ("ratings", "reports"):
        if insp.has_table(table_name):
            op.drop_table(table_name)

"""marketplace core schema

Revision ID: 3c1d2e4f5a60
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1d2e4f5a60"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _create_indexes(insp, table_name: str, indexes) -> None:
    existing = {str(idx.get("name") or "") for idx in insp.get_indexes(table_name)}
    for name, columns, unique in indexes:
        if name not in existing:
            op.create_index(name, table_name, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if not insp.has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False),
            sa.Column("is_verified", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "users", (
        ("ix_users_email", ["email"], True),
        ("ix_users_phone", ["phone"], True),
    ))

    if not insp.has_table("push_tokens"):
        op.create_table(
            "push_tokens",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token", sa.String(length=512), nullable=False),
            sa.Column("device_id", sa.String(length=128), nullable=True),
            sa.Column("user_agent", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "token", name="uq_push_tokens_user_token"),
        )
    _create_indexes(insp, "push_tokens", (
        ("ix_push_tokens_user_id", ["user_id"], False),
        ("ix_push_tokens_token", ["token"], False),
    ))

    if not insp.has_table("stores"):
        op.create_table(
            "stores",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("slug", sa.String(length=140), nullable=False),
            sa.Column("kind", sa.String(length=24), nullable=False, server_default="general"),
            sa.Column("icon_url", sa.String(length=1024), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "stores", (
        ("ix_stores_slug", ["slug"], True),
        ("ix_stores_kind", ["kind"], False),
    ))

    if not insp.has_table("categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("slug", sa.String(length=140), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("path", sa.String(length=1024), nullable=False, server_default=""),
            sa.Column("children_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_leaf", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("kind", sa.String(length=24), nullable=True),
            sa.Column("icon_url", sa.String(length=1024), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("fields", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
            sa.ForeignKeyConstraint(["parent_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("store_id", "slug", name="uq_categories_store_slug"),
        )
    _create_indexes(insp, "categories", (
        ("ix_categories_store_id", ["store_id"], False),
        ("ix_categories_slug", ["slug"], False),
        ("ix_categories_parent_id", ["parent_id"], False),
        ("ix_categories_kind", ["kind"], False),
        ("ix_categories_store_parent", ["store_id", "parent_id"], False),
    ))

    if not insp.has_table("listings"):
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(length=80), nullable=False),
            sa.Column("values", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="active"),
            sa.Column("title", sa.String(length=200), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("city", sa.String(length=80), nullable=True),
            sa.Column("latitude", sa.Float(), nullable=True),
            sa.Column("longitude", sa.Float(), nullable=True),
            sa.Column("upload_status", sa.String(length=16), nullable=False, server_default="none"),
            sa.Column("upload_job_id", sa.String(length=64), nullable=True),
            sa.Column("upload_error", sa.Text(), nullable=True),
            sa.Column("plan_type", sa.String(length=24), nullable=True),
            sa.Column("plan_duration_days", sa.Integer(), nullable=True),
            sa.Column("plan_price", sa.Float(), nullable=True),
            sa.Column("plan_expires_at", sa.DateTime(), nullable=True),
            sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("payment_status", sa.String(length=16), nullable=True),
            sa.Column("payment_intent_id", sa.String(length=128), nullable=True),
            sa.Column("payment_amount", sa.Float(), nullable=True),
            sa.Column("payment_currency", sa.String(length=8), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "listings", (
        ("ix_listings_slug", ["slug"], True),
        ("ix_listings_store_id", ["store_id"], False),
        ("ix_listings_category_id", ["category_id"], False),
        ("ix_listings_user_id", ["user_id"], False),
        ("ix_listings_status", ["status"], False),
        ("ix_listings_city", ["city"], False),
        ("ix_listings_payment_intent_id", ["payment_intent_id"], False),
        ("ix_listings_store_category", ["store_id", "category_id"], False),
        ("ix_listings_created_at", ["created_at"], False),
    ))

    if not insp.has_table("listing_category_paths"):
        op.create_table(
            "listing_category_paths",
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.Column("depth", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"]),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("listing_id", "category_id"),
        )
    _create_indexes(insp, "listing_category_paths", (
        ("ix_listing_category_paths_category_id", ["category_id"], False),
    ))

    if not insp.has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), nullable=True),
            sa.Column("listing_id", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(length=32), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("channels", sa.JSON(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "notifications", (
        ("ix_notifications_user_id", ["user_id"], False),
        ("ix_notifications_user_read_created", ["user_id", "is_read", "created_at"], False),
    ))

    if not insp.has_table("notification_preferences"):
        op.create_table(
            "notification_preferences",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.Boolean(), nullable=True),
            sa.Column("in_app", sa.Boolean(), nullable=True),
            sa.Column("push", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "store_id", name="uq_notification_preferences_user_store"),
        )
    _create_indexes(insp, "notification_preferences", (
        ("ix_notification_preferences_user_id", ["user_id"], False),
        ("ix_notification_preferences_store_id", ["store_id"], False),
    ))

    if not insp.has_table("profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("bio", sa.String(length=500), nullable=True),
            sa.Column("avatar_url", sa.String(length=1024), nullable=True),
            sa.Column("location", sa.String(length=160), nullable=True),
            sa.Column("ad_ids", sa.JSON(), nullable=False),
            sa.Column("job_post_ids", sa.JSON(), nullable=False),
            sa.Column("favorite_listing_ids", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "profiles", (("ix_profiles_user_id", ["user_id"], True),))

    if not insp.has_table("applications"):
        op.create_table(
            "applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("applicant_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False),
            sa.Column("cover_letter", sa.Text(), nullable=True),
            sa.Column("applicant_data", sa.JSON(), nullable=True),
            sa.Column("applied_at", sa.DateTime(), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["applicant_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("applicant_id", "listing_id", name="uq_applications_applicant_listing"),
        )
    _create_indexes(insp, "applications", (
        ("ix_applications_applicant_id", ["applicant_id"], False),
        ("ix_applications_listing_id", ["listing_id"], False),
        ("ix_applications_listing_status", ["listing_id", "status"], False),
    ))

    if not insp.has_table("subscriptions"):
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("plan_type", sa.String(length=16), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("start_date", sa.DateTime(), nullable=False),
            sa.Column("end_date", sa.DateTime(), nullable=False),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="AED"),
            sa.Column("stripe_subscription_id", sa.String(length=128), nullable=True),
            sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
            sa.Column("stripe_payment_intent_id", sa.String(length=128), nullable=True),
            sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("payment_status", sa.String(length=16), nullable=False),
            sa.Column("listings_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_listings", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "subscriptions", (
        ("ix_subscriptions_user_id", ["user_id"], False),
        ("ix_subscriptions_stripe_subscription_id", ["stripe_subscription_id"], False),
        ("ix_subscriptions_stripe_payment_intent_id", ["stripe_payment_intent_id"], False),
        ("ix_subscriptions_user_status_end", ["user_id", "status", "end_date"], False),
    ))

    if not insp.has_table("price_plans"):
        op.create_table(
            "price_plans",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), nullable=False),
            sa.Column("plan_type", sa.String(length=16), nullable=False),
            sa.Column("duration_days", sa.Integer(), nullable=False),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("discounted_price", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="AED"),
            sa.Column("features", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "price_plans", (("ix_price_plans_store_id", ["store_id"], False),))

    if not insp.has_table("pending_payments"):
        op.create_table(
            "pending_payments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("reference", sa.String(length=96), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("payment_intent_id", sa.String(length=128), nullable=True),
            sa.Column("plan_id", sa.Integer(), nullable=True),
            sa.Column("listing_draft", sa.JSON(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["plan_id"], ["price_plans.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(insp, "pending_payments", (
        ("ix_pending_payments_reference", ["reference"], True),
        ("ix_pending_payments_payment_intent_id", ["payment_intent_id"], True),
        ("ix_pending_payments_user_id", ["user_id"], False),
        ("ix_pending_payments_expires_at", ["expires_at"], False),
    ))

    if not insp.has_table("webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("event_id", sa.String(length=128), nullable=False),
            sa.Column("event_type", sa.String(length=96), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("event_id", name="uq_webhook_events_event_id"),
        )


def downgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    for table_name in (
        "webhook_events",
        "pending_payments",
        "price_plans",
        "subscriptions",
        "applications",
        "profiles",
        "notification_preferences",
        "notifications",
        "listing_category_paths",
        "listings",
        "categories",
        "stores",
        "push_tokens",
        "users",
    ):
        if insp.has_table(table_name):
            op.drop_table(table_name)

"""Create users and businesses.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


business_type_enum = sa.Enum("cafe", "restaurant", "retail", "other", name="business_type_enum")
subscription_tier_enum = sa.Enum("free", "pro", name="subscription_tier_enum")
subscription_status_enum = sa.Enum("active", "past_due", "canceled", "incomplete", name="subscription_status_enum")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("user_type", sa.String(length=16), nullable=False, server_default="customer"),
        sa.Column("member_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_member_id", "users", ["member_id"], unique=True)

    op.create_table(
        "businesses",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("business_type", business_type_enum, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_stamps", sa.Integer(), nullable=False),
        sa.Column("reward", sa.String(), nullable=False),
        sa.Column("color_class", sa.String(), nullable=False),
        sa.Column("total_customers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_cards", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_stamps_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", subscription_tier_enum, nullable=False, server_default="free"),
        sa.Column("subscription_status", subscription_status_enum, nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_price_id", sa.String(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_customers", sa.Integer(), nullable=False),
        sa.Column("max_monthly_stamps", sa.Integer(), nullable=False),
        sa.Column("current_month_stamps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("month_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_activity_feed_items", sa.Integer(), nullable=False),
        sa.Column("can_upload_logo", sa.Boolean(), nullable=False),
        sa.Column("min_stamp_card_stamps", sa.Integer(), nullable=False),
        sa.Column("max_stamp_card_stamps", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_businesses_owner_id", "businesses", ["owner_id"])
    op.create_index("ix_businesses_stripe_customer_id", "businesses", ["stripe_customer_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_businesses_stripe_customer_id", table_name="businesses")
    op.drop_index("ix_businesses_owner_id", table_name="businesses")
    op.drop_table("businesses")
    op.drop_index("ix_users_member_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    subscription_status_enum.drop(bind, checkfirst=True)
    subscription_tier_enum.drop(bind, checkfirst=True)
    business_type_enum.drop(bind, checkfirst=True)

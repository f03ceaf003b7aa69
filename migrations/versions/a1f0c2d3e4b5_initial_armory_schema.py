"""Initial armory schema.

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1f0c2d3e4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

REFERENCE_TABLES = (
    # table, key column, key type, has nickname
    ("calibers", "caliber", sa.String(100), True),
    ("weapon_types", "type", sa.String(100), True),
    ("brands", "name", sa.String(100), True),
    ("bullet_styles", "type", sa.String(100), True),
    ("grains", "weight", sa.Integer(), False),
    ("casings", "type", sa.String(50), False),
)


def _timestamps(soft_delete: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]
    if soft_delete:
        cols.append(sa.Column("deleted_at", sa.DateTime(), nullable=True))
    return cols


def upgrade() -> None:
    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(64), nullable=False, server_default="free_trial"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("benefit_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("display_on_home", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("banner", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_promotions_active_window", "promotions", ["active", "start_date", "end_date"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pending_email", sa.String(320), nullable=True),
        sa.Column("verification_token", sa.String(128), nullable=True),
        sa.Column("verification_token_expiry", sa.DateTime(), nullable=True),
        sa.Column("verification_sent_at", sa.DateTime(), nullable=True),
        sa.Column("recovery_token", sa.String(128), nullable=True),
        sa.Column("recovery_token_expiry", sa.DateTime(), nullable=True),
        sa.Column("recovery_sent_at", sa.DateTime(), nullable=True),
        sa.Column("login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_login_attempt", sa.DateTime(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(128), nullable=True),
        sa.Column("subscription_tier", sa.String(32), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(32), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(), nullable=True),
        sa.Column("promotion_id", sa.Integer(), nullable=True),
        sa.Column("granted_by_id", sa.Integer(), nullable=True),
        sa.Column("grant_reason", sa.String(512), nullable=True),
        sa.Column("is_admin_granted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_lifetime", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["granted_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_verification_token", "users", ["verification_token"])
    op.create_index("ix_users_recovery_token", "users", ["recovery_token"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), primary_key=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), primary_key=True),
        sa.Column("permission_id", sa.Integer(), primary_key=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    op.create_table(
        "manufacturers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("nickname", sa.String(50), nullable=True),
        sa.Column("country", sa.String(100), nullable=False),
        sa.Column("popularity", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("name"),
    )
    op.create_index("idx_manufacturers_popularity", "manufacturers", ["popularity"])

    for table, key, key_type, has_nickname in REFERENCE_TABLES:
        cols = [sa.Column("id", sa.Integer(), primary_key=True), sa.Column(key, key_type, nullable=False)]
        if has_nickname:
            cols.append(sa.Column("nickname", sa.String(50), nullable=True))
        cols.append(sa.Column("popularity", sa.Integer(), nullable=False, server_default="0"))
        op.create_table(table, *cols, *_timestamps(), sa.UniqueConstraint(key))
        op.create_index(f"idx_{table}_popularity", table, ["popularity"])

    op.create_table(
        "guns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("serial_number", sa.String(100), nullable=True),
        sa.Column("purpose", sa.String(100), nullable=True),
        sa.Column("finish", sa.String(100), nullable=True),
        sa.Column("acquired", sa.Date(), nullable=True),
        sa.Column("paid", sa.Float(), nullable=True),
        sa.Column("weapon_type_id", sa.Integer(), nullable=False),
        sa.Column("caliber_id", sa.Integer(), nullable=False),
        sa.Column("manufacturer_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["weapon_type_id"], ["weapon_types.id"]),
        sa.ForeignKeyConstraint(["caliber_id"], ["calibers.id"]),
        sa.ForeignKeyConstraint(["manufacturer_id"], ["manufacturers.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_guns_owner_id", "guns", ["owner_id"])
    op.create_index("idx_guns_name", "guns", ["name"])

    op.create_table(
        "ammo",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("acquired", sa.Date(), nullable=True),
        sa.Column("paid", sa.Float(), nullable=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expended", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("brand_id", sa.Integer(), nullable=False),
        sa.Column("caliber_id", sa.Integer(), nullable=False),
        sa.Column("bullet_style_id", sa.Integer(), nullable=True),
        sa.Column("grain_id", sa.Integer(), nullable=True),
        sa.Column("casing_id", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"]),
        sa.ForeignKeyConstraint(["caliber_id"], ["calibers.id"]),
        sa.ForeignKeyConstraint(["bullet_style_id"], ["bullet_styles.id"]),
        sa.ForeignKeyConstraint(["grain_id"], ["grains.id"]),
        sa.ForeignKeyConstraint(["casing_id"], ["casings.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_ammo_owner_id", "ammo", ["owner_id"])
    op.create_index("idx_ammo_name", "ammo", ["name"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="usd"),
        sa.Column("payment_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("stripe_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("stripe_id"),
    )
    op.create_index("idx_payments_user_id", "payments", ["user_id"])
    op.create_index("idx_payments_created_at", "payments", ["created_at"])

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("public_access", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(soft_delete=False),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "feature_flag_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("feature_flag_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(64), nullable=False),
        sa.ForeignKeyConstraint(["feature_flag_id"], ["feature_flags.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("feature_flag_id", "role", name="uq_feature_flag_roles_flag_role"),
    )


def downgrade() -> None:
    op.drop_table("feature_flag_roles")
    op.drop_table("feature_flags")
    op.drop_index("idx_payments_created_at", table_name="payments")
    op.drop_index("idx_payments_user_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_ammo_name", table_name="ammo")
    op.drop_index("idx_ammo_owner_id", table_name="ammo")
    op.drop_table("ammo")
    op.drop_index("idx_guns_name", table_name="guns")
    op.drop_index("idx_guns_owner_id", table_name="guns")
    op.drop_table("guns")
    for table, *_ in reversed(REFERENCE_TABLES):
        op.drop_index(f"idx_{table}_popularity", table_name=table)
        op.drop_table(table)
    op.drop_index("idx_manufacturers_popularity", table_name="manufacturers")
    op.drop_table("manufacturers")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_index("ix_users_recovery_token", table_name="users")
    op.drop_index("ix_users_verification_token", table_name="users")
    op.drop_table("users")
    op.drop_index("idx_promotions_active_window", table_name="promotions")
    op.drop_table("promotions")

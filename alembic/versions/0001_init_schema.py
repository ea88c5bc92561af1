from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


gender = sa.Enum("MALE", "FEMALE", name="gender")
activity_level = sa.Enum("SEDENTARY", "LIGHT", "MODERATE", "ACTIVE", "VERY_ACTIVE", name="activity_level")
goal = sa.Enum("LOSS", "MAINTAIN", "GAIN", name="goal")
payment_status = sa.Enum("PENDING", "APPROVED", "REJECTED", name="payment_status")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("last_name", sa.String(length=128), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", gender, nullable=True),
        sa.Column("height_cm", sa.Integer(), nullable=True),
        sa.Column("weight_kg", sa.Float(), nullable=True),
        sa.Column("activity", activity_level, nullable=True),
        sa.Column("goal", goal, nullable=True),
        sa.Column("daily_calorie_goal", sa.Integer(), nullable=False, server_default="2000"),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_request_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_request_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)

    op.create_table(
        "meals",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("calories", sa.Integer(), nullable=False),
        sa.Column("protein", sa.Float(), nullable=False),
        sa.Column("fat", sa.Float(), nullable=False),
        sa.Column("carbs", sa.Float(), nullable=False),
        sa.Column("ingredients", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("weight_g", sa.Integer(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("photo_url", sa.String(length=1024), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_meals"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_meals_user_id_users", ondelete="CASCADE"),
        sa.CheckConstraint(
            "calories >= 0 AND protein >= 0 AND fat >= 0 AND carbs >= 0", name="ck_meals_macros_nonneg"
        ),
    )
    op.create_index("ix_meals_user_id", "meals", ["user_id"])
    op.create_index("ix_meals_date", "meals", ["date"])
    op.create_index("ix_meals_user_date", "meals", ["user_id", "date"])

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="TJS"),
        sa.Column("status", payment_status, nullable=False, server_default="PENDING"),
        sa.Column("receipt_url", sa.String(length=1024), nullable=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_payment_requests"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_payment_requests_user_id_users", ondelete="CASCADE"
        ),
        # one bank document grants premium at most once
        sa.UniqueConstraint("transaction_id", name="uq_payment_requests_transaction_id"),
    )
    op.create_index("ix_payment_requests_user_id", "payment_requests", ["user_id"])
    op.create_index("ix_payment_requests_user_created", "payment_requests", ["user_id", "created_at"])
    # admin fallback lists pending requests
    op.create_index("ix_payment_requests_status", "payment_requests", ["status"])


def downgrade() -> None:
    op.drop_table("payment_requests")
    op.drop_table("meals")
    op.drop_index("ix_users_telegram_id", table_name="users")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in (payment_status, goal, activity_level, gender):
        enum.drop(bind, checkfirst=True)

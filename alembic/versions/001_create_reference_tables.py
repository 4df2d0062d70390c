"""create currencies, exchange rates, users and platform configs

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RATE_COLUMNS = (
    "loan_provision_rate",
    "loan_individual_redelivery_fee_rate",
    "loan_institution_redelivery_fee_rate",
    "loan_liquidation_premi_rate",
    "loan_liquidation_fee_rate",
    "loan_min_ltv_ratio",
    "loan_max_ltv_ratio",
)


def upgrade() -> None:
    op.create_table(
        "currencies",
        sa.Column("blockchain_key", sa.String(64), primary_key=True),
        sa.Column("token_id", sa.String(128), primary_key=True),
        sa.Column("symbol", sa.String(16), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.CheckConstraint("decimals >= 0 AND decimals <= 18", name="ck_currencies_decimals_range"),
    )

    op.create_table(
        "exchange_rates",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("base_blockchain_key", sa.String(64), nullable=False),
        sa.Column("base_token_id", sa.String(128), nullable=False),
        sa.Column("quote_blockchain_key", sa.String(64), nullable=False),
        sa.Column("quote_token_id", sa.String(128), nullable=False),
        sa.Column("bid_price", sa.Numeric(78, 0), nullable=False),
        sa.Column("ask_price", sa.Numeric(78, 0), nullable=False),
        sa.Column("source_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "retrieval_date", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["base_blockchain_key", "base_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        sa.ForeignKeyConstraint(
            ["quote_blockchain_key", "quote_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        sa.CheckConstraint("bid_price >= 0", name="ck_exchange_rates_bid_non_negative"),
        sa.CheckConstraint("ask_price >= 0", name="ck_exchange_rates_ask_non_negative"),
    )
    op.create_index(
        "ix_exchange_rates_pair_source_date",
        "exchange_rates",
        [
            "base_blockchain_key", "base_token_id",
            "quote_blockchain_key", "quote_token_id",
            "source_date",
        ],
    )

    usertype = ENUM("Individual", "Institution", name="usertype", create_type=False)
    usertype.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("user_type", usertype, server_default="Individual", nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
    )

    op.create_table(
        "platform_configs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "effective_date", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        *[sa.Column(col, sa.Numeric(8, 6), nullable=False) for col in RATE_COLUMNS],
        *[
            sa.CheckConstraint(f"{col} >= 0 AND {col} <= 1", name=f"ck_platform_configs_{col}")
            for col in RATE_COLUMNS
        ],
    )
    op.create_index("ix_platform_configs_effective_date", "platform_configs", ["effective_date"])


def downgrade() -> None:
    op.drop_index("ix_platform_configs_effective_date", table_name="platform_configs")
    op.drop_table("platform_configs")
    op.drop_table("users")
    sa.Enum(name="usertype").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_exchange_rates_pair_source_date", table_name="exchange_rates")
    op.drop_table("exchange_rates")
    op.drop_table("currencies")

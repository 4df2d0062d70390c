"""create loan offers and loan applications tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, ENUM, UUID

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    loanofferstatus = ENUM(
        "Funding", "Published", "Closed", "Expired",
        name="loanofferstatus", create_type=False,
    )
    loanofferstatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "loan_offers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("lender_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("principal_blockchain_key", sa.String(64), nullable=False),
        sa.Column("principal_token_id", sa.String(128), nullable=False),
        sa.Column("offered_principal_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("available_principal_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("min_loan_principal_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("max_loan_principal_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("interest_rate", sa.Numeric(8, 4), nullable=False),
        sa.Column("term_in_months_options", ARRAY(sa.Integer()), nullable=False),
        sa.Column("status", loanofferstatus, server_default="Funding", nullable=False),
        sa.Column(
            "created_date", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["principal_blockchain_key", "principal_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        sa.CheckConstraint("offered_principal_amount > 0", name="ck_loan_offers_offered_positive"),
        sa.CheckConstraint(
            "available_principal_amount >= 0 "
            "AND available_principal_amount <= offered_principal_amount",
            name="ck_loan_offers_available_range",
        ),
        sa.CheckConstraint(
            "min_loan_principal_amount > 0 "
            "AND min_loan_principal_amount <= max_loan_principal_amount",
            name="ck_loan_offers_min_max",
        ),
        sa.CheckConstraint(
            "interest_rate >= 0 AND interest_rate <= 100",
            name="ck_loan_offers_interest_rate_range",
        ),
        sa.CheckConstraint(
            "cardinality(term_in_months_options) > 0",
            name="ck_loan_offers_term_options_not_empty",
        ),
    )
    op.create_index("ix_loan_offers_status", "loan_offers", ["status"])

    loanapplicationstatus = ENUM(
        "PendingCollateral", "Published", "Matched", "Closed", "Expired",
        name="loanapplicationstatus", create_type=False,
    )
    loanapplicationstatus.create(op.get_bind(), checkfirst=True)

    liquidationmode = ENUM("Partial", "Full", name="liquidationmode", create_type=False)
    liquidationmode.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "loan_applications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("borrower_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("collateral_blockchain_key", sa.String(64), nullable=False),
        sa.Column("collateral_token_id", sa.String(128), nullable=False),
        sa.Column("collateral_deposit_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("principal_blockchain_key", sa.String(64), nullable=False),
        sa.Column("principal_token_id", sa.String(128), nullable=False),
        sa.Column("principal_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("max_interest_rate", sa.Numeric(8, 4), nullable=True),
        sa.Column("term_in_months", sa.Integer(), nullable=False),
        sa.Column("min_ltv_ratio", sa.Numeric(8, 6), nullable=True),
        sa.Column("liquidation_mode", liquidationmode, server_default="Partial", nullable=False),
        sa.Column(
            "status", loanapplicationstatus,
            server_default="PendingCollateral", nullable=False,
        ),
        sa.Column(
            "matched_loan_offer_id", UUID(as_uuid=True),
            sa.ForeignKey("loan_offers.id"), nullable=True,
        ),
        sa.Column("matched_ltv_ratio", sa.Numeric(38, 18), nullable=True),
        sa.Column("matched_collateral_valuation_amount", sa.Numeric(78, 0), nullable=True),
        sa.Column(
            "applied_date", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("matched_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["collateral_blockchain_key", "collateral_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        sa.ForeignKeyConstraint(
            ["principal_blockchain_key", "principal_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        sa.CheckConstraint("principal_amount > 0", name="ck_loan_applications_principal_positive"),
        sa.CheckConstraint(
            "collateral_deposit_amount > 0", name="ck_loan_applications_collateral_positive",
        ),
        sa.CheckConstraint(
            "max_interest_rate >= 0 AND max_interest_rate <= 100",
            name="ck_loan_applications_max_rate_range",
        ),
        sa.CheckConstraint("term_in_months > 0", name="ck_loan_applications_term_positive"),
    )
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])


def downgrade() -> None:
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_table("loan_applications")
    sa.Enum(name="liquidationmode").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="loanapplicationstatus").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_loan_offers_status", table_name="loan_offers")
    op.drop_table("loan_offers")
    sa.Enum(name="loanofferstatus").drop(op.get_bind(), checkfirst=True)

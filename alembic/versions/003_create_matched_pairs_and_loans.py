"""create matched loan pairs and loans tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None

AMOUNT_COLUMNS = (
    "principal_amount",
    "interest_amount",
    "provision_amount",
    "repayment_amount",
    "redelivery_fee_amount",
    "redelivery_amount",
    "premi_amount",
    "liquidation_fee_amount",
    "min_collateral_valuation",
)


def upgrade() -> None:
    op.create_table(
        "matched_loan_pairs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_application_id", UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id"), nullable=False,
        ),
        sa.Column(
            "loan_offer_id", UUID(as_uuid=True),
            sa.ForeignKey("loan_offers.id"), nullable=False,
        ),
        sa.Column("ltv_ratio", sa.Numeric(38, 18), nullable=False),
        sa.Column("collateral_valuation_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column(
            "matched_date", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.UniqueConstraint("loan_application_id", name="uq_matched_loan_pairs_application"),
    )
    op.create_index("ix_matched_loan_pairs_loan_offer_id", "matched_loan_pairs", ["loan_offer_id"])

    loanstatus = ENUM(
        "Originated", "Active", "Liquidated", "Repaid", "Defaulted",
        name="loanstatus", create_type=False,
    )
    loanstatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "loans",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_application_id", UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id"), nullable=False,
        ),
        sa.Column("loan_offer_id", UUID(as_uuid=True), sa.ForeignKey("loan_offers.id"), nullable=False),
        sa.Column("borrower_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("lender_user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("interest_rate", sa.Numeric(8, 4), nullable=False),
        sa.Column("term_in_months", sa.Integer(), nullable=False),
        *[sa.Column(col, sa.Numeric(78, 0), nullable=False) for col in AMOUNT_COLUMNS],
        sa.Column("mc_ltv_ratio", sa.Numeric(38, 18), nullable=False),
        sa.Column("collateral_amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("status", loanstatus, server_default="Originated", nullable=False),
        sa.Column("origination_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("maturity_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("disbursement_date", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("loan_application_id", name="uq_loans_application"),
    )
    op.create_index("ix_loans_loan_offer_id", "loans", ["loan_offer_id"])
    op.create_index("ix_loans_borrower_user_id", "loans", ["borrower_user_id"])
    op.create_index("ix_loans_lender_user_id", "loans", ["lender_user_id"])
    op.create_index("ix_loans_status", "loans", ["status"])


def downgrade() -> None:
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_lender_user_id", table_name="loans")
    op.drop_index("ix_loans_borrower_user_id", table_name="loans")
    op.drop_index("ix_loans_loan_offer_id", table_name="loans")
    op.drop_table("loans")
    sa.Enum(name="loanstatus").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_matched_loan_pairs_loan_offer_id", table_name="matched_loan_pairs")
    op.drop_table("matched_loan_pairs")

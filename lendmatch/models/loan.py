"""
Loan model — the economic record originated from a matched pair.

Lifecycle:
  Originated → Active (on disbursement)
  Active → Repaid | Liquidated | Defaulted

A loan is never created without a preceding ``MatchedLoanPair``; the
unique ``loan_application_id`` makes origination idempotent per match.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    UniqueConstraint,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from lendmatch.database import Base


class LoanStatus(str, enum.Enum):
    ORIGINATED = "Originated"
    ACTIVE = "Active"
    LIQUIDATED = "Liquidated"
    REPAID = "Repaid"
    DEFAULTED = "Defaulted"


VALID_TRANSITIONS: dict[LoanStatus, set[LoanStatus]] = {
    LoanStatus.ORIGINATED: {LoanStatus.ACTIVE},
    LoanStatus.ACTIVE: {
        LoanStatus.REPAID,
        LoanStatus.LIQUIDATED,
        LoanStatus.DEFAULTED,
    },
    LoanStatus.LIQUIDATED: set(),
    LoanStatus.REPAID: set(),
    LoanStatus.DEFAULTED: set(),
}


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        UniqueConstraint("loan_application_id", name="uq_loans_application"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    loan_application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loan_applications.id"), nullable=False,
    )
    loan_offer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=False, index=True,
    )
    borrower_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True,
    )
    lender_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True,
    )

    # Terms
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(precision=8, scale=4), nullable=False)
    term_in_months: Mapped[int] = mapped_column(Integer, nullable=False)

    # Economics (smallest units of the principal currency)
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    provision_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    repayment_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    redelivery_fee_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    redelivery_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    premi_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    liquidation_fee_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    min_collateral_valuation: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    mc_ltv_ratio: Mapped[Decimal] = mapped_column(Numeric(precision=38, scale=18), nullable=False)

    # Collateral (smallest units of the collateral currency)
    collateral_amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)

    status: Mapped[LoanStatus] = mapped_column(
        SAEnum(LoanStatus, name="loanstatus", values_callable=lambda e: [m.value for m in e]),
        default=LoanStatus.ORIGINATED,
        index=True,
    )

    origination_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    maturity_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    disbursement_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @staticmethod
    def is_valid_transition(from_status: LoanStatus, to_status: LoanStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def transition_to(self, new_status: LoanStatus, at: datetime | None = None) -> None:
        """
        Transition to *new_status* if the move is valid.

        Raises ValueError if the transition is not allowed.  Moving to
        ``Active`` stamps ``disbursement_date``.
        """
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        if new_status == LoanStatus.ACTIVE:
            self.disbursement_date = at or datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return (
            f"<Loan {self.id} {self.principal_amount} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


@event.listens_for(Loan, "init")
def _set_loan_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = LoanStatus.ORIGINATED

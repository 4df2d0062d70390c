"""
Loan application model — a borrower's request for principal against collateral.

Lifecycle:
  PendingCollateral → Published → Matched → Closed
  (PendingCollateral | Published) → Closed | Expired

Only ``Published`` applications are visible to the matcher.  The
match fields (``matched_*``) are written once, by the match recorder,
in the same database transaction that moves the status to ``Matched``.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    Numeric,
    String,
    Enum as SAEnum,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendmatch.database import Base

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LoanApplicationStatus(str, enum.Enum):
    PENDING_COLLATERAL = "PendingCollateral"
    PUBLISHED = "Published"
    MATCHED = "Matched"
    CLOSED = "Closed"
    EXPIRED = "Expired"


class LiquidationMode(str, enum.Enum):
    PARTIAL = "Partial"
    FULL = "Full"


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[LoanApplicationStatus, set[LoanApplicationStatus]] = {
    LoanApplicationStatus.PENDING_COLLATERAL: {
        LoanApplicationStatus.PUBLISHED,
        LoanApplicationStatus.CLOSED,
        LoanApplicationStatus.EXPIRED,
    },
    LoanApplicationStatus.PUBLISHED: {
        LoanApplicationStatus.MATCHED,
        LoanApplicationStatus.CLOSED,
        LoanApplicationStatus.EXPIRED,
    },
    LoanApplicationStatus.MATCHED: {
        LoanApplicationStatus.CLOSED,
    },
    LoanApplicationStatus.CLOSED: set(),
    LoanApplicationStatus.EXPIRED: set(),
}


def _values(enum_cls):
    return [m.value for m in enum_cls]


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        ForeignKeyConstraint(
            ["collateral_blockchain_key", "collateral_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        ForeignKeyConstraint(
            ["principal_blockchain_key", "principal_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        CheckConstraint("principal_amount > 0", name="ck_loan_applications_principal_positive"),
        CheckConstraint(
            "collateral_deposit_amount > 0", name="ck_loan_applications_collateral_positive",
        ),
        CheckConstraint(
            "max_interest_rate >= 0 AND max_interest_rate <= 100",
            name="ck_loan_applications_max_rate_range",
        ),
        CheckConstraint("term_in_months > 0", name="ck_loan_applications_term_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    borrower_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False,
    )

    # Collateral (smallest units of the collateral currency)
    collateral_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    collateral_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    collateral_deposit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )

    # Principal (smallest units of the principal currency)
    principal_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )

    # Terms
    max_interest_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=8, scale=4), nullable=True,
    )
    term_in_months: Mapped[int] = mapped_column(Integer, nullable=False)
    min_ltv_ratio: Mapped[Decimal | None] = mapped_column(Numeric(precision=8, scale=6))
    liquidation_mode: Mapped[LiquidationMode] = mapped_column(
        SAEnum(LiquidationMode, name="liquidationmode", values_callable=_values),
        default=LiquidationMode.PARTIAL,
    )

    # Status
    status: Mapped[LoanApplicationStatus] = mapped_column(
        SAEnum(LoanApplicationStatus, name="loanapplicationstatus", values_callable=_values),
        default=LoanApplicationStatus.PENDING_COLLATERAL,
        index=True,
    )

    # Match results
    matched_loan_offer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loan_offers.id"), nullable=True,
    )
    matched_ltv_ratio: Mapped[Decimal | None] = mapped_column(Numeric(precision=38, scale=18))
    matched_collateral_valuation_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=78, scale=0),
    )

    # Lifecycle timestamps
    applied_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    published_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    matched_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    borrower = relationship("User", foreign_keys=[borrower_user_id])
    matched_offer = relationship("LoanOffer", foreign_keys=[matched_loan_offer_id])

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(
        from_status: LoanApplicationStatus, to_status: LoanApplicationStatus,
    ) -> bool:
        """Check whether a status transition is allowed."""
        allowed = VALID_TRANSITIONS.get(from_status, set())
        return to_status in allowed

    def transition_to(
        self, new_status: LoanApplicationStatus, at: datetime | None = None,
    ) -> None:
        """
        Transition to *new_status* if the move is valid.

        Raises ValueError if the transition is not allowed.
        Also auto-sets lifecycle timestamps where applicable.
        """
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

        now = at or datetime.now(timezone.utc)
        if new_status == LoanApplicationStatus.PUBLISHED:
            self.published_date = now
        elif new_status == LoanApplicationStatus.MATCHED:
            self.matched_date = now
        elif new_status == LoanApplicationStatus.CLOSED:
            self.closed_date = now

    def __repr__(self) -> str:
        return (
            f"<LoanApplication {self.id} "
            f"{self.principal_amount} {self.term_in_months}mo "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(LoanApplication, "init")
def _set_application_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = LoanApplicationStatus.PENDING_COLLATERAL
    if "liquidation_mode" not in kwargs:
        target.liquidation_mode = LiquidationMode.PARTIAL
    if "applied_date" not in kwargs:
        target.applied_date = datetime.now(timezone.utc)

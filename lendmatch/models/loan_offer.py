"""
Loan offer model — a lender's standing offer of principal.

``available_principal_amount`` only ever decreases, and only the match
recorder writes it, with a guarded ``UPDATE ... WHERE
available_principal_amount >= :requested`` so concurrent runs can never
over-allocate an offer.
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
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendmatch.database import Base


class LoanOfferStatus(str, enum.Enum):
    FUNDING = "Funding"
    PUBLISHED = "Published"
    CLOSED = "Closed"
    EXPIRED = "Expired"


VALID_TRANSITIONS: dict[LoanOfferStatus, set[LoanOfferStatus]] = {
    LoanOfferStatus.FUNDING: {
        LoanOfferStatus.PUBLISHED,
        LoanOfferStatus.CLOSED,
        LoanOfferStatus.EXPIRED,
    },
    LoanOfferStatus.PUBLISHED: {
        LoanOfferStatus.CLOSED,
        LoanOfferStatus.EXPIRED,
    },
    LoanOfferStatus.CLOSED: set(),
    LoanOfferStatus.EXPIRED: set(),
}


class LoanOffer(Base):
    __tablename__ = "loan_offers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["principal_blockchain_key", "principal_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        CheckConstraint("offered_principal_amount > 0", name="ck_loan_offers_offered_positive"),
        CheckConstraint(
            "available_principal_amount >= 0 "
            "AND available_principal_amount <= offered_principal_amount",
            name="ck_loan_offers_available_range",
        ),
        CheckConstraint(
            "min_loan_principal_amount > 0 "
            "AND min_loan_principal_amount <= max_loan_principal_amount",
            name="ck_loan_offers_min_max",
        ),
        CheckConstraint(
            "interest_rate >= 0 AND interest_rate <= 100",
            name="ck_loan_offers_interest_rate_range",
        ),
        CheckConstraint(
            "cardinality(term_in_months_options) > 0",
            name="ck_loan_offers_term_options_not_empty",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    lender_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False,
    )

    principal_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Amounts (smallest units of the principal currency)
    offered_principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )
    available_principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )
    min_loan_principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )
    max_loan_principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )

    # Terms
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(precision=8, scale=4), nullable=False)
    term_in_months_options: Mapped[list[int]] = mapped_column(ARRAY(Integer), nullable=False)

    status: Mapped[LoanOfferStatus] = mapped_column(
        SAEnum(
            LoanOfferStatus, name="loanofferstatus",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=LoanOfferStatus.FUNDING,
        index=True,
    )

    created_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    published_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    lender = relationship("User", foreign_keys=[lender_user_id])

    @staticmethod
    def is_valid_transition(from_status: LoanOfferStatus, to_status: LoanOfferStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def transition_to(self, new_status: LoanOfferStatus, at: datetime | None = None) -> None:
        """Transition to *new_status*; raises ValueError if not allowed."""
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        now = at or datetime.now(timezone.utc)
        if new_status == LoanOfferStatus.PUBLISHED:
            self.published_date = now
        elif new_status == LoanOfferStatus.CLOSED:
            self.closed_date = now

    def __repr__(self) -> str:
        return (
            f"<LoanOffer {self.id} {self.available_principal_amount}/"
            f"{self.offered_principal_amount} @ {self.interest_rate}% "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


@event.listens_for(LoanOffer, "init")
def _set_offer_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = LoanOfferStatus.FUNDING
    if "available_principal_amount" not in kwargs and "offered_principal_amount" in kwargs:
        target.available_principal_amount = kwargs["offered_principal_amount"]
    if "created_date" not in kwargs:
        target.created_date = datetime.now(timezone.utc)

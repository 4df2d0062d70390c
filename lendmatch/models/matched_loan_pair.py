"""
Matched loan pair — the immutable link between one application and one offer.

The unique constraint on ``loan_application_id`` is the last line of
defence behind the match recorder's guarded updates: an application can
be the target of at most one pairing, even under overlapping runs.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, UniqueConstraint, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lendmatch.database import Base


class MatchedLoanPair(Base):
    __tablename__ = "matched_loan_pairs"
    __table_args__ = (
        UniqueConstraint("loan_application_id", name="uq_matched_loan_pairs_application"),
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
    ltv_ratio: Mapped[Decimal] = mapped_column(Numeric(precision=38, scale=18), nullable=False)
    collateral_valuation_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=78, scale=0), nullable=False,
    )
    matched_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    application = relationship("LoanApplication", foreign_keys=[loan_application_id])
    offer = relationship("LoanOffer", foreign_keys=[loan_offer_id])

    def __repr__(self) -> str:
        return (
            f"<MatchedLoanPair {self.loan_application_id} <-> {self.loan_offer_id} "
            f"ltv={self.ltv_ratio}>"
        )


@event.listens_for(MatchedLoanPair, "init")
def _set_pair_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "matched_date" not in kwargs:
        target.matched_date = datetime.now(timezone.utc)

"""
Platform fee configuration.

Every rate is a 0..1 fraction (``0.03`` means 3%).  Rows are versioned
by ``effective_date``; the newest row not after the run instant applies.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from lendmatch.database import Base

_RATE_COLUMNS = (
    "loan_provision_rate",
    "loan_individual_redelivery_fee_rate",
    "loan_institution_redelivery_fee_rate",
    "loan_liquidation_premi_rate",
    "loan_liquidation_fee_rate",
    "loan_min_ltv_ratio",
    "loan_max_ltv_ratio",
)


class PlatformConfig(Base):
    __tablename__ = "platform_configs"
    __table_args__ = tuple(
        CheckConstraint(f"{col} >= 0 AND {col} <= 1", name=f"ck_platform_configs_{col}")
        for col in _RATE_COLUMNS
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    effective_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    loan_provision_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_individual_redelivery_fee_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_institution_redelivery_fee_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_liquidation_premi_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_liquidation_fee_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_min_ltv_ratio: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    loan_max_ltv_ratio: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)

    def __repr__(self) -> str:
        return f"<PlatformConfig effective={self.effective_date} provision={self.loan_provision_rate}>"

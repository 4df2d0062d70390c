"""
Currency and exchange-rate models.

Currencies are identified by ``(blockchain_key, token_id)`` and carry the
decimal count used to convert between smallest units and display units.
Exchange-rate snapshots price a base currency in a quote currency; both
``bid_price`` and ``ask_price`` are stored in quote smallest units
(quote scale 18).
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKeyConstraint,
    Index,
    Integer,
    Numeric,
    String,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from lendmatch.database import Base


class Currency(Base):
    __tablename__ = "currencies"
    __table_args__ = (
        CheckConstraint("decimals >= 0 AND decimals <= 18", name="ck_currencies_decimals_range"),
    )

    blockchain_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    token_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<Currency {self.symbol} {self.blockchain_key}:{self.token_id} ({self.decimals}dp)>"


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (
        ForeignKeyConstraint(
            ["base_blockchain_key", "base_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        ForeignKeyConstraint(
            ["quote_blockchain_key", "quote_token_id"],
            ["currencies.blockchain_key", "currencies.token_id"],
        ),
        CheckConstraint("bid_price >= 0", name="ck_exchange_rates_bid_non_negative"),
        CheckConstraint("ask_price >= 0", name="ck_exchange_rates_ask_non_negative"),
        Index(
            "ix_exchange_rates_pair_source_date",
            "base_blockchain_key", "base_token_id",
            "quote_blockchain_key", "quote_token_id",
            "source_date",
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    base_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    base_token_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quote_blockchain_key: Mapped[str] = mapped_column(String(64), nullable=False)
    quote_token_id: Mapped[str] = mapped_column(String(128), nullable=False)

    bid_price: Mapped[Decimal] = mapped_column(Numeric(precision=78, scale=0), nullable=False)
    ask_price: Mapped[Decimal] = mapped_column(Numeric(precision=78, scale=0), nullable=False)

    source_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    retrieval_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<ExchangeRate {self.base_token_id}/{self.quote_token_id} "
            f"bid={self.bid_price} at {self.source_date}>"
        )


@event.listens_for(ExchangeRate, "init")
def _set_exchange_rate_defaults(target, args, kwargs):
    if "retrieval_date" not in kwargs:
        target.retrieval_date = datetime.now(timezone.utc)

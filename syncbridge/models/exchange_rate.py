# syncbridge/models/exchange_rate.py
from sqlalchemy import Column, Integer, String, Float, DateTime, Index
from sqlalchemy.sql import func

from syncbridge.database import Base


class ExchangeRate(Base):
    """
    Conversion rate series for a currency pair. `rate` is the number of
    quote-currency units per one base-currency unit (KRW per USD).
    """
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, index=True)
    base_currency = Column(String(3), nullable=False, default="USD")
    quote_currency = Column(String(3), nullable=False, default="KRW")
    rate = Column(Float, nullable=False)
    source = Column(String(20), nullable=False, default="auto")  # auto, manual

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_exchange_rates_pair_valid_from", "base_currency", "quote_currency", "valid_from"),
    )

    def __repr__(self):
        return (f"<ExchangeRate({self.base_currency}/{self.quote_currency}={self.rate}, "
                f"source='{self.source}', from={self.valid_from}, until={self.valid_until})>")

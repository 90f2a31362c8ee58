"""
Quote Model — Locked USD→INR conversion with full fee breakdown.
Financial columns are written once at creation; only `status` changes afterwards.
"""
from decimal import Decimal

from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, Integer, DateTime, Numeric, ForeignKey
from sqlalchemy.types import TypeDecorator

from offramp.database import Base

MONEY_SCALE = Decimal("0.00000001")


class Money(TypeDecorator):
    """
    Exact decimal amount to 8 places.
    NUMERIC where the database has one; SQLite keeps the value as text,
    since its NUMERIC affinity stores floats.
    """
    impl = Numeric(20, 8)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(20, 8))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(str(value)).quantize(MONEY_SCALE)
        return str(value) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


MONEY = Money()


class Quote(Base):
    __tablename__ = "quotes"

    id = Column(String(40), primary_key=True, index=True)     # quote_xxxxxxxx (quote reference)
    session_id = Column(String(40), ForeignKey("sessions.id"), nullable=False, index=True)

    asset = Column(String(8), nullable=False)      # USDC | USDT
    network = Column(String(16), nullable=False)   # polygon | ethereum | bsc | solana
    amount_usd = Column(MONEY, nullable=False)

    fx_rate = Column(MONEY, nullable=False)
    markup_pct = Column(MONEY, nullable=False)
    gross_inr = Column(MONEY, nullable=False)
    tds_amount = Column(MONEY, nullable=False)
    platform_fee = Column(MONEY, nullable=False)   # a.k.a. commission
    gst_amount = Column(MONEY, nullable=False)
    estimated_inr = Column(MONEY, nullable=False)  # net INR

    deposit_address = Column(String(128))
    min_confirmations = Column(Integer, default=12)

    status = Column(String(16), default="active")  # active | used | expired

    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

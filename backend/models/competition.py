"""
Competition Participants
========================

Trading credentials issued to participants, the traders they are assigned
to, and each trader's current standing on the leaderboard.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Float,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from . import Base

# =============================================================================
# ENUMS
# =============================================================================


class PerformanceDataSource(enum.Enum):
    REGISTRATION = "registration"
    MYFXBOOK = "myfxbook"
    MT4 = "mt4"
    MT5 = "mt5"
    FOREX_FACTORY = "forex_factory"
    FOREX_FACTORY_MANUAL = "forex_factory_manual"


# =============================================================================
# PARTICIPANT MODELS
# =============================================================================


class TradingCredential(Base):
    """Trading-account identity issued by an admin to a participant."""

    __tablename__ = "trading_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_username = Column(String(100), nullable=False, index=True)
    account_number = Column(String(50), nullable=False, unique=True)
    platform = Column(String(20), default="mt5")
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    assignment = relationship(
        "CredentialAssignment", back_populates="credential", uselist=False
    )
    integrations = relationship("AccountIntegration", back_populates="credential")


class Trader(Base):
    """Registered competition participant."""

    __tablename__ = "traders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    assignments = relationship("CredentialAssignment", back_populates="trader")
    performance = relationship(
        "PerformanceData", back_populates="trader", uselist=False
    )


class CredentialAssignment(Base):
    """Binds one credential to the trader who trades it."""

    __tablename__ = "credential_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    credential_id = Column(
        Integer, ForeignKey("trading_credentials.id"), nullable=False, unique=True
    )
    trader_id = Column(Integer, ForeignKey("traders.id"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    credential = relationship("TradingCredential", back_populates="assignment")
    trader = relationship("Trader", back_populates="assignments")


class PerformanceData(Base):
    """
    Current leaderboard standing for one trader.
    profit_percentage is always derived from current vs. starting balance.
    """

    __tablename__ = "performance_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trader_id = Column(Integer, ForeignKey("traders.id"), nullable=False, unique=True)
    starting_balance = Column(Float, nullable=False, default=1000.0)
    current_balance = Column(Float, nullable=False, default=1000.0)
    profit_percentage = Column(Float, nullable=False, default=0.0)
    data_source = Column(
        SQLEnum(PerformanceDataSource), default=PerformanceDataSource.REGISTRATION
    )
    last_updated = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    trader = relationship("Trader", back_populates="performance")

    @property
    def profit_amount(self) -> float:
        return (self.current_balance or 0.0) - (self.starting_balance or 0.0)

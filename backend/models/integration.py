"""
External Account Integrations
=============================

Links a trading credential to an account on an external performance
provider (MyFXBook, MT4/MT5 REST bridges, Forex Factory) and keeps an
append-only audit trail of every sync attempt.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    Enum as SQLEnum,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from . import Base

# =============================================================================
# ENUMS
# =============================================================================


class IntegrationProvider(enum.Enum):
    MYFXBOOK = "myfxbook"
    MT4 = "mt4"
    MT5 = "mt5"
    FOREX_FACTORY = "forex_factory"

    @property
    def slug(self) -> str:
        """URL form used by the HTTP surface (forex-factory, mt5, ...)."""
        return self.value.replace("_", "-")

    @property
    def label(self) -> str:
        return {
            IntegrationProvider.MYFXBOOK: "MyFXBook",
            IntegrationProvider.MT4: "MT4",
            IntegrationProvider.MT5: "MT5",
            IntegrationProvider.FOREX_FACTORY: "Forex Factory",
        }[self]

    @classmethod
    def from_slug(cls, slug: str) -> "IntegrationProvider":
        return cls(slug.strip().lower().replace("-", "_"))


class IntegrationSyncStatus(enum.Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SyncType(enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class SyncHistoryStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncHistoryStatus.SUCCESS, SyncHistoryStatus.ERROR)


class SyncDataSource(enum.Enum):
    LIVE = "live"
    FALLBACK = "fallback"


# =============================================================================
# INTEGRATION MODELS
# =============================================================================


class AccountIntegration(Base):
    """
    Binding between one credential and one external account.
    At most one active row per (provider, credential_id); deletes are soft.
    """

    __tablename__ = "account_integrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(SQLEnum(IntegrationProvider), nullable=False, index=True)
    credential_id = Column(
        Integer, ForeignKey("trading_credentials.id"), nullable=False, index=True
    )

    # Provider account reference
    account_id = Column(String(255), nullable=False)  # MyFXBook user, MT login, FF username
    api_token_encrypted = Column(Text)  # password / bearer token / api key
    server_endpoint = Column(String(500))  # MT4/MT5 REST bridge
    platform = Column(String(10))  # "mt4" | "mt5"
    system_id = Column(String(100))  # Forex Factory trade explorer system

    # Sync information
    sync_status = Column(
        SQLEnum(IntegrationSyncStatus),
        default=IntegrationSyncStatus.PENDING,
        nullable=False,
    )
    last_sync = Column(DateTime(timezone=True))
    last_error = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    # Relationships
    credential = relationship("TradingCredential", back_populates="integrations")
    sync_history = relationship(
        "SyncHistory",
        back_populates="integration",
        order_by="SyncHistory.id",
    )

    __table_args__ = (
        Index("idx_integrations_provider_credential", "provider", "credential_id"),
        Index("idx_integrations_provider_active", "provider", "is_active"),
    )

    @property
    def has_api_token(self) -> bool:
        return bool(self.api_token_encrypted)


class SyncHistory(Base):
    """
    One row per sync attempt. Created in_progress (or directly terminal for
    configuration errors) and frozen once it reaches success/error.
    """

    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    integration_id = Column(
        Integer, ForeignKey("account_integrations.id"), nullable=False, index=True
    )
    sync_type = Column(SQLEnum(SyncType), nullable=False, default=SyncType.MANUAL)
    status = Column(
        SQLEnum(SyncHistoryStatus), nullable=False, default=SyncHistoryStatus.PENDING
    )
    records_updated = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    data_source = Column(SQLEnum(SyncDataSource))
    synced_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True))

    integration = relationship("AccountIntegration", back_populates="sync_history")

    __table_args__ = (Index("idx_sync_history_integration_date", "integration_id", "synced_at"),)

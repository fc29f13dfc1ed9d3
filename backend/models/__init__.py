"""
FXComp Database Models
======================

Centralized model imports for the competition platform.
All database models are imported here for easy access.
"""

# Core Base
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Competition participants (owned by trader management, read/written by sync)
from .competition import (
    TradingCredential,
    Trader,
    CredentialAssignment,
    PerformanceData,
    PerformanceDataSource,
)

# External account integrations & sync audit trail
from .integration import (
    AccountIntegration,
    IntegrationProvider,
    IntegrationSyncStatus,
    SyncHistory,
    SyncHistoryStatus,
    SyncType,
    SyncDataSource,
)

__all__ = [
    "Base",
    "TradingCredential",
    "Trader",
    "CredentialAssignment",
    "PerformanceData",
    "PerformanceDataSource",
    "AccountIntegration",
    "IntegrationProvider",
    "IntegrationSyncStatus",
    "SyncHistory",
    "SyncHistoryStatus",
    "SyncType",
    "SyncDataSource",
]

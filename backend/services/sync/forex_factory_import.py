"""
Forex Factory Manual Import
===========================

Admin fallback for when profiles cannot be scraped: a CSV export of the
Forex Factory leaderboard is pasted in and matched to registered traders.

Expected columns (header row optional):
    rank,trader_name,trader_username,balance,profit_percent,trades
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.models import PerformanceDataSource, Trader
from backend.services.clients.base import coerce_number
from backend.services.sync.integration_store import IntegrationStore
from backend.services.sync.profit import profit_percentage

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("rank", "trader_name", "trader_username", "balance", "profit_percent", "trades")


@dataclass
class ForexFactoryTraderRow:
    rank: int
    trader_name: str
    trader_username: str
    balance: float
    profit_percent: Optional[float]
    trades: int


@dataclass
class ManualImportResult:
    updated: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.updated > 0


def parse_forex_factory_csv(csv_text: str) -> Tuple[List[ForexFactoryTraderRow], List[str]]:
    """Parse pasted CSV; bad lines are reported, not fatal."""
    rows: List[ForexFactoryTraderRow] = []
    warnings: List[str] = []
    reader = csv.reader(io.StringIO((csv_text or "").strip()))

    for line_no, parts in enumerate(reader, start=1):
        parts = [p.strip() for p in parts]
        if not any(parts):
            continue
        if line_no == 1 and parts[0].lower() == "rank":
            continue
        if len(parts) < len(CSV_COLUMNS):
            warnings.append(f"Line {line_no}: expected {len(CSV_COLUMNS)} columns, got {len(parts)}")
            continue

        rank = coerce_number(parts[0])
        balance = coerce_number(parts[3])
        trades = coerce_number(parts[5])
        if not parts[1] or not parts[2] or balance is None:
            warnings.append(f"Line {line_no}: missing trader name, username or balance")
            continue

        rows.append(
            ForexFactoryTraderRow(
                rank=int(rank) if rank is not None else line_no,
                trader_name=parts[1],
                trader_username=parts[2],
                balance=balance,
                profit_percent=coerce_number(parts[4]),
                trades=int(trades) if trades is not None else 0,
            )
        )

    logger.info(f"📄 Parsed {len(rows)} Forex Factory rows ({len(warnings)} skipped)")
    return rows, warnings


def match_trader(traders: List[Trader], row: ForexFactoryTraderRow) -> Optional[Trader]:
    name = row.trader_name.strip().lower()
    username = row.trader_username.strip().lower()

    for trader in traders:
        if trader.full_name.strip().lower() == name:
            return trader
    for trader in traders:
        if username and username in trader.full_name.lower():
            return trader
    for trader in traders:
        if name and name in trader.full_name.lower():
            return trader
    return None


class ForexFactoryManualImporter:
    def __init__(self, db: Session):
        self.db = db
        self.store = IntegrationStore(db)

    def import_csv(self, csv_text: str) -> ManualImportResult:
        rows, warnings = parse_forex_factory_csv(csv_text)
        result = ManualImportResult(errors=list(warnings))
        traders = self.db.query(Trader).all()

        for row in rows:
            trader = match_trader(traders, row)
            if trader is None:
                message = f'Trader "{row.trader_name}" not found in system'
                logger.warning(f"⚠️ {message}")
                result.errors.append(message)
                continue

            starting_balance = self.store.get_starting_balance(trader.id)
            pct = profit_percentage(row.balance, starting_balance)
            try:
                self.store.update_performance(
                    trader.id,
                    row.balance,
                    pct,
                    PerformanceDataSource.FOREX_FACTORY_MANUAL,
                    starting_balance=starting_balance,
                )
            except Exception as e:
                message = f"Failed to update {row.trader_name}: {e}"
                logger.error(f"❌ {message}")
                result.errors.append(message)
                continue
            result.updated += 1

        logger.info(
            f"✅ Forex Factory manual import: {result.updated}/{len(rows)} traders updated, "
            f"{len(result.errors)} errors"
        )
        return result

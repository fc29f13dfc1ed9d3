"""
Forex Factory Profile Scraper
=============================

Forex Factory has no stable account API, so performance figures are read
from the public member / trade-explorer pages. Candidate URLs are tried in
order; the first page that yields a positive balance (or a return % the
balance can be derived from) wins.

When every candidate fails, the adapter serves deterministic placeholder
numbers seeded from the username and tags them ``source=fallback`` so the
orchestrator and the history row can tell them apart from live data.
Set FOREX_FACTORY_ALLOW_FALLBACK=false to turn scrape failures into errors.
"""

from __future__ import annotations

import hashlib
import logging
import random
import re
from typing import List, Optional
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from backend.config import settings
from backend.models.integration import IntegrationProvider, SyncDataSource
from backend.services.clients.base import (
    AccountCredentials,
    AccountData,
    AccountDataAdapter,
    AccountDataError,
    AccountDataFormatError,
    ConnectionTestResult,
    ServiceUnreachableError,
    TransportError,
    coerce_number,
)
from backend.utils.sync_logging import SyncLogAdapter

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; FXCompSync/1.0)"

_NUMBER = r"([+-]?\$?\s?[\d,]+(?:\.\d+)?)"
BALANCE_PATTERN = re.compile(r"\bBalance\s*:?\s*" + _NUMBER, re.IGNORECASE)
RETURN_PATTERN = re.compile(r"\b(?:Return|Gain)\s*:?\s*" + _NUMBER + r"\s*%", re.IGNORECASE)
TRADES_PATTERN = re.compile(r"\bTrades\s*:?\s*(\d[\d,]*)", re.IGNORECASE)
WIN_RATE_PATTERN = re.compile(r"\bWin\s*(?:Rate|%)\s*:?\s*" + _NUMBER + r"\s*%", re.IGNORECASE)
DRAWDOWN_PATTERN = re.compile(r"\bDrawdown\s*:?\s*" + _NUMBER + r"\s*%", re.IGNORECASE)
CURRENCY_PATTERN = re.compile(r"\b(USD|EUR|GBP|JPY|AUD|CAD|CHF|NZD)\b")


def _match_number(pattern: re.Pattern, text: str) -> Optional[float]:
    match = pattern.search(text)
    if not match:
        return None
    return coerce_number(match.group(1).replace(" ", ""))


def page_text(html: str) -> str:
    text = BeautifulSoup(html, "html.parser").get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def parse_profile_page(html: str, username: str, starting_balance: float) -> Optional[AccountData]:
    """Extract figures from a profile page; None when no usable balance is present."""
    text = page_text(html)
    balance = _match_number(BALANCE_PATTERN, text)
    return_pct = _match_number(RETURN_PATTERN, text)

    if (balance is None or balance <= 0) and return_pct is not None:
        balance = round(starting_balance * (1 + return_pct / 100), 2)
    if balance is None or balance <= 0:
        return None

    trades = _match_number(TRADES_PATTERN, text)
    win_rate = _match_number(WIN_RATE_PATTERN, text)
    drawdown = _match_number(DRAWDOWN_PATTERN, text)
    currency = CURRENCY_PATTERN.search(text)

    return AccountData(
        account_id=username,
        balance=balance,
        currency=currency.group(1) if currency else "USD",
        equity=balance,
        profit=round(balance - starting_balance, 2),
        trades=int(trades) if trades is not None else None,
        win_rate=win_rate / 100 if win_rate is not None else None,
        drawdown=drawdown / 100 if drawdown is not None else None,
    )


def fallback_account_data(username: str, starting_balance: float) -> AccountData:
    """Placeholder figures; identical for the same username on every call."""
    seed = int(hashlib.sha256(username.encode("utf-8")).hexdigest()[:16], 16)
    rng = random.Random(seed)
    return_pct = rng.uniform(-15.0, 35.0)
    balance = round(starting_balance * (1 + return_pct / 100), 2)
    return AccountData(
        account_id=username,
        balance=balance,
        currency="USD",
        equity=balance,
        profit=round(balance - starting_balance, 2),
        trades=rng.randint(10, 150),
        win_rate=round(rng.uniform(0.35, 0.75), 2),
        drawdown=round(rng.uniform(0.02, 0.25), 2),
        source=SyncDataSource.FALLBACK,
    )


class ForexFactoryClient(AccountDataAdapter):
    provider = IntegrationProvider.FOREX_FACTORY
    required_fields = ("account_id",)
    connection_failure_hint = (
        "Could not fetch account data. Possible causes:\n"
        "1. Invalid Forex Factory account username\n"
        "2. Trade explorer is private or the system ID does not exist\n"
        "3. Forex Factory service is unavailable"
    )

    def __init__(
        self,
        base_url: Optional[str] = None,
        allow_fallback: Optional[bool] = None,
        starting_balance: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.FOREX_FACTORY_BASE_URL).rstrip("/")
        self.allow_fallback = (
            settings.FOREX_FACTORY_ALLOW_FALLBACK if allow_fallback is None else allow_fallback
        )
        self.starting_balance = starting_balance or settings.DEFAULT_STARTING_BALANCE

    def candidate_urls(self, credentials: AccountCredentials) -> List[str]:
        username = quote(credentials.account_id.strip(), safe="")
        urls = [f"{self.base_url}/{username}", f"{self.base_url}/{username}/trades"]
        if credentials.system_id and credentials.system_id.strip():
            urls.append(f"{self.base_url}/explorer/{quote(credentials.system_id.strip(), safe='')}")
        return urls

    async def _get_page(self, client: httpx.AsyncClient, url: str) -> str:
        try:
            response = await client.get(url)
        except httpx.RequestError as e:
            raise ServiceUnreachableError(f"Network error: {e}") from e
        if not response.is_success:
            raise TransportError(f"HTTP {response.status_code}")
        return response.text

    async def _fetch(self, credentials: AccountCredentials, log: SyncLogAdapter) -> AccountData:
        starting_balance = credentials.starting_balance or self.starting_balance
        failures = []
        async with self._client(headers={"User-Agent": USER_AGENT, "Accept": "text/html"}) as client:
            for url in self.candidate_urls(credentials):
                try:
                    html = await self._get_page(client, url)
                except AccountDataError as e:
                    failures.append(f"{url}: {e}")
                    continue
                data = parse_profile_page(html, credentials.account_id, starting_balance)
                if data is not None:
                    log.info(f"🔎 Scraped {url}")
                    return data
                failures.append(f"{url}: no performance figures found")

        summary = "; ".join(failures)
        if not self.allow_fallback:
            raise AccountDataFormatError(
                f"Could not read Forex Factory profile for {credentials.account_id}: {summary}"
            )
        log.warning(
            f"⚠️ Scrape failed for every candidate URL, serving placeholder data for "
            f"{credentials.account_id} ({summary})"
        )
        return fallback_account_data(credentials.account_id, starting_balance)

    def _connection_success(self, credentials: AccountCredentials, data: AccountData) -> ConnectionTestResult:
        if data.is_fallback:
            return ConnectionTestResult(
                False,
                f"Could not read performance figures for {credentials.account_id}. "
                "Syncs would use placeholder data until the profile is reachable.",
                account=data.to_dict(),
            )
        return super()._connection_success(credentials, data)

"""
Account Data Adapters - shared contract
=======================================

Every provider adapter fetches one external trading account and normalizes
the response into ``AccountData``. Failures never escape an adapter: they are
raised internally as ``AccountDataError`` subclasses and converted into a
``FetchResult`` carrying a human-readable message at the adapter boundary.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Tuple, Union

import httpx
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from backend.config import settings
from backend.models.integration import IntegrationProvider, SyncDataSource
from backend.services.security.credential_vault import mask_secret
from backend.utils.sync_logging import SyncLogAdapter, sync_logger

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================


class AccountDataError(Exception):
    """Base class for anything that prevents an adapter from returning data."""

    kind = "error"


class ConfigurationError(AccountDataError):
    """Required integration field missing; raised before any network call."""

    kind = "configuration"


class TransportError(AccountDataError):
    """Non-success HTTP status or unusable response body."""

    kind = "transport"


class WrongEndpointError(TransportError):
    """Endpoint answered with a web page instead of the API (or is a known UI URL)."""

    kind = "wrong_endpoint"


class CredentialsRejectedError(TransportError):
    kind = "credentials_rejected"


class ServiceUnreachableError(TransportError):
    kind = "service_unreachable"


class AccountDataFormatError(AccountDataError):
    """Response parsed but does not describe a usable account (e.g. zero balance)."""

    kind = "data"


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class AccountCredentials:
    """Decrypted, per-integration inputs handed to an adapter."""

    account_id: Optional[str] = None
    api_token: Optional[str] = None
    server_endpoint: Optional[str] = None
    platform: Optional[str] = None
    system_id: Optional[str] = None
    # Trader's competition start; scrapers derive balances from a return %
    starting_balance: Optional[float] = None

    def missing(self, required: Tuple[str, ...]) -> list:
        return [name for name in required if not (getattr(self, name) or "").strip()]


@dataclass
class AccountData:
    account_id: str
    balance: float
    currency: str = "USD"
    equity: Optional[float] = None
    profit: Optional[float] = None
    trades: Optional[int] = None
    win_rate: Optional[float] = None
    drawdown: Optional[float] = None
    source: SyncDataSource = SyncDataSource.LIVE

    @property
    def is_fallback(self) -> bool:
        return self.source == SyncDataSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


@dataclass
class FetchResult:
    data: Optional[AccountData] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    account: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


# =============================================================================
# RESPONSE SHAPES
# =============================================================================


def coerce_number(value: Any) -> Optional[float]:
    """Accept 1234.5, "1234.50", "1,234.50", "$1,234.50"; anything else is None.

    Non-finite values (NaN, inf) are treated as missing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        cleaned = value.replace(",", "").replace("$", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


class AccountPayload(BaseModel):
    """Flat account object as returned by MetaApi-style bridges and MyFXBook."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("accountId", "account_id", "id", "login"),
    )
    balance: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("balance", "currentBalance", "current_balance"),
    )
    equity: Optional[float] = None
    profit: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("profit", "total_profit", "totalProfit")
    )
    trades: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("trades", "total_trades", "tradingRecords"),
    )
    win_rate: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("win_rate", "winRate", "winrate")
    )
    drawdown: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("drawdown", "max_drawdown", "maxDrawdown")
    )
    currency: Optional[str] = None

    @field_validator("balance", "equity", "profit", "win_rate", "drawdown", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> Optional[float]:
        return coerce_number(value)

    @field_validator("trades", mode="before")
    @classmethod
    def _count(cls, value: Any) -> Optional[int]:
        number = coerce_number(value)
        return int(number) if number is not None else None

    @field_validator("account_id", mode="before")
    @classmethod
    def _identifier(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip().upper()
        return None

    def to_account_data(self, default_account_id: str, default_currency: str = "USD") -> AccountData:
        if self.balance is None or self.balance <= 0:
            raise AccountDataFormatError("Invalid balance in account data (missing or zero)")
        return AccountData(
            account_id=self.account_id or default_account_id,
            balance=self.balance,
            currency=self.currency or default_currency,
            equity=self.equity,
            profit=self.profit,
            trades=self.trades,
            win_rate=self.win_rate,
            drawdown=self.drawdown,
        )


class WrappedAccountPayload(BaseModel):
    """``{"account": {...}}`` envelope (MetaApi style)."""

    model_config = ConfigDict(extra="ignore")

    account: AccountPayload


ProviderPayload = Union[WrappedAccountPayload, AccountPayload]


class MyFXBookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool = False
    error: Optional[Union[bool, str]] = None
    message: Optional[str] = None
    account: Optional[Dict[str, Any]] = None

    @field_validator("success", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    def error_text(self) -> str:
        if isinstance(self.message, str) and self.message:
            return self.message
        if isinstance(self.error, str) and self.error:
            return self.error
        return "API returned error"


def parse_provider_payload(raw: Any) -> ProviderPayload:
    """Pick the known shape for a decoded JSON body; flat is the explicit fallback branch."""
    if not isinstance(raw, dict):
        raise AccountDataFormatError(
            f"Invalid account data format: expected a JSON object, got {type(raw).__name__}"
        )
    try:
        if isinstance(raw.get("account"), dict):
            return WrappedAccountPayload.model_validate(raw)
        return AccountPayload.model_validate(raw)
    except ValidationError as e:
        raise AccountDataFormatError(f"Invalid account data format: {e.error_count()} field error(s)") from e
    except (ValueError, OverflowError) as e:
        raise AccountDataFormatError(f"Invalid account data format: {e}") from e


def account_payload_from(raw: Any) -> AccountPayload:
    payload = parse_provider_payload(raw)
    if isinstance(payload, WrappedAccountPayload):
        return payload.account
    return payload


# =============================================================================
# ADAPTER BASE
# =============================================================================


class AccountDataAdapter:
    """
    Base adapter: credential validation, HTTP plumbing and the
    never-raise boundary. Subclasses implement ``_fetch``.
    """

    provider: IntegrationProvider
    required_fields: Tuple[str, ...] = ("account_id",)
    connection_failure_hint = "Could not fetch account data."

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds or settings.SYNC_REQUEST_TIMEOUT_SECONDS
        self.transport = transport

    @property
    def label(self) -> str:
        return self.provider.label

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self.transport,
            follow_redirects=True,
            **kwargs,
        )

    def missing_fields(self, credentials: AccountCredentials) -> list:
        return credentials.missing(self.required_fields)

    def validate_credentials(self, credentials: AccountCredentials) -> None:
        missing = self.missing_fields(credentials)
        if missing:
            readable = ", ".join(name.replace("_", " ") for name in missing)
            raise ConfigurationError(f"Missing required {self.label} configuration: {readable}")

    async def _fetch(self, credentials: AccountCredentials, log: SyncLogAdapter) -> AccountData:
        raise NotImplementedError

    async def fetch_account(
        self, credentials: AccountCredentials, log: Optional[SyncLogAdapter] = None
    ) -> FetchResult:
        log = (log or sync_logger(__name__)).bind(provider=self.provider.value)
        try:
            self.validate_credentials(credentials)
            log.info(
                f"📡 Fetching account {credentials.account_id} "
                f"(token: {mask_secret(credentials.api_token)})"
            )
            data = await self._fetch(credentials, log)
        except AccountDataError as e:
            log.error(f"❌ {self.label} fetch failed [{e.kind}]: {e}")
            return FetchResult(error=str(e), error_kind=e.kind)
        except httpx.HTTPError as e:
            log.error(f"❌ {self.label} transport failure: {e}")
            return FetchResult(
                error=f"Service unreachable: {e}", error_kind=ServiceUnreachableError.kind
            )
        log.info(f"✅ {self.label} balance={data.balance} {data.currency} source={data.source.value}")
        return FetchResult(data=data)

    async def fetch_account_data(
        self, credentials: AccountCredentials, log: Optional[SyncLogAdapter] = None
    ) -> Optional[AccountData]:
        """AccountData, or None on any failure."""
        return (await self.fetch_account(credentials, log)).data

    async def test_connection(
        self, credentials: AccountCredentials, log: Optional[SyncLogAdapter] = None
    ) -> ConnectionTestResult:
        """Probe the provider with unsaved credentials; never touches stored integrations."""
        result = await self.fetch_account(credentials, log)
        if not result.ok:
            if result.error_kind in (ConfigurationError.kind, WrongEndpointError.kind):
                return ConnectionTestResult(False, result.error or self.connection_failure_hint)
            return ConnectionTestResult(
                False, f"{self.connection_failure_hint}\nDetails: {result.error}"
            )
        return self._connection_success(credentials, result.data)

    def _connection_success(self, credentials: AccountCredentials, data: AccountData) -> ConnectionTestResult:
        return ConnectionTestResult(
            True,
            f"Successfully connected! Account {credentials.account_id} has balance: "
            f"{data.balance} {data.currency}",
            account=data.to_dict(),
        )

    async def _get_json(self, client: httpx.AsyncClient, url: str, **kwargs) -> Any:
        """GET a JSON document, classifying every failure mode."""
        try:
            response = await client.get(url, **kwargs)
        except httpx.TimeoutException as e:
            raise ServiceUnreachableError(
                f"{self.label} did not respond within {self.timeout_seconds:g}s"
            ) from e
        except httpx.RequestError as e:
            raise ServiceUnreachableError(f"Network error: {e}") from e

        body = response.text
        looks_html = body.lstrip().startswith("<")

        if not response.is_success:
            status = response.status_code
            if looks_html:
                raise WrongEndpointError(
                    f"HTTP {status} (likely wrong endpoint). Server returned HTML. "
                    "Check if the endpoint URL is correct."
                )
            if status in (401, 403):
                raise CredentialsRejectedError(
                    f"HTTP {status}: credentials rejected (token or password invalid or expired)"
                )
            if status >= 500:
                raise ServiceUnreachableError(f"HTTP {status}: {self.label} service unavailable")
            raise TransportError(f"HTTP {status}: {response.reason_phrase}")

        if looks_html:
            raise WrongEndpointError(
                "Invalid JSON response: server returned HTML (likely wrong endpoint, "
                f"unrecognized account id or expired credentials). Received: {body[:100]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise AccountDataFormatError(
                f"Invalid JSON response from {self.label}. Server returned: {body[:100]}"
            ) from e

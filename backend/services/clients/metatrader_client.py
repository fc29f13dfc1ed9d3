"""
MT4 / MT5 REST Bridge Clients
=============================

Bearer-token GET against a caller-supplied REST endpoint (MetaApi cloud,
broker REST APIs, self-hosted bridges). Response bodies are normalized from
either ``{"account": {...}}`` or a flat account object.
"""

import logging

from backend.models.integration import IntegrationProvider
from backend.services.clients.base import (
    AccountCredentials,
    AccountData,
    AccountDataAdapter,
    WrongEndpointError,
    account_payload_from,
)
from backend.utils.sync_logging import SyncLogAdapter

logger = logging.getLogger(__name__)

CONFIGURATION_PAGE_MARKER = "/configure-trading-account-credentials/"
CONFIGURATION_PAGE_MESSAGE = (
    "Invalid endpoint: You are using a MetaApi configuration page URL instead of the "
    "API endpoint. Use https://api.metaapi.cloud/v1/accounts instead."
)


def is_configuration_page(endpoint: str) -> bool:
    return CONFIGURATION_PAGE_MARKER in (endpoint or "")


class MetaTraderClient(AccountDataAdapter):
    required_fields = ("account_id", "api_token", "server_endpoint")
    default_platform = "mt5"

    def validate_credentials(self, credentials: AccountCredentials) -> None:
        super().validate_credentials(credentials)
        if is_configuration_page(credentials.server_endpoint):
            raise WrongEndpointError(CONFIGURATION_PAGE_MESSAGE)

    def build_account_url(self, endpoint: str, account_id: str) -> str:
        raise NotImplementedError

    async def _fetch(self, credentials: AccountCredentials, log: SyncLogAdapter) -> AccountData:
        url = self.build_account_url(credentials.server_endpoint.strip(), credentials.account_id.strip())
        platform = (credentials.platform or self.default_platform).lower()
        log.info(f"🌐 GET {url} ({platform.upper()})")

        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {credentials.api_token}",
        }
        async with self._client() as client:
            raw = await self._get_json(client, url, headers=headers)

        return account_payload_from(raw).to_account_data(default_account_id=credentials.account_id)


class MT4Client(MetaTraderClient):
    """MT4 bridges expose ``{endpoint}/accounts/{account_id}``; also serves MT5 via platform tag."""

    provider = IntegrationProvider.MT4
    default_platform = "mt4"
    connection_failure_hint = (
        "Could not fetch account data. Possible causes:\n"
        "1. Invalid MT4 account id\n"
        "2. API token is expired or invalid\n"
        "3. Server endpoint is unreachable"
    )

    def build_account_url(self, endpoint: str, account_id: str) -> str:
        return f"{endpoint.rstrip('/')}/accounts/{account_id}"


class MT5Client(MetaTraderClient):
    """
    MT5 endpoints either contain an ``{accountId}`` placeholder or are a
    collection URL the account id is appended to.
    """

    provider = IntegrationProvider.MT5
    connection_failure_hint = (
        "Could not fetch account data. Possible causes:\n"
        "1. Invalid Account ID for your MetaApi account\n"
        "2. API Token is expired or invalid\n"
        "3. MetaApi API is temporarily unavailable"
    )

    def build_account_url(self, endpoint: str, account_id: str) -> str:
        if "{accountId}" in endpoint:
            return endpoint.replace("{accountId}", account_id)
        if endpoint.endswith("/"):
            return f"{endpoint}{account_id}"
        return f"{endpoint}/{account_id}"

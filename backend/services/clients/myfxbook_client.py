"""
MyFXBook API Client
Fetches account balance/currency for a MyFXBook-tracked trading account.

API Documentation: https://www.myfxbook.com/api
"""

import logging
from typing import Optional

from pydantic import ValidationError

from backend.config import settings
from backend.models.integration import IntegrationProvider
from backend.services.clients.base import (
    AccountCredentials,
    AccountData,
    AccountDataAdapter,
    AccountDataFormatError,
    CredentialsRejectedError,
    MyFXBookEnvelope,
    account_payload_from,
)
from backend.utils.sync_logging import SyncLogAdapter

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ("success", "error", "message")


class MyFXBookClient(AccountDataAdapter):
    """
    Query-string authenticated client for ``/user/detail.json``.

    The account payload may come nested under ``account`` or flat in the
    envelope; both are accepted. ``{"success": false}`` is always a failure.
    """

    provider = IntegrationProvider.MYFXBOOK
    required_fields = ("account_id", "api_token")
    connection_failure_hint = (
        "Could not fetch account data from MyFXBook. Possible causes:\n"
        "1. Invalid MyFXBook account id or email\n"
        "2. Password is wrong or the account is private\n"
        "3. MyFXBook API is temporarily unavailable"
    )

    def __init__(self, api_base: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_base = (api_base or settings.MYFXBOOK_API_BASE).rstrip("/")

    async def _fetch(self, credentials: AccountCredentials, log: SyncLogAdapter) -> AccountData:
        url = f"{self.api_base}/user/detail.json"
        params = {"user": credentials.account_id, "password": credentials.api_token}

        async with self._client() as client:
            raw = await self._get_json(client, url, params=params, headers={"Accept": "application/json"})

        if not isinstance(raw, dict):
            raise AccountDataFormatError("Invalid MyFXBook response: expected a JSON object")
        try:
            envelope = MyFXBookEnvelope.model_validate(raw)
        except ValidationError as e:
            raise AccountDataFormatError(f"Invalid MyFXBook envelope: {e.error_count()} field error(s)") from e

        if not envelope.success:
            raise CredentialsRejectedError(f"MyFXBook API error: {envelope.error_text()}")

        if envelope.account is not None:
            payload = account_payload_from({"account": envelope.account})
        else:
            log.debug("MyFXBook response has no 'account' wrapper; reading flat payload")
            payload = account_payload_from({k: v for k, v in raw.items() if k not in ENVELOPE_KEYS})

        return payload.to_account_data(default_account_id=credentials.account_id)

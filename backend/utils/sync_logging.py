from __future__ import annotations

import logging
import uuid
from typing import Any, MutableMapping, Optional, Tuple


def new_request_id(incoming: Optional[str] = None) -> str:
    """Reuse a caller-supplied X-Request-ID or mint a short one."""
    if incoming and incoming.strip():
        return incoming.strip()[:64]
    return uuid.uuid4().hex[:12]


class SyncLogAdapter(logging.LoggerAdapter):
    """
    Logger carrying sync context explicitly.

    Context keys (provider, integration_id, request_id) are prefixed onto the
    message and attached to the record via ``extra`` so structured handlers
    can pick them up.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        context = {k: v for k, v in self.extra.items() if v is not None}
        extra = dict(kwargs.get("extra") or {})
        extra.update(context)
        kwargs["extra"] = extra
        if not context:
            return msg, kwargs
        prefix = " ".join(f"{k}={v}" for k, v in context.items())
        return f"[{prefix}] {msg}", kwargs

    def bind(self, **context: Any) -> "SyncLogAdapter":
        """Return a child adapter with additional context."""
        merged = dict(self.extra)
        merged.update(context)
        return SyncLogAdapter(self.logger, merged)


def sync_logger(name: str, **context: Any) -> SyncLogAdapter:
    return SyncLogAdapter(logging.getLogger(name), context)

import logging
from typing import Any, Optional

import httpx

from .base import ProviderUsage
from ..core.errors import ProviderConfigurationError, ProviderResponseError
from ..core.utils import utcnow

logger = logging.getLogger(__name__)

LIMIT_HEADER = "x-rapidapi-requests-limit"
REMAINING_HEADER = "x-rapidapi-requests-remaining"


def usage_from_headers(headers: httpx.Headers) -> Optional[ProviderUsage]:
    """Plan usage from RapidAPI's rate headers; None when absent or unparseable."""
    try:
        limit = int(headers[LIMIT_HEADER])
        remaining = int(headers[REMAINING_HEADER])
    except (KeyError, ValueError):
        return None
    return ProviderUsage(limit=limit, remaining=remaining, observed_at=utcnow().isoformat())


class RapidApiAdapter:
    """
    Shared plumbing for providers hosted on RapidAPI: key/host headers,
    status checking and JSON decoding. Transport errors (httpx.HTTPError)
    propagate so the executor can retry them.

    `last_usage` holds the plan usage reported with the latest response,
    error responses included, for the quota ledger to pick up.
    """
    name = "rapidapi"
    host = ""

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.last_usage: Optional[ProviderUsage] = None

    def _headers(self) -> dict:
        if not self.api_key:
            raise ProviderConfigurationError(self.name, "RAPIDAPI_KEY is not configured")
        return {"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.host}

    async def _get(self, path: str, params: dict) -> Any:
        headers = self._headers()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(f"{self.base_url}{path}", params=params, headers=headers)
            usage = usage_from_headers(r.headers)
            if usage is not None:
                self.last_usage = usage
                logger.debug(f"{self.name} plan usage {usage.used}/{usage.limit}",
                             extra={"provider": self.name})
            r.raise_for_status()
            try:
                return r.json()
            except ValueError as exc:
                raise ProviderResponseError(self.name, f"invalid JSON from {path}") from exc

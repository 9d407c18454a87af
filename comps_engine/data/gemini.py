import json
import logging
import re
from typing import List

import httpx

from .base import Comparable, PropertyIdentity
from .mock import MockDataset
from .normalize import comparable_from_raw, dig, keep_priced
from ..core.config import Settings, settings as default_settings
from ..core.errors import ProviderConfigurationError, ProviderResponseError

logger = logging.getLogger(__name__)

NAME = "gemini"

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class MockGemini(MockDataset):
    name = NAME
    quality = 70


def _prompt(identity: PropertyIdentity) -> str:
    return (
        f"Generate 6 comparable homes that recently sold near {identity.full_address}:\n"
        "- 3 unremodeled/as-is properties (lower prices)\n"
        "- 3 recently remodeled/renovated properties (higher prices)\n\n"
        "Include realistic sale dates from the past 6 months, approximate distances, "
        "and condition status.\n"
        "Return a valid JSON array only, like:\n"
        '[{"address":"123 Main St","price":825000,"sqft":1600,"saleDate":"2024-08-15",'
        '"distance":0.5,"condition":"remodeled"}]\n\n'
        'Condition should be either "unremodeled" or "remodeled".\n'
        "Do NOT include markdown or explanations."
    )


def parse_llm_comparables(text: str) -> list:
    """Strips markdown fences around the model's answer and decodes the JSON array."""
    cleaned = _FENCE.sub("", text or "").strip() or "[]"
    data = json.loads(cleaned)
    if isinstance(data, dict):
        data = data.get("comps") or data.get("comparables") or []
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of comparables")
    return data


class HttpGemini:
    """
    Google Generative Language API. Tier 3: comparables are generated by
    the model from the address alone, so they carry a lower quality score.
    """
    name = NAME
    quality = 70

    def __init__(self, api_key: str | None, base_url: str, model: str,
                 timeout: float = 15, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.transport = transport

    async def fetch_comparables(self, identity: PropertyIdentity) -> List[Comparable]:
        if not self.api_key:
            raise ProviderConfigurationError(self.name, "GEMINI_API_KEY is not configured")

        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        body = {"contents": [{"parts": [{"text": _prompt(identity)}]}]}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(url, params={"key": self.api_key}, json=body)
            r.raise_for_status()
            try:
                payload = r.json()
            except ValueError as exc:
                raise ProviderResponseError(self.name, "invalid JSON envelope") from exc

        if isinstance(payload, dict) and payload.get("error"):
            message = dig(payload, "error", "message") or "unknown error"
            raise ProviderResponseError(self.name, f"API error: {message}")

        candidates = payload.get("candidates") if isinstance(payload, dict) else None
        first = candidates[0] if isinstance(candidates, list) and candidates else {}
        parts = dig(first, "content", "parts")
        head = parts[0] if isinstance(parts, list) and parts else {}
        text = head.get("text") if isinstance(head, dict) else None
        logger.debug("Gemini raw response: %s", text, extra={"provider": self.name})
        try:
            raw = parse_llm_comparables(text or "[]")
        except ValueError as exc:
            raise ProviderResponseError(self.name, f"failed to parse response: {exc}") from exc

        return keep_priced(comparable_from_raw(item, self.name, self.quality) for item in raw)


def gemini_provider(cfg: Settings = default_settings,
                    transport: httpx.AsyncBaseTransport | None = None):
    if cfg.GEMINI_PROVIDER == "http":
        return HttpGemini(cfg.GEMINI_API_KEY, cfg.GEMINI_BASE_URL, cfg.GEMINI_MODEL,
                          cfg.HTTP_TIMEOUT_SECONDS, transport)
    return MockGemini()

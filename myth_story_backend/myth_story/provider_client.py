import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import (
    EmptyPrompt,
    MalformedUpstreamResponse,
    MissingCredential,
    NetworkFailure,
    UpstreamRejected,
    quota_message,
)

logger = logging.getLogger(__name__)


def mask_key(key: str) -> str:
    return f"{key[:5]}..." if key else ""


def error_message_from_body(text: str, default: str) -> str:
    """Pull a human readable message out of a provider error body, if it is JSON."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return default
    if not isinstance(data, dict):
        return default
    for field in ("message", "error", "detail"):
        value = data.get(field)
        if isinstance(value, dict):
            value = value.get("message")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


class ProviderClient:
    """One HTTP call per operation against a single generative provider.

    Subclasses set `provider_name` and call `_send`; every failure surfaces as a
    `ProviderError` subclass, never as a raw httpx exception.
    """

    provider_name = "Provider"

    def __init__(self, api_key: str = "", *, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or ""
        self.timeout = timeout
        self.transport = transport

    def _credential(self, override: Optional[str] = None) -> str:
        key = (override or self.api_key or "").strip()
        if not key:
            raise MissingCredential(f"{self.provider_name} API key is required")
        return key

    @staticmethod
    def _require_prompt(prompt: Optional[str], what: str = "Prompt") -> str:
        if not prompt or not prompt.strip():
            raise EmptyPrompt(f"{what} is required")
        return prompt.strip()

    def _auth_headers(self, key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _send(self, method: str, url: str, *, default_error: str, **kwargs) -> httpx.Response:
        try:
            async with self._http() as client:
                r = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.provider_name} request to {url} failed: {e}")
            raise NetworkFailure(f"Could not reach {self.provider_name}: {e}") from e

        logger.info(f"{self.provider_name} {method} {url} -> {r.status_code}")
        if r.status_code >= 400:
            logger.error(f"{self.provider_name} error {r.status_code}: {r.text[:500]}")
            if r.status_code == 429:
                message = quota_message(self.provider_name)
            else:
                message = error_message_from_body(r.text, default_error)
            raise UpstreamRejected(message, status_code=r.status_code, details=_body_or_text(r))
        return r

    def _json(self, r: httpx.Response) -> Dict[str, Any]:
        try:
            data = r.json()
        except ValueError as e:
            raise MalformedUpstreamResponse(f"{self.provider_name} returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse(f"{self.provider_name} returned an unexpected response")
        return data


def _body_or_text(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text or None

"""
Supabase Auth client for email magic links.
"""
import asyncio
import logging
from typing import Optional, Union

import httpx

from authgate.identity import normalize_email
from authgate.providers.results import Ok, Err, ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("message", "error_description", "msg"):
            if payload.get(key):
                return str(payload[key])

    return f"Supabase auth request failed ({response.status_code})"


def _email_from(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return normalize_email(value)
    return None


class SupabaseEmailProvider:
    """Sends and verifies magic links through the Supabase Auth REST API"""

    name = "supabase"

    def __init__(
        self,
        url: Optional[str],
        anon_key: Optional[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = (url or "").strip().rstrip("/")
        self.anon_key = (anon_key or "").strip()
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.url,
            timeout=httpx.Timeout(self.timeout),
            headers={"apikey": self.anon_key, "Content-Type": "application/json"},
            transport=self._transport
        )

    async def _request(
        self,
        method: str,
        path: str,
        verifying: bool = False,
        **kwargs
    ) -> Union[httpx.Response, Err]:
        if not self.configured:
            return Err(ProviderErrorKind.CONFIG, "Supabase auth environment is not configured")

        try:
            async with self._client() as client:
                # Overall deadline; httpx.Timeout only bounds each phase
                response = await asyncio.wait_for(client.request(method, path, **kwargs), timeout=self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.warning("Supabase %s %s timed out after %ss", method, path, self.timeout)
            return Err(ProviderErrorKind.UNAVAILABLE, "Email provider timed out")
        except httpx.HTTPError as e:
            logger.warning("Supabase %s %s failed: %s", method, path, e)
            return Err(ProviderErrorKind.UNAVAILABLE, "Email provider unreachable")

        if response.is_success:
            return response

        message = _error_message(response)
        logger.warning("Supabase %s %s returned %s: %s", method, path, response.status_code, message)

        lowered = message.lower()
        if response.status_code == 429 or "rate limit" in lowered or "too many" in lowered:
            return Err(ProviderErrorKind.RATE_LIMITED, message)
        if verifying and 400 <= response.status_code < 500:
            return Err(ProviderErrorKind.DENIED, message)
        return Err(ProviderErrorKind.REJECTED, message)

    def _verified_email(self, response: Union[httpx.Response, Err], *path) -> ProviderResult:
        if isinstance(response, Err):
            return response

        try:
            payload = response.json()
        except ValueError:
            return Err(ProviderErrorKind.REJECTED, "Unexpected response from email provider")

        value = payload
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None

        email = _email_from(value)
        if not email:
            return Err(ProviderErrorKind.REJECTED, "Unable to resolve verified email")
        return Ok(email=email)

    async def send_magic_link(self, email: str, redirect_url: str) -> ProviderResult:
        response = await self._request("POST", "/auth/v1/otp", json={
            "email": email,
            "create_user": True,
            "should_create_user": True,
            "email_redirect_to": redirect_url,
        })
        if isinstance(response, Err):
            return response
        return Ok()

    async def verify_magic_link(self, token_hash: str, link_type: str) -> ProviderResult:
        response = await self._request("POST", "/auth/v1/verify", verifying=True, json={
            "token_hash": token_hash,
            "type": link_type,
        })
        return self._verified_email(response, "user", "email")

    async def resolve_email_from_access_token(self, access_token: str) -> ProviderResult:
        response = await self._request(
            "GET",
            "/auth/v1/user",
            verifying=True,
            headers={"Authorization": f"Bearer {access_token}"}
        )
        return self._verified_email(response, "email")

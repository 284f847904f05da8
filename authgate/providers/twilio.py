"""
Twilio Verify client for SMS one-time codes.
"""
import asyncio
import logging
from typing import Optional, Union

import httpx

from authgate.providers.results import Ok, Err, ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

VERIFY_BASE_URL = "https://verify.twilio.com/v2"
DEFAULT_TIMEOUT_SECONDS = 10.0


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"Twilio request failed ({response.status_code})"


class TwilioVerifyProvider:
    """Sends and checks SMS codes through the Twilio Verify v2 REST API"""

    name = "twilio"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        service_sid: Optional[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        base_url: str = VERIFY_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.account_sid = (account_sid or "").strip()
        self.auth_token = (auth_token or "").strip()
        self.service_sid = (service_sid or "").strip()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.service_sid)

    async def _post(self, path: str, data: dict, checking: bool = False) -> Union[httpx.Response, Err]:
        if not self.configured:
            return Err(ProviderErrorKind.CONFIG, "Twilio not configured")

        url = f"{self.base_url}/Services/{self.service_sid}/{path}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                auth=(self.account_sid, self.auth_token),
                transport=self._transport
            ) as client:
                response = await asyncio.wait_for(client.post(url, data=data), timeout=self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.warning("Twilio %s timed out after %ss", path, self.timeout)
            return Err(ProviderErrorKind.UNAVAILABLE, "SMS provider timed out")
        except httpx.HTTPError as e:
            logger.warning("Twilio %s failed: %s", path, e)
            return Err(ProviderErrorKind.UNAVAILABLE, "SMS provider unreachable")

        if response.is_success:
            return response

        message = _error_message(response)
        logger.warning("Twilio %s returned %s: %s", path, response.status_code, message)

        if response.status_code in (401, 403):
            return Err(ProviderErrorKind.CONFIG, message)
        if response.status_code == 429:
            return Err(ProviderErrorKind.RATE_LIMITED, message)
        # Checks against an expired, approved or unknown verification 404
        if checking and 400 <= response.status_code < 500:
            return Err(ProviderErrorKind.DENIED, message)
        return Err(ProviderErrorKind.REJECTED, message)

    async def send_verification_code(self, phone: str) -> ProviderResult:
        response = await self._post("Verifications", {"To": phone, "Channel": "sms"})
        if isinstance(response, Err):
            return response
        return Ok()

    async def check_verification_code(self, phone: str, code: str) -> ProviderResult:
        response = await self._post("VerificationCheck", {"To": phone, "Code": code}, checking=True)
        if isinstance(response, Err):
            return response

        try:
            status = response.json().get("status")
        except (ValueError, AttributeError):
            return Err(ProviderErrorKind.REJECTED, "Unexpected response from SMS provider")

        if status != "approved":
            return Err(ProviderErrorKind.DENIED, "Invalid code")
        return Ok()

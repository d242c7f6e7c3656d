# phase_engine/gateway/payment_rail.py
"""
Payment rail - moves money to a member's external payout account.

PaymentRail is the interface the engine depends on; HttpPaymentRail talks
to a payout provider's HTTP API with aiohttp.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


class PaymentRailError(Exception):
    """Rail unreachable or returned an unusable response."""
    pass


@dataclass
class RailResult:
    """Outcome of a disbursement request."""
    success: bool
    externalReference: Optional[str] = None
    error: Optional[str] = None


class PaymentRail(ABC):
    """External payout rail."""

    @abstractmethod
    async def disburse(
            self,
            memberId: int,
            externalAccountId: str,
            amountCents: int,
            idempotencyKey: Optional[str] = None
    ) -> RailResult:
        """Send amountCents to the member's linked payout account."""

    @abstractmethod
    async def disconnect(self, memberId: int, externalAccountId: str) -> bool:
        """Unlink the member's payout account on the provider side."""


class HttpPaymentRail(PaymentRail):
    """Payout provider reached over HTTP with a bearer token."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30):
        """
        Initialize rail client.

        Args:
            base_url: Provider API root, e.g. https://payouts.example.com/v1
            api_key: Bearer token
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

        logger.info(f"HttpPaymentRail initialized: {self.base_url}")

    @classmethod
    def from_config(cls) -> "HttpPaymentRail":
        """Build rail client from Config."""
        from config import Config, ConfigurationError

        base_url = Config.get(Config.PAYMENT_RAIL_URL)
        if not base_url:
            raise ConfigurationError("PAYMENT_RAIL_URL is not configured")
        return cls(
            base_url=base_url,
            api_key=Config.get(Config.PAYMENT_RAIL_API_KEY) or "",
            timeout=Config.get(Config.PAYMENT_RAIL_TIMEOUT, 30)
        )

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def disburse(
            self,
            memberId: int,
            externalAccountId: str,
            amountCents: int,
            idempotencyKey: Optional[str] = None
    ) -> RailResult:
        """
        Request a payout to externalAccountId.

        Returns:
            RailResult; success=False when the provider rejected the payout

        Raises:
            PaymentRailError: Provider unreachable or malformed response
        """
        logger.info(f"Requesting payout of {amountCents} cents for member {memberId}")

        payload = {
            "memberId": memberId,
            "accountId": externalAccountId,
            "amountCents": amountCents,
            # Provider deduplicates retries of the same request
            "idempotencyKey": idempotencyKey or f"payout-{memberId}-{amountCents}",
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                        f"{self.base_url}/payouts",
                        json=payload,
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status in (200, 201):
                        try:
                            data = await response.json(content_type=None)
                        except ValueError as e:
                            raise PaymentRailError(f"Payout response is not JSON: {e}") from e
                        if not isinstance(data, dict):
                            raise PaymentRailError(f"Unexpected payout response: {data!r}")
                        reference = data.get("id") or data.get("reference")
                        if not reference:
                            raise PaymentRailError("Payout response has no reference")
                        logger.info(f"✅ Payout accepted for member {memberId}: {reference}")
                        return RailResult(success=True, externalReference=str(reference))

                    error_text = await response.text()
                    if 400 <= response.status < 500:
                        logger.warning(
                            f"Payout rejected for member {memberId}: "
                            f"{response.status} - {error_text}"
                        )
                        return RailResult(success=False, error=f"{response.status}: {error_text}")

                    raise PaymentRailError(f"Payout provider error {response.status}: {error_text}")

        except aiohttp.ClientError as e:
            logger.error(f"Payout provider unreachable for member {memberId}: {e}")
            raise PaymentRailError(str(e)) from e

    async def disconnect(self, memberId: int, externalAccountId: str) -> bool:
        """
        Unlink a payout account.

        Returns:
            True if the provider confirmed (or the account was already gone)
        """
        try:
            async with aiohttp.ClientSession() as session:
                async with session.delete(
                        f"{self.base_url}/accounts/{externalAccountId}",
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status in (200, 204, 404):
                        logger.info(f"Payout account disconnected for member {memberId}")
                        return True

                    error_text = await response.text()
                    raise PaymentRailError(f"Disconnect failed {response.status}: {error_text}")

        except aiohttp.ClientError as e:
            logger.error(f"Payout provider unreachable for member {memberId}: {e}")
            raise PaymentRailError(str(e)) from e

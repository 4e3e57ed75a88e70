# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Evidence sources backed by external identity authorities.

- ``GitHubOrgEvidenceSource``: organization record, member count and recent
  public events from the GitHub REST API
- ``StripeCustomerEvidenceSource``: customer record with tax ids, succeeded payment
  intents and active subscriptions from the Stripe API

Both talk HTTP through ``AuthorityClient``, which applies a bounded timeout
and retries only transient failures (network errors, 5xx).
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiohttp

from ..core.config import TrustSettings
from ..core.exceptions import (
    ConfigException,
    RateLimitError,
    ValidationException,
    VerifierAuthError,
    VerifierInfrastructureError,
)
from .models import OrgMetadata

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TIMEOUT = 10.0  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF = 0.5  # seconds, doubled per attempt

GITHUB_ACCEPT = "application/vnd.github+json"
LINK_LAST_PAGE = re.compile(r'[?&]page=(\d+)[^>]*>;\s*rel="last"')

STRIPE_CUSTOMER_PREFIX = "cus_"
STRIPE_PAGE_LIMIT = 100


@dataclass
class AuthorityResponse:
    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


# =============================================================================
# HTTP CLIENT
# =============================================================================


class AuthorityClient:
    """JSON-over-HTTP client for an identity authority.

    Status handling:
        2xx, 403 (non rate-limit) and 404 are returned to the caller.
        401 raises ``VerifierAuthError``.
        429 and rate-limit 403s raise ``RateLimitError``.
        5xx, timeouts and connection errors are retried, then raise
        ``VerifierInfrastructureError``.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff

    async def get(self, path: str, params: dict[str, Any] | None = None) -> AuthorityResponse:
        """GET ``path`` and return the decoded response."""
        last_error = ""
        for attempt in range(self.max_retries):
            try:
                response = await self._send_once(path, params)
            except TimeoutError:
                last_error = "Timeout"
            except aiohttp.ClientError as e:
                last_error = str(e) or type(e).__name__
            else:
                if response.status < 500:
                    return self._check_status(path, response)
                last_error = f"HTTP {response.status}"

            if attempt < self.max_retries - 1:
                delay = self.backoff * (2**attempt)
                logger.debug(f"Retrying {path} in {delay:.2f}s after: {last_error}")
                await asyncio.sleep(delay)

        logger.warning(f"Authority request {path} failed after {self.max_retries} attempts: {last_error}")
        raise VerifierInfrastructureError(f"Authority request failed: {last_error}")

    def _check_status(self, path: str, response: AuthorityResponse) -> AuthorityResponse:
        if response.status == 401:
            raise VerifierAuthError(f"Authority rejected credentials for {path}", status=401)
        if response.status == 429 or (response.status == 403 and self._is_rate_limited(response)):
            raise RateLimitError(
                "Authority rate limit exceeded",
                status=response.status,
                retry_after=self._retry_after(response),
            )
        if response.ok or response.status in (403, 404):
            return response
        raise VerifierInfrastructureError(
            f"Unexpected authority response for {path}: HTTP {response.status}",
            status=response.status,
        )

    @staticmethod
    def _is_rate_limited(response: AuthorityResponse) -> bool:
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        message = response.data.get("message", "") if isinstance(response.data, dict) else ""
        return "rate limit" in str(message).lower()

    @staticmethod
    def _retry_after(response: AuthorityResponse) -> float | None:
        value = response.headers.get("Retry-After")
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None

    async def _send_once(self, path: str, params: dict[str, Any] | None) -> AuthorityResponse:
        url = f"{self.base_url}/{path.lstrip('/')}"
        async with aiohttp.ClientSession(headers=self.headers) as session:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None
                return AuthorityResponse(
                    status=response.status,
                    data=data,
                    headers=dict(response.headers),
                )


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# =============================================================================
# GITHUB
# =============================================================================


class GitHubOrgEvidenceSource:
    """Evidence about a GitHub organization, referenced by its login."""

    def __init__(self, client: AuthorityClient, activity_page_size: int = 10):
        self.client = client
        self.activity_page_size = activity_page_size

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> GitHubOrgEvidenceSource:
        if not settings.registry_token:
            raise ConfigException("Registry API token is not configured", missing_vars=["FPCAL_REGISTRY_TOKEN"])
        client = AuthorityClient(
            settings.registry_api_url,
            headers={
                "Authorization": f"Bearer {settings.registry_token}",
                "Accept": GITHUB_ACCEPT,
            },
            timeout=settings.verifier_timeout_seconds,
            max_retries=settings.verifier_max_retries,
            backoff=settings.verifier_retry_backoff_seconds,
        )
        return cls(client)

    async def fetch_org_metadata(self, reference: str) -> OrgMetadata | None:
        org = await self.client.get(f"/orgs/{reference}")
        if org.status == 404 or not org.ok:
            return None

        data = org.data or {}
        public_repos = data.get("public_repos")
        members = await self._member_count(reference)
        last_activity = await self._last_activity(reference) if public_repos else None

        return OrgMetadata(
            reference_id=str(data["id"]) if data.get("id") is not None else None,
            created_at=_parse_iso(data.get("created_at")),
            member_or_activity_count=members,
            public_signal_count=public_repos,
            recent_activity_at=last_activity,
            extra={"login": data.get("login", reference)},
        )

    async def _member_count(self, login: str) -> int:
        response = await self.client.get(f"/orgs/{login}/members", params={"per_page": 1})
        # Private member list
        if response.status == 403 or not response.ok:
            return 0

        match = LINK_LAST_PAGE.search(response.headers.get("Link", ""))
        if match:
            return int(match.group(1))

        full = await self.client.get(f"/orgs/{login}/members", params={"per_page": 100})
        return len(full.data) if full.ok and isinstance(full.data, list) else 0

    async def _last_activity(self, login: str) -> datetime | None:
        response = await self.client.get(
            f"/orgs/{login}/events",
            params={"per_page": self.activity_page_size},
        )
        if not response.ok or not response.data:
            return None
        return _parse_iso(response.data[0].get("created_at"))


# =============================================================================
# STRIPE
# =============================================================================


class StripeCustomerEvidenceSource:
    """Evidence about a Stripe customer, referenced by its ``cus_`` id."""

    def __init__(self, client: AuthorityClient):
        self.client = client

    @classmethod
    def from_settings(cls, settings: TrustSettings) -> StripeCustomerEvidenceSource:
        if not settings.payment_api_key:
            raise ConfigException("Payment API key is not configured", missing_vars=["FPCAL_PAYMENT_API_KEY"])
        if not settings.payment_api_key.startswith("sk_"):
            raise ConfigException("Payment API key must be a secret key (starts with sk_)")
        client = AuthorityClient(
            settings.payment_api_url,
            headers={"Authorization": f"Bearer {settings.payment_api_key}"},
            timeout=settings.verifier_timeout_seconds,
            max_retries=settings.verifier_max_retries,
            backoff=settings.verifier_retry_backoff_seconds,
        )
        return cls(client)

    async def fetch_org_metadata(self, reference: str) -> OrgMetadata | None:
        if not reference.startswith(STRIPE_CUSTOMER_PREFIX):
            raise ValidationException(
                f"Invalid customer id format: {reference} (must start with '{STRIPE_CUSTOMER_PREFIX}')",
                field="reference",
                value=reference,
            )

        customer = await self.client.get(f"/customers/{reference}", params={"expand[]": "tax_ids"})
        if not customer.ok:
            return None
        data = customer.data or {}
        if data.get("deleted"):
            return None

        created = data.get("created")
        delinquent = data.get("delinquent")
        has_tax_ids = _has_tax_ids(data)
        metadata = data.get("metadata") or {}

        return OrgMetadata(
            reference_id=data.get("id", reference),
            created_at=datetime.fromtimestamp(created, UTC) if created is not None else None,
            member_or_activity_count=await self._successful_payments(reference),
            public_signal_count=None,
            recent_activity_at=None,
            in_good_standing=(not delinquent) if delinquent is not None else None,
            has_active_subscription=await self._has_active_subscription(reference),
            customer_type="company" if has_tax_ids else metadata.get("customer_type", "individual"),
            is_business_verified=has_tax_ids or metadata.get("business_verified") == "true",
        )

    async def _successful_payments(self, customer_id: str) -> int:
        response = await self.client.get(
            "/payment_intents",
            params={"customer": customer_id, "limit": STRIPE_PAGE_LIMIT},
        )
        if not response.ok:
            return 0
        intents = (response.data or {}).get("data", [])
        return sum(1 for pi in intents if pi.get("status") == "succeeded")

    async def _has_active_subscription(self, customer_id: str) -> bool | None:
        response = await self.client.get(
            "/subscriptions",
            params={"customer": customer_id, "status": "active", "limit": STRIPE_PAGE_LIMIT},
        )
        if not response.ok:
            return None
        return len((response.data or {}).get("data", [])) > 0


def _has_tax_ids(customer: dict[str, Any]) -> bool:
    """Whether the customer carries a registered tax id (requires ``expand[]=tax_ids``)."""
    tax_ids = customer.get("tax_ids")
    return isinstance(tax_ids, dict) and bool(tax_ids.get("data"))

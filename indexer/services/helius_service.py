"""Helius API client: webhook management and token price lookups."""

import logging
from typing import Optional, Dict, Any, List

import httpx

from indexer.core.config import settings
from indexer.core.exceptions import ProviderError, ValidationError
from indexer.models.job import JobType
from indexer.services.cache_service import cache_service

logger = logging.getLogger(__name__)

# Transaction types the provider should deliver for each job type
TRANSACTION_TYPES: Dict[JobType, List[str]] = {
    JobType.nft_bids: ["NFT_BID"],
    JobType.nft_prices: ["NFT_LISTING", "NFT_SALE"],
    JobType.token_borrowing: ["SWAP", "UNKNOWN"],
    JobType.token_prices: ["SWAP"],
}

# Configuration keys whose addresses feed the provider's account filter
ADDRESS_FIELDS: Dict[JobType, List[str]] = {
    JobType.nft_bids: ["collection_addresses", "marketplace_addresses"],
    JobType.nft_prices: ["collection_addresses", "marketplace_addresses"],
    JobType.token_borrowing: ["protocol_addresses"],
    JobType.token_prices: ["dex_addresses"],
}


def callback_url(job_type: JobType, job_id: int) -> str:
    """Ingress URL the provider calls for this job."""
    return f"{settings.WEBHOOK_BASE_URL.rstrip('/')}/api/webhooks/{job_type.value}/{job_id}"


class HeliusService:
    """Thin synchronous client for the Helius REST API.

    Every failure surfaces as ``ProviderError``; retrying is the caller's job.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.HELIUS_API_KEY
        self._base_url = (base_url or settings.HELIUS_API_URL).rstrip("/")
        self._timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._transport = transport

    @staticmethod
    def build_webhook_config(
        job_type: JobType, job_id: int, configuration: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Build the create-webhook payload for a job from the fixed mapping tables."""
        if job_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown job type: {job_type}")

        addresses: List[str] = []
        for field in ADDRESS_FIELDS[job_type]:
            for address in configuration.get(field) or []:
                if address not in addresses:
                    addresses.append(address)

        config = {
            "webhookURL": callback_url(job_type, job_id),
            "transactionTypes": list(TRANSACTION_TYPES[job_type]),
            "accountAddresses": addresses,
            "webhookType": "enhanced",
            "txnStatus": "confirmed",
        }
        if settings.WEBHOOK_AUTH_HEADER:
            config["authHeader"] = settings.WEBHOOK_AUTH_HEADER
        return config

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        params = {"api-key": self._api_key, **kwargs.pop("params", {})}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.request(method, f"{self._base_url}{path}", params=params, **kwargs)
        except httpx.TransportError as e:
            raise ProviderError(f"Helius {method} {path} failed: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Helius {method} {path} failed: {type(e).__name__}", transient=False
            ) from e

        if resp.status_code >= 400:
            transient = resp.status_code == 429 or resp.status_code >= 500
            raise ProviderError(
                f"Helius {method} {path} returned {resp.status_code}: {resp.text[:200]}",
                transient=transient,
                provider_status=resp.status_code,
            )
        return resp

    @staticmethod
    def _json_object(resp: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderError(f"Helius returned a non-JSON {what} response", transient=False) from e
        if not isinstance(body, dict):
            raise ProviderError(f"Helius returned a malformed {what} response", transient=False)
        return body

    def create_webhook(self, config: Dict[str, Any]) -> str:
        """Create a webhook and return the provider-issued id."""
        resp = self._request("POST", "/webhooks", json=config)
        webhook_id = self._json_object(resp, "webhook").get("webhookID")
        if not isinstance(webhook_id, str) or not webhook_id:
            raise ProviderError("Helius response did not include a webhookID", transient=False)
        logger.info("Created Helius webhook %s for %s", webhook_id, config["webhookURL"])
        return webhook_id

    def delete_webhook(self, webhook_id: str) -> None:
        """Delete a webhook. A webhook that is already gone counts as deleted."""
        try:
            self._request("DELETE", f"/webhooks/{webhook_id}")
        except ProviderError as e:
            if e.provider_status == 404:
                logger.info("Helius webhook %s already removed", webhook_id)
                return
            raise
        logger.info("Deleted Helius webhook %s", webhook_id)

    def get_token_price(self, mint_address: str) -> Optional[float]:
        """Return the USD price for a mint, or None when the provider has none."""
        cache_key = f"token_price:{mint_address}"
        cached = cache_service.get_json(cache_key)
        if isinstance(cached, dict):
            return cached.get("price")

        resp = self._request("GET", "/token-price", params={"address": mint_address})
        price = self._json_object(resp, "token price").get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            price = None
        cache_service.set_json(cache_key, {"price": price}, settings.PRICE_CACHE_TTL_SECONDS)
        return price


helius_service = HeliusService()

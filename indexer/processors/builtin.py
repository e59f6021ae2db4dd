"""Built-in processors: NFT bids, NFT prices, token borrowing, token prices."""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from indexer.core.exceptions import ProviderError, ValidationError
from indexer.models.job import IndexingJob, JobType
from indexer.processors.base import EventProcessor, Write, build_upsert
from indexer.processors.extractors import (
    LAMPORTS_PER_SOL,
    extract_bid,
    extract_listing,
    extract_pool,
    extract_reserve,
    extract_sale_mint,
)
from indexer.services.helius_service import helius_service

logger = logging.getLogger(__name__)


class NftBidsProcessor(EventProcessor):
    """Upserts marketplace bids keyed on (marketplace, bid_id)."""

    job_type = JobType.nft_bids
    transaction_types = ("NFT_BID",)
    label = "NFT bid transactions"

    COLUMNS = (
        "marketplace", "auction_house", "token_address", "token_mint", "buyer", "price",
        "token_size", "expiry", "bid_id", "created_at", "updated_at",
    )

    def build_writes(self, job: IndexingJob, tx: Dict[str, Any]) -> List[Write]:
        row = extract_bid(tx)
        if row is None:
            return []
        now = self.now()
        row.update(created_at=now, updated_at=now)
        sql = build_upsert(job.target_table, self.COLUMNS, ("marketplace", "bid_id"), ("price", "updated_at"))
        return [(sql, row)]


class NftPricesProcessor(EventProcessor):
    """Tracks active listings keyed on (marketplace, listing_id).

    A sale deletes every listing row for the sold mint.
    """

    job_type = JobType.nft_prices
    transaction_types = ("NFT_LISTING", "NFT_SALE")
    label = "NFT price transactions"

    COLUMNS = (
        "marketplace", "token_address", "token_mint", "collection_address", "price_lamports",
        "price_usd", "seller", "listing_id", "created_at", "updated_at",
    )

    def __init__(self, db: Session, price_lookup: Optional[Callable[[str], Optional[float]]] = None, **kwargs):
        super().__init__(db, **kwargs)
        self.price_lookup = price_lookup or helius_service.get_token_price
        self._prices: Dict[str, Optional[float]] = {}

    def _usd_price(self, payment_mint: str, amount: Any) -> Optional[float]:
        """USD value of a listing, or None when the lookup fails."""
        if payment_mint not in self._prices:
            try:
                self._prices[payment_mint] = self.price_lookup(payment_mint)
            except (ProviderError, ValueError, TypeError) as e:
                logger.warning("Failed to get USD price for %s: %s", payment_mint, e)
                self._prices[payment_mint] = None
        price = self._prices[payment_mint]
        if not price:
            return None
        try:
            return round(float(amount) / LAMPORTS_PER_SOL * float(price), 2)
        except (TypeError, ValueError):
            return None

    def build_writes(self, job: IndexingJob, tx: Dict[str, Any]) -> List[Write]:
        if tx.get("type") == "NFT_SALE":
            mint = extract_sale_mint(tx)
            if mint is None:
                return []
            return [(f"DELETE FROM {job.target_table} WHERE token_mint = :token_mint", {"token_mint": mint})]

        row = extract_listing(tx)
        if row is None:
            return []
        payment_mint = row.pop("_payment_mint")
        if (job.configuration or {}).get("include_usd_prices"):
            row["price_usd"] = self._usd_price(payment_mint, row["price_lamports"])
        now = self.now()
        row.update(created_at=now, updated_at=now)
        sql = build_upsert(
            job.target_table, self.COLUMNS, ("marketplace", "listing_id"),
            ("price_lamports", "price_usd", "updated_at"),
        )
        return [(sql, row)]


class TokenBorrowingProcessor(EventProcessor):
    """Upserts lending reserve state keyed on (protocol, reserve_address)."""

    job_type = JobType.token_borrowing
    transaction_types = ("SWAP", "UNKNOWN", "LENDING_POOL_UPDATE")
    label = "token borrowing reserve updates"

    COLUMNS = (
        "protocol", "reserve_address", "token_mint", "token_symbol", "available_amount",
        "borrow_apy", "ltv_ratio", "liquidation_threshold", "liquidation_penalty", "updated_at",
    )
    UPDATED = (
        "available_amount", "borrow_apy", "ltv_ratio", "liquidation_threshold",
        "liquidation_penalty", "updated_at",
    )

    def build_writes(self, job: IndexingJob, tx: Dict[str, Any]) -> List[Write]:
        config = job.configuration or {}
        row = extract_reserve(
            tx, config.get("protocol_addresses") or [], config.get("reserve_addresses") or []
        )
        if row is None:
            return []
        row["updated_at"] = self.now()
        sql = build_upsert(job.target_table, self.COLUMNS, ("protocol", "reserve_address"), self.UPDATED)
        return [(sql, row)]


class TokenPricesProcessor(EventProcessor):
    """Upserts DEX pool prices keyed on (dex, pool_address)."""

    job_type = JobType.token_prices
    transaction_types = ("SWAP",)
    label = "token price updates"

    COLUMNS = (
        "token_mint", "token_symbol", "dex", "pool_address", "price_usd", "volume_24h",
        "liquidity_usd", "updated_at",
    )

    def build_writes(self, job: IndexingJob, tx: Dict[str, Any]) -> List[Write]:
        row = extract_pool(tx)
        if row is None:
            return []
        row["updated_at"] = self.now()
        sql = build_upsert(
            job.target_table, self.COLUMNS, ("dex", "pool_address"),
            ("price_usd", "volume_24h", "liquidity_usd", "updated_at"),
        )
        return [(sql, row)]


# Processor registry
PROCESSOR_REGISTRY: Dict[JobType, type] = {
    JobType.nft_bids: NftBidsProcessor,
    JobType.nft_prices: NftPricesProcessor,
    JobType.token_borrowing: TokenBorrowingProcessor,
    JobType.token_prices: TokenPricesProcessor,
}


def get_processor(job_type: Any, db: Session, **kwargs) -> EventProcessor:
    """Get a processor instance for a job type."""
    try:
        cls = PROCESSOR_REGISTRY[JobType(job_type)]
    except (ValueError, KeyError):
        raise ValidationError(f"Unknown job type: {job_type}")
    return cls(db, **kwargs)

"""Pure extraction of typed rows from provider transaction payloads.

Every extractor returns ``None`` for a transaction whose required fields are
missing or of the wrong type, so one malformed transaction is skipped instead
of failing the batch.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

# Wrapped SOL, the default payment mint for marketplace listings
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 10 ** 9


def transactions_from_payload(payload: Any) -> List[Dict[str, Any]]:
    """Accept ``{"transactions": [...]}`` or the provider's bare array."""
    if isinstance(payload, dict):
        payload = payload.get("transactions")
    if not isinstance(payload, list):
        return []
    return [tx for tx in payload if isinstance(tx, dict)]


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _text(value: Any) -> Optional[str]:
    """A non-empty string, or None for any other value."""
    return value if isinstance(value, str) and value else None


def _number(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Unix seconds, unix milliseconds or ISO-8601 to a naive UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > 10 ** 11 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
    except (ValueError, OverflowError, OSError):
        return None
    return None


def extract_bid(tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """NFT_BID → nft_bids row (without timestamps)."""
    bid = _dig(tx, "events", "nft", "bid")
    if not isinstance(bid, dict):
        return None
    nft, marketplace = bid.get("nft"), bid.get("marketplace")
    if not isinstance(nft, dict) or not isinstance(marketplace, dict):
        return None
    address, mint = _text(nft.get("address")), _text(nft.get("mint"))
    buyer, amount = _text(bid.get("buyer")), _number(bid.get("amount"))
    if not address or not mint or not buyer or amount is None:
        return None

    return {
        "marketplace": _text(marketplace.get("name")) or "unknown",
        "auction_house": _text(marketplace.get("programId")),
        "token_address": address,
        "token_mint": mint,
        "buyer": buyer,
        "price": amount,
        "token_size": 1 if nft.get("tokenStandard") == "NonFungible" else None,
        "expiry": parse_timestamp(bid.get("expiry")),
        "bid_id": _text(bid.get("bidId")) or f"{mint}-{buyer}-{amount}",
    }


def extract_listing(tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """NFT_LISTING → nft_prices row with ``price_usd`` unset.

    The listing's payment mint is returned under ``_payment_mint`` for the
    optional USD lookup and must be popped before writing.
    """
    listing = _dig(tx, "events", "nft", "listing")
    if not isinstance(listing, dict):
        return None
    nft, marketplace = listing.get("nft"), listing.get("marketplace")
    if not isinstance(nft, dict) or not isinstance(marketplace, dict):
        return None
    address, mint = _text(nft.get("address")), _text(nft.get("mint"))
    seller, amount = _text(listing.get("seller")), _number(listing.get("amount"))
    if not address or not mint or not seller or amount is None:
        return None

    return {
        "marketplace": _text(marketplace.get("name")) or "unknown",
        "token_address": address,
        "token_mint": mint,
        "collection_address": _text(_dig(nft, "collection", "address")),
        "price_lamports": amount,
        "price_usd": None,
        "seller": seller,
        "listing_id": _text(listing.get("listingId")) or f"{mint}-{seller}-{amount}",
        "_payment_mint": _text(marketplace.get("paymentMint")) or WRAPPED_SOL_MINT,
    }


def extract_sale_mint(tx: Dict[str, Any]) -> Optional[str]:
    """NFT_SALE → the mint whose active listing the sale removes."""
    sale = _dig(tx, "events", "nft", "sale")
    if not isinstance(sale, dict) or not isinstance(sale.get("marketplace"), dict):
        return None
    return _text(_dig(sale, "nft", "mint"))


def extract_reserve(
    tx: Dict[str, Any], protocols: Sequence[str], reserve_addresses: Sequence[str]
) -> Optional[Dict[str, Any]]:
    """Lending reserve update → token_borrowing row.

    Empty ``protocols`` / ``reserve_addresses`` filters match everything.
    """
    reserve = _dig(tx, "events", "lending", "reserve")
    if not isinstance(reserve, dict):
        return None
    protocol, address = _text(reserve.get("protocol")), _text(reserve.get("address"))
    token_mint, available = _text(reserve.get("tokenMint")), _number(reserve.get("availableAmount"))
    if not protocol or not address or not token_mint or available is None:
        return None
    if protocols and protocol not in protocols and reserve.get("programId") not in protocols:
        return None
    if reserve_addresses and address not in reserve_addresses:
        return None

    return {
        "protocol": protocol,
        "reserve_address": address,
        "token_mint": token_mint,
        "token_symbol": _text(reserve.get("tokenSymbol")) or "UNKNOWN",
        "available_amount": available,
        "borrow_apy": _number(reserve.get("borrowApy")),
        "ltv_ratio": _number(reserve.get("ltvRatio")),
        "liquidation_threshold": _number(reserve.get("liquidationThreshold")),
        "liquidation_penalty": _number(reserve.get("liquidationPenalty")),
    }


def extract_pool(tx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """SWAP → token_prices row.

    Pool data sits either directly under ``events.swap`` or one level deeper
    under ``events.swap.swap``.
    """
    swap = _dig(tx, "events", "swap")
    if isinstance(swap, dict) and isinstance(swap.get("swap"), dict):
        swap = swap["swap"]
    if not isinstance(swap, dict):
        return None
    pool_address, token_mint = _text(swap.get("poolAddress")), _text(swap.get("tokenMint"))
    if not pool_address or not token_mint:
        return None

    return {
        "token_mint": token_mint,
        "token_symbol": _text(swap.get("tokenSymbol")) or "UNKNOWN",
        "dex": _text(swap.get("dex")) or "unknown",
        "pool_address": pool_address,
        "price_usd": _number(swap.get("priceUsd")) or 0,
        "volume_24h": _number(swap.get("volume24h")) or 0,
        "liquidity_usd": _number(swap.get("liquidityUsd")) or 0,
    }

"""Target schema provisioner: CREATE TABLE IF NOT EXISTS per job type.

Table names are interpolated into SQL, not bound, because Postgres cannot
parameterize identifiers. The target table lives in the tenant's own
database, so a hostile name can only damage the tenant's own schema; names
are still restricted to plain (optionally schema-qualified) identifiers and
are otherwise used verbatim, unquoted.
"""

import logging
import re
from typing import Dict

from sqlalchemy import text

from indexer.connectors.base import ConnectorBase
from indexer.core.exceptions import ValidationError
from indexer.models.job import JobType

logger = logging.getLogger(__name__)

TABLE_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{0,62}(\.[A-Za-z_][A-Za-z0-9_]{0,62})?")

# Each template carries the UNIQUE constraint its upsert conflicts on
TABLE_SCHEMAS: Dict[JobType, str] = {
    JobType.nft_bids: """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            marketplace VARCHAR(100) NOT NULL,
            auction_house VARCHAR(100),
            token_address VARCHAR(44) NOT NULL,
            token_mint VARCHAR(44) NOT NULL,
            buyer VARCHAR(44) NOT NULL,
            price BIGINT NOT NULL,
            token_size INTEGER,
            expiry TIMESTAMP,
            bid_id VARCHAR(200) NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (marketplace, bid_id)
        )
    """,
    JobType.nft_prices: """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            marketplace VARCHAR(100) NOT NULL,
            token_address VARCHAR(44) NOT NULL,
            token_mint VARCHAR(44) NOT NULL,
            collection_address VARCHAR(44),
            price_lamports BIGINT NOT NULL,
            price_usd DECIMAL(15,2),
            seller VARCHAR(44) NOT NULL,
            listing_id VARCHAR(200) NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (marketplace, listing_id)
        )
    """,
    JobType.token_borrowing: """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            protocol VARCHAR(100) NOT NULL,
            reserve_address VARCHAR(44) NOT NULL,
            token_mint VARCHAR(44) NOT NULL,
            token_symbol VARCHAR(20),
            available_amount BIGINT NOT NULL,
            borrow_apy DECIMAL(5,2),
            ltv_ratio DECIMAL(5,2),
            liquidation_threshold DECIMAL(5,2),
            liquidation_penalty DECIMAL(5,2),
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (protocol, reserve_address)
        )
    """,
    JobType.token_prices: """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            token_mint VARCHAR(44) NOT NULL,
            token_symbol VARCHAR(20),
            dex VARCHAR(100) NOT NULL,
            pool_address VARCHAR(44) NOT NULL,
            price_usd DECIMAL(15,2) NOT NULL,
            volume_24h DECIMAL(15,2),
            liquidity_usd DECIMAL(15,2),
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (dex, pool_address)
        )
    """,
}


def validate_table_name(target_table: str) -> str:
    """Return the name unchanged if it is a plain identifier, else raise."""
    if not isinstance(target_table, str) or not TABLE_NAME_RE.fullmatch(target_table):
        raise ValidationError(
            "Invalid target_table: use letters, digits and underscores, "
            "optionally prefixed by a schema name and a dot"
        )
    return target_table


def ensure_table(connector: ConnectorBase, job_type: JobType, target_table: str) -> None:
    """Create the job type's target table if it does not exist. Safe to repeat."""
    try:
        ddl = TABLE_SCHEMAS[JobType(job_type)]
    except (ValueError, KeyError):
        raise ValidationError(f"Unknown job type: {job_type}")
    table = validate_table_name(target_table)
    with connector.begin() as conn:
        conn.execute(text(ddl.format(table=table)))
    logger.debug("Ensured target table %s for %s", table, job_type)

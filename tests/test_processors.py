"""Event processors writing into a SQLite stand-in for the tenant database."""

from datetime import datetime

import httpx
import pytest
from sqlalchemy import text

from indexer.core.crypto import get_vault
from indexer.core.exceptions import NotFoundError, PayloadError, ProcessingError, ProviderError, ValidationError
from indexer.models import DatabaseConnection, IndexingJob, JobLog, JobStatus, JobType, LogLevel
from indexer.processors.builtin import (
    NftBidsProcessor,
    NftPricesProcessor,
    TokenBorrowingProcessor,
    TokenPricesProcessor,
    get_processor,
)
from indexer.services.helius_service import HeliusService
from conftest import SqliteConnector
from payloads import bid_tx, listing_tx, reserve_tx, sale_tx, swap_tx

T0 = datetime(2024, 1, 1, 12, 0, 0)
T1 = datetime(2024, 1, 1, 12, 5, 0)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def seed_job(db):
    def _seed(job_type, configuration=None, target_table="events", status=JobStatus.active):
        connection = DatabaseConnection(
            owner_id=1, name="tenant", host="db.tenant.example", port=5432, username="indexer",
            password_encrypted=get_vault().encrypt("secret"), database_name="chain", ssl=False,
        )
        db.add(connection)
        db.commit()
        job = IndexingJob(
            owner_id=1, db_connection_id=connection.id, job_type=job_type,
            configuration=configuration or {}, target_table=target_table, status=status,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        return job
    return _seed


def rows(engine, sql):
    with engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(text(sql))]


def logs_for(db, job_id):
    db.expire_all()
    return db.query(JobLog).filter(JobLog.job_id == job_id).order_by(JobLog.id).all()


# ---------------------------------------------------------------------------
# NFT bids
# ---------------------------------------------------------------------------

class TestNftBids:
    def test_writes_and_logs_summary(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        processor = NftBidsProcessor(db, connector_factory=tenant_factory, now=Clock())
        result = processor.process(job.id, {"transactions": [bid_tx(), {"type": "SWAP"}]})

        assert result == {"success": True, "processedCount": 1}
        stored = rows(tenant_engine, "SELECT marketplace, bid_id, price, token_size FROM events")
        assert stored == [{"marketplace": "magic_eden", "bid_id": "bid-1", "price": 1_500_000_000, "token_size": 1}]

        entry = logs_for(db, job.id)[-1]
        assert entry.log_level == LogLevel.info
        assert entry.details == {"processedCount": 1, "totalTransactions": 2}

    def test_redelivery_is_idempotent(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        payload = {"transactions": [bid_tx("bid-1"), bid_tx("bid-2", buyer="Buyer2")]}
        processor = NftBidsProcessor(db, connector_factory=tenant_factory, now=Clock())
        processor.process(job.id, payload)
        processor.process(job.id, payload)

        assert rows(tenant_engine, "SELECT COUNT(*) AS n FROM events") == [{"n": 2}]

    def test_update_changes_price_keeps_row(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        clock = Clock()
        processor = NftBidsProcessor(db, connector_factory=tenant_factory, now=clock)
        processor.process(job.id, [bid_tx(amount=100)])
        clock.now = T1
        processor.process(job.id, [bid_tx(amount=250)])

        stored = rows(tenant_engine, "SELECT price, created_at, updated_at FROM events")
        assert len(stored) == 1
        assert stored[0]["price"] == 250
        assert stored[0]["created_at"] != stored[0]["updated_at"]

    def test_malformed_transaction_skipped(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        broken = bid_tx("bid-broken")
        del broken["events"]["nft"]["bid"]["buyer"]
        result = NftBidsProcessor(db, connector_factory=tenant_factory, now=Clock()).process(
            job.id, {"transactions": [broken, bid_tx("bid-ok")]}
        )
        assert result["processedCount"] == 1
        assert rows(tenant_engine, "SELECT bid_id FROM events") == [{"bid_id": "bid-ok"}]

    def test_empty_payload(self, db, seed_job, tenant_factory):
        job = seed_job(JobType.nft_bids)
        result = NftBidsProcessor(db, connector_factory=tenant_factory).process(job.id, {"transactions": []})
        assert result["processedCount"] == 0

    def test_schema_qualified_table(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids, target_table="main.bids")
        NftBidsProcessor(db, connector_factory=tenant_factory, now=Clock()).process(job.id, [bid_tx()])
        assert rows(tenant_engine, "SELECT COUNT(*) AS n FROM bids") == [{"n": 1}]


# ---------------------------------------------------------------------------
# NFT prices
# ---------------------------------------------------------------------------

class TestNftPrices:
    def test_listing_then_sale_removes_listing(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_prices)
        processor = NftPricesProcessor(db, connector_factory=tenant_factory, now=Clock())
        processor.process(job.id, [listing_tx("Mint1"), listing_tx("Mint2", listing_id="list-2")])
        assert rows(tenant_engine, "SELECT COUNT(*) AS n FROM events") == [{"n": 2}]

        processor.process(job.id, [sale_tx("Mint1")])
        assert rows(tenant_engine, "SELECT token_mint FROM events") == [{"token_mint": "Mint2"}]

    def test_sale_of_unlisted_mint_is_harmless(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_prices)
        result = NftPricesProcessor(db, connector_factory=tenant_factory).process(job.id, [sale_tx("Nope")])
        assert result["success"] is True
        assert rows(tenant_engine, "SELECT COUNT(*) AS n FROM events") == [{"n": 0}]

    def test_usd_price_only_when_enabled(self, db, seed_job, tenant_factory, tenant_engine):
        lookups = []

        def price_lookup(mint):
            lookups.append(mint)
            return 150.0

        job = seed_job(JobType.nft_prices, {"include_usd_prices": False})
        NftPricesProcessor(db, price_lookup=price_lookup, connector_factory=tenant_factory).process(
            job.id, [listing_tx()]
        )
        assert lookups == []
        assert rows(tenant_engine, "SELECT price_usd FROM events") == [{"price_usd": None}]

    def test_usd_price_computed_and_cached_per_batch(self, db, seed_job, tenant_factory, tenant_engine):
        lookups = []

        def price_lookup(mint):
            lookups.append(mint)
            return 150.0

        job = seed_job(JobType.nft_prices, {"include_usd_prices": True})
        NftPricesProcessor(db, price_lookup=price_lookup, connector_factory=tenant_factory).process(
            job.id, [listing_tx("Mint1"), listing_tx("Mint2", listing_id="list-2")]
        )
        assert len(lookups) == 1
        prices = [r["price_usd"] for r in rows(tenant_engine, "SELECT price_usd FROM events")]
        assert prices == [300, 300]

    def test_price_lookup_failure_stores_null(self, db, seed_job, tenant_factory, tenant_engine):
        def price_lookup(mint):
            raise ProviderError("price service down")

        job = seed_job(JobType.nft_prices, {"include_usd_prices": True})
        result = NftPricesProcessor(db, price_lookup=price_lookup, connector_factory=tenant_factory).process(
            job.id, [listing_tx()]
        )
        assert result["processedCount"] == 1
        assert rows(tenant_engine, "SELECT price_usd FROM events") == [{"price_usd": None}]


# ---------------------------------------------------------------------------
# Token borrowing and token prices
# ---------------------------------------------------------------------------

class TestTokenBorrowing:
    def test_filters_and_upserts(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.token_borrowing, {"protocol_addresses": ["solend"]})
        processor = TokenBorrowingProcessor(db, connector_factory=tenant_factory, now=Clock())
        result = processor.process(job.id, [
            reserve_tx(available=100),
            reserve_tx(protocol="marginfi"),
            reserve_tx(available=200, tx_type="UNKNOWN"),
        ])
        assert result["processedCount"] == 2

        stored = rows(tenant_engine, "SELECT protocol, available_amount FROM events")
        assert stored == [{"protocol": "solend", "available_amount": 200}]


class TestTokenPrices:
    def test_latest_price_wins(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.token_prices)
        processor = TokenPricesProcessor(db, connector_factory=tenant_factory, now=Clock())
        processor.process(job.id, [swap_tx(price=150.25), swap_tx(price=151.5, nested=False)])

        stored = rows(tenant_engine, "SELECT dex, pool_address, price_usd FROM events")
        assert stored == [{"dex": "raydium", "pool_address": "Pool1", "price_usd": 151.5}]

    def test_pools_on_different_dexes_are_separate(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.token_prices)
        TokenPricesProcessor(db, connector_factory=tenant_factory).process(
            job.id, [swap_tx(dex="raydium"), swap_tx(dex="orca")]
        )
        assert rows(tenant_engine, "SELECT COUNT(*) AS n FROM events") == [{"n": 2}]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

class TestFailures:
    def test_unknown_job(self, db, tenant_factory):
        with pytest.raises(NotFoundError):
            NftBidsProcessor(db, connector_factory=tenant_factory).process(999, [bid_tx()])

    def test_job_type_mismatch_logged(self, db, seed_job, tenant_factory):
        job = seed_job(JobType.nft_bids)
        with pytest.raises(ValidationError):
            TokenPricesProcessor(db, connector_factory=tenant_factory).process(job.id, [swap_tx()])
        assert logs_for(db, job.id)[-1].log_level == LogLevel.error

    def test_unreachable_tenant_raises_processing_error(self, db, seed_job, tmp_path):
        job = seed_job(JobType.nft_bids)
        missing = str(tmp_path / "no-such-dir" / "tenant.db")
        processor = NftBidsProcessor(db, connector_factory=lambda _type="postgres": SqliteConnector(missing))

        with pytest.raises(ProcessingError):
            processor.process(job.id, [bid_tx()])

        entries = logs_for(db, job.id)
        assert len(entries) == 1
        assert entries[0].log_level == LogLevel.error
        assert entries[0].message == "Error processing NFT bid transactions"

    def test_missing_connection(self, db, seed_job, tenant_factory):
        job = seed_job(JobType.nft_bids)
        job.db_connection_id = None
        db.commit()
        with pytest.raises(NotFoundError):
            NftBidsProcessor(db, connector_factory=tenant_factory).process(job.id, [bid_tx()])

    @pytest.mark.parametrize("status", [JobStatus.failed, JobStatus.completed])
    def test_terminal_job_drops_payload(self, db, seed_job, tenant_factory, status):
        job = seed_job(JobType.nft_bids, status=status)
        result = NftBidsProcessor(db, connector_factory=tenant_factory).process(job.id, [bid_tx()])
        assert result["skipped"] is True
        assert logs_for(db, job.id) == []


def test_registry_covers_every_job_type(db):
    for job_type in JobType:
        assert get_processor(job_type.value, db).job_type == job_type


def test_registry_rejects_unknown_type(db):
    with pytest.raises(ValidationError):
        get_processor("nft_sales", db)


# ---------------------------------------------------------------------------
# Redelivery of identical payloads
# ---------------------------------------------------------------------------

class TestReplay:
    def replay(self, processor_cls, db, job, payload, tenant_factory, **kwargs):
        clock = Clock()
        processor = processor_cls(db, connector_factory=tenant_factory, now=clock, **kwargs)
        first = processor.process(job.id, payload)
        clock.now = T1
        second = processor.process(job.id, payload)
        assert first == second

    def test_token_prices(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.token_prices)
        self.replay(TokenPricesProcessor, db, job, [swap_tx(price=150.25)], tenant_factory)

        stored = rows(tenant_engine, "SELECT pool_address, price_usd, volume_24h, updated_at FROM events")
        assert stored == [
            {"pool_address": "Pool1", "price_usd": 150.25, "volume_24h": 1000, "updated_at": str(T1)}
        ]

    def test_token_borrowing(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.token_borrowing)
        self.replay(TokenBorrowingProcessor, db, job, [reserve_tx(available=500)], tenant_factory)

        stored = rows(tenant_engine, "SELECT reserve_address, available_amount, borrow_apy, updated_at FROM events")
        assert stored == [
            {"reserve_address": "Reserve1", "available_amount": 500, "borrow_apy": 4.5, "updated_at": str(T1)}
        ]

    def test_nft_price_listing(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_prices)
        self.replay(NftPricesProcessor, db, job, {"transactions": [listing_tx()]}, tenant_factory)

        stored = rows(tenant_engine, "SELECT listing_id, price_lamports, created_at, updated_at FROM events")
        assert stored == [{
            "listing_id": "list-1",
            "price_lamports": 2_000_000_000,
            "created_at": str(T0),
            "updated_at": str(T1),
        }]


# ---------------------------------------------------------------------------
# Records the tenant cannot store
# ---------------------------------------------------------------------------

class UnbindableBidsProcessor(NftBidsProcessor):
    """Passes one transaction's buyer through as an object the driver cannot bind."""

    def build_writes(self, job, tx):
        writes = super().build_writes(job, tx)
        if tx.get("signature") != "unbindable":
            return writes
        return [(sql, {**params, "buyer": {"not": "bindable"}}) for sql, params in writes]


class ExplodingBidsProcessor(NftBidsProcessor):
    def build_writes(self, job, tx):
        raise RuntimeError("boom")


class TestBadRecords:
    def test_wrongly_typed_field_does_not_sink_batch(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        broken = bid_tx("bid-broken", amount={"lamports": 5})
        result = NftBidsProcessor(db, connector_factory=tenant_factory, now=Clock()).process(
            job.id, {"transactions": [broken, bid_tx("bid-ok")]}
        )

        assert result == {"success": True, "processedCount": 1}
        assert rows(tenant_engine, "SELECT bid_id FROM events") == [{"bid_id": "bid-ok"}]
        assert logs_for(db, job.id)[-1].log_level == LogLevel.info

    def test_record_rejected_at_bind_time_is_skipped(self, db, seed_job, tenant_factory, tenant_engine):
        job = seed_job(JobType.nft_bids)
        unbindable = bid_tx("bid-bad")
        unbindable["signature"] = "unbindable"
        result = UnbindableBidsProcessor(db, connector_factory=tenant_factory, now=Clock()).process(
            job.id, [unbindable, bid_tx("bid-ok")]
        )

        assert result["processedCount"] == 1
        assert rows(tenant_engine, "SELECT bid_id FROM events") == [{"bid_id": "bid-ok"}]

    def test_malformed_price_reply_stores_null_usd(self, db, seed_job, tenant_factory, tenant_engine):
        client = HeliusService(
            api_key="test-key",
            base_url="https://helius.test/v0",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
        )
        job = seed_job(JobType.nft_prices, {"include_usd_prices": True})
        result = NftPricesProcessor(
            db, price_lookup=client.get_token_price, connector_factory=tenant_factory
        ).process(job.id, [listing_tx()])

        assert result["processedCount"] == 1
        assert rows(tenant_engine, "SELECT price_usd FROM events") == [{"price_usd": None}]
        assert logs_for(db, job.id)[-1].log_level == LogLevel.info

    def test_unexpected_error_is_logged_and_not_retryable(self, db, seed_job, tenant_factory):
        job = seed_job(JobType.nft_bids)
        with pytest.raises(PayloadError):
            ExplodingBidsProcessor(db, connector_factory=tenant_factory).process(job.id, [bid_tx()])

        entries = logs_for(db, job.id)
        assert len(entries) == 1
        assert entries[0].log_level == LogLevel.error
        assert entries[0].details == {"error": "RuntimeError: boom"}

"""SQLite persistence for agents, listings, offers, transactions and proofs.

All blocking sqlite3 work runs in worker threads via ``asyncio.to_thread``
so the event loop is never stalled.  Multi-step work goes through
:meth:`MarketStore.transaction`, which holds one connection for the
duration of the block:

    async with store.transaction() as s:
        listing = await s.get_listing(listing_id)
        ...
        await s.insert_transaction(tx)

Write transactions open with ``BEGIN IMMEDIATE`` so concurrent writers are
serialised by SQLite itself.  On top of that a partial unique index allows
at most one PENDING transaction per (buyer, listing).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator

from agentmarket.market.models import (
    Agent,
    AgentRole,
    Listing,
    ListingStatus,
    Offer,
    OfferDecision,
    OfferStatus,
    Policy,
    ProofRecord,
    Transaction,
    TransactionStatus,
)
from agentmarket.protocol.errors import DuplicatePurchaseError

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS agents (
        id TEXT PRIMARY KEY,
        role TEXT NOT NULL,
        wallet_address TEXT,
        policy TEXT NOT NULL,
        total_transactions INTEGER NOT NULL DEFAULT 0,
        total_volume TEXT NOT NULL DEFAULT '0',
        created_at REAL NOT NULL,
        last_activity REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS listings (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        tags TEXT NOT NULL DEFAULT '[]',
        price TEXT NOT NULL,
        status TEXT NOT NULL,
        seller_agent_id TEXT NOT NULL REFERENCES agents(id),
        buyer_agent_id TEXT,
        created_at REAL NOT NULL,
        sold_at REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offers (
        id TEXT PRIMARY KEY,
        listing_id TEXT NOT NULL REFERENCES listings(id),
        buyer_agent_id TEXT NOT NULL,
        seller_agent_id TEXT NOT NULL,
        price TEXT NOT NULL,
        decision TEXT NOT NULL,
        counter_price TEXT,
        status TEXT NOT NULL,
        round INTEGER NOT NULL DEFAULT 1,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        from_agent_id TEXT NOT NULL REFERENCES agents(id),
        to_agent_id TEXT NOT NULL REFERENCES agents(id),
        listing_id TEXT NOT NULL REFERENCES listings(id),
        amount TEXT NOT NULL,
        asset TEXT NOT NULL,
        source_chain INTEGER NOT NULL,
        destination_chain INTEGER NOT NULL,
        status TEXT NOT NULL,
        settlement_ref TEXT NOT NULL UNIQUE,
        explorer_url TEXT NOT NULL DEFAULT '',
        error_message TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        confirmed_at REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proofs (
        id TEXT PRIMARY KEY,
        agent_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        signature TEXT NOT NULL,
        signer_id TEXT NOT NULL,
        policy_hash TEXT NOT NULL,
        payload TEXT NOT NULL,
        issued_at INTEGER NOT NULL,
        transaction_id TEXT REFERENCES transactions(id)
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_tx_one_pending ON transactions(from_agent_id, listing_id) WHERE status = 'PENDING'",
    "CREATE INDEX IF NOT EXISTS idx_tx_status_created ON transactions(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_tx_from ON transactions(from_agent_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_listings_status ON listings(status)",
    "CREATE INDEX IF NOT EXISTS idx_proofs_tx ON proofs(transaction_id)",
)


def _init_db(conn: sqlite3.Connection) -> None:
    for statement in _SCHEMA:
        conn.execute(statement)


# ── Row mapping ──────────────────────────────────────────────────────────────

def _agent(row: sqlite3.Row) -> Agent:
    return Agent(
        id=row["id"],
        role=AgentRole(row["role"]),
        wallet_address=row["wallet_address"],
        policy=Policy.model_validate_json(row["policy"]),
        total_transactions=row["total_transactions"],
        total_volume=Decimal(row["total_volume"]),
        created_at=row["created_at"],
        last_activity=row["last_activity"],
    )


def _listing(row: sqlite3.Row) -> Listing:
    return Listing(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        tags=json.loads(row["tags"]),
        price=Decimal(row["price"]),
        status=ListingStatus(row["status"]),
        seller_agent_id=row["seller_agent_id"],
        buyer_agent_id=row["buyer_agent_id"],
        created_at=row["created_at"],
        sold_at=row["sold_at"],
    )


def _offer(row: sqlite3.Row) -> Offer:
    return Offer(
        id=row["id"],
        listing_id=row["listing_id"],
        buyer_agent_id=row["buyer_agent_id"],
        seller_agent_id=row["seller_agent_id"],
        price=Decimal(row["price"]),
        decision=OfferDecision(row["decision"]),
        counter_price=Decimal(row["counter_price"]) if row["counter_price"] is not None else None,
        status=OfferStatus(row["status"]),
        round=row["round"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        from_agent_id=row["from_agent_id"],
        to_agent_id=row["to_agent_id"],
        listing_id=row["listing_id"],
        amount=Decimal(row["amount"]),
        asset=row["asset"],
        source_chain=row["source_chain"],
        destination_chain=row["destination_chain"],
        status=TransactionStatus(row["status"]),
        settlement_ref=row["settlement_ref"],
        explorer_url=row["explorer_url"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        confirmed_at=row["confirmed_at"],
    )


def _proof(row: sqlite3.Row) -> ProofRecord:
    return ProofRecord(
        id=row["id"],
        agent_id=row["agent_id"],
        kind=row["kind"],
        signature=row["signature"],
        signer_id=row["signer_id"],
        policy_hash=row["policy_hash"],
        payload=json.loads(row["payload"]),
        issued_at=row["issued_at"],
        transaction_id=row["transaction_id"],
    )


# ── Session ──────────────────────────────────────────────────────────────────

class StoreSession:
    """One connection inside one SQLite transaction.

    Not safe for concurrent use; each coroutine opens its own session.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    async def _one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        def _query():
            return self._conn.execute(sql, params).fetchone()

        return await asyncio.to_thread(_query)

    async def _all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        def _query():
            return self._conn.execute(sql, params).fetchall()

        return await asyncio.to_thread(_query)

    async def _write(self, sql: str, params: tuple = ()) -> int:
        def _exec():
            return self._conn.execute(sql, params).rowcount

        return await asyncio.to_thread(_exec)

    # ── Agents ───────────────────────────────────────────────────────────

    async def get_agent(self, agent_id: str) -> Agent | None:
        row = await self._one("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return _agent(row) if row else None

    async def get_agent_by_address(self, address: str) -> Agent | None:
        row = await self._one("SELECT * FROM agents WHERE lower(wallet_address) = ?", (address.lower(),))
        return _agent(row) if row else None

    async def insert_agent(self, agent: Agent) -> None:
        await self._write(
            "INSERT INTO agents (id, role, wallet_address, policy, total_transactions, total_volume, created_at, last_activity) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                agent.id,
                agent.role.value,
                agent.wallet_address,
                agent.policy.model_dump_json(),
                agent.total_transactions,
                str(agent.total_volume),
                agent.created_at,
                agent.last_activity,
            ),
        )

    async def update_agent(self, agent: Agent) -> None:
        await self._write(
            "UPDATE agents SET role = ?, wallet_address = ?, policy = ?, total_transactions = ?, "
            "total_volume = ?, last_activity = ? WHERE id = ?",
            (
                agent.role.value,
                agent.wallet_address,
                agent.policy.model_dump_json(),
                agent.total_transactions,
                str(agent.total_volume),
                agent.last_activity,
                agent.id,
            ),
        )

    # ── Listings ─────────────────────────────────────────────────────────

    async def get_listing(self, listing_id: str) -> Listing | None:
        row = await self._one("SELECT * FROM listings WHERE id = ?", (listing_id,))
        return _listing(row) if row else None

    async def insert_listing(self, listing: Listing) -> None:
        await self._write(
            "INSERT INTO listings (id, title, description, category, tags, price, status, seller_agent_id, "
            "buyer_agent_id, created_at, sold_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                listing.id,
                listing.title,
                listing.description,
                listing.category,
                json.dumps(listing.tags),
                str(listing.price),
                listing.status.value,
                listing.seller_agent_id,
                listing.buyer_agent_id,
                listing.created_at,
                listing.sold_at,
            ),
        )

    async def update_listing(self, listing: Listing) -> None:
        await self._write(
            "UPDATE listings SET title = ?, description = ?, category = ?, tags = ?, price = ?, status = ?, "
            "buyer_agent_id = ?, sold_at = ? WHERE id = ?",
            (
                listing.title,
                listing.description,
                listing.category,
                json.dumps(listing.tags),
                str(listing.price),
                listing.status.value,
                listing.buyer_agent_id,
                listing.sold_at,
                listing.id,
            ),
        )

    async def list_listings(self, status: ListingStatus | None = None) -> list[Listing]:
        if status is None:
            rows = await self._all("SELECT * FROM listings ORDER BY created_at DESC")
        else:
            rows = await self._all(
                "SELECT * FROM listings WHERE status = ? ORDER BY created_at DESC", (status.value,)
            )
        return [_listing(r) for r in rows]

    async def page_listings(
        self,
        status: ListingStatus | None = None,
        category: str | None = None,
        seller_agent_id: str | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Listing], int]:
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if seller_agent_id:
            clauses.append("seller_agent_id = ?")
            params.append(seller_agent_id)
        if search:
            clauses.append("(instr(lower(title), ?) > 0 OR instr(lower(description), ?) > 0)")
            params.extend([search.lower(), search.lower()])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._all(
            f"SELECT * FROM listings {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        count = await self._one(f"SELECT COUNT(*) FROM listings {where}", tuple(params))
        return [_listing(r) for r in rows], int(count[0]) if count else 0

    async def seller_counts(self, agent_id: str) -> dict[str, int]:
        listings = await self._one("SELECT COUNT(*) FROM listings WHERE seller_agent_id = ?", (agent_id,))
        sales = await self._one(
            "SELECT COUNT(*) FROM transactions WHERE to_agent_id = ? AND status = ?",
            (agent_id, TransactionStatus.CONFIRMED.value),
        )
        return {
            "totalListings": int(listings[0]) if listings else 0,
            "totalSales": int(sales[0]) if sales else 0,
        }

    # ── Offers ───────────────────────────────────────────────────────────

    async def get_offer(self, offer_id: str) -> Offer | None:
        row = await self._one("SELECT * FROM offers WHERE id = ?", (offer_id,))
        return _offer(row) if row else None

    async def insert_offer(self, offer: Offer) -> None:
        await self._write(
            "INSERT INTO offers (id, listing_id, buyer_agent_id, seller_agent_id, price, decision, counter_price, "
            "status, round, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                offer.id,
                offer.listing_id,
                offer.buyer_agent_id,
                offer.seller_agent_id,
                str(offer.price),
                offer.decision.value,
                str(offer.counter_price) if offer.counter_price is not None else None,
                offer.status.value,
                offer.round,
                offer.created_at,
                offer.updated_at,
            ),
        )

    async def update_offer(self, offer: Offer) -> None:
        await self._write(
            "UPDATE offers SET price = ?, decision = ?, counter_price = ?, status = ?, round = ?, updated_at = ? "
            "WHERE id = ?",
            (
                str(offer.price),
                offer.decision.value,
                str(offer.counter_price) if offer.counter_price is not None else None,
                offer.status.value,
                offer.round,
                offer.updated_at,
                offer.id,
            ),
        )

    # ── Transactions ─────────────────────────────────────────────────────

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        row = await self._one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        return _transaction(row) if row else None

    async def get_transaction_by_ref(self, settlement_ref: str) -> Transaction | None:
        row = await self._one("SELECT * FROM transactions WHERE settlement_ref = ?", (settlement_ref,))
        return _transaction(row) if row else None

    async def find_pending_transaction(self, buyer_agent_id: str, listing_id: str) -> Transaction | None:
        row = await self._one(
            "SELECT * FROM transactions WHERE from_agent_id = ? AND listing_id = ? AND status = ?",
            (buyer_agent_id, listing_id, TransactionStatus.PENDING.value),
        )
        return _transaction(row) if row else None

    async def insert_transaction(self, tx: Transaction) -> None:
        try:
            await self._write(
                "INSERT INTO transactions (id, from_agent_id, to_agent_id, listing_id, amount, asset, source_chain, "
                "destination_chain, status, settlement_ref, explorer_url, error_message, created_at, updated_at, "
                "confirmed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    tx.id,
                    tx.from_agent_id,
                    tx.to_agent_id,
                    tx.listing_id,
                    str(tx.amount),
                    tx.asset,
                    tx.source_chain,
                    tx.destination_chain,
                    tx.status.value,
                    tx.settlement_ref,
                    tx.explorer_url,
                    tx.error_message,
                    tx.created_at,
                    tx.updated_at,
                    tx.confirmed_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "idx_tx_one_pending" in str(exc) or "from_agent_id, transactions.listing_id" in str(exc):
                raise DuplicatePurchaseError(
                    "Purchase already in progress for this listing",
                    data={"listingId": tx.listing_id},
                ) from exc
            raise

    async def update_transaction(self, tx: Transaction) -> None:
        await self._write(
            "UPDATE transactions SET status = ?, settlement_ref = ?, explorer_url = ?, error_message = ?, "
            "updated_at = ?, confirmed_at = ? WHERE id = ?",
            (
                tx.status.value,
                tx.settlement_ref,
                tx.explorer_url,
                tx.error_message,
                tx.updated_at,
                tx.confirmed_at,
                tx.id,
            ),
        )

    async def list_transactions(
        self,
        agent_id: str | None = None,
        status: TransactionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        clauses: list[str] = []
        params: list[Any] = []
        if agent_id:
            clauses.append("(from_agent_id = ? OR to_agent_id = ?)")
            params.extend([agent_id, agent_id])
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._all(
            f"SELECT * FROM transactions {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        count = await self._one(f"SELECT COUNT(*) FROM transactions {where}", tuple(params))
        return [_transaction(r) for r in rows], int(count[0]) if count else 0

    async def list_pending_transactions(self, created_before: float) -> list[Transaction]:
        rows = await self._all(
            "SELECT * FROM transactions WHERE status = ? AND created_at < ? ORDER BY created_at",
            (TransactionStatus.PENDING.value, created_before),
        )
        return [_transaction(r) for r in rows]

    async def sent_transactions(self, agent_id: str, limit: int = 10) -> list[Transaction]:
        rows = await self._all(
            "SELECT * FROM transactions WHERE from_agent_id = ? ORDER BY created_at DESC LIMIT ?",
            (agent_id, limit),
        )
        return [_transaction(r) for r in rows]

    async def spent_since(self, agent_id: str, since: float) -> Decimal:
        """Sum of outgoing amounts since *since* that have not failed."""
        rows = await self._all(
            "SELECT amount FROM transactions WHERE from_agent_id = ? AND status != ? AND created_at >= ?",
            (agent_id, TransactionStatus.FAILED.value, since),
        )
        return sum((Decimal(r["amount"]) for r in rows), Decimal("0"))

    # ── Proofs ───────────────────────────────────────────────────────────

    async def insert_proof(self, proof: ProofRecord) -> None:
        await self._write(
            "INSERT INTO proofs (id, agent_id, kind, signature, signer_id, policy_hash, payload, issued_at, "
            "transaction_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                proof.id,
                proof.agent_id,
                proof.kind,
                proof.signature,
                proof.signer_id,
                proof.policy_hash,
                json.dumps(proof.payload, default=str),
                proof.issued_at,
                proof.transaction_id,
            ),
        )

    async def link_proof(self, proof_id: str, transaction_id: str) -> None:
        await self._write(
            "UPDATE proofs SET transaction_id = ? WHERE id = ? AND transaction_id IS NULL",
            (transaction_id, proof_id),
        )

    async def proofs_for_transaction(self, transaction_id: str) -> list[ProofRecord]:
        rows = await self._all("SELECT * FROM proofs WHERE transaction_id = ?", (transaction_id,))
        return [_proof(r) for r in rows]

    # ── Stats ────────────────────────────────────────────────────────────

    async def counts(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for table in ("agents", "listings", "offers", "proofs"):
            row = await self._one(f"SELECT COUNT(*) FROM {table}")
            out[table] = int(row[0]) if row else 0
        rows = await self._all("SELECT status, COUNT(*) AS n FROM transactions GROUP BY status")
        out["transactions"] = {r["status"]: r["n"] for r in rows}
        return out

    async def market_metrics(self, since: float) -> dict[str, Any]:
        """Marketplace totals; *since* bounds the recent volume and active-agent window."""

        async def count(sql: str, params: tuple = ()) -> int:
            row = await self._one(sql, params)
            return int(row[0]) if row else 0

        confirmed = await self._all(
            "SELECT amount, created_at FROM transactions WHERE status = ?",
            (TransactionStatus.CONFIRMED.value,),
        )
        return {
            "totalListings": await count("SELECT COUNT(*) FROM listings"),
            "activeListings": await count(
                "SELECT COUNT(*) FROM listings WHERE status = ?", (ListingStatus.AVAILABLE.value,)
            ),
            "totalVolume": sum((Decimal(r["amount"]) for r in confirmed), Decimal("0")),
            "recentVolume": sum(
                (Decimal(r["amount"]) for r in confirmed if r["created_at"] >= since), Decimal("0")
            ),
            "activeAgents": await count("SELECT COUNT(*) FROM agents WHERE last_activity >= ?", (since,)),
            "totalAgents": await count("SELECT COUNT(*) FROM agents"),
            "totalTransactions": await count("SELECT COUNT(*) FROM transactions"),
        }


# ── Store ────────────────────────────────────────────────────────────────────

class MarketStore:
    def __init__(self, db_path: str | Path, busy_timeout: float = 30.0) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = busy_timeout
        conn = self._connect()
        _init_db(conn)
        conn.close()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @asynccontextmanager
    async def transaction(self, write: bool = True) -> AsyncIterator[StoreSession]:
        """Run a block inside one SQLite transaction.

        ``write=True`` takes the database write lock up front so that reads
        made inside the block cannot be invalidated by another writer.
        """
        conn = await asyncio.to_thread(self._connect)
        try:
            await asyncio.to_thread(conn.execute, "BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield StoreSession(conn)
            except BaseException:
                await asyncio.to_thread(conn.execute, "ROLLBACK")
                raise
            await asyncio.to_thread(conn.execute, "COMMIT")
        finally:
            await asyncio.to_thread(conn.close)

    # ── Single-statement shortcuts ───────────────────────────────────────

    async def create_agent(self, agent: Agent) -> Agent:
        async with self.transaction() as s:
            await s.insert_agent(agent)
        logger.info("Agent %s onboarded as %s", agent.id, agent.role.value)
        return agent

    async def get_agent(self, agent_id: str) -> Agent | None:
        async with self.transaction(write=False) as s:
            return await s.get_agent(agent_id)

    async def find_agent(self, agent_id_or_address: str) -> Agent | None:
        """Look an agent up by id, falling back to its wallet address."""
        async with self.transaction(write=False) as s:
            agent = await s.get_agent(agent_id_or_address)
            if agent is None and agent_id_or_address.startswith("0x"):
                agent = await s.get_agent_by_address(agent_id_or_address)
            return agent

    async def update_agent(self, agent: Agent) -> Agent:
        async with self.transaction() as s:
            await s.update_agent(agent)
        return agent

    async def create_listing(self, listing: Listing) -> Listing:
        async with self.transaction() as s:
            await s.insert_listing(listing)
        return listing

    async def get_listing(self, listing_id: str) -> Listing | None:
        async with self.transaction(write=False) as s:
            return await s.get_listing(listing_id)

    async def list_listings(self, status: ListingStatus | None = None) -> list[Listing]:
        async with self.transaction(write=False) as s:
            return await s.list_listings(status)

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        async with self.transaction(write=False) as s:
            return await s.get_transaction(transaction_id)

    async def list_transactions(
        self,
        agent_id: str | None = None,
        status: TransactionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        async with self.transaction(write=False) as s:
            return await s.list_transactions(agent_id, status, limit, offset)

    async def stats(self) -> dict[str, Any]:
        async with self.transaction(write=False) as s:
            return await s.counts()

    async def page_listings(self, **filters: Any) -> tuple[list[Listing], int]:
        async with self.transaction(write=False) as s:
            return await s.page_listings(**filters)

    async def agent_profile(self, agent: Agent, recent: int = 10) -> dict[str, Any]:
        """Recent listings and sent transactions for *agent*."""
        async with self.transaction(write=False) as s:
            listings, _ = await s.page_listings(seller_agent_id=agent.id, limit=recent)
            sent = await s.sent_transactions(agent.id, recent)
        return {"recentListings": listings, "recentTransactions": sent}

    async def seller_counts(self, agent_id: str) -> dict[str, int]:
        async with self.transaction(write=False) as s:
            return await s.seller_counts(agent_id)

    async def market_metrics(self, since: float) -> dict[str, Any]:
        async with self.transaction(write=False) as s:
            return await s.market_metrics(since)

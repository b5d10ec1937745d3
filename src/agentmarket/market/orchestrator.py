"""Purchase orchestration — a saga over the local store and a settlement call.

    Phase A  (one store transaction)
        resolve wallets → load listing → policy → duplicate guard →
        sign proof-of-intent → insert PENDING transaction + linked proof
    Phase B  (outside the transaction, not revocable)
        settlement.execute_transfer → record ref/status
        failure → compensating write to FAILED, raise SettlementError
        timeout → row stays PENDING, raise SettlementTimeoutError
    Phase C  (status callback or reconciliation sweep)
        CONFIRMED → transaction CONFIRMED, listing SOLD, counters bumped
        FAILED    → transaction FAILED, listing back to AVAILABLE if PENDING

Terminal transactions never change again; repeated or late notifications
for them are ignored.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from pydantic import BaseModel, Field

from agentmarket.audit import AuditLogger
from agentmarket.market.models import (
    Listing,
    ListingStatus,
    ProofRecord,
    PurchaseReceipt,
    Transaction,
    TransactionStatus,
    to_money,
)
from agentmarket.market.policy import SpendingPolicyEngine, utc_day_start
from agentmarket.market.settlement import (
    SettlementOutcome,
    SettlementProvider,
    SettlementResult,
    SettlementUpdate,
)
from agentmarket.market.store import MarketStore, StoreSession
from agentmarket.market.wallet import PURCHASE_DOMAIN, PURCHASE_TYPES, TypedDataRequest, WalletService
from agentmarket.protocol.errors import (
    AgentNotFoundError,
    DuplicatePurchaseError,
    InvalidParamsError,
    InvalidPriceError,
    ListingNotFoundError,
    ListingUnavailableError,
    MarketError,
    SettlementError,
    SettlementTimeoutError,
    TransactionNotFoundError,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "pending:"
AMOUNT_UNITS = 10**6          # proof amounts are signed in 6-decimal base units


class ReconciliationReport(BaseModel):
    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: list[str] = Field(default_factory=list)


class _Intent(BaseModel):
    transaction: Transaction
    buyer_address: str
    seller_address: str
    proof_signature: str


class PurchaseOrchestrator:
    def __init__(
        self,
        store: MarketStore,
        wallet: WalletService,
        settlement: SettlementProvider,
        policy_engine: SpendingPolicyEngine | None = None,
        audit: AuditLogger | None = None,
        settlement_timeout: float = 30.0,
        default_asset: str = "PYUSD",
        default_chain: int = 84532,
        reconcile_after_seconds: float = 900.0,
    ) -> None:
        self._store = store
        self._wallet = wallet
        self._settlement = settlement
        self._policy = policy_engine or SpendingPolicyEngine()
        self._audit = audit
        self._settlement_timeout = settlement_timeout
        self._default_asset = default_asset
        self._default_chain = default_chain
        self._reconcile_after = reconcile_after_seconds
        self._background: set[asyncio.Task[Any]] = set()

    # ── Entry point ──────────────────────────────────────────────────────

    async def purchase(
        self,
        buyer_agent_id: str,
        listing_id: str,
        amount: Any = None,
        asset: str | None = None,
        destination_chain: int | None = None,
        correlation_id: str = "",
    ) -> PurchaseReceipt:
        """Buy *listing_id* for *buyer_agent_id*; *amount* defaults to the listing price."""
        asset = asset or self._default_asset
        destination_chain = destination_chain or self._default_chain

        try:
            intent = await self._record_intent(buyer_agent_id, listing_id, amount, asset, destination_chain)
        except MarketError as exc:
            await self._record_audit(
                "purchase.rejected", exc.code.name.lower(),
                agent_id=buyer_agent_id, resource=listing_id, correlation_id=correlation_id,
                detail={"message": exc.message},
            )
            raise

        await self._record_audit(
            "purchase.intent", "pending",
            agent_id=buyer_agent_id, resource=intent.transaction.id, correlation_id=correlation_id,
            detail={"listingId": listing_id, "amount": str(intent.transaction.amount), "asset": asset},
        )
        return await self._settle(intent, correlation_id)

    # ── Phase A ──────────────────────────────────────────────────────────

    async def _record_intent(
        self,
        buyer_agent_id: str,
        listing_id: str,
        amount: Any,
        asset: str,
        destination_chain: int,
    ) -> _Intent:
        async with self._store.transaction() as s:
            buyer = await s.get_agent(buyer_agent_id)
            if buyer is None:
                raise AgentNotFoundError(f"Agent {buyer_agent_id} not found")

            listing = await s.get_listing(listing_id)
            if listing is None:
                raise ListingNotFoundError(f"Listing {listing_id} not found", data={"listingId": listing_id})
            if listing.seller_agent_id == buyer.id:
                raise InvalidParamsError("Agents cannot buy their own listings")

            buyer_address = await self._provision_wallet(s, buyer_agent_id)
            seller_address = await self._provision_wallet(s, listing.seller_agent_id)

            if listing.status != ListingStatus.AVAILABLE:
                raise ListingUnavailableError(
                    f"Listing {listing_id} is not available",
                    data={"listingId": listing_id, "status": listing.status.value},
                )

            spend = listing.price if amount is None else to_money(amount)
            if spend <= 0:
                raise InvalidPriceError(f"Amount must be positive, got {spend}")

            spent_today = await s.spent_since(buyer.id, utc_day_start())
            self._policy.enforce(
                buyer.policy,
                listing_price=listing.price,
                amount=spend,
                asset=asset,
                counterparty=seller_address,
                spent_today=spent_today,
            )

            if await s.find_pending_transaction(buyer.id, listing.id) is not None:
                raise DuplicatePurchaseError(
                    "Purchase already in progress for this listing",
                    data={"listingId": listing.id},
                )

            issued_at = int(time.time() * 1000)
            request = TypedDataRequest(
                agent_id=buyer.id,
                domain={**PURCHASE_DOMAIN, "chainId": self._default_chain},
                types=PURCHASE_TYPES,
                value={
                    "listingId": listing.id,
                    "buyer": buyer_address,
                    "amount": int(spend * AMOUNT_UNITS),
                    "timestamp": issued_at,
                },
            )
            signature = await self._wallet.sign_typed_data(request)
            proof = ProofRecord(
                agent_id=buyer.id,
                signature=signature,
                signer_id=await self._wallet.get_signer_id(buyer.id),
                policy_hash=buyer.policy.policy_hash(),
                payload=request.model_dump(mode="json"),
                issued_at=issued_at,
            )
            await s.insert_proof(proof)

            tx_id = uuid.uuid4().hex[:16]
            tx = Transaction(
                id=tx_id,
                from_agent_id=buyer.id,
                to_agent_id=listing.seller_agent_id,
                listing_id=listing.id,
                amount=spend,
                asset=asset,
                source_chain=self._default_chain,
                destination_chain=destination_chain,
                settlement_ref=f"{PLACEHOLDER_PREFIX}{tx_id}",
            )
            await s.insert_transaction(tx)
            await s.link_proof(proof.id, tx.id)

        logger.info("Purchase intent %s recorded: %s buys %s for %s %s", tx.id, buyer.id, listing.id, spend, asset)
        return _Intent(
            transaction=tx,
            buyer_address=buyer_address,
            seller_address=seller_address,
            proof_signature=signature,
        )

    async def _provision_wallet(self, s: StoreSession, agent_id: str) -> str:
        """Return the agent's wallet address, recording it on first use."""
        agent = await s.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        if agent.wallet_address:
            return agent.wallet_address
        agent.wallet_address = await self._wallet.get_address(agent_id)
        agent.last_activity = time.time()
        await s.update_agent(agent)
        logger.info("Provisioned wallet %s for agent %s", agent.wallet_address, agent_id)
        return agent.wallet_address

    # ── Phase B ──────────────────────────────────────────────────────────

    async def _settle(self, intent: _Intent, correlation_id: str) -> PurchaseReceipt:
        tx = intent.transaction
        call = asyncio.ensure_future(
            self._settlement.execute_transfer(
                from_address=intent.buyer_address,
                to_address=intent.seller_address,
                amount=tx.amount,
                asset=tx.asset,
                destination_chain=tx.destination_chain,
                source_chain=tx.source_chain,
                reference=tx.id,
            )
        )
        try:
            # shield: a timed-out transfer keeps running, its late answer is still recorded
            result = await asyncio.wait_for(asyncio.shield(call), timeout=self._settlement_timeout)
        except asyncio.TimeoutError:
            await self._note(tx.id, f"settlement timed out after {self._settlement_timeout}s")
            self._watch_late_result(tx.id, call)
            await self._record_audit(
                "settlement.timeout", "pending",
                agent_id=tx.from_agent_id, resource=tx.id, correlation_id=correlation_id,
            )
            raise SettlementTimeoutError(
                f"Settlement did not answer within {self._settlement_timeout}s",
                data={"transactionId": tx.id, "status": TransactionStatus.PENDING.value},
            )
        except Exception as exc:
            await self._compensate(tx.id, str(exc) or type(exc).__name__)
            await self._record_audit(
                "settlement.failed", "failed",
                agent_id=tx.from_agent_id, resource=tx.id, correlation_id=correlation_id,
                detail={"error": str(exc)},
            )
            raise SettlementError(
                f"Settlement failed: {exc}",
                data={"transactionId": tx.id, "status": TransactionStatus.FAILED.value},
            ) from exc

        if result.status != SettlementOutcome.SUCCESS or not result.settlement_ref:
            error = result.error or "Transfer rejected by settlement provider"
            await self._compensate(tx.id, error)
            await self._record_audit(
                "settlement.failed", "failed",
                agent_id=tx.from_agent_id, resource=tx.id, correlation_id=correlation_id,
                detail={"error": error},
            )
            raise SettlementError(
                f"Settlement failed: {error}",
                data={"transactionId": tx.id, "status": TransactionStatus.FAILED.value},
            )

        tx = await self._record_settlement(tx.id, result)
        await self._record_audit(
            "settlement.issued", tx.status.value.lower(),
            agent_id=tx.from_agent_id, resource=tx.id, correlation_id=correlation_id,
            detail={"settlementRef": tx.settlement_ref},
        )
        return PurchaseReceipt(
            transaction_id=tx.id,
            listing_id=tx.listing_id,
            status=tx.status,
            amount=tx.amount,
            asset=tx.asset,
            settlement_ref=tx.settlement_ref,
            explorer_url=tx.explorer_url,
            proof_signature=intent.proof_signature,
        )

    async def _record_settlement(self, tx_id: str, result: SettlementResult) -> Transaction:
        async with self._store.transaction() as s:
            tx = await s.get_transaction(tx_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {tx_id} not found")
            if tx.is_terminal:
                return tx
            tx.settlement_ref = result.settlement_ref or tx.settlement_ref
            tx.explorer_url = result.explorer_url or tx.explorer_url
            tx.error_message = ""
            if result.transfer_status.is_terminal:
                await self._finalise(s, tx, result.transfer_status)
            else:
                tx.updated_at = time.time()
                await s.update_transaction(tx)
        logger.info("Transaction %s settled as %s (%s)", tx.id, tx.status.value, tx.settlement_ref)
        return tx

    async def _compensate(self, tx_id: str, error: str) -> None:
        async with self._store.transaction() as s:
            tx = await s.get_transaction(tx_id)
            if tx is None or tx.is_terminal:
                return
            await self._finalise(s, tx, TransactionStatus.FAILED, error)
        logger.warning("Transaction %s marked FAILED: %s", tx_id, error)

    async def _note(self, tx_id: str, message: str) -> None:
        async with self._store.transaction() as s:
            tx = await s.get_transaction(tx_id)
            if tx is None or tx.is_terminal:
                return
            tx.error_message = message
            tx.updated_at = time.time()
            await s.update_transaction(tx)
        logger.warning("Transaction %s left PENDING: %s", tx_id, message)

    def _watch_late_result(self, tx_id: str, call: asyncio.Future) -> None:
        async def _late() -> None:
            try:
                result = await call
            except Exception as exc:  # noqa: BLE001 - outcome unknown, the sweep will resolve it
                logger.warning("Late settlement for %s raised %s; awaiting reconciliation", tx_id, exc)
                return
            if result.status == SettlementOutcome.SUCCESS and result.settlement_ref:
                await self._record_settlement(tx_id, result)
            else:
                await self._compensate(tx_id, result.error or "Transfer rejected by settlement provider")

        task = asyncio.create_task(_late())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for late settlement answers still being recorded."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Phase C ──────────────────────────────────────────────────────────

    async def apply_settlement_update(self, update: SettlementUpdate) -> Transaction:
        """Apply a status notification from the settlement provider."""
        async with self._store.transaction() as s:
            tx = await s.get_transaction_by_ref(update.settlement_ref)
            if tx is None and update.reference:
                tx = await s.get_transaction(update.reference)
            if tx is None:
                raise TransactionNotFoundError(
                    f"No transaction for settlement {update.settlement_ref}",
                    data={"settlementRef": update.settlement_ref},
                )
            if tx.is_terminal:
                logger.info("Ignoring %s update for terminal transaction %s", update.status.value, tx.id)
                return tx

            if tx.settlement_ref.startswith(PLACEHOLDER_PREFIX):
                tx.settlement_ref = update.settlement_ref
            if update.explorer_url:
                tx.explorer_url = update.explorer_url

            if update.status.is_terminal:
                await self._finalise(s, tx, update.status, update.error)
            else:
                tx.updated_at = time.time()
                await s.update_transaction(tx)

        await self._record_audit(
            "settlement.update", tx.status.value.lower(),
            agent_id=tx.from_agent_id, resource=tx.id,
            detail={"settlementRef": tx.settlement_ref, "error": update.error},
        )
        return tx

    async def _finalise(
        self,
        s: StoreSession,
        tx: Transaction,
        status: TransactionStatus,
        error: str = "",
    ) -> None:
        now = time.time()
        tx.status = status
        tx.updated_at = now
        listing = await s.get_listing(tx.listing_id)

        if status == TransactionStatus.CONFIRMED:
            tx.confirmed_at = now
            tx.error_message = ""
            if listing is not None:
                self._mark_sold(listing, tx, now)
            for agent_id in (tx.from_agent_id, tx.to_agent_id):
                agent = await s.get_agent(agent_id)
                if agent is None:
                    continue
                agent.total_transactions += 1
                agent.total_volume += tx.amount
                agent.last_activity = now
                await s.update_agent(agent)
        else:
            tx.error_message = error or tx.error_message
            if listing is not None and listing.status == ListingStatus.PENDING:
                listing.status = ListingStatus.AVAILABLE

        await s.update_transaction(tx)
        if listing is not None:
            await s.update_listing(listing)

    @staticmethod
    def _mark_sold(listing: Listing, tx: Transaction, now: float) -> None:
        if listing.status == ListingStatus.SOLD and listing.buyer_agent_id != tx.from_agent_id:
            logger.warning(
                "Listing %s already sold to %s; transaction %s confirmed as well",
                listing.id, listing.buyer_agent_id, tx.id,
            )
            return
        listing.status = ListingStatus.SOLD
        listing.buyer_agent_id = tx.from_agent_id
        listing.sold_at = now

    # ── Reconciliation ───────────────────────────────────────────────────

    async def reconcile_pending(self, older_than: float | None = None) -> ReconciliationReport:
        """Resolve PENDING transactions older than *older_than* seconds.

        Each row is looked up at the provider by its transaction id.  Rows
        the provider has never seen and that still carry the placeholder
        reference never left Phase A and are failed.
        """
        age = self._reconcile_after if older_than is None else older_than
        async with self._store.transaction(write=False) as s:
            pending = await s.list_pending_transactions(time.time() - age)

        report = ReconciliationReport(checked=len(pending))
        for tx in pending:
            try:
                update = await self._settlement.lookup(tx.id)
            except Exception as exc:  # noqa: BLE001 - one bad lookup must not stop the sweep
                logger.warning("Lookup for %s failed: %s", tx.id, exc)
                report.errors.append(tx.id)
                continue

            if update is None:
                if tx.settlement_ref.startswith(PLACEHOLDER_PREFIX):
                    await self._compensate(tx.id, "transfer never reached the settlement provider")
                    report.failed += 1
                else:
                    report.still_pending += 1
                continue

            if not update.status.is_terminal:
                report.still_pending += 1
                continue

            if update.reference is None:
                update = update.model_copy(update={"reference": tx.id})
            result = await self.apply_settlement_update(update)
            if result.status == TransactionStatus.CONFIRMED:
                report.confirmed += 1
            else:
                report.failed += 1

        logger.info(
            "Reconciliation: %d checked, %d confirmed, %d failed, %d pending",
            report.checked, report.confirmed, report.failed, report.still_pending,
        )
        return report

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_purchase_status(self, transaction_id: str) -> dict[str, Any]:
        async with self._store.transaction(write=False) as s:
            tx = await s.get_transaction(transaction_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            proofs = await s.proofs_for_transaction(tx.id)
        return {
            "transaction": tx.model_dump(mode="json"),
            "status": tx.status.value,
            "proofs": [p.model_dump(mode="json") for p in proofs],
        }

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _record_audit(self, action: str, outcome: str, **fields: Any) -> None:
        if self._audit is not None:
            await self._audit.record(action, outcome, **fields)

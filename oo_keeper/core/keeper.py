# /oo_keeper/core/keeper.py
# Drives the update -> classify -> act cycle against the optimistic oracle.
import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from oo_keeper.adapters.base import AbstractOptimisticOracle
from oo_keeper.core.client import OptimisticOracleClient
from oo_keeper.core.config import KeeperConfig
from oo_keeper.core.errors import (
    PriceFeedError,
    SubmissionRejected,
    TransportTimeout,
    UnresolvableIdentifier,
)
from oo_keeper.core.gas_estimator import GasEstimator
from oo_keeper.core.logger import (
    get_logger,
    DISPUTES_SENT,
    ITEM_FAILURES,
    PROPOSALS_SENT,
    SETTLEMENTS_SENT,
    UPDATE_FAILURES,
)
from oo_keeper.core.models import ActionResult, Dispute, PriceRequest, Proposal
from oo_keeper.core.price_feed_resolver import PriceFeedResolver

log = get_logger(__name__)


def price_deviation(proposed: int, expected: int) -> Decimal:
    """Relative distance of `proposed` from `expected`, both at the same scale."""
    if expected == 0:
        return Decimal(0) if proposed == 0 else Decimal("Infinity")
    return abs(Decimal(proposed - expected) / Decimal(expected))


class OptimisticOracleKeeper:
    """
    Proposes prices for new requests, disputes proposals that disagree with
    our own feeds, and settles whatever the operator account can settle.
    Holds no state between cycles beyond its static config.
    """
    def __init__(
        self,
        client: OptimisticOracleClient,
        oracle: AbstractOptimisticOracle,
        price_feed_resolver: PriceFeedResolver,
        gas_estimator: GasEstimator,
        config: KeeperConfig,
    ):
        self.client = client
        self.oracle = oracle
        self.price_feed_resolver = price_feed_resolver
        self.gas_estimator = gas_estimator
        self.config = config
        self.account = config.account
        # One refresh per feed per cycle, shared by every item that prices with it.
        self._feed_refreshes: Dict[str, asyncio.Task] = {}
        log.info(
            "OPTIMISTIC_ORACLE_KEEPER_INITIALIZED",
            account=self.account,
            dispute_tolerance=str(config.dispute_tolerance),
            default_price_feed_config=config.default_price_feed_config,
        )

    async def update(self):
        try:
            await self.client.update()
        except Exception:
            UPDATE_FAILURES.inc()
            raise
        self._feed_refreshes = {}
        await self.gas_estimator.update()

    async def run_cycle(self):
        """One full cycle. The action methods share the view fetched by update()."""
        await self.update()
        proposals, disputes, settlements = await asyncio.gather(
            self.send_proposals(),
            self.send_disputes(),
            self.send_settlements(),
        )
        return proposals + disputes + settlements

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def send_proposals(self) -> List[ActionResult]:
        return await self._run_batch("propose", self.client.get_unproposed_price_requests(), self._propose)

    async def send_disputes(self) -> List[ActionResult]:
        return await self._run_batch("dispute", self.client.get_undisputed_proposals(), self._dispute)

    async def send_settlements(self) -> List[ActionResult]:
        settleable = {}
        for item in self.client.get_settleable_proposals(self.account) + self.client.get_settleable_disputes(self.account):
            settleable.setdefault(item.key, item)
        return await self._run_batch("settle", settleable.values(), self._settle)

    async def _propose(self, request: PriceRequest) -> ActionResult:
        price = await self._price_at(request.identifier, request.timestamp)
        gas_price = self.gas_estimator.get_current_fast_price()
        tx_hash = await self._submit(
            self.oracle.propose,
            request.requester,
            request.identifier,
            request.timestamp,
            request.ancillary_data,
            price,
            gas_price,
        )
        PROPOSALS_SENT.labels(request.identifier).inc()
        log.info(
            "PROPOSAL_SENT",
            requester=request.requester,
            identifier=request.identifier,
            timestamp=request.timestamp,
            proposed_price=str(price),
            gas_price=gas_price,
            tx_hash=tx_hash,
        )
        return ActionResult(action="propose", key=request.key, success=True, tx_hash=tx_hash, price=price)

    async def _dispute(self, proposal: Proposal) -> Optional[ActionResult]:
        if proposal.proposer.lower() == self.account.lower():
            return None
        price = await self._price_at(proposal.identifier, proposal.timestamp)
        deviation = price_deviation(proposal.proposed_price, price)
        if deviation <= self.config.dispute_tolerance:
            log.debug(
                "PROPOSAL_WITHIN_TOLERANCE",
                requester=proposal.requester,
                identifier=proposal.identifier,
                timestamp=proposal.timestamp,
                proposed_price=str(proposal.proposed_price),
                expected_price=str(price),
            )
            return None

        gas_price = self.gas_estimator.get_current_fast_price()
        tx_hash = await self._submit(
            self.oracle.dispute,
            proposal.requester,
            proposal.identifier,
            proposal.timestamp,
            proposal.ancillary_data,
            gas_price,
        )
        DISPUTES_SENT.labels(proposal.identifier).inc()
        log.warning(
            "DISPUTE_SENT",
            requester=proposal.requester,
            proposer=proposal.proposer,
            identifier=proposal.identifier,
            timestamp=proposal.timestamp,
            proposed_price=str(proposal.proposed_price),
            expected_price=str(price),
            deviation=str(deviation),
            tx_hash=tx_hash,
        )
        return ActionResult(action="dispute", key=proposal.key, success=True, tx_hash=tx_hash, price=price)

    async def _settle(self, item) -> ActionResult:
        gas_price = self.gas_estimator.get_current_fast_price()
        tx_hash = await self._submit(
            self.oracle.settle,
            item.requester,
            item.identifier,
            item.timestamp,
            item.ancillary_data,
            gas_price,
        )
        SETTLEMENTS_SENT.labels(item.identifier).inc()
        log.info(
            "SETTLEMENT_SENT",
            requester=item.requester,
            identifier=item.identifier,
            timestamp=item.timestamp,
            disputed=isinstance(item, Dispute),
            tx_hash=tx_hash,
        )
        return ActionResult(action="settle", key=item.key, success=True, tx_hash=tx_hash)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _price_at(self, identifier: str, timestamp: int) -> int:
        feed = await self.price_feed_resolver.resolve(identifier, self.config.default_price_feed_config)
        refresh = self._feed_refreshes.get(identifier)
        if refresh is None:
            refresh = self._feed_refreshes[identifier] = asyncio.ensure_future(feed.update())
        await refresh
        price = feed.get_historical_price(timestamp)
        if price is None:
            raise PriceFeedError(f"No {identifier} price available at {timestamp}")
        return price

    async def _submit(self, call: Callable[..., Awaitable[str]], *args) -> str:
        # Terminal. The adapter already waits twice on a slow receipt and never re-sends.
        try:
            return await asyncio.wait_for(call(*args), timeout=self.config.submission_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransportTimeout(f"{getattr(call, '__name__', 'submission')} timed out after {self.config.submission_timeout_seconds}s") from e

    async def _run_batch(self, action: str, items: Iterable, handler) -> List[ActionResult]:
        results = await asyncio.gather(*(self._run_item(action, item, handler) for item in items))
        return [r for r in results if r is not None]

    async def _run_item(self, action: str, item, handler) -> Optional[ActionResult]:
        identity = dict(requester=item.requester, identifier=item.identifier, timestamp=item.timestamp)
        try:
            return await handler(item)
        except UnresolvableIdentifier as e:
            reason, error = "unresolvable_identifier", str(e)
            log.warning("ITEM_SKIPPED_UNRESOLVABLE_IDENTIFIER", action=action, **identity)
        except PriceFeedError as e:
            reason, error = "price_unavailable", str(e)
            log.warning("ITEM_SKIPPED_PRICE_UNAVAILABLE", action=action, error=error, **identity)
        except SubmissionRejected as e:
            reason, error = "rejected", e.reason
            log.error("ITEM_SUBMISSION_REJECTED", action=action, reason=e.reason, **identity)
        except TransportTimeout as e:
            reason, error = "timeout", str(e)
            log.error("ITEM_SUBMISSION_TIMED_OUT", action=action, error=error, **identity)
        except Exception as e:
            reason, error = "unexpected", str(e)
            log.error("ITEM_ACTION_FAILED", action=action, error=error, exc_info=True, **identity)
        ITEM_FAILURES.labels(action, reason).inc()
        return ActionResult(action=action, key=item.key, success=False, error=error)

# /oo_keeper/adapters/mock.py
# In-memory optimistic oracle and fallback oracle. They enforce the same
# request / propose / dispute / settle rules as the contracts so the keeper
# can be exercised end to end in tests and dry runs.

from typing import Dict, List, Optional, Tuple

from oo_keeper.adapters.base import AbstractFallbackOracle, AbstractOptimisticOracle, EventKind, LedgerEvent
from oo_keeper.core.errors import SubmissionRejected
from oo_keeper.core.identifiers import stamp_ancillary_data
from oo_keeper.core.logger import get_logger
from oo_keeper.core.models import Dispute, PriceRequest, Proposal, RequestKey, Settlement

log = get_logger(__name__)


class MockFallbackOracle(AbstractFallbackOracle):
    """Collects price requests from disputes and answers once a price is pushed.

    Queries carry the stamped ancillary data, as the optimistic oracle forwards it.
    """
    def __init__(self):
        self.pending_queries: List[Tuple[str, int, bytes]] = []
        self.prices: Dict[Tuple[str, int, bytes], int] = {}
        self.fail_queries = False

    def request_price(self, identifier: str, timestamp: int, ancillary_data: bytes):
        query = (identifier, timestamp, ancillary_data)
        if query not in self.prices and query not in self.pending_queries:
            self.pending_queries.append(query)

    def push_price(self, identifier: str, timestamp: int, ancillary_data: bytes, price: int):
        query = (identifier, timestamp, ancillary_data)
        self.prices[query] = price
        if query in self.pending_queries:
            self.pending_queries.remove(query)
        log.info("MOCK_FALLBACK_PRICE_PUSHED", identifier=identifier, timestamp=timestamp, price=str(price))

    def push_pending_price(self, identifier: str, timestamp: int, price: int):
        """Answers the pending query for `identifier` at `timestamp`, whatever its data."""
        for query in list(self.pending_queries):
            if query[0] == identifier and query[1] == timestamp:
                self.push_price(identifier, timestamp, query[2], price)
                return
        raise KeyError(f"No pending query for {identifier} at {timestamp}")

    async def get_resolution(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> Optional[int]:
        if self.fail_queries:
            raise ConnectionError("Mock fallback oracle unreachable")
        return self.prices.get((identifier, timestamp, stamp_ancillary_data(ancillary_data, requester)))


class _RequestRecord:
    def __init__(self, request: PriceRequest):
        self.request = request
        self.proposal: Optional[Proposal] = None
        self.dispute: Optional[Dispute] = None
        self.settled = False


class MockOptimisticOracle(AbstractOptimisticOracle):
    """
    A mock optimistic oracle. Every state change mines a new block carrying
    the matching event. Writes revert with SubmissionRejected exactly where
    the contract would.
    """
    def __init__(
        self,
        fallback_oracle: MockFallbackOracle,
        liveness: int = 7200,
        current_time: int = 1_600_000_000,
        from_address: str = "0xMockKeeper",
    ):
        self.fallback_oracle = fallback_oracle
        self.liveness = liveness
        self.current_time = current_time
        self.from_address = from_address
        self.block_number = 0
        self.final_fees: Dict[str, int] = {}
        self.records: Dict[RequestKey, _RequestRecord] = {}
        self.events: List[Tuple[EventKind, LedgerEvent]] = []
        self.sent_transactions: List[dict] = []
        self.get_events_calls: List[Tuple[EventKind, int, int]] = []
        self.fail_queries = False
        self._fail_next: Dict[str, Exception] = {}
        self._nonce = 0
        log.info("MOCK_OPTIMISTIC_ORACLE_INITIALIZED", liveness=liveness, from_address=from_address)

    # --- test controls ---

    def set_final_fee(self, currency: str, fee: int):
        self.final_fees[currency] = fee

    def advance_time(self, seconds: int):
        self.current_time += seconds

    def set_next_call_to_fail(self, action: str, error: Exception):
        """Raise `error` on the next `action` write ("propose", "dispute" or "settle")."""
        self._fail_next[action] = error

    def _emit(self, kind: EventKind, record) -> None:
        self.block_number += 1
        self.events.append((kind, LedgerEvent(self.block_number, 0, record)))

    def _record(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, action: str) -> _RequestRecord:
        record = self.records.get(RequestKey(requester, identifier, timestamp, ancillary_data))
        if record is None:
            raise SubmissionRejected(action, "price not requested")
        return record

    def _send(self, action: str, sender: str, **params) -> str:
        error = self._fail_next.pop(action, None)
        if error is not None:
            log.error("MOCK_TX_FORCED_FAILURE", action=action, params=params)
            raise error
        tx_hash = f"0xfake_tx_hash_{self._nonce}"
        self._nonce += 1
        self.sent_transactions.append({"hash": tx_hash, "action": action, "from": sender, **params})
        log.info("MOCK_TRANSACTION_SENT", action=action, tx_hash=tx_hash)
        return tx_hash

    # --- requester side ---

    def request_price(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, currency: str, reward: int) -> PriceRequest:
        key = RequestKey(requester, identifier, timestamp, ancillary_data)
        if key in self.records:
            raise SubmissionRejected("request", "price already requested")
        request = PriceRequest(
            requester=requester,
            identifier=identifier,
            timestamp=timestamp,
            ancillary_data=ancillary_data,
            currency=currency,
            reward=reward,
            final_fee=self.final_fees.get(currency, 0),
        )
        self.records[key] = _RequestRecord(request)
        self._emit(EventKind.REQUEST, request)
        return request

    # --- AbstractOptimisticOracle ---

    async def get_latest_block(self) -> int:
        if self.fail_queries:
            raise ConnectionError("Mock ledger unreachable")
        return self.block_number

    async def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        if self.fail_queries:
            raise ConnectionError("Mock ledger unreachable")
        self.get_events_calls.append((kind, from_block, to_block))
        return [event for k, event in self.events if k is kind and from_block <= event.block_number <= to_block]

    async def get_current_time(self) -> int:
        return self.current_time

    async def propose(self, requester, identifier, timestamp, ancillary_data, price, gas_price=0, sender=None) -> str:
        sender = sender or self.from_address
        record = self._record(requester, identifier, timestamp, ancillary_data, "propose")
        if record.proposal is not None:
            raise SubmissionRejected("propose", "proposePriceFor: Requested")
        tx_hash = self._send("propose", sender, requester=requester, identifier=identifier, timestamp=timestamp, price=price, gas_price=gas_price)
        record.proposal = Proposal(
            requester=requester,
            proposer=sender,
            identifier=identifier,
            timestamp=timestamp,
            ancillary_data=ancillary_data,
            proposed_price=price,
            proposal_time=self.current_time,
            expiration_time=self.current_time + self.liveness,
            currency=record.request.currency,
        )
        self._emit(EventKind.PROPOSE, record.proposal)
        return tx_hash

    async def dispute(self, requester, identifier, timestamp, ancillary_data, gas_price=0, sender=None) -> str:
        sender = sender or self.from_address
        record = self._record(requester, identifier, timestamp, ancillary_data, "dispute")
        if record.proposal is None or record.dispute is not None or record.settled:
            raise SubmissionRejected("dispute", "disputePriceFor: Proposed")
        if record.proposal.is_expired(self.current_time):
            raise SubmissionRejected("dispute", "disputePriceFor: Proposed")
        tx_hash = self._send("dispute", sender, requester=requester, identifier=identifier, timestamp=timestamp, gas_price=gas_price)
        record.dispute = Dispute(
            requester=requester,
            proposer=record.proposal.proposer,
            disputer=sender,
            identifier=identifier,
            timestamp=timestamp,
            ancillary_data=ancillary_data,
            dispute_time=self.current_time,
        )
        self.fallback_oracle.request_price(identifier, timestamp, stamp_ancillary_data(ancillary_data, requester))
        self._emit(EventKind.DISPUTE, record.dispute)
        return tx_hash

    async def settle(self, requester, identifier, timestamp, ancillary_data, gas_price=0, sender=None) -> str:
        sender = sender or self.from_address
        record = self._record(requester, identifier, timestamp, ancillary_data, "settle")
        if record.settled or record.proposal is None:
            raise SubmissionRejected("settle", "_settle: not settleable")
        if record.dispute is not None:
            price = await self.fallback_oracle.get_resolution(requester, identifier, timestamp, ancillary_data)
            if price is None:
                raise SubmissionRejected("settle", "_settle: not settleable")
        elif record.proposal.is_expired(self.current_time):
            price = record.proposal.proposed_price
        else:
            raise SubmissionRejected("settle", "_settle: not settleable")
        tx_hash = self._send("settle", sender, requester=requester, identifier=identifier, timestamp=timestamp, gas_price=gas_price)
        record.settled = True
        self._emit(
            EventKind.SETTLE,
            Settlement(requester=requester, identifier=identifier, timestamp=timestamp, ancillary_data=ancillary_data, price=price),
        )
        return tx_hash

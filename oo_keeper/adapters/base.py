# /oo_keeper/adapters/base.py
# Typed capabilities the client and keeper depend on. Concrete bindings
# (web3 contracts, the in-memory ledger) implement these.
from enum import Enum
from typing import List, NamedTuple, Optional, Union

from oo_keeper.core.models import Dispute, PriceRequest, Proposal, Settlement


class EventKind(str, Enum):
    REQUEST = "RequestPrice"
    PROPOSE = "ProposePrice"
    DISPUTE = "DisputePrice"
    SETTLE = "Settle"


class LedgerEvent(NamedTuple):
    block_number: int
    log_index: int
    record: Union[PriceRequest, Proposal, Dispute, Settlement]


class AbstractOptimisticOracle:
    """
    The optimistic oracle as seen by the keeper: event history, a couple of
    authoritative reads, and the three writes. Reads raise on transport
    failure; writes raise SubmissionRejected on revert and TransportTimeout
    when the round-trip is not answered.
    """
    async def get_latest_block(self) -> int:
        raise NotImplementedError

    async def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        """Events of one kind in [from_block, to_block], in emission order."""
        raise NotImplementedError

    async def get_current_time(self) -> int:
        """The contract's notion of now, used for liveness expiry."""
        raise NotImplementedError

    async def propose(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, price: int, gas_price: int) -> str:
        raise NotImplementedError

    async def dispute(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, gas_price: int) -> str:
        raise NotImplementedError

    async def settle(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, gas_price: int) -> str:
        raise NotImplementedError


class AbstractFallbackOracle:
    """The authoritative oracle consulted once a proposal is disputed."""
    async def get_resolution(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> Optional[int]:
        """Final price for the request, or None while unresolved.

        `ancillary_data` is the request's own data. Implementations query
        with it stamped by the requester, as the dispute forwarded it.
        """
        raise NotImplementedError

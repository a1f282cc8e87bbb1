# /oo_keeper/core/models.py
# Immutable records reconstructed from optimistic oracle events.
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel


class RequestKey(NamedTuple):
    requester: str
    identifier: str
    timestamp: int
    ancillary_data: bytes


class RequestStage(str, Enum):
    REQUESTED = "REQUESTED"
    PROPOSED = "PROPOSED"
    SETTLEABLE_PROPOSAL = "SETTLEABLE_PROPOSAL"
    DISPUTED = "DISPUTED"
    SETTLEABLE_DISPUTE = "SETTLEABLE_DISPUTE"
    SETTLED = "SETTLED"


class PriceRequest(BaseModel):
    requester: str
    identifier: str
    timestamp: int
    ancillary_data: bytes = b""
    currency: str
    reward: int
    final_fee: int

    class Config:
        frozen = True

    @property
    def key(self) -> RequestKey:
        return RequestKey(self.requester, self.identifier, self.timestamp, self.ancillary_data)


class Proposal(BaseModel):
    requester: str
    proposer: str
    identifier: str
    timestamp: int
    ancillary_data: bytes = b""
    proposed_price: int
    proposal_time: int
    expiration_time: int
    currency: Optional[str] = None

    class Config:
        frozen = True

    @property
    def key(self) -> RequestKey:
        return RequestKey(self.requester, self.identifier, self.timestamp, self.ancillary_data)

    def is_expired(self, now: int) -> bool:
        return now >= self.expiration_time


class Dispute(BaseModel):
    requester: str
    proposer: str
    disputer: str
    identifier: str
    timestamp: int
    ancillary_data: bytes = b""
    dispute_time: Optional[int] = None

    class Config:
        frozen = True

    @property
    def key(self) -> RequestKey:
        return RequestKey(self.requester, self.identifier, self.timestamp, self.ancillary_data)


class Resolution(BaseModel):
    identifier: str
    timestamp: int
    ancillary_data: bytes = b""
    price: int

    class Config:
        frozen = True


class Settlement(BaseModel):
    requester: str
    identifier: str
    timestamp: int
    ancillary_data: bytes = b""
    price: Optional[int] = None
    payout: Optional[int] = None

    class Config:
        frozen = True

    @property
    def key(self) -> RequestKey:
        return RequestKey(self.requester, self.identifier, self.timestamp, self.ancillary_data)


class ActionResult(BaseModel):
    """Outcome of one item in a propose/dispute/settle batch."""
    action: str
    key: RequestKey
    success: bool
    tx_hash: Optional[str] = None
    price: Optional[int] = None
    error: Optional[str] = None

    class Config:
        frozen = True

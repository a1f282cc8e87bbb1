# /oo_keeper/adapters/fallback_oracle.py
from typing import Dict, Optional, Tuple

from web3 import AsyncWeb3

from oo_keeper.abis.optimistic_oracle import FALLBACK_ORACLE_ABI, OPTIMISTIC_ORACLE_ABI
from oo_keeper.adapters.base import AbstractFallbackOracle
from oo_keeper.core.config import settings
from oo_keeper.core.identifiers import encode_identifier
from oo_keeper.core.logger import get_logger
from oo_keeper.core.resilient_rpc import ResilientWeb3Provider

log = get_logger(__name__)


class Web3FallbackOracle(AbstractFallbackOracle):
    """
    Reads resolutions from the DVM (or a mock oracle) by majority consensus.
    The DVM only answers registered callers, so calls are made from the
    optimistic oracle's address.

    A dispute forwards the request to the DVM with the requester stamped into
    its ancillary data. The optimistic oracle itself does the stamping, so the
    stamped bytes are read from it rather than rebuilt here.
    """
    def __init__(self, provider: ResilientWeb3Provider, address: str = None, caller: str = None):
        self.provider = provider
        self.address = AsyncWeb3.to_checksum_address(address or settings.FALLBACK_ORACLE_ADDRESS)
        self.caller = AsyncWeb3.to_checksum_address(caller or settings.OPTIMISTIC_ORACLE_ADDRESS)
        self._stamped: Dict[Tuple[str, bytes], bytes] = {}

    async def _stamp(self, requester: str, ancillary_data: bytes) -> bytes:
        key = (requester, ancillary_data)
        if key not in self._stamped:
            stamped = await self.provider.call_consensus(
                self.caller, OPTIMISTIC_ORACLE_ABI, "stampAncillaryData", ancillary_data, requester
            )
            self._stamped[key] = bytes(stamped)
        return self._stamped[key]

    async def get_resolution(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> Optional[int]:
        stamped = await self._stamp(requester, ancillary_data)
        args = (encode_identifier(identifier), timestamp, stamped)
        call_params = {"from": self.caller}
        has_price = await self.provider.call_consensus(self.address, FALLBACK_ORACLE_ABI, "hasPrice", *args, call_params=call_params)
        if not has_price:
            return None
        price = await self.provider.call_consensus(self.address, FALLBACK_ORACLE_ABI, "getPrice", *args, call_params=call_params)
        log.debug("FALLBACK_ORACLE_RESOLVED", requester=requester, identifier=identifier, timestamp=timestamp, price=str(price))
        return int(price)

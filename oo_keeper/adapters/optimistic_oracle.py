# /oo_keeper/adapters/optimistic_oracle.py
# Web3 binding of the optimistic oracle contract. Event logs are decoded into
# the keeper's own records here, so nothing past this module touches the ABI.
import asyncio
from collections import defaultdict
from typing import Dict, List, Optional, Set

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from oo_keeper.abis.optimistic_oracle import ERC20_ABI, OPTIMISTIC_ORACLE_ABI
from oo_keeper.adapters.base import AbstractOptimisticOracle, EventKind, LedgerEvent
from oo_keeper.core.config import settings
from oo_keeper.core.decorators import retriable_network_call, retry_before_broadcast, retry_once_on_timeout
from oo_keeper.core.errors import SubmissionRejected, TransportTimeout
from oo_keeper.core.identifiers import decode_identifier, encode_identifier
from oo_keeper.core.logger import get_logger
from oo_keeper.core.models import Dispute, PriceRequest, Proposal, RequestKey, Settlement
from oo_keeper.core.tx import TransactionManager

log = get_logger(__name__)

MAX_UINT256 = 2**256 - 1


def decode_event(kind: EventKind, args, default_liveness: int = 0, block_timestamp: Optional[int] = None):
    """Decoded log args -> keeper record.

    DisputePrice carries no time of its own; the caller passes the timestamp
    of the block the dispute was mined in.
    """
    identity = dict(
        requester=args["requester"],
        identifier=decode_identifier(args["identifier"]),
        timestamp=int(args["timestamp"]),
        ancillary_data=bytes(args["ancillaryData"]),
    )
    if kind is EventKind.REQUEST:
        return PriceRequest(currency=args["currency"], reward=int(args["reward"]), final_fee=int(args["finalFee"]), **identity)
    if kind is EventKind.PROPOSE:
        expiration = int(args["expirationTimestamp"])
        return Proposal(
            proposer=args["proposer"],
            proposed_price=int(args["proposedPrice"]),
            # The event carries only the expiry; custom liveness is not visible here.
            proposal_time=expiration - default_liveness,
            expiration_time=expiration,
            currency=args.get("currency"),
            **identity,
        )
    if kind is EventKind.DISPUTE:
        return Dispute(proposer=args["proposer"], disputer=args["disputer"], dispute_time=block_timestamp, **identity)
    return Settlement(price=int(args["price"]), payout=int(args["payout"]), **identity)


class Web3OptimisticOracle(AbstractOptimisticOracle):
    def __init__(self, tx_manager: TransactionManager, address: str = None, receipt_timeout: float = None):
        self.tx_manager = tx_manager
        self.w3: AsyncWeb3 = tx_manager.w3
        self.address = AsyncWeb3.to_checksum_address(address or settings.OPTIMISTIC_ORACLE_ADDRESS)
        self.contract = self.w3.eth.contract(address=self.address, abi=OPTIMISTIC_ORACLE_ABI)
        self.receipt_timeout = receipt_timeout or settings.RECEIPT_TIMEOUT_SECONDS
        self.default_liveness = 0
        self._currencies: Dict[RequestKey, str] = {}
        self._block_times: Dict[int, int] = {}
        self._approval_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._approved: Set[str] = set()

    async def initialize(self):
        self.default_liveness = await self.contract.functions.defaultLiveness().call()
        log.info("WEB3_OPTIMISTIC_ORACLE_INITIALIZED", address=self.address, default_liveness=self.default_liveness)

    @retriable_network_call
    async def get_latest_block(self) -> int:
        return await self.w3.eth.block_number

    @retriable_network_call
    async def get_current_time(self) -> int:
        return await self.contract.functions.getCurrentTime().call()

    @retriable_network_call
    async def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        event = getattr(self.contract.events, kind.value)
        logs = await event.get_logs(from_block=from_block, to_block=to_block)
        events = []
        for entry in logs:
            block_timestamp = None
            if kind is EventKind.DISPUTE:
                block_timestamp = await self._block_timestamp(entry["blockNumber"])
            record = decode_event(kind, entry["args"], self.default_liveness, block_timestamp)
            if isinstance(record, PriceRequest):
                self._currencies[record.key] = record.currency
            events.append(LedgerEvent(entry["blockNumber"], entry["logIndex"], record))
        return events

    async def _block_timestamp(self, block_number: int) -> int:
        if block_number not in self._block_times:
            block = await self.w3.eth.get_block(block_number)
            self._block_times[block_number] = int(block["timestamp"])
        return self._block_times[block_number]

    async def propose(self, requester, identifier, timestamp, ancillary_data, price, gas_price) -> str:
        await self._ensure_bond_allowance(RequestKey(requester, identifier, timestamp, ancillary_data), gas_price)
        fn = self.contract.functions.proposePrice(requester, encode_identifier(identifier), timestamp, ancillary_data, price)
        return await self._transact("propose", fn, gas_price)

    async def dispute(self, requester, identifier, timestamp, ancillary_data, gas_price) -> str:
        await self._ensure_bond_allowance(RequestKey(requester, identifier, timestamp, ancillary_data), gas_price)
        fn = self.contract.functions.disputePrice(requester, encode_identifier(identifier), timestamp, ancillary_data)
        return await self._transact("dispute", fn, gas_price)

    async def settle(self, requester, identifier, timestamp, ancillary_data, gas_price) -> str:
        fn = self.contract.functions.settle(requester, encode_identifier(identifier), timestamp, ancillary_data)
        return await self._transact("settle", fn, gas_price)

    async def _ensure_bond_allowance(self, key: RequestKey, gas_price: int):
        currency = self._currencies.get(key)
        if currency is None:
            log.warning("BOND_CURRENCY_UNKNOWN_SKIPPING_APPROVAL", requester=key.requester, identifier=key.identifier, timestamp=key.timestamp)
            return
        if currency in self._approved:
            return
        # Items of one cycle run concurrently; one approval per currency.
        async with self._approval_locks[currency]:
            if currency in self._approved:
                return
            token = self.w3.eth.contract(address=currency, abi=ERC20_ABI)
            allowance = await token.functions.allowance(self.tx_manager.address, self.address).call()
            if allowance < MAX_UINT256 // 2:
                log.info("APPROVING_BOND_CURRENCY", currency=currency, spender=self.address)
                await self._transact("approve", token.functions.approve(self.address, MAX_UINT256), gas_price)
            self._approved.add(currency)

    async def _transact(self, action: str, fn, gas_price: int) -> str:
        tx_params = await self._dry_run(action, fn, gas_price)
        # Sent exactly once. Only the wait below is retried.
        tx_hash = await self.tx_manager.build_and_send_transaction(tx_params)
        receipt = await self._await_receipt(action, tx_hash)
        if receipt["status"] != 1:
            raise SubmissionRejected(action, f"reverted on-chain in {tx_hash}")
        return tx_hash

    @retry_before_broadcast
    async def _dry_run(self, action: str, fn, gas_price: int) -> dict:
        sender = self.tx_manager.address
        try:
            # Reverts come back here with their reason and cost nothing.
            await fn.call({"from": sender})
            tx_params = await fn.build_transaction({"from": sender, "maxFeePerGas": gas_price})
        except ContractLogicError as e:
            raise SubmissionRejected(action, str(e.message or e)) from e
        tx_params.pop("nonce", None)
        return tx_params

    @retry_once_on_timeout
    async def _await_receipt(self, action: str, tx_hash: str):
        try:
            return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise TransportTimeout(f"{action} {tx_hash} not mined within {self.receipt_timeout}s") from e

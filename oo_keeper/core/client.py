# /oo_keeper/core/client.py
# Reconciled, read-only view of optimistic oracle price requests.
#
# The view is rebuilt from the full event history on every update(). New
# events are fetched from a block cursor and appended to the cached raw
# history, so each cycle only queries the blocks it has not yet seen while
# classification always runs over everything.
import asyncio
from typing import Dict, List, NamedTuple, Optional

from oo_keeper.adapters.base import AbstractFallbackOracle, AbstractOptimisticOracle, EventKind, LedgerEvent
from oo_keeper.core.errors import QueryError, StaleStateError
from oo_keeper.core.logger import get_logger
from oo_keeper.core.models import (
    Dispute,
    PriceRequest,
    Proposal,
    RequestKey,
    RequestStage,
    Resolution,
)

log = get_logger(__name__)


class _View(NamedTuple):
    current_time: int
    keys: List[RequestKey]
    stages: Dict[RequestKey, RequestStage]
    requests: Dict[RequestKey, PriceRequest]
    proposals: Dict[RequestKey, Proposal]
    disputes: Dict[RequestKey, Dispute]
    resolutions: Dict[RequestKey, Resolution]


class OptimisticOracleClient:
    """
    Owns the reconciled lifecycle view. The keeper only reads from it.
    """
    def __init__(
        self,
        oracle: AbstractOptimisticOracle,
        fallback_oracle: AbstractFallbackOracle,
        start_block: int = 0,
        max_block_range: Optional[int] = None,
    ):
        self.oracle = oracle
        self.fallback_oracle = fallback_oracle
        self.max_block_range = max_block_range
        self._history: Dict[EventKind, List[LedgerEvent]] = {kind: [] for kind in EventKind}
        self._last_scanned_block = start_block - 1
        self._view: Optional[_View] = None

    @property
    def last_scanned_block(self) -> int:
        return self._last_scanned_block

    async def update(self):
        """Rebuilds the view. Raises QueryError and keeps the last good view on failure."""
        try:
            latest_block = await self.oracle.get_latest_block()
            history = {kind: list(events) for kind, events in self._history.items()}
            if latest_block > self._last_scanned_block:
                for kind in EventKind:
                    history[kind].extend(await self._fetch_events(kind, self._last_scanned_block + 1, latest_block))
            current_time = await self.oracle.get_current_time()
            view = await self._reconcile(history, current_time)
        except QueryError:
            raise
        except Exception as e:
            log.error("ORACLE_CLIENT_UPDATE_FAILED", error=str(e), last_scanned_block=self._last_scanned_block)
            raise QueryError(str(e)) from e

        self._history = history
        self._last_scanned_block = max(latest_block, self._last_scanned_block)
        self._view = view
        log.info(
            "ORACLE_CLIENT_UPDATED",
            last_scanned_block=self._last_scanned_block,
            current_time=current_time,
            requests=len(view.keys),
            unproposed=sum(1 for s in view.stages.values() if s is RequestStage.REQUESTED),
            disputed=len(view.disputes),
        )

    async def _fetch_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        if not self.max_block_range:
            return await self.oracle.get_events(kind, from_block, to_block)
        events: List[LedgerEvent] = []
        start = from_block
        while start <= to_block:
            end = min(start + self.max_block_range - 1, to_block)
            events.extend(await self.oracle.get_events(kind, start, end))
            start = end + 1
        return events

    async def _reconcile(self, history: Dict[EventKind, List[LedgerEvent]], current_time: int) -> _View:
        ordered = sorted(
            (event for events in history.values() for event in events),
            key=lambda e: (e.block_number, e.log_index),
        )

        keys: List[RequestKey] = []
        requests: Dict[RequestKey, PriceRequest] = {}
        proposals: Dict[RequestKey, Proposal] = {}
        disputes: Dict[RequestKey, Dispute] = {}
        settled = set()
        seen = set()

        for event in ordered:
            record = event.record
            key = record.key
            if key not in seen:
                seen.add(key)
                keys.append(key)
            if isinstance(record, PriceRequest):
                requests.setdefault(key, record)
            elif isinstance(record, Proposal):
                if key in proposals:
                    log.warning("DUPLICATE_PROPOSAL_EVENT_IGNORED", requester=key.requester, identifier=key.identifier, timestamp=key.timestamp)
                    continue
                proposals[key] = record
            elif isinstance(record, Dispute):
                if key in disputes:
                    log.warning("DUPLICATE_DISPUTE_EVENT_IGNORED", requester=key.requester, identifier=key.identifier, timestamp=key.timestamp)
                    continue
                disputes[key] = record
            else:
                settled.add(key)

        # Carry the collateral currency onto proposals for bonding.
        for key, proposal in list(proposals.items()):
            if proposal.currency is None and key in requests:
                proposals[key] = proposal.model_copy(update={"currency": requests[key].currency})

        pending = [key for key in disputes if key not in settled]
        answers = await asyncio.gather(
            *(self.fallback_oracle.get_resolution(key.requester, key.identifier, key.timestamp, key.ancillary_data) for key in pending)
        )
        resolutions = {
            key: Resolution(identifier=key.identifier, timestamp=key.timestamp, ancillary_data=key.ancillary_data, price=price)
            for key, price in zip(pending, answers)
            if price is not None
        }

        stages: Dict[RequestKey, RequestStage] = {}
        for key in keys:
            if key in settled:
                stages[key] = RequestStage.SETTLED
            elif key in disputes:
                stages[key] = RequestStage.SETTLEABLE_DISPUTE if key in resolutions else RequestStage.DISPUTED
            elif key in proposals:
                if proposals[key].is_expired(current_time):
                    stages[key] = RequestStage.SETTLEABLE_PROPOSAL
                else:
                    stages[key] = RequestStage.PROPOSED
            else:
                stages[key] = RequestStage.REQUESTED

        return _View(current_time, keys, stages, requests, proposals, disputes, resolutions)

    # ------------------------------------------------------------------
    # Read accessors. All operate on the last successfully fetched view.
    # ------------------------------------------------------------------

    def _require_view(self) -> _View:
        if self._view is None:
            raise StaleStateError("update() has not completed successfully yet")
        return self._view

    def _keys_in(self, stage: RequestStage) -> List[RequestKey]:
        view = self._require_view()
        return [key for key in view.keys if view.stages[key] is stage]

    def get_current_time(self) -> int:
        return self._require_view().current_time

    def get_stage(self, key: RequestKey) -> Optional[RequestStage]:
        return self._require_view().stages.get(key)

    def get_unproposed_price_requests(self) -> List[PriceRequest]:
        view = self._require_view()
        return [view.requests[key] for key in self._keys_in(RequestStage.REQUESTED) if key in view.requests]

    def get_undisputed_proposals(self) -> List[Proposal]:
        view = self._require_view()
        return [view.proposals[key] for key in self._keys_in(RequestStage.PROPOSED)]

    def get_settleable_proposals(self, account: str) -> List[Proposal]:
        view = self._require_view()
        return [
            view.proposals[key]
            for key in self._keys_in(RequestStage.SETTLEABLE_PROPOSAL)
            if view.proposals[key].proposer.lower() == account.lower()
        ]

    def get_disputed_unresolved(self) -> List[Dispute]:
        view = self._require_view()
        return [view.disputes[key] for key in self._keys_in(RequestStage.DISPUTED)]

    def get_settleable_disputes(self, account: str) -> List[Dispute]:
        # Only surfaced to the disputer, who reclaims their bond by settling.
        view = self._require_view()
        return [
            view.disputes[key]
            for key in self._keys_in(RequestStage.SETTLEABLE_DISPUTE)
            if view.disputes[key].disputer.lower() == account.lower()
        ]

    def get_settled(self) -> List[RequestKey]:
        return self._keys_in(RequestStage.SETTLED)

    def get_resolution(self, key: RequestKey) -> Optional[Resolution]:
        return self._require_view().resolutions.get(key)

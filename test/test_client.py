# /test/test_client.py
# Reconciliation of optimistic oracle events into lifecycle stages.

import pytest

from oo_keeper.core.client import OptimisticOracleClient
from oo_keeper.core.errors import QueryError, StaleStateError
from oo_keeper.core.models import PriceRequest, RequestKey, RequestStage

from conftest import (
    BOT_RUNNER,
    COLLATERAL,
    CORRECT_PRICE,
    DISPUTER,
    FINAL_FEE,
    IDENTIFIER,
    IDENTIFIERS_TO_TEST,
    LIVENESS,
    PROPOSER,
    RANDO,
    REQUESTER,
    REQUEST_TIME,
)


def _snapshot(client):
    return (
        client.get_unproposed_price_requests(),
        client.get_undisputed_proposals(),
        client.get_settleable_proposals(PROPOSER),
        client.get_settleable_disputes(DISPUTER),
        client.get_disputed_unresolved(),
        client.get_settled(),
    )


def test_accessors_raise_before_first_update(client):
    with pytest.raises(StaleStateError):
        client.get_unproposed_price_requests()
    with pytest.raises(StaleStateError):
        client.get_undisputed_proposals()
    with pytest.raises(StaleStateError):
        client.get_settleable_proposals(PROPOSER)
    with pytest.raises(StaleStateError):
        client.get_settleable_disputes(DISPUTER)


@pytest.mark.asyncio
async def test_unproposed_price_requests(client):
    """
    GIVEN one pending request per test identifier
    WHEN the client updates
    THEN each request is reported unproposed, in emission order
    """
    await client.update()

    assert client.get_undisputed_proposals() == []
    assert client.get_settleable_proposals(PROPOSER) == []

    expected = [
        PriceRequest(
            requester=REQUESTER,
            identifier=identifier,
            timestamp=REQUEST_TIME,
            ancillary_data=b"",
            currency=COLLATERAL,
            reward=0,
            final_fee=FINAL_FEE,
        )
        for identifier in IDENTIFIERS_TO_TEST
    ]
    assert client.get_unproposed_price_requests() == expected


@pytest.mark.asyncio
async def test_dispute_lifecycle(client, oracle, fallback_oracle):
    await client.update()
    assert client.get_settleable_disputes(DISPUTER) == []

    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    await client.update()
    undisputed = client.get_undisputed_proposals()
    assert [(p.proposer, p.identifier, p.proposed_price) for p in undisputed] == [(PROPOSER, IDENTIFIER, CORRECT_PRICE)]
    assert undisputed[0].expiration_time == oracle.current_time + LIVENESS
    assert client.get_settleable_disputes(DISPUTER) == []

    await oracle.dispute(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", sender=DISPUTER)
    # The view only moves on update().
    assert client.get_settleable_disputes(DISPUTER) == []
    await client.update()
    assert client.get_undisputed_proposals() == []
    assert client.get_settleable_disputes(DISPUTER) == []
    assert [d.disputer for d in client.get_disputed_unresolved()] == [DISPUTER]

    fallback_oracle.push_pending_price(IDENTIFIER, REQUEST_TIME, CORRECT_PRICE)
    await client.update()
    # Only the disputer sees the dispute as settleable.
    assert client.get_settleable_disputes(RANDO) == []
    result = client.get_settleable_disputes(DISPUTER)
    assert [(d.requester, d.proposer, d.disputer, d.identifier, d.timestamp) for d in result] == [
        (REQUESTER, PROPOSER, DISPUTER, IDENTIFIER, REQUEST_TIME)
    ]
    key = RequestKey(REQUESTER, IDENTIFIER, REQUEST_TIME, b"")
    assert client.get_resolution(key).price == CORRECT_PRICE

    await oracle.settle(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", sender=RANDO)
    await client.update()
    assert client.get_settleable_disputes(DISPUTER) == []
    assert client.get_stage(key) is RequestStage.SETTLED


@pytest.mark.asyncio
async def test_dispute_resolves_on_requester_stamped_data(client, oracle, fallback_oracle):
    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    await oracle.dispute(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", sender=DISPUTER)
    assert fallback_oracle.pending_queries == [
        (IDENTIFIER, REQUEST_TIME, b"ooRequester:00000000000000000000000000000000000000a1")
    ]

    # A price under the raw, unstamped data answers a different query.
    fallback_oracle.push_price(IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE)
    await client.update()
    assert client.get_settleable_disputes(DISPUTER) == []

    fallback_oracle.push_pending_price(IDENTIFIER, REQUEST_TIME, CORRECT_PRICE)
    await client.update()
    assert [d.disputer for d in client.get_settleable_disputes(DISPUTER)] == [DISPUTER]

@pytest.mark.asyncio
async def test_expired_proposal_is_settleable_by_proposer_only(client, oracle):
    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    oracle.advance_time(LIVENESS - 1)
    await client.update()
    assert len(client.get_undisputed_proposals()) == 1
    assert client.get_settleable_proposals(PROPOSER) == []

    oracle.advance_time(1)
    await client.update()
    assert client.get_undisputed_proposals() == []
    assert [p.proposer for p in client.get_settleable_proposals(PROPOSER)] == [PROPOSER]
    assert client.get_settleable_proposals(BOT_RUNNER) == []


@pytest.mark.asyncio
async def test_every_request_lands_in_exactly_one_bucket(client, oracle, fallback_oracle):
    def request(ts):
        oracle.request_price(REQUESTER, IDENTIFIER, ts, b"", COLLATERAL, 0)

    for ts in (101, 102, 103, 104, 105):
        request(ts)

    # 101 proposed, 102 proposed then expired, 103 disputed, 104 disputed and resolved,
    # 105 expired then settled. The fixture's three requests stay unproposed.
    await oracle.propose(REQUESTER, IDENTIFIER, 102, b"", 1, sender=PROPOSER)
    await oracle.propose(REQUESTER, IDENTIFIER, 105, b"", 1, sender=PROPOSER)
    oracle.advance_time(LIVENESS)
    await oracle.settle(REQUESTER, IDENTIFIER, 105, b"", sender=PROPOSER)
    for ts in (101, 103, 104):
        await oracle.propose(REQUESTER, IDENTIFIER, ts, b"", 1, sender=PROPOSER)
    for ts in (103, 104):
        await oracle.dispute(REQUESTER, IDENTIFIER, ts, b"", sender=DISPUTER)
    fallback_oracle.push_pending_price(IDENTIFIER, 104, 2)

    await client.update()

    buckets = {
        "unproposed": [r.key for r in client.get_unproposed_price_requests()],
        "undisputed": [p.key for p in client.get_undisputed_proposals()],
        "settleable_proposal": [p.key for p in client.get_settleable_proposals(PROPOSER)],
        "disputed": [d.key for d in client.get_disputed_unresolved()],
        "settleable_dispute": [d.key for d in client.get_settleable_disputes(DISPUTER)],
        "settled": client.get_settled(),
    }
    all_keys = [key for keys in buckets.values() for key in keys]
    assert len(all_keys) == len(set(all_keys)) == 8
    assert [k.timestamp for k in buckets["undisputed"]] == [101]
    assert [k.timestamp for k in buckets["settleable_proposal"]] == [102]
    assert [k.timestamp for k in buckets["disputed"]] == [103]
    assert [k.timestamp for k in buckets["settleable_dispute"]] == [104]
    assert [k.timestamp for k in buckets["settled"]] == [105]
    assert len(buckets["unproposed"]) == 3


@pytest.mark.asyncio
async def test_update_is_idempotent(client, oracle, fallback_oracle):
    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    await oracle.dispute(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", sender=DISPUTER)
    fallback_oracle.push_pending_price(IDENTIFIER, REQUEST_TIME, CORRECT_PRICE)

    await client.update()
    first = _snapshot(client)
    await client.update()
    assert _snapshot(client) == first


@pytest.mark.asyncio
async def test_cursor_only_scans_new_blocks(client, oracle):
    await client.update()
    first_scan_end = oracle.block_number
    assert client.last_scanned_block == first_scan_end
    assert {call[1] for call in oracle.get_events_calls} == {0}

    oracle.get_events_calls.clear()
    await client.update()
    assert oracle.get_events_calls == []

    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    await client.update()
    assert {(call[1], call[2]) for call in oracle.get_events_calls} == {(first_scan_end + 1, oracle.block_number)}
    # Earlier requests are still classified from the cached history.
    assert len(client.get_unproposed_price_requests()) == 2
    assert len(client.get_undisputed_proposals()) == 1


@pytest.mark.asyncio
async def test_event_scan_is_chunked_by_block_range(oracle, fallback_oracle):
    client = OptimisticOracleClient(oracle, fallback_oracle, start_block=1, max_block_range=2)
    await client.update()
    ranges = sorted({(call[1], call[2]) for call in oracle.get_events_calls})
    assert ranges == [(1, 2), (3, 3)]
    assert len(client.get_unproposed_price_requests()) == 3


@pytest.mark.asyncio
async def test_failed_update_keeps_last_good_view(client, oracle):
    await client.update()
    before = client.get_unproposed_price_requests()
    cursor = client.last_scanned_block

    oracle.request_price(REQUESTER, IDENTIFIER, REQUEST_TIME + 1, b"", COLLATERAL, 0)
    oracle.fail_queries = True
    with pytest.raises(QueryError):
        await client.update()
    assert client.get_unproposed_price_requests() == before
    assert client.last_scanned_block == cursor

    oracle.fail_queries = False
    await client.update()
    assert len(client.get_unproposed_price_requests()) == 4


@pytest.mark.asyncio
async def test_fallback_oracle_failure_fails_update(client, oracle, fallback_oracle):
    await oracle.propose(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", CORRECT_PRICE, sender=PROPOSER)
    await oracle.dispute(REQUESTER, IDENTIFIER, REQUEST_TIME, b"", sender=DISPUTER)
    fallback_oracle.fail_queries = True
    with pytest.raises(QueryError):
        await client.update()
    with pytest.raises(StaleStateError):
        client.get_disputed_unresolved()

import pytest

from fakes import FakeLedger, event
from ip_onchain_client.config import DEVELOPMENT_IDENTITY
from ip_onchain_client.errors import (
    ChainRejectionError,
    EventFetchError,
    EventMismatchError,
    FinalizationError,
    Stage,
    SubmissionError,
    TransportError,
)
from ip_onchain_client.ledger import EventMatcher, LedgerCall
from ip_onchain_client.pipeline import TransactionPipeline

CALL = LedgerCall(
    pallet="IpOnchain", function="create_entity", params={"authority_id": 1}
)
ENTITY_ADDED = EventMatcher("IpOnchain", "EntityAdded")


def ledger_with(*events, **kwargs) -> FakeLedger:
    return FakeLedger(events={CALL.name: list(events)}, **kwargs)


async def confirm(ledger: FakeLedger, expected: EventMatcher = ENTITY_ADDED):
    return await TransactionPipeline(ledger).submit_and_confirm(
        CALL, DEVELOPMENT_IDENTITY, expected
    )


@pytest.mark.asyncio
async def test_returns_expected_event():
    ledger = ledger_with(
        event("System", "NewAccount"),
        event("IpOnchain", "EntityAdded", entity_id=7),
        event("System", "ExtrinsicSuccess"),
    )

    result = await confirm(ledger)

    assert result.attributes == {"entity_id": 7}
    assert ledger.submitted == [(CALL, DEVELOPMENT_IDENTITY)]


@pytest.mark.asyncio
async def test_first_matching_event_in_receipt_order_wins():
    a = event("IpOnchain", "EntityAdded", entity_id=1, owner="other")
    b = event("IpOnchain", "EntityAdded", entity_id=2, owner="me")
    c = event("IpOnchain", "EntityAdded", entity_id=3, owner="me")
    ledger = ledger_with(a, b, c)
    mine = EventMatcher(
        "IpOnchain", "EntityAdded", where=lambda e: e.attributes["owner"] == "me"
    )

    result = await confirm(ledger, mine)

    assert result == b


@pytest.mark.asyncio
async def test_finalized_without_expected_event_is_a_mismatch():
    ledger = ledger_with(event("IpOnchain", "Other"))

    with pytest.raises(EventMismatchError) as exc_info:
        await confirm(ledger)

    error = exc_info.value
    assert not isinstance(error, (TransportError, ChainRejectionError))
    assert error.stage == Stage.tx_event_match
    assert error.expected == "IpOnchain.EntityAdded"
    assert error.observed == ["IpOnchain.Other"]


@pytest.mark.asyncio
async def test_submission_rejected():
    ledger = ledger_with(submit_error="1010: Invalid Transaction")

    with pytest.raises(SubmissionError) as exc_info:
        await confirm(ledger)

    assert isinstance(exc_info.value, ChainRejectionError)
    assert exc_info.value.stage == Stage.tx_submit
    assert "Invalid Transaction" in str(exc_info.value)
    assert ledger.finalize_calls == 0


@pytest.mark.asyncio
async def test_dropped_transaction_fails_finalization():
    ledger = ledger_with(finalize_error="dropped")

    with pytest.raises(FinalizationError) as exc_info:
        await confirm(ledger)

    assert exc_info.value.stage == Stage.tx_finalize
    assert exc_info.value.identifier.startswith("0x")
    assert ledger.event_fetches == 0
    assert len(ledger.submitted) == 1


@pytest.mark.asyncio
async def test_dispatch_failure_fails_finalization():
    ledger = ledger_with(
        event("IpOnchain", "EntityAdded", entity_id=7),
        dispatch_error="IpOnchain.AuthorityNotFound",
    )

    with pytest.raises(FinalizationError, match="AuthorityNotFound"):
        await confirm(ledger)


@pytest.mark.asyncio
async def test_event_fetch_failure():
    ledger = ledger_with(events_error="connection reset")

    with pytest.raises(EventFetchError) as exc_info:
        await confirm(ledger)

    assert exc_info.value.stage == Stage.tx_events
    assert isinstance(exc_info.value, TransportError)

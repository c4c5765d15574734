import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

pytest.importorskip("substrateinterface")

from substrateinterface.exceptions import SubstrateRequestException  # noqa: E402

from ip_onchain_client.config import DEVELOPMENT_IDENTITY  # noqa: E402
from ip_onchain_client.errors import (  # noqa: E402
    FinalizationError,
    Stage,
    SubmissionError,
)
from ip_onchain_client.ledger import (  # noqa: E402
    EventMatcher,
    LedgerCall,
    LedgerError,
)
from ip_onchain_client.pipeline import TransactionPipeline  # noqa: E402
from ip_onchain_client.substrate import SubstrateLedgerClient  # noqa: E402

CALL = LedgerCall(
    pallet="IpOnchain", function="create_authority", params={"name": "Label"}
)
AUTHORITY_ADDED = EventMatcher(pallet="IpOnchain", name="AuthorityAdded")
EXTRINSIC_HASH = "0x" + "ab" * 32


def pool(*statuses, release=None):
    """Stands in for ``rpc_request``, replaying pool statuses to the handler."""

    def rpc_request(method, params, result_handler=None):
        for update_nr, status in enumerate(statuses):
            message = {"params": {"subscription": "0x01", "result": status}}
            result = result_handler(message, update_nr, "0x01")
            if result is not None:
                return result
        if release is not None:
            release.wait(5)
        return {"status": "finalized", "block_hash": "0xlate"}

    return rpc_request


def receipts(is_success=True, events=()):
    def factory(substrate, **kwargs):
        return SimpleNamespace(
            **kwargs,
            is_success=is_success,
            error_message=None if is_success else {"name": "BadOrigin"},
            triggered_events=list(events),
        )

    return factory


@pytest.fixture
def substrate():
    substrate = MagicMock()
    substrate.create_signed_extrinsic.return_value = SimpleNamespace(
        extrinsic_hash=bytes.fromhex("ab" * 32), data="0xdeadbeef"
    )
    return substrate


def make_client(substrate, **kwargs):
    return SubstrateLedgerClient(
        substrate,
        keypair_factory=lambda identity: f"keypair:{identity.label}",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sign_and_submit_returns_once_accepted(substrate):
    substrate.rpc_request.side_effect = pool("ready", {"finalized": "0xblock"})
    client = make_client(substrate, receipt_factory=receipts())

    handle = await client.sign_and_submit(CALL, DEVELOPMENT_IDENTITY)

    substrate.compose_call.assert_called_once_with(
        call_module="IpOnchain",
        call_function="create_authority",
        call_params={"name": "Label"},
    )
    signed = substrate.create_signed_extrinsic.call_args.kwargs
    assert signed["keypair"] == "keypair://Alice"
    method, params = substrate.rpc_request.call_args.args
    assert method == "author_submitAndWatchExtrinsic"
    assert params == ["0xdeadbeef"]
    assert handle.extrinsic_hash == EXTRINSIC_HASH

    finalized = await client.wait_for_finalization(handle)

    assert finalized.success is True
    assert finalized.block_hash == "0xblock"
    assert handle.receipt.extrinsic_hash == EXTRINSIC_HASH


@pytest.mark.asyncio
async def test_rejected_submission_is_a_submission_error(substrate):
    substrate.rpc_request.side_effect = SubstrateRequestException(
        {"code": 1010, "message": "Invalid Transaction"}
    )
    pipeline = TransactionPipeline(make_client(substrate))

    with pytest.raises(SubmissionError) as exc_info:
        await pipeline.submit_and_confirm(CALL, DEVELOPMENT_IDENTITY, AUTHORITY_ADDED)

    assert exc_info.value.stage == Stage.tx_submit
    assert "Invalid Transaction" in str(exc_info.value)


@pytest.mark.parametrize("status", ["dropped", "invalid", "usurped"])
@pytest.mark.asyncio
async def test_pool_failure_after_acceptance_is_a_finalization_error(
    substrate, status
):
    result = status if status != "usurped" else {"usurped": "0xother"}
    substrate.rpc_request.side_effect = pool("ready", result)
    pipeline = TransactionPipeline(make_client(substrate))

    with pytest.raises(FinalizationError) as exc_info:
        await pipeline.submit_and_confirm(CALL, DEVELOPMENT_IDENTITY, AUTHORITY_ADDED)

    assert exc_info.value.stage == Stage.tx_finalize
    assert exc_info.value.identifier == EXTRINSIC_HASH
    assert status in str(exc_info.value)


@pytest.mark.asyncio
async def test_finalization_wait_is_bounded(substrate):
    release = threading.Event()
    substrate.rpc_request.side_effect = pool("ready", release=release)
    client = make_client(substrate, finalization_timeout=0.05)

    try:
        handle = await client.sign_and_submit(CALL, DEVELOPMENT_IDENTITY)
        with pytest.raises(LedgerError, match="not finalized within"):
            await client.wait_for_finalization(handle)
    finally:
        release.set()


@pytest.mark.asyncio
async def test_finalization_reports_dispatch_failure(substrate):
    substrate.rpc_request.side_effect = pool({"finalized": "0xblock"})
    client = make_client(substrate, receipt_factory=receipts(is_success=False))
    handle = await client.sign_and_submit(CALL, DEVELOPMENT_IDENTITY)

    finalized = await client.wait_for_finalization(handle)

    assert finalized.success is False
    assert "BadOrigin" in finalized.error_message


@pytest.mark.asyncio
async def test_pipeline_matches_event_from_finalized_receipt(substrate):
    records = [
        SimpleNamespace(
            value={
                "event": {
                    "module_id": "IpOnchain",
                    "event_id": "AuthorityAdded",
                    "attributes": {"authority_id": 2},
                }
            }
        ),
        {"module_id": "System", "event_id": "ExtrinsicSuccess", "attributes": None},
    ]
    substrate.rpc_request.side_effect = pool("ready", {"finalized": "0xblock"})
    client = make_client(substrate, receipt_factory=receipts(events=records))

    event = await TransactionPipeline(client).submit_and_confirm(
        CALL, DEVELOPMENT_IDENTITY, AUTHORITY_ADDED
    )

    assert event.attributes == {"authority_id": 2}


@pytest.mark.asyncio
async def test_read_storage_and_encode(substrate):
    client = make_client(substrate)
    substrate.query.return_value = SimpleNamespace(value={"state": "Validate"})
    substrate.compose_call.return_value = SimpleNamespace(
        data=SimpleNamespace(data=bytearray(b"\x2a\x00"))
    )

    assert await client.read_storage("Arweave", "Tasks", [3]) == {"state": "Validate"}
    substrate.query.assert_called_once_with("Arweave", "Tasks", [3])
    assert await client.encode_call(CALL) == b"\x2a\x00"

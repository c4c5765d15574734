"""``LedgerClient`` backed by substrate-interface.

substrate-interface is blocking, so every RPC runs in a worker thread and the
event loop stays free for other workflows.

Submission and finalization are separate steps. ``sign_and_submit`` opens an
``author_submitAndWatchExtrinsic`` subscription and returns as soon as the
node reports the first pool status. ``wait_for_finalization`` consumes the rest
of that subscription, bounded by ``finalization_timeout``.
"""

import asyncio
from typing import Any, Callable, List, Optional, Tuple

from loguru import logger
from substrateinterface import Keypair, SubstrateInterface
from substrateinterface.base import ExtrinsicReceipt
from substrateinterface.exceptions import SubstrateRequestException
from websocket import WebSocketException

from ip_onchain_client.ledger import (
    FinalizedTransaction,
    LedgerCall,
    LedgerError,
    LedgerEvent,
    SubmissionHandle,
)
from ip_onchain_client.models import SigningIdentity

_RPC_ERRORS = (SubstrateRequestException, WebSocketException, OSError, ValueError)

# Pool statuses that end the watch without the extrinsic ever being finalized.
FAILED_STATUSES = ("dropped", "invalid", "usurped", "finalityTimeout")


def keypair_for(identity: SigningIdentity) -> Keypair:
    if identity.secret_phrase is not None:
        return Keypair.create_from_mnemonic(identity.secret_phrase.get_secret_value())
    return Keypair.create_from_uri(identity.uri)


def _to_event(record: Any) -> LedgerEvent:
    value = getattr(record, "value", record)
    event = value.get("event", value)
    return LedgerEvent(
        pallet=event["module_id"],
        name=event["event_id"],
        attributes=event.get("attributes"),
    )


def _status(message: dict) -> Tuple[str, Any]:
    # "ready" or {"finalized": "0x<block hash>"}
    result = message["params"]["result"]
    if isinstance(result, str):
        return result, None
    return next(iter(result.items()))


class _ExtrinsicWatch:
    """Feeds pool statuses from the subscription thread back to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.accepted: asyncio.Future = loop.create_future()

    def _accept(self, status: str) -> None:
        if not self.accepted.done():
            self.accepted.set_result(status)

    def handle(
        self, message: dict, update_nr: int, subscription_id: str
    ) -> Optional[dict]:
        status, block_hash = _status(message)
        self.loop.call_soon_threadsafe(self._accept, status)
        if status == "finalized" or status in FAILED_STATUSES:
            return {"status": status, "block_hash": block_hash}
        return None


class SubstrateLedgerClient:
    def __init__(
        self,
        substrate: SubstrateInterface,
        keypair_factory: Callable[[SigningIdentity], Keypair] = keypair_for,
        finalization_timeout: float = 300.0,
        receipt_factory: Callable[..., Any] = ExtrinsicReceipt,
    ):
        self.substrate = substrate
        self.keypair_factory = keypair_factory
        self.finalization_timeout = finalization_timeout
        self.receipt_factory = receipt_factory
        self.logger = logger

    @classmethod
    async def connect(
        cls, url: str, finalization_timeout: float = 300.0
    ) -> "SubstrateLedgerClient":
        try:
            substrate = await asyncio.to_thread(SubstrateInterface, url=url)
        except _RPC_ERRORS as e:
            raise LedgerError(f"chain rpc api: {e}") from e
        return cls(substrate, finalization_timeout=finalization_timeout)

    async def close(self) -> None:
        await asyncio.to_thread(self.substrate.close)

    async def _run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except _RPC_ERRORS as e:
            raise LedgerError(str(e)) from e

    def _compose(self, call: LedgerCall) -> Any:
        return self.substrate.compose_call(
            call_module=call.pallet,
            call_function=call.function,
            call_params=call.params,
        )

    def _sign(self, call: LedgerCall, signer: SigningIdentity) -> Any:
        keypair = self.keypair_factory(signer)
        return self.substrate.create_signed_extrinsic(
            call=self._compose(call), keypair=keypair
        )

    async def encode_call(self, call: LedgerCall) -> bytes:
        composed = await self._run(self._compose, call)
        return bytes(composed.data.data)

    async def sign_and_submit(
        self, call: LedgerCall, signer: SigningIdentity
    ) -> SubmissionHandle:
        """Sign and submit; returns once the node has accepted the extrinsic."""
        extrinsic = await self._run(self._sign, call, signer)
        extrinsic_hash = f"0x{extrinsic.extrinsic_hash.hex()}"
        log = self.logger.bind(call=call.name, id=extrinsic_hash)
        log.debug("Extrinsic signed")

        watch = _ExtrinsicWatch(asyncio.get_running_loop())
        outcome = asyncio.ensure_future(
            self._run(
                self.substrate.rpc_request,
                "author_submitAndWatchExtrinsic",
                [str(extrinsic.data)],
                result_handler=watch.handle,
            )
        )
        await asyncio.wait(
            {watch.accepted, outcome}, return_when=asyncio.FIRST_COMPLETED
        )
        if not watch.accepted.done():
            watch.accepted.cancel()
            # A node rejecting the extrinsic raises LedgerError here.
            await outcome
            raise LedgerError(f"extrinsic {extrinsic_hash} was never accepted")

        log.debug(f"Extrinsic accepted: {watch.accepted.result()}")
        return SubmissionHandle(extrinsic_hash=extrinsic_hash, watch=outcome)

    async def wait_for_finalization(
        self, handle: SubmissionHandle
    ) -> FinalizedTransaction:
        try:
            outcome = await asyncio.wait_for(handle.watch, self.finalization_timeout)
        except asyncio.TimeoutError as e:
            raise LedgerError(
                f"extrinsic {handle.extrinsic_hash} not finalized "
                f"within {self.finalization_timeout}s"
            ) from e
        if outcome["status"] != "finalized":
            raise LedgerError(f"extrinsic {handle.extrinsic_hash} {outcome['status']}")

        handle.receipt = self.receipt_factory(
            self.substrate,
            extrinsic_hash=handle.extrinsic_hash,
            block_hash=outcome["block_hash"],
            finalized=True,
        )
        success = await self._run(lambda: handle.receipt.is_success)
        error_message = None if success else handle.receipt.error_message
        return FinalizedTransaction(
            extrinsic_hash=handle.extrinsic_hash,
            block_hash=outcome["block_hash"],
            success=success,
            error_message=str(error_message) if error_message is not None else None,
        )

    async def fetch_events(self, handle: SubmissionHandle) -> List[LedgerEvent]:
        records = await self._run(lambda: handle.receipt.triggered_events)
        return [_to_event(record) for record in records]

    async def read_storage(self, pallet: str, item: str, params: List[Any]) -> Any:
        result = await self._run(self.substrate.query, pallet, item, params)
        return result.value

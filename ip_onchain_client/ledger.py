"""Narrow boundary between the workflow and a ledger RPC client.

The workflow only ever needs to build a call from named fields, match an
event by its declared pallet and name, and read a storage item by key. The
generated chain schema stays behind this boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol

from pydantic import BaseModel, Field

from ip_onchain_client.models import SigningIdentity


class LedgerError(Exception):
    """Raised by ledger adapters for any RPC, transport or chain-level failure."""


class LedgerCall(BaseModel):
    pallet: str
    function: str
    params: dict = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{self.pallet}.{self.function}"


class LedgerEvent(BaseModel):
    pallet: str
    name: str
    attributes: Any = None

    @property
    def qualified_name(self) -> str:
        return f"{self.pallet}.{self.name}"

    def attribute(self, key: str) -> Any:
        if isinstance(self.attributes, dict):
            return self.attributes[key]
        raise KeyError(key)


@dataclass(frozen=True)
class EventMatcher:
    """Matches events by pallet and name, optionally narrowed by a predicate."""

    pallet: str
    name: str
    where: Optional[Callable[[LedgerEvent], bool]] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.pallet}.{self.name}"

    def matches(self, event: LedgerEvent) -> bool:
        if event.pallet != self.pallet or event.name != self.name:
            return False
        return self.where is None or self.where(event)


@dataclass
class SubmissionHandle:
    extrinsic_hash: str
    receipt: Any = field(default=None, repr=False)
    watch: Any = field(default=None, repr=False)


class FinalizedTransaction(BaseModel):
    extrinsic_hash: str
    block_hash: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None


class LedgerClient(Protocol):
    async def sign_and_submit(
        self, call: LedgerCall, signer: SigningIdentity
    ) -> SubmissionHandle:
        ...

    async def wait_for_finalization(
        self, handle: SubmissionHandle
    ) -> FinalizedTransaction:
        ...

    async def fetch_events(self, handle: SubmissionHandle) -> List[LedgerEvent]:
        ...

    async def read_storage(self, pallet: str, item: str, params: List[Any]) -> Any:
        ...

    async def encode_call(self, call: LedgerCall) -> bytes:
        ...

    async def close(self) -> None:
        ...

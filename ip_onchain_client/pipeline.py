from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from loguru import logger

from ip_onchain_client.errors import (
    EventFetchError,
    EventMismatchError,
    FinalizationError,
    Stage,
    SubmissionError,
)
from ip_onchain_client.ledger import (
    EventMatcher,
    FinalizedTransaction,
    LedgerCall,
    LedgerClient,
    LedgerError,
    LedgerEvent,
    SubmissionHandle,
)
from ip_onchain_client.models import SigningIdentity


class TxState(str, Enum):
    built = "built"
    submitted = "submitted"
    finalized = "finalized"
    event_matched = "event_matched"
    event_missing = "event_missing"
    failed = "failed"


@dataclass
class TransactionAttempt:
    call: LedgerCall
    signer: SigningIdentity
    state: TxState = TxState.built
    handle: Optional[SubmissionHandle] = None
    finalized: Optional[FinalizedTransaction] = None
    receipt_events: List[LedgerEvent] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.handle.extrinsic_hash if self.handle is not None else self.call.name


class TransactionPipeline:
    """Sign, submit, finalize a ledger call and require an expected event.

    A submitted transaction is never re-submitted here; callers decide
    whether to retry with a fresh call.
    """

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger
        self.logger = logger

    def _transition(
        self, attempt: TransactionAttempt, state: TxState, stage: Stage
    ) -> None:
        attempt.state = state
        self.logger.bind(
            stage=stage.value,
            call=attempt.call.name,
            id=attempt.identifier,
            outcome=state.value,
        ).info(f"{attempt.call.name}: {state.value}")

    async def submit_and_confirm(
        self,
        call: LedgerCall,
        signer: SigningIdentity,
        expected: EventMatcher,
    ) -> LedgerEvent:
        attempt = TransactionAttempt(call=call, signer=signer)
        self.logger.bind(
            stage=Stage.tx_submit.value, call=call.name, signer=signer.label
        ).info(f"Submitting {call.name}, expecting {expected.qualified_name}")

        try:
            attempt.handle = await self.ledger.sign_and_submit(call, signer)
        except LedgerError as e:
            self._transition(attempt, TxState.failed, Stage.tx_submit)
            raise SubmissionError(
                f"can not submit {call.name}: {e}",
                stage=Stage.tx_submit,
                identifier=call.name,
            ) from e
        self._transition(attempt, TxState.submitted, Stage.tx_submit)

        try:
            attempt.finalized = await self.ledger.wait_for_finalization(attempt.handle)
        except LedgerError as e:
            self._transition(attempt, TxState.failed, Stage.tx_finalize)
            raise FinalizationError(
                f"{call.name} submitted, but not finalized: {e}",
                stage=Stage.tx_finalize,
                identifier=attempt.identifier,
            ) from e
        if not attempt.finalized.success:
            self._transition(attempt, TxState.failed, Stage.tx_finalize)
            raise FinalizationError(
                f"{call.name} finalized but failed to dispatch: "
                f"{attempt.finalized.error_message}",
                stage=Stage.tx_finalize,
                identifier=attempt.identifier,
            )
        self._transition(attempt, TxState.finalized, Stage.tx_finalize)

        try:
            attempt.receipt_events = await self.ledger.fetch_events(attempt.handle)
        except LedgerError as e:
            self._transition(attempt, TxState.failed, Stage.tx_events)
            raise EventFetchError(
                f"{call.name} finalized, but events can not be fetched: {e}",
                stage=Stage.tx_events,
                identifier=attempt.identifier,
            ) from e

        for event in attempt.receipt_events:
            if expected.matches(event):
                self._transition(attempt, TxState.event_matched, Stage.tx_event_match)
                return event

        observed = [event.qualified_name for event in attempt.receipt_events]
        self._transition(attempt, TxState.event_missing, Stage.tx_event_match)
        self.logger.bind(stage=Stage.tx_event_match.value, id=attempt.identifier).error(
            f"{call.name} finalized without {expected.qualified_name}; "
            f"observed {observed}"
        )
        raise EventMismatchError(
            f"{call.name} finalized, but {expected.qualified_name} not found "
            f"in receipt events {observed}",
            identifier=attempt.identifier,
            expected=expected.qualified_name,
            observed=observed,
        )

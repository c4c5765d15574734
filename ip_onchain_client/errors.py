"""Error taxonomy for the registration workflow.

Every error carries the stage that failed and, where one exists, the
identifier it failed on (job id, task id, call name, extrinsic hash).
Polling only ever retries on ``PollOutcome.not_ready``; every class below is
terminal for the operation that raised it.
"""

from enum import Enum
from typing import Optional


class Stage(str, Enum):
    config = "config"
    connect = "connect"
    job_submit = "job-submit"
    job_poll = "job-poll"
    descriptor = "descriptor"
    task_create = "task-create"
    task_poll = "task-poll"
    tx_submit = "tx-submit"
    tx_finalize = "tx-finalize"
    tx_events = "tx-events"
    tx_event_match = "tx-event-match"
    storage_query = "storage-query"


class WorkflowError(Exception):
    """Base class for every terminal workflow failure."""

    def __init__(
        self,
        message: str,
        stage: Optional[Stage] = None,
        identifier: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.identifier = identifier

    def __str__(self) -> str:
        text = self.message
        if self.stage is not None:
            text = f"[{self.stage.value}] {text}"
        if self.identifier is not None:
            text = f"{text} (id={self.identifier})"
        return text


class ConfigError(WorkflowError):
    """Local input could not be loaded: secret file, request JSON, settings."""

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message, stage=Stage.config, identifier=identifier)


class TransportError(WorkflowError, ConnectionError):
    """Network or connection failure talking to a remote system."""


class ValidationError(WorkflowError, ValueError):
    """A remote system rejected the input or answered with something unusable."""

    def __init__(
        self,
        message: str,
        stage: Optional[Stage] = None,
        identifier: Optional[str] = None,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message, stage=stage, identifier=identifier)
        self.status = status
        self.body = body


class JobFailedError(WorkflowError):
    """The job service reported the job as failed."""


class TaskRejectedError(WorkflowError):
    """The validation worker moved the task to its rejected state."""


class PollTimeoutError(WorkflowError, TimeoutError):
    """Poll budget exhausted before the operation reported ready."""

    def __init__(
        self,
        message: str,
        stage: Optional[Stage] = None,
        identifier: Optional[str] = None,
        attempts_made: int = 0,
        elapsed: float = 0.0,
    ):
        super().__init__(message, stage=stage, identifier=identifier)
        self.attempts_made = attempts_made
        self.elapsed = elapsed


class ChainRejectionError(WorkflowError):
    """The ledger refused the transaction."""


class SubmissionError(ChainRejectionError):
    """Signing or submission was rejected by the node."""


class FinalizationError(ChainRejectionError):
    """The transaction was dropped, invalid, or failed to dispatch."""


class EventFetchError(TransportError):
    """Events of a finalized transaction could not be fetched."""


class EventMismatchError(WorkflowError):
    """The transaction finalized but the expected event is not in its receipt."""

    def __init__(
        self,
        message: str,
        stage: Optional[Stage] = Stage.tx_event_match,
        identifier: Optional[str] = None,
        expected: Optional[str] = None,
        observed: Optional[list] = None,
    ):
        super().__init__(message, stage=stage, identifier=identifier)
        self.expected = expected
        self.observed = observed or []

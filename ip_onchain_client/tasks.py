from typing import Any, Optional

from loguru import logger

from ip_onchain_client import calls
from ip_onchain_client.errors import (
    EventMismatchError,
    Stage,
    TaskRejectedError,
    ValidationError,
)
from ip_onchain_client.ledger import LedgerClient, LedgerError
from ip_onchain_client.models import (
    PollingConfig,
    SigningIdentity,
    TaskState,
    ValidationTask,
)
from ip_onchain_client.pipeline import TransactionPipeline
from ip_onchain_client.poller import PollOutcome, RetryPoller

ARWEAVE_GATEWAY = "https://arweave.net"


def _decode_result_ref(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) or None
    if isinstance(value, str) and value.startswith("0x"):
        return bytes.fromhex(value[2:]) or None
    if isinstance(value, str):
        return value.encode() or None
    if isinstance(value, list):
        try:
            return bytes(value) or None
        except TypeError as e:
            raise ValueError(f"unsupported result reference: {value!r}") from e
    raise ValueError(f"unsupported result reference: {value!r}")


def _parse_state(value: Any) -> Optional[TaskState]:
    # Unit enum variants decode as plain strings, data-carrying ones as {name: data}.
    name = next(iter(value)) if isinstance(value, dict) and value else value
    try:
        return TaskState(name)
    except ValueError:
        return None


class ValidationTaskTracker:
    """Archival validation tasks living in ledger storage, advanced by a worker."""

    def __init__(
        self,
        ledger: LedgerClient,
        pipeline: Optional[TransactionPipeline] = None,
        config: Optional[PollingConfig] = None,
    ):
        self.ledger = ledger
        self.pipeline = pipeline or TransactionPipeline(ledger)
        self.config = config or PollingConfig(interval=6.0, timeout=600.0)
        self.logger = logger

    async def create_task(
        self, worker: str, signer: SigningIdentity, payload: bytes
    ) -> int:
        self.logger.bind(stage=Stage.task_create.value, worker=worker).info(
            "Starting archival metadata upload"
        )
        event = await self.pipeline.submit_and_confirm(
            calls.create_task(worker, payload), signer, calls.TASK_ADDED
        )
        try:
            task_id = int(event.attribute("task_id"))
        except (KeyError, TypeError, ValueError) as e:
            raise EventMismatchError(
                f"{event.qualified_name} carries no task_id: {event.attributes!r}",
                stage=Stage.task_create,
                expected=calls.TASK_ADDED.qualified_name,
                observed=[event.qualified_name],
            ) from e
        self.logger.bind(stage=Stage.task_create.value, id=task_id).info(
            f"Task added successful: task_id={task_id}"
        )
        return task_id

    async def get_task(self, task_id: int) -> Optional[ValidationTask]:
        pallet, item = calls.TASKS
        value = await self.ledger.read_storage(pallet, item, [task_id])
        if value is None:
            return None
        try:
            result_ref = _decode_result_ref(value.get("tx_hash"))
        except ValueError as e:
            raise ValidationError(
                str(e), stage=Stage.task_poll, identifier=str(task_id)
            ) from e
        return ValidationTask(
            id=task_id,
            state=_parse_state(value.get("state")),
            raw_state=value.get("state"),
            result_ref=result_ref,
        )

    async def await_validated(
        self, task_id: int, config: Optional[PollingConfig] = None
    ) -> str:
        """Poll task storage until the worker validated it.

        Returns the url of the archived document.
        """
        poller = RetryPoller(config or self.config, stage=Stage.task_poll)
        log = self.logger.bind(stage=Stage.task_poll.value, id=task_id)
        log.info("Waiting for worker to validate task")

        async def check() -> PollOutcome[str]:
            try:
                task = await self.get_task(task_id)
            except LedgerError as e:
                log.warning(f"Error reading task state: {e}")
                return PollOutcome.not_ready(f"storage read failed: {e}")

            if task is None:
                raise ValidationError(
                    "task not found in storage",
                    stage=Stage.task_poll,
                    identifier=str(task_id),
                )
            log.debug(f"Task state: {task.raw_state!r}")
            if task.state == TaskState.rejected:
                raise TaskRejectedError(
                    "validation worker rejected task",
                    stage=Stage.task_poll,
                    identifier=str(task_id),
                )
            if task.state == TaskState.validated and task.result_ref:
                try:
                    reference = task.result_ref.decode()
                except UnicodeDecodeError as e:
                    raise ValidationError(
                        f"result reference is not text: {task.result_ref!r}",
                        stage=Stage.task_poll,
                        identifier=str(task_id),
                    ) from e
                return PollOutcome.ready(f"{ARWEAVE_GATEWAY}/{reference}")
            if task.state == TaskState.validated:
                return PollOutcome.not_ready("task validated without result reference")
            return PollOutcome.not_ready(f"task in state {task.raw_state!r}")

        url = await poller.poll(check, identifier=str(task_id))
        log.info(f"Archived metadata url: {url}")
        return url

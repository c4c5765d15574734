import asyncio
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ip_onchain_client import calls
from ip_onchain_client.errors import ConfigError, Stage, TransportError, ValidationError
from ip_onchain_client.fingerprint_client import FingerprintClient
from ip_onchain_client.ledger import LedgerCall, LedgerClient, LedgerError, LedgerEvent
from ip_onchain_client.models import (
    CreateEntityRequest,
    ForeignAuthorityRequest,
    MetadataRequest,
    PollingConfig,
    SigningIdentity,
)
from ip_onchain_client.pipeline import TransactionPipeline
from ip_onchain_client.tasks import ValidationTaskTracker


class WorkflowOrchestrator:
    """Registers IP entities and authorities on the ledger.

    Stages run strictly one after another: each stage's result is an input of
    the next, and only one transaction is in flight per signer.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        fingerprints: Optional[FingerprintClient] = None,
        pipeline: Optional[TransactionPipeline] = None,
        tasks: Optional[ValidationTaskTracker] = None,
        job_polling: Optional[PollingConfig] = None,
        task_polling: Optional[PollingConfig] = None,
    ):
        self.ledger = ledger
        self.fingerprints = fingerprints
        self.pipeline = pipeline or TransactionPipeline(ledger)
        self.tasks = tasks or ValidationTaskTracker(ledger, self.pipeline)
        self.job_polling = job_polling
        self.task_polling = task_polling
        self.logger = logger

    async def _read_audio(self, audio_file: Path) -> bytes:
        try:
            return await asyncio.to_thread(Path(audio_file).read_bytes)
        except OSError as e:
            raise ConfigError(
                f"read audio file {audio_file}: {e}", identifier=str(audio_file)
            ) from e

    async def resolve_descriptor(
        self,
        request: CreateEntityRequest,
        audio_file: Optional[Path],
        signer: SigningIdentity,
        worker: Optional[str] = None,
    ) -> str:
        """Return the metadata url the entity will point to.

        A url already present in the request is returned untouched. Otherwise
        the audio is fingerprinted and the metadata document is created either
        by the job service or, when ``worker`` is given, by an on-chain
        archival task assigned to that worker.
        """
        log = self.logger.bind(stage=Stage.descriptor.value)
        if request.metadata_url is not None:
            log.info(f"Using supplied metadata url: {request.metadata_url}")
            return request.metadata_url

        if self.fingerprints is None:
            raise ConfigError(
                "no fingerprint service configured and no metadata_url given"
            )
        if audio_file is None:
            raise ConfigError("an audio file is required when no metadata_url is given")

        payload = await self._read_audio(audio_file)
        job = await self.fingerprints.submit(payload)
        fingerprint = await self.fingerprints.await_completion(job.id, self.job_polling)

        metadata = request.off_chain_metadata
        metadata_request = MetadataRequest(
            title=metadata.title,
            bpm=metadata.bpm,
            key=metadata.key,
            scale=metadata.scale,
            instrument=metadata.instrument,
            fingerprint=fingerprint,
        )

        if worker is not None:
            task_id = await self.tasks.create_task(
                worker, signer, metadata_request.model_dump_json().encode()
            )
            url = await self.tasks.await_validated(task_id, self.task_polling)
            log.bind(id=task_id).info(f"Done! Archived metadata url: {url}")
            return url

        descriptor = await self.fingerprints.request_descriptor(metadata_request)
        return descriptor.url

    async def commit(
        self, descriptor_url: str, request: CreateEntityRequest, signer: SigningIdentity
    ) -> LedgerEvent:
        event = await self.pipeline.submit_and_confirm(
            calls.create_entity(request, descriptor_url), signer, calls.ENTITY_ADDED
        )
        self.logger.bind(stage=Stage.tx_event_match.value).info(
            f"Entity added successful: {event.attributes!r}"
        )
        return event

    async def upload_ip(
        self,
        request: CreateEntityRequest,
        audio_file: Optional[Path],
        signer: SigningIdentity,
        worker: Optional[str] = None,
    ) -> LedgerEvent:
        descriptor_url = await self.resolve_descriptor(
            request, audio_file, signer, worker
        )
        return await self.commit(descriptor_url, request, signer)

    async def create_authority(
        self, name: str, kind: str, signer: SigningIdentity
    ) -> LedgerEvent:
        return await self.pipeline.submit_and_confirm(
            calls.create_authority(name, kind), signer, calls.AUTHORITY_ADDED
        )

    async def _encode(self, call: LedgerCall) -> bytes:
        try:
            encoded = await self.ledger.encode_call(call)
        except LedgerError as e:
            raise ValidationError(
                f"can not encode {call.name}: {e}",
                stage=Stage.tx_submit,
                identifier=call.name,
            ) from e
        self.logger.bind(stage=Stage.tx_submit.value, call=call.name).debug(
            f"to_hex: 0x{encoded.hex()}"
        )
        return encoded

    async def foreign_request(
        self,
        request: ForeignAuthorityRequest,
        signer: SigningIdentity,
        src_parachain_id: int,
        dst_parachain_id: int,
    ) -> LedgerEvent:
        """Ask the parachain holding the entity to hand it to a foreign authority."""
        inner = await self._encode(
            calls.foreign_authority_request(request, src_parachain_id)
        )
        return await self.pipeline.submit_and_confirm(
            calls.xcm_transact(inner, dst_parachain_id), signer, calls.XCM_SENT
        )

    async def approve_foreign_request(
        self, entity_id: int, request_id: int, signer: SigningIdentity
    ) -> LedgerEvent:
        return await self.pipeline.submit_and_confirm(
            calls.foreign_authority_request_approve(entity_id, request_id),
            signer,
            calls.ENTITY_WRAPPED,
        )

    async def take_foreign_request(
        self, request_id: int, dst_parachain_id: int, signer: SigningIdentity
    ) -> LedgerEvent:
        inner = await self._encode(
            calls.foreign_authority_request_take(request_id, dst_parachain_id)
        )
        return await self.pipeline.submit_and_confirm(
            calls.xcm_transact(inner, dst_parachain_id), signer, calls.XCM_SENT
        )

    async def _query(self, storage: tuple, key: int, what: str) -> Any:
        pallet, item = storage
        try:
            value = await self.ledger.read_storage(pallet, item, [key])
        except LedgerError as e:
            raise TransportError(
                f"{pallet}.{item} query failed: {e}",
                stage=Stage.storage_query,
                identifier=str(key),
            ) from e
        if value is None:
            raise ValidationError(
                f"{what} not found", stage=Stage.storage_query, identifier=str(key)
            )
        return value

    async def get_entity(self, entity_id: int) -> Any:
        return await self._query(calls.ENTITIES, entity_id, "entity")

    async def get_authority(self, authority_id: int) -> Any:
        return await self._query(calls.AUTHORITIES, authority_id, "authority")

    async def get_foreign_request(self, request_id: int) -> Any:
        return await self._query(calls.FOREIGN_REQUESTS, request_id, "foreign_request")

import asyncio
from typing import Any, Callable, Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ip_onchain_client.errors import (
    JobFailedError,
    Stage,
    TransportError,
    ValidationError,
)
from ip_onchain_client.models import (
    Job,
    JobStatus,
    MetadataDescriptor,
    MetadataRequest,
    PollingConfig,
)
from ip_onchain_client.poller import PollOutcome, RetryPoller


class FingerprintClient:
    def __init__(
        self,
        base_url: str,
        auth_token: str,
        config: Optional[PollingConfig] = None,
        on_status_change: Optional[Callable[[Job], Any]] = None,
        request_timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.config = config or PollingConfig()
        self.on_status_change = on_status_change
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.logger = logger

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers={"Authorization": f"Bearer {self.auth_token}"},
            timeout=self.timeout,
        )

    async def _read_json(
        self, response: aiohttp.ClientResponse, stage: Stage, identifier: Optional[str]
    ) -> Any:
        """Return the JSON body of a 2xx response, raising ValidationError otherwise"""
        if response.status >= 300:
            body = await response.text()
            self.logger.bind(stage=stage.value, id=identifier).error(
                f"HTTP error {response.status} at {response.url}: {body}"
            )
            raise ValidationError(
                f"request failed with status: {response.status} {body}",
                stage=stage,
                identifier=identifier,
                status=response.status,
                body=body,
            )
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            raise ValidationError(
                f"malformed response from {response.url}: {e}",
                stage=stage,
                identifier=identifier,
                status=response.status,
            ) from e

    async def submit(self, payload: bytes) -> Job:
        """Uploads raw audio and returns the created fingerprint job"""
        url = f"{self.base_url}/fingerprint/create"
        try:
            async with self._session() as session:
                async with session.put(
                    url,
                    data=payload,
                    headers={"Content-Type": "application/octet-stream"},
                ) as response:
                    data = await self._read_json(response, Stage.job_submit, None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"upload to {url} failed: {e}", stage=Stage.job_submit
            ) from e

        try:
            job = Job.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"unexpected job response: {e}", stage=Stage.job_submit
            ) from e
        self.logger.bind(stage=Stage.job_submit.value, id=job.id).info(
            f"Fingerprint worker job id: {job.id}"
        )
        return job

    async def _get_status_once(
        self, session: aiohttp.ClientSession, job_id: str
    ) -> Job:
        """Fetches the status of a job from the server"""
        url = f"{self.base_url}/fingerprint/status"
        async with session.get(url, params={"task_id": job_id}) as response:
            data = await self._read_json(response, Stage.job_poll, job_id)
        try:
            return Job.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"unexpected status response: {e}",
                stage=Stage.job_poll,
                identifier=job_id,
            ) from e

    async def get_status(self, job_id: str) -> Job:
        try:
            async with self._session() as session:
                return await self._get_status_once(session, job_id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"status request failed: {e}", stage=Stage.job_poll, identifier=job_id
            ) from e

    async def _handle_status_change(
        self, job: Job, last_status: Optional[JobStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status != job.status and self.on_status_change is not None:
            self.logger.debug(f"Job {job.id} status changed to {job.status.value}")
            await self.on_status_change(job)

    async def await_completion(
        self, job_id: str, config: Optional[PollingConfig] = None
    ) -> str:
        """Poll the status endpoint at a fixed interval until the job is done.

        Returns the fingerprint url of the finished job.
        """
        poller = RetryPoller(config or self.config, stage=Stage.job_poll)
        last_status: Optional[JobStatus] = None

        async with self._session() as session:

            async def check() -> PollOutcome[str]:
                nonlocal last_status
                try:
                    job = await self._get_status_once(session, job_id)
                except (aiohttp.ClientError, asyncio.TimeoutError) as polling_error:
                    self.logger.bind(stage=Stage.job_poll.value, id=job_id).warning(
                        f"Error polling status: {polling_error!r}"
                    )
                    return PollOutcome.not_ready(
                        f"transport error: {polling_error!r}"
                    )

                await self._handle_status_change(job, last_status)
                last_status = job.status

                if job.status == JobStatus.failed:
                    raise JobFailedError(
                        "fingerprint job failed",
                        stage=Stage.job_poll,
                        identifier=job_id,
                    )
                if job.status == JobStatus.done and job.url:
                    return PollOutcome.ready(job.url)
                if job.status == JobStatus.done:
                    return PollOutcome.not_ready("job done without url")
                return PollOutcome.not_ready(f"job {job.status.value}")

            url = await poller.poll(check, identifier=job_id)

        self.logger.bind(stage=Stage.job_poll.value, id=job_id).info(
            f"Fingerprint: {url}"
        )
        return url

    async def request_descriptor(
        self, request: MetadataRequest
    ) -> MetadataDescriptor:
        """Creates the off-chain metadata document and returns its url"""
        url = f"{self.base_url}/metadata/create"
        try:
            async with self._session() as session:
                async with session.post(url, json=request.model_dump()) as response:
                    data = await self._read_json(
                        response, Stage.descriptor, request.fingerprint
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"metadata request to {url} failed: {e}", stage=Stage.descriptor
            ) from e

        try:
            descriptor = MetadataDescriptor.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"unexpected metadata response: {e}", stage=Stage.descriptor
            ) from e
        self.logger.bind(stage=Stage.descriptor.value).info(
            f"Off-chain metadata url: {descriptor.url}"
        )
        return descriptor

import random
import uuid
from typing import Dict, List, Optional

from aiohttp import web
from loguru import logger


class FingerprintServer:
    """Stand-in for the fingerprint job service, for tests and local demos.

    A job reports ``pending`` for ``completion_polls - 1`` status requests and
    then ``done``. It reports ``failed`` on poll number ``failure_poll`` when
    set, or at random with probability ``failure_rate``.
    """

    def __init__(
        self,
        auth_token: str = "secret",
        completion_polls: int = 3,
        failure_rate: float = 0.0,
        failure_poll: Optional[int] = None,
        public_url: str = "https://fingerprint.example",
    ):
        self.auth_token = auth_token
        self.completion_polls = completion_polls
        self.failure_rate = failure_rate
        self.failure_poll = failure_poll
        self.public_url = public_url
        self.uploads: Dict[str, bytes] = {}
        self.status_polls: Dict[str, int] = {}
        self.metadata: List[dict] = []
        self.status_override: Optional[int] = None
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application(middlewares=[self.check_auth])
        self.app.router.add_put("/v1/fingerprint/create", self.handle_create)
        self.app.router.add_get("/v1/fingerprint/status", self.handle_status)
        self.app.router.add_post("/v1/metadata/create", self.handle_metadata)
        self.logger = logger

    @web.middleware
    async def check_auth(self, request, handler):
        if request.headers.get("Authorization") != f"Bearer {self.auth_token}":
            return web.json_response({"error": "unauthorized"}, status=401)
        if self.status_override is not None:
            return web.json_response(
                {"error": "forced failure"}, status=self.status_override
            )
        return await handler(request)

    async def handle_create(self, request):
        body = await request.read()
        if not body:
            return web.json_response({"error": "empty upload"}, status=400)
        job_id = uuid.uuid4().hex
        self.uploads[job_id] = body
        self.status_polls[job_id] = 0
        self.logger.info(f"Created job {job_id} ({len(body)} bytes)")
        return web.json_response({"id": job_id})

    async def handle_status(self, request):
        job_id = request.query.get("task_id", "")
        if job_id not in self.uploads:
            return web.json_response({"error": f"unknown task {job_id}"}, status=404)

        self.status_polls[job_id] += 1
        polls = self.status_polls[job_id]

        if polls == self.failure_poll or random.random() < self.failure_rate:
            self.logger.info(f"Returning failed status for {job_id}")
            return web.json_response({"id": job_id, "status": "failed", "url": ""})

        if polls >= self.completion_polls:
            self.logger.info(f"Returning done status for {job_id}")
            url = f"{self.public_url}/fingerprints/{job_id}"
            return web.json_response({"id": job_id, "status": "done", "url": url})

        self.logger.info(f"Returning pending status for {job_id} (poll {polls})")
        return web.json_response({"id": job_id, "status": "pending", "url": ""})

    async def handle_metadata(self, request):
        payload = await request.json()
        missing = [
            field
            for field in ("title", "bpm", "key", "scale", "instrument", "fingerprint")
            if field not in payload
        ]
        if missing:
            return web.json_response(
                {"error": f"missing fields: {missing}"}, status=422
            )
        self.metadata.append(payload)
        url = f"{self.public_url}/metadata/{len(self.metadata)}"
        return web.json_response({"url": url})

    async def start(self, port: int = 0) -> int:
        """Start listening and return the bound port; port 0 picks a free one."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        bound_port = self.runner.addresses[0][1]
        self.logger.info(f"Server started on port {bound_port}")
        return bound_port

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()

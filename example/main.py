import asyncio

from fingerprint_server import FingerprintServer
from ip_onchain_client.fingerprint_client import FingerprintClient
from ip_onchain_client.models import MetadataRequest, PollingConfig


async def status_changed(job):
    print(f"Job {job.id} status changed to: {job.status.value}")


async def main():
    server = FingerprintServer(auth_token="demo", completion_polls=4, failure_rate=0.05)
    port = await server.start()
    print(f"Server started on http://localhost:{port}")

    config = PollingConfig(interval=1.0, timeout=30.0)
    client = FingerprintClient(
        f"http://localhost:{port}/v1", "demo", config, on_status_change=status_changed
    )

    try:
        job = await client.submit(b"RIFF....WAVEfmt demo audio")
        fingerprint = await client.await_completion(job.id)
        print(f"Fingerprint: {fingerprint}")

        descriptor = await client.request_descriptor(
            MetadataRequest(
                title="Demo",
                bpm=120,
                key=5,
                scale=1,
                instrument=3,
                fingerprint=fingerprint,
            )
        )
        print(f"Metadata url: {descriptor.url}")
    except TimeoutError as e:
        print(f"Polling timed out: {e}")
    except Exception as e:
        print(f"Error occurred: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())

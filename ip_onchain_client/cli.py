"""Command line entry points: ``ip-onchain <command>``."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Optional

import typer
from loguru import logger

from ip_onchain_client.config import (
    ClientSettings,
    check_audio_file,
    load_request,
    load_settings,
    load_signing_identity,
)
from ip_onchain_client.errors import ConfigError, Stage, TransportError, WorkflowError
from ip_onchain_client.fingerprint_client import FingerprintClient
from ip_onchain_client.ledger import LedgerClient, LedgerError
from ip_onchain_client.models import CreateEntityRequest, ForeignAuthorityRequest
from ip_onchain_client.orchestrator import WorkflowOrchestrator

LOG_FORMAT = "{time:HH:mm:ss} | {level: <8} | {message} | {extra}"

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Register audio IP entities and authorities on the IP ledger.",
)

SecretKeyOption = Annotated[
    Optional[Path],
    typer.Option(
        "--secret-key-file",
        "-s",
        help='JSON file with {"secretPhrase": ...}; dev identity if omitted',
    ),
]
DataOption = Annotated[
    Optional[str], typer.Option("--data", help="request as plain json")
]
DataFileOption = Annotated[
    Optional[Path],
    typer.Option("--data-file", "-j", help="path to a json request file"),
]
DstParachainOption = Annotated[
    int,
    typer.Option(
        "--dst-parachain-id", "-d", help="parachain id where source entity exists"
    ),
]


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


async def connect_ledger(settings: ClientSettings) -> LedgerClient:
    # Imported here so the off-chain commands work without the ledger extra.
    try:
        from ip_onchain_client.substrate import SubstrateLedgerClient
    except ImportError as e:
        raise ConfigError(
            f"ledger support is not installed ({e}); "
            "install with: pip install 'ip-onchain-client[ledger]'"
        ) from e

    return await SubstrateLedgerClient.connect(
        settings.node_url, finalization_timeout=settings.finalization_timeout
    )


def _settings(ctx: typer.Context) -> ClientSettings:
    return ctx.obj


def _echo(value: Any) -> None:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    typer.echo(json.dumps(value, default=str))


def _run(
    ctx: typer.Context,
    action: Callable[[WorkflowOrchestrator], Awaitable[Any]],
    fingerprints: Optional[FingerprintClient] = None,
) -> None:
    settings = _settings(ctx)

    async def main() -> Any:
        try:
            ledger = await connect_ledger(settings)
        except LedgerError as e:
            raise TransportError(
                f"chain rpc api: {e}", stage=Stage.connect, identifier=settings.node_url
            ) from e
        orchestrator = WorkflowOrchestrator(
            ledger,
            fingerprints=fingerprints,
            job_polling=settings.job_polling,
            task_polling=settings.task_polling,
        )
        try:
            return await action(orchestrator)
        finally:
            await ledger.close()

    try:
        result = asyncio.run(main())
    except WorkflowError as e:
        stage = e.stage.value if e.stage else None
        logger.bind(stage=stage, id=e.identifier).error(str(e))
        raise typer.Exit(code=1) from e
    _echo(result)


@app.callback()
def main(
    ctx: typer.Context,
    node_url: Annotated[
        Optional[str], typer.Option(help="ledger node websocket url")
    ] = None,
    log_level: Annotated[Optional[str], typer.Option(help="loguru level name")] = None,
) -> None:
    try:
        settings = load_settings(node_url=node_url, log_level=log_level)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e
    configure_logging(settings.log_level)
    ctx.obj = settings


def _fail(error: ConfigError) -> None:
    logger.bind(stage=error.stage.value, id=error.identifier).error(str(error))
    raise typer.Exit(code=1) from error


def _load(loader: Callable[[], Any]) -> Any:
    try:
        return loader()
    except ConfigError as e:
        _fail(e)


@app.command("upload-ip")
def upload_ip(
    ctx: typer.Context,
    file: Annotated[
        Optional[Path], typer.Option("--file", "-f", help="audio file to fingerprint")
    ] = None,
    data: DataOption = None,
    data_file: DataFileOption = None,
    secret_key_file: SecretKeyOption = None,
    api_auth: Annotated[
        Optional[str], typer.Option(help="bearer token of the fingerprint service")
    ] = None,
    arweave_worker_address: Annotated[
        Optional[str],
        typer.Option(help="archive metadata through this on-chain worker"),
    ] = None,
) -> None:
    """Create an IP entity; the audio is fingerprinted unless metadata_url is set."""
    settings = _settings(ctx)
    request = _load(lambda: load_request(data, data_file, CreateEntityRequest))
    signer = _load(lambda: load_signing_identity(secret_key_file))

    fingerprints = None
    token = api_auth
    if token is None and settings.api_auth is not None:
        token = settings.api_auth.get_secret_value()
    if request.metadata_url is None:
        if token is None:
            _fail(ConfigError("--api-auth is required without metadata_url"))
        if file is None:
            _fail(ConfigError("--file is required without metadata_url"))
        _load(lambda: check_audio_file(file))
        fingerprints = FingerprintClient(
            settings.api_base_url,
            token,
            config=settings.job_polling,
            request_timeout=settings.request_timeout,
        )

    _run(
        ctx,
        lambda orchestrator: orchestrator.upload_ip(
            request, file, signer, arweave_worker_address
        ),
        fingerprints=fingerprints,
    )


@app.command("create-authority")
def create_authority(
    ctx: typer.Context,
    name: Annotated[str, typer.Option("--name", "-n")],
    kind: Annotated[
        str, typer.Option("--kind", "-k", help="authority kind as named by the runtime")
    ],
    secret_key_file: SecretKeyOption = None,
) -> None:
    signer = _load(lambda: load_signing_identity(secret_key_file))
    _run(ctx, lambda orchestrator: orchestrator.create_authority(name, kind, signer))


@app.command("foreign-request")
def foreign_request(
    ctx: typer.Context,
    src_parachain_id: Annotated[
        int,
        typer.Option(
            "--src-parachain-id", "-s", help="foreign location parachain id"
        ),
    ],
    dst_parachain_id: DstParachainOption,
    data: DataOption = None,
    data_file: DataFileOption = None,
    secret_key_file: Annotated[
        Optional[Path], typer.Option("--secret-key-file")
    ] = None,
) -> None:
    request = _load(lambda: load_request(data, data_file, ForeignAuthorityRequest))
    signer = _load(lambda: load_signing_identity(secret_key_file))
    _run(
        ctx,
        lambda orchestrator: orchestrator.foreign_request(
            request, signer, src_parachain_id, dst_parachain_id
        ),
    )


@app.command("foreign-request-approve")
def foreign_request_approve(
    ctx: typer.Context,
    entity_id: Annotated[int, typer.Option("--entity-id", "-e")],
    request_id: Annotated[int, typer.Option("--request-id", "-r")],
    secret_key_file: Annotated[
        Optional[Path], typer.Option("--secret-key-file")
    ] = None,
) -> None:
    signer = _load(lambda: load_signing_identity(secret_key_file))
    _run(
        ctx,
        lambda orchestrator: orchestrator.approve_foreign_request(
            entity_id, request_id, signer
        ),
    )


@app.command("foreign-request-take")
def foreign_request_take(
    ctx: typer.Context,
    request_id: Annotated[int, typer.Option("--request-id", "-r")],
    dst_parachain_id: DstParachainOption,
    secret_key_file: Annotated[
        Optional[Path], typer.Option("--secret-key-file")
    ] = None,
) -> None:
    signer = _load(lambda: load_signing_identity(secret_key_file))
    _run(
        ctx,
        lambda orchestrator: orchestrator.take_foreign_request(
            request_id, dst_parachain_id, signer
        ),
    )


@app.command("get-foreign-request")
def get_foreign_request(
    ctx: typer.Context, request_id: Annotated[int, typer.Option("--request-id", "-r")]
) -> None:
    _run(ctx, lambda orchestrator: orchestrator.get_foreign_request(request_id))


@app.command("get-entity")
def get_entity(
    ctx: typer.Context, entity_id: Annotated[int, typer.Option("--entity-id", "-e")]
) -> None:
    _run(ctx, lambda orchestrator: orchestrator.get_entity(entity_id))


@app.command("get-authority")
def get_authority(
    ctx: typer.Context,
    authority_id: Annotated[int, typer.Option("--authority-id", "-a")],
) -> None:
    _run(ctx, lambda orchestrator: orchestrator.get_authority(authority_id))


if __name__ == "__main__":
    app()

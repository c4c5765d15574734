"""Runtime settings, signing identity and request loading.

Everything here runs before the first network call, so a bad secret file or a
malformed request never leaves a half-finished workflow behind.
"""

import os
from pathlib import Path
from typing import Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ip_onchain_client.errors import ConfigError
from ip_onchain_client.models import PollingConfig, SecretKeyFile, SigningIdentity

ModelT = TypeVar("ModelT", bound=BaseModel)

# Publicly known test account of every Substrate dev chain. Anyone can sign as it.
DEVELOPMENT_IDENTITY = SigningIdentity(uri="//Alice", development=True)

_MNEMONIC_WORD_COUNTS = (12, 15, 18, 21, 24)


class ClientSettings(BaseSettings):
    """Settings read from ``IP_ONCHAIN_*`` environment variables or ``.env``.

    Poll interval and total poll budget are separate settings; a job is polled
    every ``job_poll_interval`` seconds for at most ``job_poll_timeout``
    seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="IP_ONCHAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    node_url: str = Field(default="ws://127.0.0.1:9944")
    api_base_url: str = Field(default="https://fingerprint.mubert.xyz/v1")
    api_auth: Optional[SecretStr] = None
    job_poll_interval: float = Field(default=10.0, ge=0)
    job_poll_timeout: float = Field(default=600.0, gt=0)
    task_poll_interval: float = Field(default=6.0, ge=0)
    task_poll_timeout: float = Field(default=600.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    finalization_timeout: float = Field(default=300.0, gt=0)
    log_level: str = Field(default="INFO")

    @property
    def job_polling(self) -> PollingConfig:
        return PollingConfig(
            interval=self.job_poll_interval, timeout=self.job_poll_timeout
        )

    @property
    def task_polling(self) -> PollingConfig:
        return PollingConfig(
            interval=self.task_poll_interval, timeout=self.task_poll_timeout
        )


def load_settings(**overrides) -> ClientSettings:
    try:
        return ClientSettings(
            **{key: value for key, value in overrides.items() if value is not None}
        )
    except PydanticValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e


def load_signing_identity(secret_key_file: Optional[Path]) -> SigningIdentity:
    """Resolve the signer from a ``{"secretPhrase": ...}`` file.

    Without a file the development identity is returned.
    """
    if secret_key_file is None:
        logger.bind(stage="config").warning(
            "No secret key file given: signing with the public development "
            "identity //Alice. Never use this outside a development chain."
        )
        return DEVELOPMENT_IDENTITY

    try:
        raw = Path(secret_key_file).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(
            f"read secret_key_file {secret_key_file}: {e}",
            identifier=str(secret_key_file),
        ) from e

    try:
        secret_key = SecretKeyFile.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ConfigError(
            f"parsing secret_key_file json: {e}", identifier=str(secret_key_file)
        ) from e

    words = secret_key.secret_phrase.get_secret_value().split()
    if len(words) not in _MNEMONIC_WORD_COUNTS:
        raise ConfigError(
            f"secret phrase must have one of {_MNEMONIC_WORD_COUNTS} words, "
            f"got {len(words)}",
            identifier=str(secret_key_file),
        )
    return SigningIdentity(secret_phrase=SecretStr(" ".join(words)))


def check_audio_file(audio_file: Path) -> Path:
    if not Path(audio_file).is_file():
        raise ConfigError(
            f"audio file {audio_file} does not exist", identifier=str(audio_file)
        )
    if not os.access(audio_file, os.R_OK):
        raise ConfigError(
            f"audio file {audio_file} is not readable", identifier=str(audio_file)
        )
    return audio_file


def load_request(
    data: Optional[str], data_file: Optional[Path], model: Type[ModelT]
) -> ModelT:
    """Parse a request body given either inline or as a path to a JSON file."""
    if data is not None and data_file is not None:
        raise ConfigError("data and data_file are mutually exclusive")
    if data is None and data_file is None:
        raise ConfigError("no data given: pass inline JSON or a data file")

    if data_file is not None:
        try:
            data = Path(data_file).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                f"read data_file {data_file}: {e}", identifier=str(data_file)
            ) from e

    try:
        return model.model_validate_json(data)
    except PydanticValidationError as e:
        raise ConfigError(f"parsing json: {e}") from e

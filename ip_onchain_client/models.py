from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


class JobStatus(str, Enum):
    pending = "pending"
    done = "done"
    failed = "failed"


class Job(BaseModel):
    id: str
    status: JobStatus = JobStatus.pending
    url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unknown_status_is_pending(cls, data: Any) -> Any:
        # The service may report intermediate states we do not model.
        known = {status.value for status in JobStatus}
        status = data.get("status") if isinstance(data, dict) else None
        if status is not None and status not in known:
            data = {**data, "status": JobStatus.pending}
        return data


class MetadataRequest(BaseModel):
    title: str
    bpm: int = Field(ge=0)
    key: int = Field(ge=0, le=255)
    scale: int = Field(ge=0, le=255)
    instrument: int = Field(ge=0, le=255)
    fingerprint: str


class MetadataDescriptor(BaseModel):
    url: str


class TaskState(str, Enum):
    queued = "Queued"
    validating = "Validating"
    validated = "Validate"
    rejected = "Rejected"


class ValidationTask(BaseModel):
    id: int
    state: Optional[TaskState] = None
    raw_state: Any = None
    result_ref: Optional[bytes] = None


class PollingConfig(BaseModel):
    interval: float = Field(default=10.0, ge=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[float] = Field(default=300.0, gt=0)  # 5 minutes

    @model_validator(mode="after")
    def _require_budget(self) -> "PollingConfig":
        if self.max_attempts is None and self.timeout is None:
            raise ValueError("polling needs max_attempts, timeout, or both")
        return self


class SigningIdentity(BaseModel):
    """Who signs transactions for one run.

    ``development`` marks the publicly known test keypair; it must never sign
    anything of value.
    """

    model_config = ConfigDict(frozen=True)

    uri: Optional[str] = None
    secret_phrase: Optional[SecretStr] = None
    development: bool = False

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "SigningIdentity":
        if (self.uri is None) == (self.secret_phrase is None):
            raise ValueError(
                "a signing identity needs exactly one of uri or secret_phrase"
            )
        return self

    @property
    def label(self) -> str:
        return self.uri if self.uri is not None else "mnemonic"


class SecretKeyFile(BaseModel):
    secret_phrase: SecretStr = Field(alias="secretPhrase")


class OffChainMetadata(BaseModel):
    title: str
    bpm: int = Field(ge=0)
    key: int = Field(ge=0, le=255)
    scale: int = Field(ge=0, le=255)
    instrument: int = Field(ge=0, le=255)


class CreateEntityRequest(BaseModel):
    entity_kind: Any
    authority_id: int = Field(ge=0)
    metadata_standard: Any
    flags: List[str] = Field(default_factory=list)
    authors_ids: Optional[List[int]] = None
    royalty_parts: Optional[List[Any]] = None
    related_entities_ids: Optional[List[int]] = None
    off_chain_metadata: Optional[OffChainMetadata] = None
    metadata_url: Optional[str] = None

    @model_validator(mode="after")
    def _metadata_source(self) -> "CreateEntityRequest":
        if self.metadata_url is None and self.off_chain_metadata is None:
            raise ValueError("either metadata_url or off_chain_metadata is required")
        return self


class ForeignAuthorityRequest(BaseModel):
    foreign_authority_id: int = Field(ge=0)
    foreign_authority_name: str
    entity_id: int = Field(ge=0)

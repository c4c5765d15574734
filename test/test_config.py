import json

import pytest

from ip_onchain_client.config import (
    DEVELOPMENT_IDENTITY,
    check_audio_file,
    load_request,
    load_settings,
    load_signing_identity,
)
from ip_onchain_client.errors import ConfigError, Stage
from ip_onchain_client.models import CreateEntityRequest, ForeignAuthorityRequest

PHRASE = "bottom drive obey lake curtain smoke basket hold race lonely fit walk"


def test_missing_secret_file_falls_back_to_development_identity():
    identity = load_signing_identity(None)

    assert identity == DEVELOPMENT_IDENTITY
    assert identity.development is True
    assert identity.uri == "//Alice"
    assert identity.secret_phrase is None


def test_secret_phrase_from_file(tmp_path):
    secret_file = tmp_path / "key.json"
    secret_file.write_text(json.dumps({"secretPhrase": PHRASE}), encoding="utf-8")

    identity = load_signing_identity(secret_file)

    assert identity.development is False
    assert identity.secret_phrase.get_secret_value() == PHRASE
    assert PHRASE not in repr(identity)


def test_unreadable_secret_file(tmp_path):
    with pytest.raises(ConfigError) as exc_info:
        load_signing_identity(tmp_path / "absent.json")

    assert exc_info.value.stage == Stage.config


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps({"phrase": PHRASE}),
        json.dumps({"secretPhrase": "too short"}),
    ],
)
def test_invalid_secret_file(tmp_path, content):
    secret_file = tmp_path / "key.json"
    secret_file.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_signing_identity(secret_file)


def test_load_request_inline():
    request = load_request(
        json.dumps(
            {"foreign_authority_id": 1, "foreign_authority_name": "F", "entity_id": 2}
        ),
        None,
        ForeignAuthorityRequest,
    )

    assert request.entity_id == 2


def test_load_request_from_file(tmp_path):
    data_file = tmp_path / "entity.json"
    data_file.write_text(
        json.dumps(
            {
                "entity_kind": "Track",
                "authority_id": 1,
                "metadata_standard": "Mubert",
                "metadata_url": "https://meta.example/1",
            }
        ),
        encoding="utf-8",
    )

    request = load_request(None, data_file, CreateEntityRequest)

    assert request.metadata_url == "https://meta.example/1"
    assert request.flags == []


@pytest.mark.parametrize("data, use_file", [(None, False), ("{}", True)])
def test_load_request_requires_exactly_one_source(tmp_path, data, use_file):
    data_file = tmp_path / "request.json" if use_file else None

    with pytest.raises(ConfigError):
        load_request(data, data_file, ForeignAuthorityRequest)


def test_load_request_rejects_entity_without_metadata_source():
    body = json.dumps(
        {"entity_kind": "Track", "authority_id": 1, "metadata_standard": "Mubert"}
    )

    with pytest.raises(ConfigError, match="metadata_url or off_chain_metadata"):
        load_request(body, None, CreateEntityRequest)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("IP_ONCHAIN_NODE_URL", "ws://node.example:9944")
    monkeypatch.setenv("IP_ONCHAIN_JOB_POLL_INTERVAL", "2")
    monkeypatch.setenv("IP_ONCHAIN_JOB_POLL_TIMEOUT", "30")

    settings = load_settings()

    assert settings.node_url == "ws://node.example:9944"
    assert settings.job_polling.interval == 2.0
    assert settings.job_polling.timeout == 30.0
    assert settings.task_polling.interval == 6.0


def test_settings_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("IP_ONCHAIN_NODE_URL", "ws://node.example:9944")

    settings = load_settings(node_url="ws://other:9944", log_level=None)

    assert settings.node_url == "ws://other:9944"


def test_invalid_settings(monkeypatch):
    monkeypatch.setenv("IP_ONCHAIN_TASK_POLL_TIMEOUT", "-1")

    with pytest.raises(ConfigError):
        load_settings()


def test_audio_file_must_exist(tmp_path):
    audio_file = tmp_path / "track.wav"

    with pytest.raises(ConfigError, match="does not exist") as exc_info:
        check_audio_file(audio_file)
    assert exc_info.value.identifier == str(audio_file)

    audio_file.write_bytes(b"RIFF")
    assert check_audio_file(audio_file) == audio_file

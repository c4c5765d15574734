"""Ledger calls, expected events and storage items of the IP registry runtime."""

from enum import Enum
from typing import Iterable

from ip_onchain_client.ledger import EventMatcher, LedgerCall
from ip_onchain_client.models import CreateEntityRequest, ForeignAuthorityRequest

IP_ONCHAIN = "IpOnchain"
ARWEAVE = "Arweave"
POLKADOT_XCM = "PolkadotXcm"

ENTITY_ADDED = EventMatcher(IP_ONCHAIN, "EntityAdded")
AUTHORITY_ADDED = EventMatcher(IP_ONCHAIN, "AuthorityAdded")
ENTITY_WRAPPED = EventMatcher(IP_ONCHAIN, "EntityWraped")
TASK_ADDED = EventMatcher(ARWEAVE, "TaskAdded")
XCM_SENT = EventMatcher(POLKADOT_XCM, "Sent")

ENTITIES = (IP_ONCHAIN, "Entities")
AUTHORITIES = (IP_ONCHAIN, "Authorities")
FOREIGN_REQUESTS = (IP_ONCHAIN, "ForeignsRequests")
TASKS = (ARWEAVE, "Tasks")


class MetadataFeature(str, Enum):
    Immutable = "Immutable"

    @property
    def bitmask(self) -> int:
        return _FEATURE_BITS[self]


_FEATURE_BITS = {MetadataFeature.Immutable: 0x00000001}


def calculate_flags(flags: Iterable[str]) -> int:
    """OR the bits of every known feature name; unknown names are ignored."""
    result = 0
    for name in flags:
        try:
            result |= MetadataFeature(name).bitmask
        except ValueError:
            continue
    return result


def create_entity(request: CreateEntityRequest, metadata_url: str) -> LedgerCall:
    return LedgerCall(
        pallet=IP_ONCHAIN,
        function="create_entity",
        params={
            "entity_kind": request.entity_kind,
            "authority_id": request.authority_id,
            "url": metadata_url,
            "metadata_standard": request.metadata_standard,
            "metadata_features": calculate_flags(request.flags),
            "authors_ids": request.authors_ids,
            "royalty_parts": request.royalty_parts,
            "related_entities_ids": request.related_entities_ids,
        },
    )


def create_authority(name: str, kind: str) -> LedgerCall:
    return LedgerCall(
        pallet=IP_ONCHAIN,
        function="create_authority",
        params={"name": name, "kind": kind, "parent_authority_id": None},
    )


def create_task(worker: str, data: bytes) -> LedgerCall:
    return LedgerCall(
        pallet=ARWEAVE,
        function="create_task",
        params={"worker": worker, "data": "0x" + data.hex()},
    )


def parachain_location(parachain_id: int) -> dict:
    return {"parents": 1, "interior": {"X1": [{"Parachain": parachain_id}]}}


def foreign_authority_request(
    request: ForeignAuthorityRequest, src_parachain_id: int
) -> LedgerCall:
    return LedgerCall(
        pallet=IP_ONCHAIN,
        function="foreign_authority_request",
        params={
            "foreign_authority_id": request.foreign_authority_id,
            "foreign_authority_name": request.foreign_authority_name,
            "entity_id": request.entity_id,
            "location": parachain_location(src_parachain_id),
        },
    )


def foreign_authority_request_approve(entity_id: int, request_id: int) -> LedgerCall:
    return LedgerCall(
        pallet=IP_ONCHAIN,
        function="foreign_authority_request_approve",
        params={"entity_id": entity_id, "request_id": request_id},
    )


def foreign_authority_request_take(
    request_id: int, dst_parachain_id: int
) -> LedgerCall:
    return LedgerCall(
        pallet=IP_ONCHAIN,
        function="foreign_authority_request_take",
        params={
            "request_id": request_id,
            "location": parachain_location(dst_parachain_id),
        },
    )


def xcm_transact(encoded_call: bytes, dst_parachain_id: int) -> LedgerCall:
    """Wrap an encoded call into an unpaid XCM Transact sent to another parachain."""
    message = [
        {"UnpaidExecution": {"weight_limit": "Unlimited", "check_origin": None}},
        {
            "Transact": {
                "origin_kind": "SovereignAccount",
                "call": {"encoded": "0x" + encoded_call.hex()},
                "fallback_max_weight": None,
            }
        },
    ]
    return LedgerCall(
        pallet=POLKADOT_XCM,
        function="send",
        params={
            "dest": {"V5": parachain_location(dst_parachain_id)},
            "message": {"V5": message},
        },
    )

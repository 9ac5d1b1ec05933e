"""The self-contained environment input handed from preflight to replay.

An ``EnvironmentInput`` carries the execution header, the commitment and the
anchor data that links the two, the proven account/storage fragments every
recorded call touched, and the recorded call trace. It is serialized as
canonical JSON (sorted keys, compact separators).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from .chain import BlockHeader
from .commitment import Commitment
from .ssz import BeaconBlockHeader, ExecutionPayloadHeader


def _hexes(values) -> list:
    return [encode_hex(v) for v in values]


def _unhexes(values) -> Tuple[bytes, ...]:
    return tuple(decode_hex(v) for v in values)


@dataclass(frozen=True)
class StorageFragment:
    slot: int
    value: int
    proof: Tuple[bytes, ...]

    def to_json(self) -> dict:
        return {"slot": hex(self.slot), "value": hex(self.value), "proof": _hexes(self.proof)}

    @classmethod
    def from_json(cls, data: dict) -> "StorageFragment":
        return cls(slot=int(data["slot"], 16), value=int(data["value"], 16), proof=_unhexes(data["proof"]))


@dataclass(frozen=True)
class AccountFragment:
    address: str
    nonce: int
    balance: int
    storage_root: bytes
    code_hash: bytes
    proof: Tuple[bytes, ...]
    storage: Tuple[StorageFragment, ...] = ()
    # contract bytecode, present for accounts replay executes
    code: Optional[bytes] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", to_checksum_address(self.address))

    def to_json(self) -> dict:
        return {
            "address": self.address,
            "nonce": self.nonce,
            "balance": hex(self.balance),
            "storageRoot": encode_hex(self.storage_root),
            "codeHash": encode_hex(self.code_hash),
            "proof": _hexes(self.proof),
            "storage": [s.to_json() for s in self.storage],
            "code": None if self.code is None else encode_hex(self.code),
        }

    @classmethod
    def from_json(cls, data: dict) -> "AccountFragment":
        return cls(
            address=data["address"],
            nonce=int(data["nonce"]),
            balance=int(data["balance"], 16),
            storage_root=decode_hex(data["storageRoot"]),
            code_hash=decode_hex(data["codeHash"]),
            proof=_unhexes(data["proof"]),
            storage=tuple(StorageFragment.from_json(s) for s in data["storage"]),
            code=None if data.get("code") is None else decode_hex(data["code"]),
        )


@dataclass(frozen=True)
class CallRecord:
    to: str
    data: bytes
    output: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "to", to_checksum_address(self.to))

    def to_json(self) -> dict:
        return {"to": self.to, "data": encode_hex(self.data), "output": encode_hex(self.output)}

    @classmethod
    def from_json(cls, data: dict) -> "CallRecord":
        return cls(to=data["to"], data=decode_hex(data["data"]), output=decode_hex(data["output"]))


@dataclass(frozen=True)
class BlockAnchor:
    """The commitment digest is the execution block hash itself."""

    kind = "block"

    def to_json(self) -> dict:
        return {"kind": self.kind}


@dataclass(frozen=True)
class BeaconAnchor:
    """Links the execution block to a beacon block root.

    block hash -> execution payload header root -(branch)-> body root -> beacon header root
    """

    beacon_header: BeaconBlockHeader
    execution_header: ExecutionPayloadHeader
    execution_branch: Tuple[bytes, ...]

    kind = "beacon"

    def to_json(self) -> dict:
        return {
            "kind": self.kind,
            "beacon": self.beacon_header.to_json(),
            "execution": self.execution_header.to_json(),
            "executionBranch": _hexes(self.execution_branch),
        }


@dataclass(frozen=True)
class HistoryAnchor:
    """Links the execution block to a later block through EIP-2935 history storage."""

    commitment_header: BlockHeader
    history_account: AccountFragment

    kind = "history"

    def to_json(self) -> dict:
        return {
            "kind": self.kind,
            "commitmentHeader": self.commitment_header.to_json(),
            "historyAccount": self.history_account.to_json(),
        }


Anchor = Union[BlockAnchor, BeaconAnchor, HistoryAnchor]


def anchor_from_json(data: dict) -> Anchor:
    kind = data["kind"]
    if kind == "block":
        return BlockAnchor()
    if kind == "beacon":
        return BeaconAnchor(
            beacon_header=BeaconBlockHeader.from_json(data["beacon"]),
            execution_header=ExecutionPayloadHeader.from_json(data["execution"]),
            execution_branch=_unhexes(data["executionBranch"]),
        )
    if kind == "history":
        return HistoryAnchor(
            commitment_header=BlockHeader.from_json(data["commitmentHeader"]),
            history_account=AccountFragment.from_json(data["historyAccount"]),
        )
    raise ValueError(f"unknown anchor kind: {kind}")


@dataclass(frozen=True)
class EnvironmentInput:
    chain_id: int
    header: BlockHeader
    commitment: Commitment
    anchor: Anchor
    accounts: Tuple[AccountFragment, ...] = ()
    calls: Tuple[CallRecord, ...] = field(default=())

    def to_json(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "header": self.header.to_json(),
            "commitment": self.commitment.to_json(),
            "anchor": self.anchor.to_json(),
            "accounts": [a.to_json() for a in self.accounts],
            "calls": [c.to_json() for c in self.calls],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "EnvironmentInput":
        return cls(
            chain_id=int(data["chainId"]),
            header=BlockHeader.from_json(data["header"]),
            commitment=Commitment.from_json(data["commitment"]),
            anchor=anchor_from_json(data["anchor"]),
            accounts=tuple(AccountFragment.from_json(a) for a in data["accounts"]),
            calls=tuple(CallRecord.from_json(c) for c in data["calls"]),
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_json(), separators=(",", ":"), sort_keys=True).encode()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "EnvironmentInput":
        return cls.from_json(json.loads(raw))

    def digest(self) -> bytes:
        return keccak(self.to_bytes())

"""Minimal SSZ merkleization for beacon blocks and execution payload headers.

Only the containers needed to bind an execution block hash to a beacon block
root are covered: the block header, the execution payload header, and the
blinded block body (Deneb through Fulu) so the execution payload branch can
be computed from any block a beacon node serves. Hashing is SHA-256 as in the
consensus specs.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from eth_utils import decode_hex, encode_hex

ZERO_CHUNK = b"\x00" * 32

# execution_payload is field 9 of BeaconBlockBody (16 leaves, depth 4)
EXECUTION_PAYLOAD_DEPTH = 4
EXECUTION_PAYLOAD_INDEX = 9


def hash_pair(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(left + right).digest()


ZERO_HASHES = [ZERO_CHUNK]
for _ in range(64):
    ZERO_HASHES.append(hashlib.sha256(ZERO_HASHES[-1] * 2).digest())


def merkleize(chunks: Sequence[bytes], limit: Optional[int] = None) -> bytes:
    if limit is not None and len(chunks) > limit:
        raise ValueError(f"{len(chunks)} chunks exceed the limit of {limit}")
    depth = (max(len(chunks), limit or 0, 1) - 1).bit_length()
    layer = list(chunks)
    if not layer:
        return ZERO_HASHES[depth]
    for level in range(depth):
        if len(layer) % 2:
            layer.append(ZERO_HASHES[level])
        layer = [hash_pair(layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
    return layer[0]


def merkle_branch(leaves: Sequence[bytes], index: int) -> Tuple[Tuple[bytes, ...], bytes]:
    """Sibling path of ``leaves[index]`` and the root, over a power-of-two leaf count."""
    layer = list(leaves)
    branch = []
    while len(layer) > 1:
        branch.append(layer[index ^ 1])
        layer = [hash_pair(layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
        index //= 2
    return tuple(branch), layer[0]


def mix_in_length(root: bytes, length: int) -> bytes:
    return hash_pair(root, length.to_bytes(32, "little"))


def pack_bytes(data: bytes) -> List[bytes]:
    return [data[i : i + 32].ljust(32, b"\x00") for i in range(0, len(data), 32)]


def uint_chunk(value: int, size: int) -> bytes:
    return value.to_bytes(size, "little").ljust(32, b"\x00")


def is_valid_merkle_branch(leaf: bytes, branch: Sequence[bytes], depth: int, index: int, root: bytes) -> bool:
    if len(branch) != depth:
        return False
    value = leaf
    for i in range(depth):
        if (index >> i) & 1:
            value = hash_pair(branch[i], value)
        else:
            value = hash_pair(value, branch[i])
    return value == root


def _hex_or_bytes(value: Any) -> bytes:
    return decode_hex(value) if isinstance(value, str) else bytes(value)


@dataclass(frozen=True)
class BeaconBlockHeader:
    slot: int
    proposer_index: int
    parent_root: bytes
    state_root: bytes
    body_root: bytes

    def hash_tree_root(self) -> bytes:
        return merkleize(
            [
                uint_chunk(self.slot, 8),
                uint_chunk(self.proposer_index, 8),
                self.parent_root,
                self.state_root,
                self.body_root,
            ]
        )

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "BeaconBlockHeader":
        return cls(
            slot=int(data["slot"]),
            proposer_index=int(data["proposer_index"]),
            parent_root=_hex_or_bytes(data["parent_root"]),
            state_root=_hex_or_bytes(data["state_root"]),
            body_root=_hex_or_bytes(data["body_root"]),
        )

    def to_json(self) -> Dict[str, str]:
        return {
            "slot": str(self.slot),
            "proposer_index": str(self.proposer_index),
            "parent_root": encode_hex(self.parent_root),
            "state_root": encode_hex(self.state_root),
            "body_root": encode_hex(self.body_root),
        }


# (name, kind) in ExecutionPayloadHeader order, Deneb and later
EXECUTION_PAYLOAD_HEADER_FIELDS = (
    ("parent_hash", "bytes32"),
    ("fee_recipient", "address"),
    ("state_root", "bytes32"),
    ("receipts_root", "bytes32"),
    ("logs_bloom", "bloom"),
    ("prev_randao", "bytes32"),
    ("block_number", "uint64"),
    ("gas_limit", "uint64"),
    ("gas_used", "uint64"),
    ("timestamp", "uint64"),
    ("extra_data", "extra"),
    ("base_fee_per_gas", "uint256"),
    ("block_hash", "bytes32"),
    ("transactions_root", "bytes32"),
    ("withdrawals_root", "bytes32"),
    ("blob_gas_used", "uint64"),
    ("excess_blob_gas", "uint64"),
)

_MAX_EXTRA_DATA_BYTES = 32


class ExecutionPayloadHeader:
    """Execution payload header as served inside blinded beacon blocks."""

    def __init__(self, fields: Mapping[str, Any]):
        values: Dict[str, Any] = {}
        for name, kind in EXECUTION_PAYLOAD_HEADER_FIELDS:
            raw = fields[name]
            values[name] = int(raw) if kind in ("uint64", "uint256") else _hex_or_bytes(raw)
        self.values = values

    @property
    def block_hash(self) -> bytes:
        return self.values["block_hash"]

    def _leaf(self, name: str, kind: str) -> bytes:
        value = self.values[name]
        if kind == "uint64":
            return uint_chunk(value, 8)
        if kind == "uint256":
            return uint_chunk(value, 32)
        if kind == "address":
            return value.ljust(32, b"\x00")
        if kind == "bloom":
            return merkleize(pack_bytes(value))
        if kind == "extra":
            limit = (_MAX_EXTRA_DATA_BYTES + 31) // 32
            return mix_in_length(merkleize(pack_bytes(value), limit=limit), len(value))
        return value

    def hash_tree_root(self) -> bytes:
        return merkleize([self._leaf(name, kind) for name, kind in EXECUTION_PAYLOAD_HEADER_FIELDS])

    def to_json(self) -> Dict[str, str]:
        out = {}
        for name, kind in EXECUTION_PAYLOAD_HEADER_FIELDS:
            value = self.values[name]
            out[name] = str(value) if isinstance(value, int) else encode_hex(value)
        return out

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ExecutionPayloadHeader":
        return cls(data)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ExecutionPayloadHeader) and self.values == other.values


# Schema-driven hashing of beacon API JSON (decimal strings, 0x hex bytes).


class Uint:
    def __init__(self, size: int):
        self.size = size

    def hash_tree_root(self, value: Any) -> bytes:
        return uint_chunk(int(value), self.size)


class ByteVector:
    def __init__(self, length: int):
        self.length = length

    def hash_tree_root(self, value: Any) -> bytes:
        data = _hex_or_bytes(value)
        if len(data) != self.length:
            raise ValueError(f"expected {self.length} bytes, got {len(data)}")
        return merkleize(pack_bytes(data))


class Bitvector:
    def __init__(self, length: int):
        self.length = length

    def hash_tree_root(self, value: Any) -> bytes:
        data = _hex_or_bytes(value)
        if len(data) != (self.length + 7) // 8:
            raise ValueError(f"bitvector[{self.length}] has {len(data)} bytes")
        return merkleize(pack_bytes(data), limit=(self.length + 255) // 256)


class Bitlist:
    def __init__(self, limit: int):
        self.limit = limit

    def hash_tree_root(self, value: Any) -> bytes:
        bits = int.from_bytes(_hex_or_bytes(value), "little")
        if not bits:
            raise ValueError("bitlist is missing its delimiter bit")
        # the highest set bit only marks the length
        length = bits.bit_length() - 1
        if length > self.limit:
            raise ValueError(f"bitlist of {length} bits exceeds {self.limit}")
        data = (bits ^ (1 << length)).to_bytes((length + 7) // 8, "little")
        return mix_in_length(merkleize(pack_bytes(data), limit=(self.limit + 255) // 256), length)


class Vector:
    def __init__(self, element: Any, length: int):
        self.element = element
        self.length = length

    def hash_tree_root(self, value: Sequence[Any]) -> bytes:
        if len(value) != self.length:
            raise ValueError(f"vector of {self.length} has {len(value)} elements")
        return merkleize([self.element.hash_tree_root(v) for v in value])


class SSZList:
    def __init__(self, element: Any, limit: int):
        self.element = element
        self.limit = limit

    def hash_tree_root(self, value: Sequence[Any]) -> bytes:
        if len(value) > self.limit:
            raise ValueError(f"list of {len(value)} exceeds its limit of {self.limit}")
        if isinstance(self.element, Uint):
            size = self.element.size
            packed = b"".join(int(v).to_bytes(size, "little") for v in value)
            chunks = pack_bytes(packed)
            chunk_limit = (self.limit * size + 31) // 32
        else:
            chunks = [self.element.hash_tree_root(v) for v in value]
            chunk_limit = self.limit
        return mix_in_length(merkleize(chunks, limit=chunk_limit), len(value))


class Container:
    def __init__(self, *fields: Tuple[str, Any]):
        self.fields = fields

    def hash_tree_root(self, value: Mapping[str, Any]) -> bytes:
        return merkleize([kind.hash_tree_root(value[name]) for name, kind in self.fields])


class _PayloadHeader:
    def hash_tree_root(self, value: Mapping[str, Any]) -> bytes:
        return ExecutionPayloadHeader.from_json(value).hash_tree_root()


UINT64 = Uint(8)
BYTES20 = ByteVector(20)
BYTES32 = ByteVector(32)
BYTES48 = ByteVector(48)
BYTES96 = ByteVector(96)

CHECKPOINT = Container(("epoch", UINT64), ("root", BYTES32))
ATTESTATION_DATA = Container(
    ("slot", UINT64),
    ("index", UINT64),
    ("beacon_block_root", BYTES32),
    ("source", CHECKPOINT),
    ("target", CHECKPOINT),
)
SIGNED_BEACON_BLOCK_HEADER = Container(
    (
        "message",
        Container(
            ("slot", UINT64),
            ("proposer_index", UINT64),
            ("parent_root", BYTES32),
            ("state_root", BYTES32),
            ("body_root", BYTES32),
        ),
    ),
    ("signature", BYTES96),
)
PROPOSER_SLASHING = Container(("signed_header_1", SIGNED_BEACON_BLOCK_HEADER), ("signed_header_2", SIGNED_BEACON_BLOCK_HEADER))
ETH1_DATA = Container(("deposit_root", BYTES32), ("deposit_count", UINT64), ("block_hash", BYTES32))
DEPOSIT = Container(
    ("proof", Vector(BYTES32, 33)),
    (
        "data",
        Container(("pubkey", BYTES48), ("withdrawal_credentials", BYTES32), ("amount", UINT64), ("signature", BYTES96)),
    ),
)
SIGNED_VOLUNTARY_EXIT = Container(
    ("message", Container(("epoch", UINT64), ("validator_index", UINT64))),
    ("signature", BYTES96),
)
SYNC_AGGREGATE = Container(("sync_committee_bits", Bitvector(512)), ("sync_committee_signature", BYTES96))
SIGNED_BLS_TO_EXECUTION_CHANGE = Container(
    ("message", Container(("validator_index", UINT64), ("from_bls_pubkey", BYTES48), ("to_execution_address", BYTES20))),
    ("signature", BYTES96),
)
EXECUTION_REQUESTS = Container(
    (
        "deposits",
        SSZList(
            Container(
                ("pubkey", BYTES48),
                ("withdrawal_credentials", BYTES32),
                ("amount", UINT64),
                ("signature", BYTES96),
                ("index", UINT64),
            ),
            8192,
        ),
    ),
    ("withdrawals", SSZList(Container(("source_address", BYTES20), ("validator_pubkey", BYTES48), ("amount", UINT64)), 16)),
    (
        "consolidations",
        SSZList(Container(("source_address", BYTES20), ("source_pubkey", BYTES48), ("target_pubkey", BYTES48)), 2),
    ),
)

# per-fork body limits: (attester slashings, attestations, attesters per attestation)
_BODY_LIMITS = {
    "deneb": (2, 128, 2048),
    "electra": (1, 8, 2048 * 64),
    "fulu": (1, 8, 2048 * 64),
}


def blinded_body_type(version: str) -> Container:
    if version not in _BODY_LIMITS:
        raise ValueError(f"unsupported beacon block version: {version}")
    slashings, attestations, attesters = _BODY_LIMITS[version]
    indexed = Container(
        ("attesting_indices", SSZList(UINT64, attesters)),
        ("data", ATTESTATION_DATA),
        ("signature", BYTES96),
    )
    attestation_fields = [("aggregation_bits", Bitlist(attesters)), ("data", ATTESTATION_DATA), ("signature", BYTES96)]
    if version != "deneb":
        attestation_fields.append(("committee_bits", Bitvector(64)))
    fields = [
        ("randao_reveal", BYTES96),
        ("eth1_data", ETH1_DATA),
        ("graffiti", BYTES32),
        ("proposer_slashings", SSZList(PROPOSER_SLASHING, 16)),
        ("attester_slashings", SSZList(Container(("attestation_1", indexed), ("attestation_2", indexed)), slashings)),
        ("attestations", SSZList(Container(*attestation_fields), attestations)),
        ("deposits", SSZList(DEPOSIT, 16)),
        ("voluntary_exits", SSZList(SIGNED_VOLUNTARY_EXIT, 16)),
        ("sync_aggregate", SYNC_AGGREGATE),
        ("execution_payload_header", _PayloadHeader()),
        ("bls_to_execution_changes", SSZList(SIGNED_BLS_TO_EXECUTION_CHANGE, 16)),
        ("blob_kzg_commitments", SSZList(BYTES48, 4096)),
    ]
    if version != "deneb":
        fields.append(("execution_requests", EXECUTION_REQUESTS))
    return Container(*fields)


def execution_payload_proof(
    body: Mapping[str, Any], version: str
) -> Tuple[ExecutionPayloadHeader, Tuple[bytes, ...], bytes]:
    """Payload header of a blinded body, its branch to the body root, and that root."""
    body_type = blinded_body_type(version)
    assert body_type.fields[EXECUTION_PAYLOAD_INDEX][0] == "execution_payload_header"
    leaves = [kind.hash_tree_root(body[name]) for name, kind in body_type.fields]
    leaves += [ZERO_CHUNK] * (2**EXECUTION_PAYLOAD_DEPTH - len(leaves))
    branch, body_root = merkle_branch(leaves, EXECUTION_PAYLOAD_INDEX)
    return ExecutionPayloadHeader.from_json(body["execution_payload_header"]), branch, body_root

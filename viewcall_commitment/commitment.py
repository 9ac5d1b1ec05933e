"""Commitments and the strategies that produce them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from eth_utils import decode_hex, encode_hex

from .chain import BlockRef
from .errors import ResolutionError

BLOCK_VERSION = 0
BEACON_VERSION = 1

# EIP-2935 history storage
HISTORY_STORAGE_ADDRESS = "0x0000F90827F1C53a10cb7A02335B175320002935"
HISTORY_SERVE_WINDOW = 8191

_CLAIM_BITS = 240
_CLAIM_MASK = (1 << _CLAIM_BITS) - 1

COMMITMENT_ABI = "(uint256,bytes32,bytes32)"


@dataclass(frozen=True)
class Commitment:
    """Fingerprint of the state a journal was computed against.

    ``id`` packs the commitment version in its top 16 bits and the claim
    (block number, or beacon child timestamp) below it; ``digest`` is the
    block hash or beacon block root; ``config_id`` binds the chain rules.
    """

    id: int
    digest: bytes
    config_id: bytes

    def __post_init__(self) -> None:
        if len(self.digest) != 32 or len(self.config_id) != 32:
            raise ValueError("commitment digest and config id must be 32 bytes")

    @classmethod
    def new(cls, version: int, claim: int, digest: bytes, config_id: bytes) -> "Commitment":
        if claim > _CLAIM_MASK:
            raise ValueError("commitment claim does not fit in 240 bits")
        return cls(id=(version << _CLAIM_BITS) | claim, digest=bytes(digest), config_id=bytes(config_id))

    @property
    def version(self) -> int:
        return self.id >> _CLAIM_BITS

    @property
    def claim(self) -> int:
        return self.id & _CLAIM_MASK

    def as_abi(self) -> Tuple[int, bytes, bytes]:
        return (self.id, self.digest, self.config_id)

    @classmethod
    def from_abi(cls, value: Tuple[int, bytes, bytes]) -> "Commitment":
        return cls(id=value[0], digest=bytes(value[1]), config_id=bytes(value[2]))

    def to_json(self) -> dict:
        return {"id": hex(self.id), "digest": encode_hex(self.digest), "configId": encode_hex(self.config_id)}

    @classmethod
    def from_json(cls, data: dict) -> "Commitment":
        return cls(id=int(data["id"], 16), digest=decode_hex(data["digest"]), config_id=decode_hex(data["configId"]))

    def __str__(self) -> str:
        kind = {BLOCK_VERSION: "block", BEACON_VERSION: "beacon"}.get(self.version, f"v{self.version}")
        return f"Commitment({kind} {self.claim}, digest={encode_hex(self.digest)})"


@dataclass(frozen=True)
class BlockCommitment:
    """Commit to the execution block hash (checked on-chain with ``blockhash``)."""

    name = "block"


@dataclass(frozen=True)
class BeaconCommitment:
    """Commit to the beacon block root that carries the execution block (EIP-4788)."""

    beacon_api_url: str
    name = "beacon"


@dataclass(frozen=True)
class HistoryCommitment:
    """Commit to a later block whose EIP-2935 history storage holds the execution block hash."""

    commitment_block: BlockRef
    name = "history"


CommitmentMode = Union[BlockCommitment, BeaconCommitment, HistoryCommitment]

MODE_NAMES = ("block", "beacon", "history")


def commitment_mode(
    name: str,
    beacon_api_url: Optional[str] = None,
    commitment_block: Optional[Union[str, int, BlockRef]] = None,
) -> CommitmentMode:
    """Build a commitment mode from configuration values."""
    if name == "block":
        return BlockCommitment()
    if name == "beacon":
        if not beacon_api_url:
            raise ResolutionError("beacon commitment requires a beacon API URL")
        return BeaconCommitment(beacon_api_url)
    if name == "history":
        if commitment_block is None:
            raise ResolutionError("history commitment requires a commitment block")
        return HistoryCommitment(BlockRef.parse(commitment_block))
    raise ResolutionError(f"unknown commitment mode: {name}")

"""Chain configuration, fork rules and execution block headers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import rlp
from eth_abi import encode as abi_encode
from eth_utils import decode_hex, encode_hex, keccak

NETWORKS = {
    1: "Ethereum Mainnet",
    11155111: "Sepolia Testnet",
    10: "Optimism",
    137: "Polygon",
    42161: "Arbitrum One",
}


def network_name(chain_id: int) -> str:
    return NETWORKS.get(chain_id, f"Unknown (chain ID {chain_id})")


@dataclass(frozen=True)
class Fork:
    name: str
    # "block" activations compare against the header number, "time" against its timestamp
    kind: str
    activation: int


@dataclass(frozen=True)
class ChainSpec:
    chain_id: int
    forks: Tuple[Fork, ...]

    @property
    def name(self) -> str:
        return network_name(self.chain_id)

    def active_fork(self, number: int, timestamp: int) -> str:
        active = "frontier"
        for fork in self.forks:
            point = number if fork.kind == "block" else timestamp
            if point >= fork.activation:
                active = fork.name
        return active

    def header_fields(self, fork: str) -> Tuple[str, ...]:
        names = [f.name for f in self.forks]
        if fork not in names:
            return _BASE_FIELDS
        fields = list(_BASE_FIELDS)
        for name in names[: names.index(fork) + 1]:
            fields.extend(_FORK_FIELDS.get(name, ()))
        return tuple(fields)

    def config_id(self) -> bytes:
        """Digest of the chain rules every commitment is bound to."""
        payload = abi_encode(
            ["uint256", "string[]", "string[]", "uint256[]"],
            [
                self.chain_id,
                [f.name for f in self.forks],
                [f.kind for f in self.forks],
                [f.activation for f in self.forks],
            ],
        )
        return keccak(payload)


ETH_MAINNET_CHAIN_SPEC = ChainSpec(
    chain_id=1,
    forks=(
        Fork("london", "block", 12_965_000),
        Fork("shanghai", "time", 1_681_338_455),
        Fork("cancun", "time", 1_710_338_135),
        Fork("prague", "time", 1_746_612_311),
    ),
)

ETH_SEPOLIA_CHAIN_SPEC = ChainSpec(
    chain_id=11155111,
    forks=(
        Fork("london", "block", 1_735_371),
        Fork("shanghai", "time", 1_677_557_088),
        Fork("cancun", "time", 1_706_655_072),
        Fork("prague", "time", 1_741_159_776),
    ),
)

CHAIN_SPECS = {spec.chain_id: spec for spec in (ETH_MAINNET_CHAIN_SPEC, ETH_SEPOLIA_CHAIN_SPEC)}

_BASE_FIELDS = (
    "parentHash",
    "sha3Uncles",
    "miner",
    "stateRoot",
    "transactionsRoot",
    "receiptsRoot",
    "logsBloom",
    "difficulty",
    "number",
    "gasLimit",
    "gasUsed",
    "timestamp",
    "extraData",
    "mixHash",
    "nonce",
)

_FORK_FIELDS = {
    "london": ("baseFeePerGas",),
    "shanghai": ("withdrawalsRoot",),
    "cancun": ("blobGasUsed", "excessBlobGas", "parentBeaconBlockRoot"),
    "prague": ("requestsHash",),
}

_INT_FIELDS = frozenset(
    {"difficulty", "number", "gasLimit", "gasUsed", "timestamp", "baseFeePerGas", "blobGasUsed", "excessBlobGas"}
)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return decode_hex(value)
    return bytes(value)


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    return int(value)


class BlockHeader:
    """An execution-layer header kept in RLP field order."""

    def __init__(self, fields: Iterable[Tuple[str, Any]]):
        normalized = []
        for name, value in fields:
            normalized.append((name, _as_int(value) if name in _INT_FIELDS else _as_bytes(value)))
        self._fields: Tuple[Tuple[str, Any], ...] = tuple(normalized)
        self._index: Dict[str, Any] = dict(normalized)

    @classmethod
    def from_rpc(cls, block: Mapping[str, Any], spec: ChainSpec) -> "BlockHeader":
        number = _as_int(block["number"])
        timestamp = _as_int(block["timestamp"])
        names = spec.header_fields(spec.active_fork(number, timestamp))
        missing = [n for n in names if n not in block]
        if missing:
            raise KeyError(f"block {number} is missing header fields {missing}")
        return cls((name, block[name]) for name in names)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._fields)

    def __getitem__(self, name: str) -> Any:
        return self._index[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self._index.get(name, default)

    @property
    def number(self) -> int:
        return self._index["number"]

    @property
    def timestamp(self) -> int:
        return self._index["timestamp"]

    @property
    def state_root(self) -> bytes:
        return self._index["stateRoot"]

    @property
    def parent_hash(self) -> bytes:
        return self._index["parentHash"]

    def rlp_encode(self) -> bytes:
        return rlp.encode([value for _, value in self._fields])

    def hash(self) -> bytes:
        return keccak(self.rlp_encode())

    def replace(self, **changes: Any) -> "BlockHeader":
        return BlockHeader((name, changes.get(name, value)) for name, value in self._fields)

    def to_json(self) -> list:
        return [[name, value if name in _INT_FIELDS else encode_hex(value)] for name, value in self._fields]

    @classmethod
    def from_json(cls, data: Iterable[Iterable[Any]]) -> "BlockHeader":
        return cls((name, value) for name, value in data)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BlockHeader) and self._fields == other._fields

    def __hash__(self) -> int:
        return hash(self._fields)

    def __repr__(self) -> str:
        return f"BlockHeader(number={self.number}, hash={encode_hex(self.hash())})"


_TAGS = ("latest", "parent", "safe", "finalized", "earliest")


@dataclass(frozen=True)
class BlockRef:
    """A symbolic tag or an explicit block number."""

    tag: Optional[str] = None
    number: Optional[int] = None

    def __post_init__(self) -> None:
        if (self.tag is None) == (self.number is None):
            raise ValueError("BlockRef needs exactly one of tag or number")
        if self.tag is not None and self.tag not in _TAGS:
            raise ValueError(f"unknown block tag: {self.tag}")
        if self.number is not None and self.number < 0:
            raise ValueError("block number must be >= 0")

    @classmethod
    def parse(cls, value: Union[str, int, "BlockRef"]) -> "BlockRef":
        if isinstance(value, BlockRef):
            return value
        if isinstance(value, int):
            return cls(number=value)
        text = value.strip().lower()
        if text in _TAGS:
            return cls(tag=text)
        # decimal or 0xHEX
        return cls(number=int(text, 0))

    @classmethod
    def latest(cls) -> "BlockRef":
        return cls(tag="latest")

    @classmethod
    def parent(cls) -> "BlockRef":
        return cls(tag="parent")

    def __str__(self) -> str:
        return self.tag if self.tag is not None else str(self.number)

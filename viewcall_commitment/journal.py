"""Canonical journal encoding.

A journal is a frozen dataclass listing its ABI layout in ``ABI_FIELDS``.
Every layout is made of static types only, so the encoding has one fixed
length and anything shorter or longer is rejected instead of truncated or
zero-filled.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Tuple, Type, TypeVar

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from .commitment import COMMITMENT_ABI, Commitment
from .errors import JournalDecodeError

_WORD = 32
_DYNAMIC = ("bytes", "string")

J = TypeVar("J", bound="Journal")


class Journal:
    ABI_FIELDS: ClassVar[Tuple[Tuple[str, str], ...]] = ()

    def __post_init__(self) -> None:
        for name, abi_type in self.ABI_FIELDS:
            if abi_type == "address":
                object.__setattr__(self, name, to_checksum_address(getattr(self, name)))

    @classmethod
    def abi_types(cls) -> list:
        return [abi_type for _, abi_type in cls.ABI_FIELDS]

    @classmethod
    def encoded_size(cls) -> int:
        return sum(_static_words(abi_type) for abi_type in cls.abi_types()) * _WORD


def _static_words(abi_type: str) -> int:
    if abi_type in _DYNAMIC or abi_type.endswith("[]"):
        raise TypeError(f"journal fields must be static, got {abi_type}")
    if abi_type.startswith("("):
        return sum(_static_words(part) for part in abi_type[1:-1].split(","))
    return 1


def _to_abi(value: Any) -> Any:
    return value.as_abi() if isinstance(value, Commitment) else value


def _from_abi(abi_type: str, value: Any) -> Any:
    if abi_type == COMMITMENT_ABI:
        return Commitment.from_abi(value)
    if abi_type == "address":
        return to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return value


def config_digest(config: Any) -> bytes:
    """keccak256 of a program config's canonical JSON, carried in every journal."""
    return keccak(json.dumps(config.to_json(), separators=(",", ":"), sort_keys=True).encode())


def encode_journal(journal: Journal) -> bytes:
    values = [_to_abi(getattr(journal, name)) for name, _ in journal.ABI_FIELDS]
    return abi_encode(journal.abi_types(), values)


def decode_journal(cls: Type[J], data: bytes) -> J:
    expected = cls.encoded_size()
    if len(data) != expected:
        raise JournalDecodeError(f"malformed {cls.__name__}", expected_length=expected, actual_length=len(data))
    try:
        values = abi_decode(cls.abi_types(), bytes(data))
        fields = {name: _from_abi(abi_type, v) for (name, abi_type), v in zip(cls.ABI_FIELDS, values)}
        return cls(**fields)
    except Exception as exc:
        raise JournalDecodeError(f"malformed {cls.__name__}: {exc}") from exc

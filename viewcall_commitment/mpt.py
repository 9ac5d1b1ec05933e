"""Merkle-Patricia proof checks for ``eth_getProof`` style account and storage proofs."""

from __future__ import annotations

from typing import Sequence

import rlp
from eth_utils import keccak
from trie import HexaryTrie

from .errors import CommitmentMismatchError

EMPTY_TRIE_ROOT = keccak(rlp.encode(b""))
EMPTY_CODE_HASH = keccak(b"")


def decode_nodes(proof: Sequence[bytes]) -> list:
    return [rlp.decode(bytes(node)) for node in proof]


def account_rlp(nonce: int, balance: int, storage_root: bytes, code_hash: bytes) -> bytes:
    return rlp.encode([nonce, balance, storage_root, code_hash])


def storage_key(slot: int) -> bytes:
    return keccak(slot.to_bytes(32, "big"))


def storage_rlp(value: int) -> bytes:
    return b"" if value == 0 else rlp.encode(value)


def _lookup(root: bytes, key: bytes, proof: Sequence[bytes], what: str) -> bytes:
    try:
        return HexaryTrie.get_from_proof(root, key, decode_nodes(proof))
    except Exception as exc:
        raise CommitmentMismatchError(f"invalid proof for {what}: {exc}") from exc


def verify_account(
    state_root: bytes,
    address: bytes,
    nonce: int,
    balance: int,
    storage_root: bytes,
    code_hash: bytes,
    proof: Sequence[bytes],
) -> None:
    what = "account 0x" + address.hex()
    found = _lookup(state_root, keccak(address), proof, what)
    expected = account_rlp(nonce, balance, storage_root, code_hash)
    if found == b"":
        # non-existent account: only the empty account is a valid claim
        if (nonce, balance, storage_root, code_hash) == (0, 0, EMPTY_TRIE_ROOT, EMPTY_CODE_HASH):
            return
        raise CommitmentMismatchError(f"{what} is absent from the state trie", expected=expected, actual=found)
    if found != expected:
        raise CommitmentMismatchError(f"{what} does not match the state trie", expected=expected, actual=found)


def verify_storage(storage_root: bytes, slot: int, value: int, proof: Sequence[bytes]) -> None:
    what = f"storage slot {hex(slot)}"
    found = _lookup(storage_root, storage_key(slot), proof, what)
    expected = storage_rlp(value)
    if found != expected:
        raise CommitmentMismatchError(f"{what} does not match the storage trie", expected=expected, actual=found)

"""Verified replay of a recorded call trace.

``ReplayContext`` trusts nothing in the environment input until it has
checked it: the header against the commitment (directly, through a beacon
root, or through EIP-2935 history storage), the header layout against the
fork rules, and every account, storage and bytecode fragment against the
state root. Each call is then executed by the EVM over those fragments alone
and must reproduce the recorded trace, in order; nothing here touches the
network or the filesystem.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_utils import keccak, to_checksum_address

from .abi import CallDescriptor, Program
from .chain import CHAIN_SPECS, BlockHeader, ChainSpec
from .commitment import BEACON_VERSION, BLOCK_VERSION, HISTORY_SERVE_WINDOW, HISTORY_STORAGE_ADDRESS, Commitment
from .environment import AccountFragment, BeaconAnchor, BlockAnchor, EnvironmentInput, HistoryAnchor
from .errors import CommitmentMismatchError, ReplayDivergenceError
from .evm import ProvenState
from .mpt import verify_account, verify_storage
from .ssz import EXECUTION_PAYLOAD_DEPTH, EXECUTION_PAYLOAD_INDEX, is_valid_merkle_branch

logger = logging.getLogger(__name__)


def _check_layout(header: BlockHeader, spec: ChainSpec) -> None:
    expected = spec.header_fields(spec.active_fork(header.number, header.timestamp))
    if header.names != expected:
        raise CommitmentMismatchError(
            f"header {header.number} layout does not match {spec.name} fork rules", expected=expected, actual=header.names
        )


def _verify_fragment(state_root: bytes, account: AccountFragment) -> None:
    verify_account(
        state_root,
        bytes.fromhex(account.address[2:]),
        account.nonce,
        account.balance,
        account.storage_root,
        account.code_hash,
        account.proof,
    )
    for entry in account.storage:
        verify_storage(account.storage_root, entry.slot, entry.value, entry.proof)
    if account.code is not None and keccak(account.code) != account.code_hash:
        raise CommitmentMismatchError(
            f"bytecode of {account.address} does not match its code hash", expected=account.code_hash, actual=keccak(account.code)
        )


class ReplayContext:
    def __init__(self, env_input: EnvironmentInput, chain_spec: Optional[ChainSpec] = None):
        spec = chain_spec or CHAIN_SPECS.get(env_input.chain_id)
        if spec is None or spec.chain_id != env_input.chain_id:
            raise CommitmentMismatchError("no chain spec for input chain", expected=env_input.chain_id, actual=spec)
        self.chain_spec = spec
        self.header = env_input.header
        self._commitment = env_input.commitment
        self._calls = env_input.calls
        self._cursor = 0

        if self._commitment.config_id != spec.config_id():
            raise CommitmentMismatchError(
                "commitment is bound to different chain rules", expected=spec.config_id(), actual=self._commitment.config_id
            )
        _check_layout(self.header, spec)
        self._verify_anchor(env_input.anchor)
        self._verify_state(env_input)
        self._evm = ProvenState(self.header, spec, env_input.accounts)

    @property
    def commitment(self) -> Commitment:
        return self._commitment

    def _verify_anchor(self, anchor) -> None:
        commitment = self._commitment
        block_hash = self.header.hash()
        if isinstance(anchor, BlockAnchor):
            if commitment.version != BLOCK_VERSION or commitment.claim != self.header.number:
                raise CommitmentMismatchError("block commitment names another block", expected=self.header.number, actual=commitment.claim)
            if commitment.digest != block_hash:
                raise CommitmentMismatchError("block hash does not match commitment", expected=commitment.digest, actual=block_hash)
        elif isinstance(anchor, BeaconAnchor):
            if commitment.version != BEACON_VERSION:
                raise CommitmentMismatchError("beacon anchor needs a beacon commitment", expected=BEACON_VERSION, actual=commitment.version)
            execution = anchor.execution_header
            if execution.block_hash != block_hash:
                raise CommitmentMismatchError("execution payload carries another block", expected=block_hash, actual=execution.block_hash)
            if not is_valid_merkle_branch(
                execution.hash_tree_root(),
                anchor.execution_branch,
                EXECUTION_PAYLOAD_DEPTH,
                EXECUTION_PAYLOAD_INDEX,
                anchor.beacon_header.body_root,
            ):
                raise CommitmentMismatchError("execution payload branch does not reach the beacon body root")
            beacon_root = anchor.beacon_header.hash_tree_root()
            if beacon_root != commitment.digest:
                raise CommitmentMismatchError("beacon root does not match commitment", expected=commitment.digest, actual=beacon_root)
        elif isinstance(anchor, HistoryAnchor):
            self._verify_history(anchor, block_hash)
        else:
            raise CommitmentMismatchError(f"unknown anchor {anchor!r}")

    def _verify_history(self, anchor: HistoryAnchor, block_hash: bytes) -> None:
        commitment = self._commitment
        later = anchor.commitment_header
        _check_layout(later, self.chain_spec)
        if commitment.version != BLOCK_VERSION or commitment.claim != later.number:
            raise CommitmentMismatchError("history commitment names another block", expected=later.number, actual=commitment.claim)
        if commitment.digest != later.hash():
            raise CommitmentMismatchError("commitment block hash mismatch", expected=commitment.digest, actual=later.hash())
        if not 0 < later.number - self.header.number <= HISTORY_SERVE_WINDOW:
            raise CommitmentMismatchError("execution block is outside the history window of the commitment block")
        account = anchor.history_account
        if account.address != to_checksum_address(HISTORY_STORAGE_ADDRESS):
            raise CommitmentMismatchError("history proof is for the wrong account", expected=HISTORY_STORAGE_ADDRESS, actual=account.address)
        _verify_fragment(later.state_root, account)
        slot = self.header.number % HISTORY_SERVE_WINDOW
        entries = [s for s in account.storage if s.slot == slot]
        if len(entries) != 1:
            raise CommitmentMismatchError(f"history proof lacks slot {slot}")
        stored = entries[0].value.to_bytes(32, "big")
        if stored != block_hash:
            raise CommitmentMismatchError("history storage holds another block hash", expected=block_hash, actual=stored)

    def _verify_state(self, env_input: EnvironmentInput) -> None:
        state_root = self.header.state_root
        proven = set()
        for account in env_input.accounts:
            _verify_fragment(state_root, account)
            proven.add(account.address)
        for record in env_input.calls:
            if record.to not in proven:
                raise CommitmentMismatchError(f"call target {record.to} has no proven account")
        logger.debug("verified %s accounts against state root 0x%s", len(proven), state_root.hex())

    def call(self, descriptor: CallDescriptor) -> Any:
        if self._cursor >= len(self._calls):
            raise ReplayDivergenceError(f"{descriptor} was not recorded during preflight")
        record = self._calls[self._cursor]
        if record.to != descriptor.address or record.data != descriptor.calldata:
            raise ReplayDivergenceError(f"call #{self._cursor} is {descriptor}, but preflight recorded a call to {record.to}")
        self._cursor += 1
        output = self._evm.call(descriptor.address, descriptor.calldata)
        if output != record.output:
            raise CommitmentMismatchError(
                f"recorded output of {descriptor} differs from execution against the committed state",
                expected=output,
                actual=record.output,
            )
        try:
            return descriptor.decode(output)
        except Exception as exc:
            raise ReplayDivergenceError(f"recorded output of {descriptor} does not decode: {exc}") from exc

    def run(self, program: Program) -> Any:
        try:
            descriptor = next(program)
            while True:
                descriptor = program.send(self.call(descriptor))
        except StopIteration as stop:
            result = stop.value
        if self._cursor != len(self._calls):
            raise ReplayDivergenceError(f"{len(self._calls) - self._cursor} recorded calls were never replayed")
        return result

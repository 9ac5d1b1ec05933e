"""EVM execution over proven state only.

``ProvenState`` loads py-evm with nothing but the trie nodes and bytecode an
``EnvironmentInput`` carries, rooted at the header's state root. A call that
reaches an account, slot or contract outside those fragments hits a missing
trie node instead of a default value, and is refused.
"""

from __future__ import annotations

import logging
from typing import Sequence

from eth.constants import ZERO_ADDRESS
from eth.db.atomic import AtomicDB
from eth.vm.execution_context import ExecutionContext
from eth.vm.forks import CancunVM, LondonVM, PragueVM, ShanghaiVM
from eth.vm.interrupt import EVMMissingData
from eth.vm.message import Message
from eth_utils import keccak, to_canonical_address

from .chain import BlockHeader, ChainSpec
from .environment import AccountFragment
from .errors import CommitmentMismatchError

logger = logging.getLogger(__name__)

FORK_VMS = {
    "london": LondonVM,
    "shanghai": ShanghaiVM,
    "cancun": CancunVM,
    "prague": PragueVM,
}


def _state_db(accounts: Sequence[AccountFragment]) -> AtomicDB:
    db = AtomicDB()
    for account in accounts:
        for node in account.proof:
            db[keccak(node)] = node
        for entry in account.storage:
            for node in entry.proof:
                db[keccak(node)] = node
        if account.code:
            db[account.code_hash] = account.code
    return db


class ProvenState:
    def __init__(self, header: BlockHeader, spec: ChainSpec, accounts: Sequence[AccountFragment]):
        fork = spec.active_fork(header.number, header.timestamp)
        if fork not in FORK_VMS:
            raise CommitmentMismatchError(f"cannot execute calls under {fork} rules", expected=tuple(FORK_VMS), actual=fork)
        context = ExecutionContext(
            coinbase=to_canonical_address(header["miner"]),
            timestamp=header.timestamp,
            block_number=header.number,
            difficulty=header["difficulty"],
            mix_hash=header["mixHash"],
            gas_limit=header["gasLimit"],
            prev_hashes=(),
            chain_id=spec.chain_id,
            base_fee_per_gas=header.get("baseFeePerGas"),
            excess_blob_gas=header.get("excessBlobGas"),
        )
        self.gas = header["gasLimit"]
        self.state = FORK_VMS[fork].get_state_class()(_state_db(accounts), context, header.state_root)

    def call(self, to: str, data: bytes) -> bytes:
        state = self.state
        snapshot = state.snapshot()
        try:
            address = to_canonical_address(to)
            message = Message(
                gas=self.gas,
                to=address,
                sender=ZERO_ADDRESS,
                value=0,
                data=data,
                code=state.get_code(address),
                is_static=True,
            )
            tx_context = state.get_transaction_context_class()(gas_price=0, origin=ZERO_ADDRESS)
            computation = state.computation_class.apply_message(state, message, tx_context)
        except EVMMissingData as exc:
            raise CommitmentMismatchError(f"call to {to} reads state outside the proven fragments: {exc!r}") from exc
        finally:
            state.revert(snapshot)
        if computation.is_error:
            raise CommitmentMismatchError(f"call to {to} fails against the committed state: {computation.error!r}")
        logger.debug("executed call to %s, %s gas used", to, computation.get_gas_used())
        return computation.output

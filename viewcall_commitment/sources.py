"""Live data sources: an execution RPC endpoint and a beacon API endpoint.

The pipeline only depends on the ``StateSource`` and ``BeaconSource``
protocols; ``Web3StateSource`` and ``BeaconApiClient`` are the live
implementations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union

import requests
from eth_utils import decode_hex, to_checksum_address
from web3 import AsyncWeb3

from .environment import AccountFragment, StorageFragment
from .errors import ResolutionError
from .ssz import BeaconBlockHeader, ExecutionPayloadHeader, execution_payload_proof

logger = logging.getLogger(__name__)

BlockId = Union[str, int]

RPC_TIMEOUT = 20


class StateSource(Protocol):
    async def chain_id(self) -> int: ...

    async def get_block(self, block: BlockId) -> Mapping[str, Any]: ...

    async def call(self, to: str, data: bytes, block_number: int) -> bytes: ...

    async def access_list(self, to: str, data: bytes, block_number: int) -> Dict[str, Tuple[int, ...]]: ...

    async def get_proof(self, address: str, slots: Sequence[int], block_number: int) -> AccountFragment: ...

    async def get_code(self, address: str, block_number: int) -> bytes: ...


class BeaconSource(Protocol):
    async def execution_proof(
        self, block_root: bytes
    ) -> Tuple[BeaconBlockHeader, ExecutionPayloadHeader, Tuple[bytes, ...]]: ...


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16)
    return int.from_bytes(bytes(value), "big")


class Web3StateSource:
    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    @classmethod
    async def connect(cls, url: str) -> "Web3StateSource":
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": RPC_TIMEOUT}))
        if not await w3.is_connected():
            raise ResolutionError("Failed to connect to RPC. Check RPC_URL.")
        return cls(w3)

    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def get_block(self, block: BlockId) -> Mapping[str, Any]:
        return await self.w3.eth.get_block(block)

    async def call(self, to: str, data: bytes, block_number: int) -> bytes:
        result = await self.w3.eth.call({"to": to, "data": data}, block_identifier=block_number)
        return bytes(result)

    async def access_list(self, to: str, data: bytes, block_number: int) -> Dict[str, Tuple[int, ...]]:
        result = await self.w3.eth.create_access_list({"to": to, "data": data}, block_number)
        touched: Dict[str, Tuple[int, ...]] = {}
        for entry in result["accessList"]:
            touched[to_checksum_address(entry["address"])] = tuple(_as_int(k) for k in entry["storageKeys"])
        return touched

    async def get_proof(self, address: str, slots: Sequence[int], block_number: int) -> AccountFragment:
        proof = await self.w3.eth.get_proof(address, list(slots), block_number)
        return AccountFragment(
            address=proof["address"],
            nonce=_as_int(proof["nonce"]),
            balance=_as_int(proof["balance"]),
            storage_root=bytes(proof["storageHash"]),
            code_hash=bytes(proof["codeHash"]),
            proof=tuple(bytes(node) for node in proof["accountProof"]),
            storage=tuple(
                StorageFragment(
                    slot=_as_int(entry["key"]),
                    value=_as_int(entry["value"]),
                    proof=tuple(bytes(node) for node in entry["proof"]),
                )
                for entry in proof["storageProof"]
            ),
        )

    async def get_code(self, address: str, block_number: int) -> bytes:
        return bytes(await self.w3.eth.get_code(address, block_number))


class BeaconApiClient:
    """Beacon node REST client.

    The execution payload branch is computed locally from the blinded block,
    which beacon nodes serve for any block they hold, not only for finalized
    checkpoints.
    """

    def __init__(self, base_url: str, timeout: float = 20, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str) -> Dict[str, Any]:
        resp = self.session.get(f"{self.base_url}{path}", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _blinded_block(self, block_root: bytes) -> Tuple[BeaconBlockHeader, ExecutionPayloadHeader, Tuple[bytes, ...]]:
        body = self._get(f"/eth/v1/beacon/blinded_blocks/0x{block_root.hex()}")
        message = body["data"]["message"]
        execution, branch, body_root = execution_payload_proof(message["body"], body["version"])
        beacon = BeaconBlockHeader(
            slot=int(message["slot"]),
            proposer_index=int(message["proposer_index"]),
            parent_root=decode_hex(message["parent_root"]),
            state_root=decode_hex(message["state_root"]),
            body_root=body_root,
        )
        return beacon, execution, branch

    async def execution_proof(
        self, block_root: bytes
    ) -> Tuple[BeaconBlockHeader, ExecutionPayloadHeader, Tuple[bytes, ...]]:
        logger.debug("fetching blinded beacon block 0x%s", block_root.hex())
        return await asyncio.to_thread(self._blinded_block, block_root)

"""Commitment resolution: block reference -> header + commitment + anchor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from eth_utils import encode_hex

from .chain import BlockHeader, BlockRef, ChainSpec
from .commitment import (
    BEACON_VERSION,
    BLOCK_VERSION,
    HISTORY_SERVE_WINDOW,
    HISTORY_STORAGE_ADDRESS,
    BeaconCommitment,
    BlockCommitment,
    Commitment,
    CommitmentMode,
    HistoryCommitment,
)
from .environment import Anchor, BeaconAnchor, BlockAnchor, HistoryAnchor
from .errors import ResolutionError
from .sources import BeaconApiClient, BeaconSource, StateSource

logger = logging.getLogger(__name__)

BLOCKHASH_WINDOW = 256


@dataclass(frozen=True)
class EnvironmentHandle:
    """A resolved execution block, bound to the commitment a journal will carry."""

    chain_spec: ChainSpec
    header: BlockHeader
    commitment: Commitment
    anchor: Anchor

    @property
    def block_number(self) -> int:
        return self.header.number


async def fetch_header(source: StateSource, ref: BlockRef, spec: ChainSpec) -> BlockHeader:
    try:
        if ref.tag == "parent":
            latest = await source.get_block("latest")
            block = await source.get_block(int(latest["number"]) - 1)
        else:
            block = await source.get_block(ref.tag if ref.tag is not None else ref.number)
    except Exception as exc:
        raise ResolutionError(f"cannot resolve block {ref}: {exc}") from exc
    if block is None:
        raise ResolutionError(f"block {ref} not found")
    try:
        return BlockHeader.from_rpc(block, spec)
    except KeyError as exc:
        raise ResolutionError(f"block {ref} does not follow {spec.name} fork rules: {exc}") from exc


async def resolve(
    source: StateSource,
    ref: Union[str, int, BlockRef],
    chain_spec: ChainSpec,
    mode: CommitmentMode = BlockCommitment(),
    beacon: Optional[BeaconSource] = None,
) -> EnvironmentHandle:
    ref = BlockRef.parse(ref)
    try:
        chain_id = await source.chain_id()
    except Exception as exc:
        raise ResolutionError(f"cannot read chain id: {exc}") from exc
    if chain_id != chain_spec.chain_id:
        raise ResolutionError(f"RPC serves chain {chain_id}, expected {chain_spec.chain_id} ({chain_spec.name})")

    header = await fetch_header(source, ref, chain_spec)
    config_id = chain_spec.config_id()

    if isinstance(mode, BlockCommitment):
        commitment, anchor = await _block(source, header, config_id)
    elif isinstance(mode, BeaconCommitment):
        commitment, anchor = await _beacon(source, header, chain_spec, beacon or BeaconApiClient(mode.beacon_api_url))
    elif isinstance(mode, HistoryCommitment):
        commitment, anchor = await _history(source, header, chain_spec, mode.commitment_block)
    else:
        raise ResolutionError(f"unsupported commitment mode: {mode!r}")

    logger.info("resolved block %s (%s) to %s", header.number, encode_hex(header.hash()), commitment)
    return EnvironmentHandle(chain_spec=chain_spec, header=header, commitment=commitment, anchor=anchor)


async def _block(source: StateSource, header: BlockHeader, config_id: bytes):
    try:
        tip = int((await source.get_block("latest"))["number"])
    except Exception as exc:
        raise ResolutionError(f"cannot read chain tip: {exc}") from exc
    if tip - header.number > BLOCKHASH_WINDOW:
        logger.warning(
            "block %s is %s blocks behind the tip; blockhash commitments expire after %s",
            header.number,
            tip - header.number,
            BLOCKHASH_WINDOW,
        )
    return Commitment.new(BLOCK_VERSION, header.number, header.hash(), config_id), BlockAnchor()


async def _beacon(source: StateSource, header: BlockHeader, spec: ChainSpec, beacon: BeaconSource):
    # the child header carries the root of the beacon block holding our payload
    child = await fetch_header(source, BlockRef(number=header.number + 1), spec)
    beacon_root = child.get("parentBeaconBlockRoot")
    if beacon_root is None:
        raise ResolutionError(f"block {child.number} has no parent beacon block root (pre-Cancun)")
    try:
        beacon_header, execution_header, branch = await beacon.execution_proof(beacon_root)
    except Exception as exc:
        raise ResolutionError(f"beacon source cannot prove beacon root {encode_hex(beacon_root)}: {exc}") from exc
    if beacon_header.hash_tree_root() != beacon_root:
        raise ResolutionError(f"beacon source returned a header for a different root than {encode_hex(beacon_root)}")
    if execution_header.block_hash != header.hash():
        raise ResolutionError(f"beacon block {encode_hex(beacon_root)} does not carry block {header.number}")
    commitment = Commitment.new(BEACON_VERSION, child.timestamp, beacon_root, spec.config_id())
    return commitment, BeaconAnchor(beacon_header, execution_header, tuple(branch))


async def _history(source: StateSource, header: BlockHeader, spec: ChainSpec, commitment_block: BlockRef):
    commit_header = await fetch_header(source, commitment_block, spec)
    distance = commit_header.number - header.number
    if not 0 < distance <= HISTORY_SERVE_WINDOW:
        raise ResolutionError(
            f"commitment block {commit_header.number} must be 1..{HISTORY_SERVE_WINDOW} blocks after {header.number}"
        )
    if commit_header.get("requestsHash") is None:
        raise ResolutionError(f"commitment block {commit_header.number} predates EIP-2935 history storage")
    slot = header.number % HISTORY_SERVE_WINDOW
    try:
        account = await source.get_proof(HISTORY_STORAGE_ADDRESS, [slot], commit_header.number)
    except Exception as exc:
        raise ResolutionError(f"cannot fetch history storage proof: {exc}") from exc
    stored = {s.slot: s.value for s in account.storage}.get(slot, 0)
    if stored.to_bytes(32, "big") != header.hash():
        raise ResolutionError(f"history storage at block {commit_header.number} does not hold block {header.number}")
    commitment = Commitment.new(BLOCK_VERSION, commit_header.number, commit_header.hash(), spec.config_id())
    return commitment, HistoryAnchor(commit_header, account)

"""Proof orchestration: resolve, preflight, prove, decode.

Proving is CPU-bound and runs off the event loop, in a process pool unless
the caller injects an executor. Each pipeline compares the journal it
computed during preflight with the one the prover committed to; any
difference means replay saw something preflight did not.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from .chain import ETH_MAINNET_CHAIN_SPEC, BlockRef, ChainSpec
from .commitment import BlockCommitment, CommitmentMode
from .environment import EnvironmentInput
from .errors import ProvingError, ReplayDivergenceError, ViewCallError
from .guests import encode_payload, get_guest
from .journal import Journal, decode_journal
from .preflight import run_program
from .programs import (
    CompoundConfig,
    InflationConfig,
    MorphoConfig,
    circulating_supply_program,
    compound_apr_program,
    inflation_journal,
    morpho_apr_program,
    quoted_comp_price,
)
from .prover import ProofProfile, ProvingBackend, Receipt
from .resolver import resolve
from .sources import BeaconSource, StateSource

logger = logging.getLogger(__name__)

BlockLike = Union[str, int, BlockRef]


@dataclass(frozen=True)
class ProofResult:
    receipt: Receipt
    journal: Journal


async def prove(
    backend: ProvingBackend,
    guest: str,
    inputs: Sequence[EnvironmentInput],
    params: Mapping[str, Any],
    profile: ProofProfile = ProofProfile.DEV,
    executor: Optional[Executor] = None,
) -> Receipt:
    expected_image = get_guest(guest).image_id
    payload = encode_payload(inputs, params)
    loop = asyncio.get_running_loop()
    pool = executor or ProcessPoolExecutor(max_workers=1)
    logger.info("proving %s (%s profile, %s bytes of input)", guest, profile.value, len(payload))
    try:
        receipt = await loop.run_in_executor(pool, backend.prove, guest, payload, profile)
    except ViewCallError:
        raise
    except Exception as exc:
        raise ProvingError(f"{guest} proof failed: {exc}") from exc
    finally:
        if executor is None:
            pool.shutdown(wait=False)
    if receipt.image_id != expected_image:
        raise ProvingError(f"backend returned a receipt for another image than {guest}")
    return receipt


def _finish(guest: str, receipt: Receipt, expected: Journal) -> ProofResult:
    journal = decode_journal(get_guest(guest).journal, receipt.journal)
    if journal != expected:
        raise ReplayDivergenceError(f"{guest} journal differs between preflight and proof")
    logger.info("%s proven against %s", guest, journal.commitment)
    return ProofResult(receipt=receipt, journal=journal)


async def prove_compound_apr(
    source: StateSource,
    backend: ProvingBackend,
    config: CompoundConfig,
    block: BlockLike = "parent",
    chain_spec: ChainSpec = ETH_MAINNET_CHAIN_SPEC,
    mode: CommitmentMode = BlockCommitment(),
    profile: ProofProfile = ProofProfile.DEV,
    beacon: Optional[BeaconSource] = None,
    executor: Optional[Executor] = None,
) -> ProofResult:
    handle = await resolve(source, block, chain_spec, mode, beacon)
    env_input, expected = await run_program(source, handle, compound_apr_program(config, handle.commitment))
    logger.info(
        "Comet %s: COMP price %s, supply APR %s (+%s COMP), borrow APR %s (+%s COMP)",
        config.comet,
        quoted_comp_price(config, env_input.calls),
        expected.annual_base_supply_rate,
        expected.annual_comp_rewards_supply_rate,
        expected.annual_base_borrow_rate,
        expected.annual_comp_rewards_borrow_rate,
    )
    receipt = await prove(backend, "compound-apr", [env_input], {"config": config.to_json()}, profile, executor)
    return _finish("compound-apr", receipt, expected)


async def prove_morpho_apr(
    source: StateSource,
    backend: ProvingBackend,
    config: MorphoConfig,
    block: BlockLike = "parent",
    chain_spec: ChainSpec = ETH_MAINNET_CHAIN_SPEC,
    mode: CommitmentMode = BlockCommitment(),
    profile: ProofProfile = ProofProfile.DEV,
    beacon: Optional[BeaconSource] = None,
    executor: Optional[Executor] = None,
) -> ProofResult:
    handle = await resolve(source, block, chain_spec, mode, beacon)
    env_input, expected = await run_program(source, handle, morpho_apr_program(config, handle.commitment))
    logger.info(
        "Morpho market 0x%s: supply APR %s, borrow APR %s, utilization %s",
        config.market_id.hex(),
        expected.annual_supply_rate,
        expected.annual_borrow_rate,
        expected.utilization,
    )
    receipt = await prove(backend, "morpho-apr", [env_input], {"config": config.to_json()}, profile, executor)
    return _finish("morpho-apr", receipt, expected)


async def prove_token_inflation(
    source: StateSource,
    backend: ProvingBackend,
    config: InflationConfig,
    block: BlockLike,
    past_block: BlockLike,
    chain_spec: ChainSpec = ETH_MAINNET_CHAIN_SPEC,
    mode: CommitmentMode = BlockCommitment(),
    past_mode: Optional[CommitmentMode] = None,
    profile: ProofProfile = ProofProfile.DEV,
    beacon: Optional[BeaconSource] = None,
    executor: Optional[Executor] = None,
) -> ProofResult:
    async def lane(ref: BlockLike, lane_mode: CommitmentMode):
        handle = await resolve(source, ref, chain_spec, lane_mode, beacon)
        env_input, (total, circulating) = await run_program(source, handle, circulating_supply_program(config))
        logger.info("block %s: total supply %s, circulating %s", handle.block_number, total, circulating)
        return handle, env_input, circulating

    # both snapshots must be prepared before proving starts
    (now, now_input, circulating_now), (past, past_input, circulating_then) = await asyncio.gather(
        lane(block, mode), lane(past_block, past_mode or mode)
    )
    expected = inflation_journal(config, now.commitment, past.commitment, circulating_now, circulating_then)
    logger.info("inflation of %s: %s bps", config.token, expected.inflation_basis_points)
    receipt = await prove(
        backend, "token-inflation", [now_input, past_input], {"config": config.to_json()}, profile, executor
    )
    return _finish("token-inflation", receipt, expected)

"""Preflight: run calls against live state and record what replay will need.

Every call is executed with ``eth_call`` at the handle's block; the accounts
and storage slots it touched are discovered with ``eth_createAccessList``.
When the batch is done, ``into_input`` fetches ``eth_getProof`` fragments
and bytecode for everything touched and seals them, with the call trace,
into an ``EnvironmentInput``.

Protocol programs are generators that yield ``CallDescriptor``s and receive
decoded results, so a data-dependent sequence (utilization first, then the
rate for that utilization) is written once and driven identically here and
in replay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Sequence, Set, Tuple

from .abi import CallDescriptor, Program
from .environment import CallRecord, EnvironmentInput
from .errors import CallError
from .resolver import EnvironmentHandle
from .sources import StateSource

logger = logging.getLogger(__name__)


class Preflight:
    def __init__(self, source: StateSource, handle: EnvironmentHandle):
        self.source = source
        self.handle = handle
        self._calls: List[CallRecord] = []
        self._touched: Dict[str, Set[int]] = {}
        self._finalized = False

    def _touch(self, address: str, slots) -> None:
        self._touched.setdefault(address, set()).update(slots)

    async def call(self, descriptor: CallDescriptor) -> Any:
        if self._finalized:
            raise RuntimeError("preflight already finalized into an environment input")
        block = self.handle.block_number
        data = descriptor.calldata
        logger.debug("preflight %s at block %s", descriptor, block)
        try:
            output = await self.source.call(descriptor.address, data, block)
            touched = await self.source.access_list(descriptor.address, data, block)
        except Exception as exc:
            raise CallError(
                f"{descriptor} failed at block {block}: {exc}", call=descriptor.name, address=descriptor.address
            ) from exc
        try:
            result = descriptor.decode(output)
        except Exception as exc:
            raise CallError(
                f"cannot decode {descriptor} output: {exc}", call=descriptor.name, address=descriptor.address
            ) from exc

        self._calls.append(CallRecord(descriptor.address, data, output))
        self._touch(descriptor.address, ())
        for address, slots in touched.items():
            self._touch(address, slots)
        return result

    async def drive(self, program: Program) -> Any:
        try:
            descriptor = next(program)
            while True:
                descriptor = program.send(await self.call(descriptor))
        except StopIteration as stop:
            return stop.value

    async def into_input(self) -> EnvironmentInput:
        if self._finalized:
            raise RuntimeError("preflight already finalized into an environment input")
        self._finalized = True
        block = self.handle.block_number
        addresses = sorted(self._touched)

        async def fetch(address: str):
            try:
                fragment = await self.source.get_proof(address, sorted(self._touched[address]), block)
                code = await self.source.get_code(address, block)
            except Exception as exc:
                raise CallError(f"cannot fetch state proof for {address} at block {block}: {exc}", address=address) from exc
            return replace(fragment, code=code)

        accounts = await asyncio.gather(*(fetch(a) for a in addresses))
        logger.debug(
            "sealed %s calls, %s accounts, %s slots",
            len(self._calls),
            len(accounts),
            sum(len(s) for s in self._touched.values()),
        )
        return EnvironmentInput(
            chain_id=self.handle.chain_spec.chain_id,
            header=self.handle.header,
            commitment=self.handle.commitment,
            anchor=self.handle.anchor,
            accounts=tuple(accounts),
            calls=tuple(self._calls),
        )


async def record(
    source: StateSource, handle: EnvironmentHandle, calls: Sequence[CallDescriptor]
) -> Tuple[EnvironmentInput, List[Any]]:
    """Issue a fixed, ordered batch of calls and seal them into one input."""
    preflight = Preflight(source, handle)
    results = []
    for descriptor in calls:
        results.append(await preflight.call(descriptor))
    return await preflight.into_input(), results


async def run_program(source: StateSource, handle: EnvironmentHandle, program: Program) -> Tuple[EnvironmentInput, Any]:
    preflight = Preflight(source, handle)
    result = await preflight.drive(program)
    return await preflight.into_input(), result

"""Guest programs: what runs inside the prover.

A guest takes a payload (environment inputs plus protocol parameters),
rebuilds a ``ReplayContext`` for each input, runs the protocol program
against it and returns the ABI-encoded journal. Guests are pure: the same
payload always yields the same journal bytes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple, Type

from eth_utils import keccak

from .environment import EnvironmentInput
from .journal import Journal, encode_journal
from .programs import (
    CompoundConfig,
    CompoundJournal,
    InflationConfig,
    InflationJournal,
    MorphoConfig,
    MorphoJournal,
    circulating_supply_program,
    compound_apr_program,
    inflation_journal,
    morpho_apr_program,
)
from .replay import ReplayContext

# bump when a guest's journal or replay rules change
GUEST_ABI_VERSION = 2

Params = Mapping[str, Any]


@dataclass(frozen=True)
class Guest:
    name: str
    journal: Type[Journal]
    lanes: int
    entry: Callable[[Sequence[EnvironmentInput], Params], Journal]

    @property
    def image_id(self) -> bytes:
        return keccak(text=f"viewcall-commitment/{self.name}/v{GUEST_ABI_VERSION}")


def _compound_apr(inputs: Sequence[EnvironmentInput], params: Params) -> Journal:
    ctx = ReplayContext(inputs[0])
    config = CompoundConfig.from_json(params["config"])
    return ctx.run(compound_apr_program(config, ctx.commitment))


def _morpho_apr(inputs: Sequence[EnvironmentInput], params: Params) -> Journal:
    ctx = ReplayContext(inputs[0])
    config = MorphoConfig.from_json(params["config"])
    return ctx.run(morpho_apr_program(config, ctx.commitment))


def _token_inflation(inputs: Sequence[EnvironmentInput], params: Params) -> Journal:
    now, past = ReplayContext(inputs[0]), ReplayContext(inputs[1])
    if now.chain_spec.chain_id != past.chain_spec.chain_id:
        raise ValueError("inflation snapshots must come from the same chain")
    config = InflationConfig.from_json(params["config"])
    _, circulating_now = now.run(circulating_supply_program(config))
    _, circulating_then = past.run(circulating_supply_program(config))
    return inflation_journal(config, now.commitment, past.commitment, circulating_now, circulating_then)


GUESTS: Dict[str, Guest] = {
    guest.name: guest
    for guest in (
        Guest("compound-apr", CompoundJournal, 1, _compound_apr),
        Guest("morpho-apr", MorphoJournal, 1, _morpho_apr),
        Guest("token-inflation", InflationJournal, 2, _token_inflation),
    )
}


def get_guest(name: str) -> Guest:
    try:
        return GUESTS[name]
    except KeyError:
        raise ValueError(f"unknown guest {name!r}; known guests: {', '.join(sorted(GUESTS))}") from None


def encode_payload(inputs: Sequence[EnvironmentInput], params: Params) -> bytes:
    body = {"inputs": [i.to_json() for i in inputs], "params": dict(params)}
    return json.dumps(body, separators=(",", ":"), sort_keys=True).encode()


def decode_payload(payload: bytes) -> Tuple[List[EnvironmentInput], Dict[str, Any]]:
    body = json.loads(payload)
    return [EnvironmentInput.from_json(i) for i in body["inputs"]], body["params"]


def replay(name: str, inputs: Sequence[EnvironmentInput], params: Params) -> bytes:
    """Run a guest over already-decoded inputs and return the journal bytes."""
    guest = get_guest(name)
    if len(inputs) != guest.lanes:
        raise ValueError(f"{name} takes {guest.lanes} environment inputs, got {len(inputs)}")
    return encode_journal(guest.entry(inputs, params))


def run_guest(name: str, payload: bytes) -> bytes:
    inputs, params = decode_payload(payload)
    return replay(name, inputs, params)

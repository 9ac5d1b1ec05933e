"""ERC-20 circulating-supply inflation between two snapshots.

Each snapshot is its own environment input; the same lane program runs
against both and the journal combines them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from eth_utils import to_checksum_address

from ..abi import ERC20, Program
from ..calculators import circulating_supply, inflation_bps, require_nonzero
from ..commitment import COMMITMENT_ABI, Commitment
from ..journal import Journal, config_digest


@dataclass(frozen=True)
class InflationConfig:
    token: str
    excluded_accounts: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "token", to_checksum_address(self.token))
        object.__setattr__(self, "excluded_accounts", tuple(to_checksum_address(a) for a in self.excluded_accounts))

    def to_json(self) -> dict:
        return {"token": self.token, "excludedAccounts": list(self.excluded_accounts)}

    @classmethod
    def from_json(cls, data: dict) -> "InflationConfig":
        return cls(token=data["token"], excluded_accounts=tuple(data["excludedAccounts"]))


@dataclass(frozen=True)
class InflationJournal(Journal):
    commitment: Commitment
    past_commitment: Commitment
    token: str
    circulating_supply: int
    past_circulating_supply: int
    inflation_basis_points: int
    config_digest: bytes

    ABI_FIELDS = (
        ("commitment", COMMITMENT_ABI),
        ("past_commitment", COMMITMENT_ABI),
        ("token", "address"),
        ("circulating_supply", "uint256"),
        ("past_circulating_supply", "uint256"),
        ("inflation_basis_points", "uint256"),
        ("config_digest", "bytes32"),
    )


def circulating_supply_program(config: InflationConfig) -> Program:
    """Lane program: returns ``(total_supply, circulating_supply)``."""
    total = yield ERC20.call(config.token, "totalSupply")
    balances = []
    for account in config.excluded_accounts:
        balances.append((yield ERC20.call(config.token, "balanceOf", account)))
    return total, circulating_supply(total, balances)


def inflation_journal(
    config: InflationConfig,
    commitment: Commitment,
    past_commitment: Commitment,
    circulating_now: int,
    circulating_then: int,
) -> InflationJournal:
    require_nonzero(circulating_then, "past circulating supply")
    return InflationJournal(
        commitment=commitment,
        past_commitment=past_commitment,
        token=config.token,
        circulating_supply=circulating_now,
        past_circulating_supply=circulating_then,
        inflation_basis_points=inflation_bps(circulating_now, circulating_then),
        config_digest=config_digest(config),
    )

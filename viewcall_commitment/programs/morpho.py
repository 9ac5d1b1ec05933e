"""Morpho Blue market APRs.

The borrow rate comes from the market's interest rate model; the supply
rate is derived from it and the market utilization, both WAD-scaled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from eth_utils import decode_hex, encode_hex, to_checksum_address

from ..abi import CallShape, Interface, Program
from ..calculators import WAD, base_apr, supply_rate_from_borrow, utilization
from ..commitment import COMMITMENT_ABI, Commitment
from ..journal import Journal, config_digest

MARKET_PARAMS_ABI = "(address,address,address,address,uint256)"
MARKET_ABI = "(uint128,uint128,uint128,uint128,uint128,uint128)"

MORPHO_BLUE = Interface(
    "IMorpho",
    [
        CallShape("market", ("bytes32",), ("uint128",) * 6),
        CallShape("idToMarketParams", ("bytes32",), ("address", "address", "address", "address", "uint256")),
    ],
)

MORPHO_IRM = Interface(
    "IIrm",
    [
        CallShape("borrowRateView", (MARKET_PARAMS_ABI, MARKET_ABI), ("uint256",)),
    ],
)

MORPHO_BLUE_ADDRESS = "0xBBBBBbbBBb9cC5e90e3b3Af64bdAF62C37EEFFCb"
# wstETH/USDC
MAINNET_MARKET_ID = bytes.fromhex("b323495f7e4148be5643a4ea4a8221eef163e4bccfdedc2a6f4696baacbc86cc")


@dataclass(frozen=True)
class MarketState:
    total_supply_assets: int
    total_supply_shares: int
    total_borrow_assets: int
    total_borrow_shares: int
    last_update: int
    fee: int

    def as_abi(self) -> Tuple[int, ...]:
        return (
            self.total_supply_assets,
            self.total_supply_shares,
            self.total_borrow_assets,
            self.total_borrow_shares,
            self.last_update,
            self.fee,
        )


@dataclass(frozen=True)
class MarketParams:
    loan_token: str
    collateral_token: str
    oracle: str
    irm: str
    lltv: int

    def __post_init__(self) -> None:
        for name in ("loan_token", "collateral_token", "oracle", "irm"):
            object.__setattr__(self, name, to_checksum_address(getattr(self, name)))

    def as_abi(self) -> Tuple:
        return (self.loan_token, self.collateral_token, self.oracle, self.irm, self.lltv)


@dataclass(frozen=True)
class MorphoConfig:
    morpho: str
    market_id: bytes
    utilization_scale: int = WAD

    def __post_init__(self) -> None:
        object.__setattr__(self, "morpho", to_checksum_address(self.morpho))
        if len(self.market_id) != 32:
            raise ValueError("Morpho market id must be 32 bytes")

    def to_json(self) -> dict:
        return {
            "morpho": self.morpho,
            "marketId": encode_hex(self.market_id),
            "utilizationScale": str(self.utilization_scale),
        }

    @classmethod
    def from_json(cls, data: dict) -> "MorphoConfig":
        return cls(
            morpho=data["morpho"],
            market_id=decode_hex(data["marketId"]),
            utilization_scale=int(data["utilizationScale"]),
        )


def mainnet_morpho_config(market_id: bytes = MAINNET_MARKET_ID) -> MorphoConfig:
    return MorphoConfig(morpho=MORPHO_BLUE_ADDRESS, market_id=market_id)


@dataclass(frozen=True)
class MorphoJournal(Journal):
    commitment: Commitment
    market_id: bytes
    annual_supply_rate: int
    annual_borrow_rate: int
    utilization: int
    config_digest: bytes

    ABI_FIELDS = (
        ("commitment", COMMITMENT_ABI),
        ("market_id", "bytes32"),
        ("annual_supply_rate", "uint256"),
        ("annual_borrow_rate", "uint256"),
        ("utilization", "uint256"),
        ("config_digest", "bytes32"),
    )


def morpho_apr_program(config: MorphoConfig, commitment: Commitment) -> Program:
    market = MarketState(*(yield MORPHO_BLUE.call(config.morpho, "market", config.market_id)))
    params = MarketParams(*(yield MORPHO_BLUE.call(config.morpho, "idToMarketParams", config.market_id)))
    borrow_rate = yield MORPHO_IRM.call(params.irm, "borrowRateView", params.as_abi(), market.as_abi())

    scale = config.utilization_scale
    util = utilization(market.total_borrow_assets, market.total_supply_assets, scale)
    supply_rate = supply_rate_from_borrow(borrow_rate, util, scale)
    return MorphoJournal(
        commitment=commitment,
        market_id=config.market_id,
        annual_supply_rate=base_apr(supply_rate, bits=256),
        annual_borrow_rate=base_apr(borrow_rate, bits=256),
        utilization=util,
        config_digest=config_digest(config),
    )

"""Compound v3 (Comet) base and COMP-reward APRs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from eth_utils import decode_hex, encode_hex, to_checksum_address

from ..abi import CallShape, Interface, Program, encode_path
from ..calculators import base_apr, require_nonzero, reward_apr
from ..commitment import COMMITMENT_ABI, Commitment
from ..environment import CallRecord
from ..journal import Journal, config_digest

COMET = Interface(
    "CometMainInterface",
    [
        CallShape("getSupplyRate", ("uint256",), ("uint64",)),
        CallShape("getBorrowRate", ("uint256",), ("uint64",)),
        CallShape("getUtilization", (), ("uint256",)),
        CallShape("totalSupply", (), ("uint256",)),
        CallShape("totalBorrow", (), ("uint256",)),
        CallShape("baseTrackingSupplySpeed", (), ("uint256",)),
        CallShape("baseTrackingBorrowSpeed", (), ("uint256",)),
    ],
)

QUOTER_V2 = Interface(
    "QuoterV2",
    [
        CallShape(
            "quoteExactInput",
            ("bytes", "uint256"),
            ("uint256", "uint160[]", "uint32[]", "uint256"),
        ),
    ],
)

CUSDC_COMET = "0xc3d688B66703497DAA19211EEdff47f25384cdc3"
QUOTER_V2_ADDRESS = "0x61fFE014bA17989E743c5F6cB21bF9697530B21e"
COMP_ADDRESS = "0xc00e94Cb662C3520282E6f5717214004A7f26888"
WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


@dataclass(frozen=True)
class CompoundConfig:
    comet: str
    quoter: str
    price_path: bytes
    amount_in: int = 10**18
    reward_scaling_factor: int = 1_000

    def __post_init__(self) -> None:
        object.__setattr__(self, "comet", to_checksum_address(self.comet))
        object.__setattr__(self, "quoter", to_checksum_address(self.quoter))

    def to_json(self) -> dict:
        return {
            "comet": self.comet,
            "quoter": self.quoter,
            "pricePath": encode_hex(self.price_path),
            "amountIn": str(self.amount_in),
            "rewardScalingFactor": str(self.reward_scaling_factor),
        }

    @classmethod
    def from_json(cls, data: dict) -> "CompoundConfig":
        return cls(
            comet=data["comet"],
            quoter=data["quoter"],
            price_path=decode_hex(data["pricePath"]),
            amount_in=int(data["amountIn"]),
            reward_scaling_factor=int(data["rewardScalingFactor"]),
        )


def mainnet_compound_config() -> CompoundConfig:
    """cUSDCv3 on mainnet, COMP priced through COMP -0.3%- WETH -0.05%- USDC."""
    return CompoundConfig(
        comet=CUSDC_COMET,
        quoter=QUOTER_V2_ADDRESS,
        price_path=encode_path([COMP_ADDRESS, WETH_ADDRESS, USDC_ADDRESS], [3000, 500]),
    )


@dataclass(frozen=True)
class CompoundJournal(Journal):
    commitment: Commitment
    comet: str
    annual_base_supply_rate: int
    annual_comp_rewards_supply_rate: int
    annual_base_borrow_rate: int
    annual_comp_rewards_borrow_rate: int
    config_digest: bytes

    ABI_FIELDS = (
        ("commitment", COMMITMENT_ABI),
        ("comet", "address"),
        ("annual_base_supply_rate", "uint64"),
        ("annual_comp_rewards_supply_rate", "uint256"),
        ("annual_base_borrow_rate", "uint64"),
        ("annual_comp_rewards_borrow_rate", "uint256"),
        ("config_digest", "bytes32"),
    )


def compound_apr_program(config: CompoundConfig, commitment: Commitment) -> Program:
    comet = config.comet
    # the rate calls take the utilization read just before them
    utilization = yield COMET.call(comet, "getUtilization")
    supply_rate = yield COMET.call(comet, "getSupplyRate", utilization)
    borrow_rate = yield COMET.call(comet, "getBorrowRate", utilization)

    total_supply = yield COMET.call(comet, "totalSupply")
    total_borrow = yield COMET.call(comet, "totalBorrow")
    supply_speed = yield COMET.call(comet, "baseTrackingSupplySpeed")
    borrow_speed = yield COMET.call(comet, "baseTrackingBorrowSpeed")

    quote = yield QUOTER_V2.call(config.quoter, "quoteExactInput", config.price_path, config.amount_in)
    comp_price = quote[0]

    require_nonzero(total_supply, "Comet totalSupply")
    require_nonzero(total_borrow, "Comet totalBorrow")
    return CompoundJournal(
        commitment=commitment,
        comet=comet,
        annual_base_supply_rate=base_apr(supply_rate),
        annual_comp_rewards_supply_rate=reward_apr(supply_speed, comp_price, total_supply, config.reward_scaling_factor),
        annual_base_borrow_rate=base_apr(borrow_rate),
        annual_comp_rewards_borrow_rate=reward_apr(borrow_speed, comp_price, total_borrow, config.reward_scaling_factor),
        config_digest=config_digest(config),
    )


def quoted_comp_price(config: CompoundConfig, calls: Sequence[CallRecord]) -> int:
    """COMP price in the quote token, read back from the recorded quoter call."""
    descriptor = QUOTER_V2.call(config.quoter, "quoteExactInput", config.price_path, config.amount_in)
    for record in calls:
        if record.to == descriptor.address and record.data == descriptor.calldata:
            return descriptor.decode(record.output)[0]
    raise ValueError(f"no COMP quote from {config.quoter} was recorded")

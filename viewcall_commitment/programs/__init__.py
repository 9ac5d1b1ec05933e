from .compound import (
    COMET,
    QUOTER_V2,
    CompoundConfig,
    CompoundJournal,
    compound_apr_program,
    mainnet_compound_config,
    quoted_comp_price,
)
from .inflation import InflationConfig, InflationJournal, circulating_supply_program, inflation_journal
from .morpho import (
    MORPHO_BLUE,
    MORPHO_IRM,
    MarketParams,
    MarketState,
    MorphoConfig,
    MorphoJournal,
    mainnet_morpho_config,
    morpho_apr_program,
)

__all__ = [
    "COMET",
    "QUOTER_V2",
    "CompoundConfig",
    "CompoundJournal",
    "compound_apr_program",
    "mainnet_compound_config",
    "quoted_comp_price",
    "InflationConfig",
    "InflationJournal",
    "circulating_supply_program",
    "inflation_journal",
    "MORPHO_BLUE",
    "MORPHO_IRM",
    "MarketParams",
    "MarketState",
    "MorphoConfig",
    "MorphoJournal",
    "mainnet_morpho_config",
    "morpho_apr_program",
]

"""Shared fixtures: a mined fake chain with canned protocol state."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from fakechain import FakeChain, seed_compound, seed_morpho, seed_supply
from viewcall_commitment.programs import InflationConfig, mainnet_compound_config, mainnet_morpho_config

TOKEN = "0x" + "70" * 20
TREASURY = "0x" + "71" * 20
TEAM = "0x" + "72" * 20


@pytest.fixture
def compound_config():
    return mainnet_compound_config()


@pytest.fixture
def morpho_config():
    return mainnet_morpho_config()


@pytest.fixture
def inflation_config():
    return InflationConfig(token=TOKEN, excluded_accounts=(TREASURY, TEAM))


@pytest.fixture
def chain(compound_config, morpho_config, inflation_config):
    """Ten blocks; supply snapshots at start (past) and start + 5 (now)."""
    fake = FakeChain()
    seed_compound(fake, compound_config)
    seed_morpho(fake, morpho_config)
    seed_supply(fake, inflation_config, fake.start, 900_000, (300_000, 150_000))
    seed_supply(fake, inflation_config, fake.start + 5, 1_000_000, (250_000, 150_000))
    fake.mine(10)
    return fake


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=1)
    yield pool
    pool.shutdown(wait=True)

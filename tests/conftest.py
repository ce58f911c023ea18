"""
Shared fixtures for the DEX arbitrage test suite.
"""

import pytest

from dex_arbitrage.interfaces import DeterministicTimeProvider
from dex_arbitrage.types import TokenIdentity

WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WBTC_ADDRESS = "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"


@pytest.fixture
def clock():
    return DeterministicTimeProvider()


@pytest.fixture
def weth():
    return TokenIdentity(address=WETH_ADDRESS, symbol="WETH", decimals=18, chain_id=1)


@pytest.fixture
def usdc():
    return TokenIdentity(address=USDC_ADDRESS, symbol="USDC", decimals=6, chain_id=1)


@pytest.fixture
def wbtc():
    return TokenIdentity(address=WBTC_ADDRESS, symbol="WBTC", decimals=8, chain_id=1)

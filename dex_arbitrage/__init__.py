"""
DEX Arbitrage Scanner.

Finds fee- and slippage-adjusted arbitrage opportunities for one token pair
quoted on several decentralized exchanges, with cached, retried and
degradable quote fetching and periodic scanning.
"""

from dex_arbitrage.version import __version__

PROJECT_NAME = "DEX-Arbitrage-Scanner"
VERSION = __version__

# Export main components for easier imports
from dex_arbitrage.cache import CacheState, PriceQuoteCache
from dex_arbitrage.fees import FeeModel, StaticGasEstimator
from dex_arbitrage.finder import OpportunityFinder
from dex_arbitrage.scanner import ScanError, ScanOrchestrator, ScanRequest, ScanResult
from dex_arbitrage.slippage import PriceImpactModel
from dex_arbitrage.types import (
    ArbitrageOpportunity,
    PriceQuote,
    Provenance,
    RiskLevel,
    TokenIdentity,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "ArbitrageOpportunity",
    "CacheState",
    "FeeModel",
    "OpportunityFinder",
    "PriceImpactModel",
    "PriceQuote",
    "PriceQuoteCache",
    "Provenance",
    "RiskLevel",
    "ScanError",
    "ScanOrchestrator",
    "ScanRequest",
    "ScanResult",
    "StaticGasEstimator",
    "TokenIdentity",
]

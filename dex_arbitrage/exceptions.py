"""
Exception hierarchy for the DEX arbitrage engine.

Provides specific exception types for the different failure categories so
callers can tell bad input, thin data, upstream outages and model contract
violations apart.
"""

from typing import Any, Dict, Optional


class DexArbitrageError(Exception):
    """Base exception for all DEX arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(DexArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(DexArbitrageError):
    """Raised when validation of data or configuration fails."""

    pass


class InvalidInputError(ValidationError):
    """Raised for missing/invalid tokens or a non-positive investment amount."""

    pass


class InvalidQuoteError(ValidationError):
    """Raised when a price quote violates its invariants."""

    def __init__(
        self,
        message: str,
        venue: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.venue = venue


class PricingModelError(DexArbitrageError):
    """
    Raised when the pure fee/impact models are called with invalid values.

    These indicate an upstream bug rather than bad market data.
    """

    pass


class InvalidAmountError(PricingModelError):
    """Raised when an amount passed to a model is zero or negative."""

    def __init__(
        self,
        message: str,
        amount: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.amount = amount


class InvalidLiquidityError(PricingModelError):
    """Raised when pool liquidity passed to the impact model is not positive."""

    def __init__(
        self,
        message: str,
        liquidity: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.liquidity = liquidity


class InsufficientQuotesError(DexArbitrageError):
    """Raised when fewer than two venues quote the pair."""

    def __init__(
        self,
        message: str,
        venue_count: int = 0,
        token_pair: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.venue_count = venue_count
        self.token_pair = token_pair


class QuoteSourceUnavailableError(DexArbitrageError):
    """Raised when a quote source cannot be reached or returns garbage."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.endpoint = endpoint
        self.status_code = status_code

"""
Configuration loading and validation for the DEX arbitrage scanner.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError, InvalidInputError
from .types import TokenIdentity

QUOTE_SOURCE_URL_ENV = "DEX_ARB_QUOTE_SOURCE_URL"

MIN_SCAN_INTERVAL_SEC = 10.0
MAX_SCAN_INTERVAL_SEC = 60.0


class ConfigError(ConfigurationError):
    """Raised when config is invalid or missing required fields."""

    pass


class EngineConfig:
    """
    Parsed and validated scanner configuration.

    Attributes:
        interval_sec: Seconds between automatic scans (10..60)
        max_backoff_sec: Cap on the delay after repeated scan failures
        investment_amount: Default trade size in USD
        min_profit_pct: Default minimum net profit percent
        min_liquidity_coverage: Pool depth guard as a multiple of the trade (0 = off)
        cache_duration_sec: How long fetched quotes stay fresh
        max_retries: Live fetch retries after the first failure
        retry_delay_sec: Base retry backoff delay
        stale_while_revalidate: Serve stale quotes while refreshing
        history_limit: Rows read by the historical fallback tier
        platform_fee_pct: Platform fee percent of the investment
        default_fee_rate: Fee rate for venues missing from the fee table
        venue_fee_rates: Per-venue fee rate overrides
        impact_model: "linear" or "constant_product"
        impact_coefficient: Impact scaling factor
        max_impact_pct: Cap on per-side impact
        gas_networks: Per-network gas cost overrides in USD
        default_swap_gas_usd: Swap gas for unknown networks
        default_approval_gas_usd: Approval gas for unknown networks
        quote_source_url: Live price endpoint (env override supported)
        quote_source_timeout_sec: Request timeout for the live endpoint
        synthetic_base_prices: Symbol -> USD for the synthetic tier
        synthetic_default_price: Synthetic price for unknown symbols
        tokens: Symbol -> TokenIdentity
        base_token: Base token of the active pair
        quote_token: Quote token of the active pair
        metrics_port: Port for the metrics endpoint, or None
    """

    def __init__(self, config_dict: Dict[str, Any]):
        """
        Parse and validate config from dictionary.

        Args:
            config_dict: Loaded YAML config

        Raises:
            ConfigError: If required fields missing or invalid
        """
        # Scan loop
        scan = self._get_section(config_dict, "scan")
        self.interval_sec: float = self._float(scan, "interval_sec", 30)
        if not MIN_SCAN_INTERVAL_SEC <= self.interval_sec <= MAX_SCAN_INTERVAL_SEC:
            raise ConfigError(
                f"scan.interval_sec must be between {MIN_SCAN_INTERVAL_SEC:g} and "
                f"{MAX_SCAN_INTERVAL_SEC:g} seconds, got {self.interval_sec:g}"
            )
        self.max_backoff_sec: float = self._float(scan, "max_backoff_sec", 300)
        if self.max_backoff_sec < self.interval_sec:
            raise ConfigError("scan.max_backoff_sec must be >= scan.interval_sec")
        self.investment_amount: Decimal = self._decimal(
            scan, "investment_amount_usd", 1000
        )
        if self.investment_amount <= 0:
            raise ConfigError("scan.investment_amount_usd must be positive")
        self.min_profit_pct: Decimal = self._decimal(scan, "min_profit_pct", "0.5")
        self.min_liquidity_coverage: Decimal = self._decimal(
            scan, "min_liquidity_coverage", 0
        )

        # Quote cache
        cache = self._get_section(config_dict, "cache")
        self.cache_duration_sec: float = self._float(cache, "duration_sec", 20)
        self.max_retries: int = self._int(cache, "max_retries", 2)
        if self.max_retries < 0:
            raise ConfigError("cache.max_retries must be >= 0")
        self.retry_delay_sec: float = self._float(cache, "retry_delay_sec", 2)
        self.stale_while_revalidate: bool = bool(
            cache.get("stale_while_revalidate", True)
        )
        self.history_limit: int = self._int(cache, "history_limit", 20)

        # Fees
        fees = self._get_section(config_dict, "fees")
        self.platform_fee_pct: Decimal = self._decimal(fees, "platform_fee_pct", "0.5")
        self.default_fee_rate: Decimal = self._decimal(fees, "default_fee_rate", "0.003")
        self.venue_fee_rates: Dict[str, Decimal] = {
            str(venue).lower(): self._to_decimal(rate, f"fees.venues.{venue}")
            for venue, rate in self._get_section(fees, "venues").items()
        }
        for venue, rate in self.venue_fee_rates.items():
            if not Decimal("0") <= rate < Decimal("1"):
                raise ConfigError(f"Fee rate for '{venue}' must be in [0, 1), got {rate}")

        # Price impact
        impact = self._get_section(config_dict, "impact")
        self.impact_model: str = impact.get("model", "linear")
        if self.impact_model not in ("linear", "constant_product"):
            raise ConfigError(
                f"impact.model must be linear or constant_product, got '{self.impact_model}'"
            )
        self.impact_coefficient: Decimal = self._decimal(impact, "coefficient", "1.0")
        self.max_impact_pct: Decimal = self._decimal(impact, "max_impact_pct", 10)

        # Gas
        gas = self._get_section(config_dict, "gas")
        self.gas_networks: Dict[str, Dict[str, Decimal]] = self._parse_gas(
            self._get_section(gas, "networks")
        )
        self.default_swap_gas_usd: Decimal = self._decimal(gas, "default_swap_usd", "1.0")
        self.default_approval_gas_usd: Decimal = self._decimal(
            gas, "default_approval_usd", 0
        )

        # Live quote source (environment wins over the file)
        source = self._get_section(config_dict, "quote_source")
        self.quote_source_url: Optional[str] = (
            os.getenv(QUOTE_SOURCE_URL_ENV) or source.get("url")
        )
        self.quote_source_timeout_sec: float = self._float(source, "timeout_sec", 10)

        # Synthetic tier
        synthetic = self._get_section(config_dict, "synthetic")
        self.synthetic_base_prices: Dict[str, Decimal] = {
            str(symbol).upper(): self._to_decimal(price, f"synthetic.base_prices.{symbol}")
            for symbol, price in self._get_section(synthetic, "base_prices").items()
        }
        self.synthetic_default_price: Decimal = self._decimal(
            synthetic, "default_price", 10
        )

        # Tokens and the active pair
        tokens_raw = self._get_required(config_dict, "tokens", dict)
        self.tokens: Dict[str, TokenIdentity] = self._parse_tokens(tokens_raw)

        pair = self._get_required(config_dict, "pair", dict)
        base_symbol = self._get_required(pair, "base", str)
        quote_symbol = self._get_required(pair, "quote", str)
        for symbol in (base_symbol, quote_symbol):
            if symbol not in self.tokens:
                raise ConfigError(f"pair token '{symbol}' not found in tokens config")
        self.base_token: TokenIdentity = self.tokens[base_symbol]
        self.quote_token: TokenIdentity = self.tokens[quote_symbol]
        if self.base_token.chain_id != self.quote_token.chain_id:
            raise ConfigError(
                f"pair tokens are on different chains "
                f"({self.base_token.chain_id} vs {self.quote_token.chain_id})"
            )

        metrics = self._get_section(config_dict, "metrics")
        port = metrics.get("port")
        self.metrics_port: Optional[int] = (
            self._int(metrics, "port", None) if port is not None else None
        )

    @staticmethod
    def _get_required(d: Dict, key: str, expected_type: type) -> Any:
        """Get required config field with type validation."""
        if key not in d:
            raise ConfigError(f"Missing required config field: {key}")
        val = d[key]
        if not isinstance(val, expected_type):
            raise ConfigError(
                f"Config field '{key}' must be {expected_type.__name__}, got {type(val).__name__}"
            )
        return val

    @staticmethod
    def _get_section(d: Dict, key: str) -> Dict[str, Any]:
        section = d.get(key) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Config section '{key}' must be a mapping")
        return section

    @staticmethod
    def _to_decimal(value: Any, field: str) -> Decimal:
        if isinstance(value, bool):
            raise ConfigError(f"Config field '{field}' must be a number")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ConfigError(f"Config field '{field}' must be a number, got {value!r}")

    @classmethod
    def _decimal(cls, section: Dict, key: str, default: Any) -> Decimal:
        return cls._to_decimal(section.get(key, default), key)

    @classmethod
    def _float(cls, section: Dict, key: str, default: Any) -> float:
        return float(cls._to_decimal(section.get(key, default), key))

    @classmethod
    def _int(cls, section: Dict, key: str, default: Any) -> int:
        value = cls._to_decimal(section.get(key, default), key)
        if not value.is_finite() or value != value.to_integral_value():
            raise ConfigError(f"Config field '{key}' must be an integer, got {value}")
        return int(value)

    @classmethod
    def _parse_gas(cls, networks_raw: Dict[str, Any]) -> Dict[str, Dict[str, Decimal]]:
        """Parse per-network gas overrides."""
        networks = {}
        for network, costs in networks_raw.items():
            if not isinstance(costs, dict):
                raise ConfigError(f"Gas config for '{network}' must be a dict")
            networks[str(network).lower()] = {
                op: cls._to_decimal(usd, f"gas.networks.{network}.{op}")
                for op, usd in costs.items()
                if op in ("swap", "approval")
            }
        return networks

    @staticmethod
    def _parse_tokens(tokens_raw: Dict[str, Any]) -> Dict[str, TokenIdentity]:
        """Parse and validate tokens config."""
        tokens = {}
        for symbol, info in tokens_raw.items():
            if not isinstance(info, dict):
                raise ConfigError(f"Token '{symbol}' config must be a dict")
            if "address" not in info:
                raise ConfigError(f"Token '{symbol}' missing 'address'")
            if "decimals" not in info:
                raise ConfigError(f"Token '{symbol}' missing 'decimals'")

            try:
                tokens[symbol] = TokenIdentity(
                    address=str(info["address"]),
                    symbol=symbol,
                    decimals=int(info["decimals"]),
                    chain_id=int(info.get("chain_id", 1)),
                )
            except (InvalidInputError, TypeError, ValueError) as e:
                raise ConfigError(f"Token '{symbol}' is invalid: {e}")
        return tokens


def load_config(path: str) -> EngineConfig:
    """
    Load and validate config from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Validated EngineConfig

    Raises:
        ConfigError: If file missing or config invalid
    """
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r") as f:
        try:
            config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(config_dict, dict):
        raise ConfigError(f"Config file must contain a YAML mapping: {path}")

    return EngineConfig(config_dict)

#!/usr/bin/env python3
"""
DEX arbitrage scanner CLI.

Scans one token pair across DEX venues and prints fee- and slippage-adjusted
opportunities after every scan.

Usage:
    python3 run_scanner.py
    python3 run_scanner.py --config configs/scanner.yaml --once
    python3 run_scanner.py --amount 5000 --min-profit 0.2 --metrics-port 8000
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from tabulate import tabulate

import logging_config
from dex_arbitrage.config import ConfigError, load_config
from dex_arbitrage.engine import build_engine
from dex_arbitrage.exceptions import DexArbitrageError
from dex_arbitrage.metrics import ScanMetrics
from dex_arbitrage.scanner import ScanResult
from dex_arbitrage.utils import timestamp_to_iso

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cross-DEX arbitrage opportunity scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config
  python3 run_scanner.py

  # Single scan (for testing/CI)
  python3 run_scanner.py --config configs/scanner.yaml --once

  # Bigger trade, lower threshold, Prometheus metrics on :8000
  python3 run_scanner.py --amount 5000 --min-profit 0.2 --metrics-port 8000
        """,
    )

    parser.add_argument(
        "--config",
        default="configs/scanner.yaml",
        help="Path to config YAML file (default: configs/scanner.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan and exit",
    )
    parser.add_argument(
        "--amount",
        help="Investment amount in USD (overrides scan.investment_amount_usd)",
    )
    parser.add_argument(
        "--min-profit",
        help="Minimum net profit percent (overrides scan.min_profit_pct)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port (overrides metrics.port)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only log warnings and errors (scan tables still print)",
    )

    return parser.parse_args()


def format_result(result: ScanResult) -> str:
    """Render one scan result for the console."""
    lines = [f"\n=== {result.token_pair} @ {timestamp_to_iso(result.last_scanned)} ==="]

    if result.error is not None:
        lines.append(f"❌ Scan failed ({result.error.kind}): {result.error.message}")
        return "\n".join(lines)

    if result.low_confidence:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(result.provenance_counts.items()))
        lines.append(f"⚠️  LOW CONFIDENCE: quotes include non-live data ({counts})")

    if not result.opportunities:
        lines.append(f"No profitable opportunities across {len(result.quotes)} venues")
        return "\n".join(lines)

    table = [
        [
            opp.buy_venue,
            opp.sell_venue,
            f"{opp.buy_price:.6f}",
            f"{opp.sell_price:.6f}",
            f"{opp.buy_price_impact_pct + opp.sell_price_impact_pct:.3f}",
            f"${opp.total_fees:.2f}",
            f"${opp.net_profit:.2f}",
            f"{opp.net_profit_pct:.3f}%",
            opp.risk_level.value,
            opp.provenance.value,
        ]
        for opp in result.opportunities
    ]
    lines.append(
        tabulate(
            table,
            headers=[
                "Buy",
                "Sell",
                "Buy Price",
                "Sell Price",
                "Impact %",
                "Fees",
                "Net",
                "Net %",
                "Risk",
                "Data",
            ],
            tablefmt="simple",
        )
    )
    return "\n".join(lines)


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)

    port = args.metrics_port if args.metrics_port is not None else config.metrics_port
    metrics = ScanMetrics() if port else None

    engine = build_engine(config, metrics=metrics)
    orchestrator = engine.orchestrator
    if args.amount is not None or args.min_profit is not None:
        orchestrator.set_active_pair(
            config.base_token,
            config.quote_token,
            investment_amount=args.amount,
            min_profit_pct=args.min_profit,
        )
    orchestrator.subscribe(lambda result: print(format_result(result)))

    if metrics:
        await metrics.start_server(port=port)

    try:
        if args.once:
            result = await orchestrator.trigger()
            return 0 if result is not None and result.ok else 1

        # Runs until cancelled (Ctrl-C)
        await orchestrator.start()
        return 0
    finally:
        await orchestrator.stop()
        if metrics:
            await metrics.stop_server()


def main() -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args()
    load_dotenv()

    if args.debug:
        logging_config.setup_debug()
    elif args.quiet:
        logging_config.setup_minimal()
    else:
        logging_config.setup()

    try:
        return asyncio.run(run(args))
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1
    except DexArbitrageError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Prometheus metrics for the arbitrage scanner.

Exposes scan, cache and quote-source metrics, optionally over HTTP.
"""

import logging
from typing import Optional

from aiohttp import web
from prometheus_client import (
    REGISTRY,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class ScanMetrics:
    """
    Scanner metrics collection and exposure.

    Provides Prometheus-compatible metrics for:
    - Scan outcomes and latency
    - Opportunity counts and best net profit
    - Cache reads and quote tier fetches
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === SCAN METRICS ===
        self.scans_total = Counter(
            "dex_arbitrage_scans_total",
            "Total number of scans by outcome",
            ["token_pair", "outcome"],
            registry=self.registry,
        )

        self.scan_duration_seconds = Histogram(
            "dex_arbitrage_scan_duration_seconds",
            "Time from quote request to published result",
            ["token_pair"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self.opportunities = Gauge(
            "dex_arbitrage_opportunities",
            "Opportunities found by the latest scan",
            ["token_pair"],
            registry=self.registry,
        )

        self.best_net_profit_pct = Gauge(
            "dex_arbitrage_best_net_profit_pct",
            "Net profit percent of the best opportunity in the latest scan",
            ["token_pair"],
            registry=self.registry,
        )

        self.consecutive_scan_failures = Gauge(
            "dex_arbitrage_consecutive_scan_failures",
            "Consecutive failed scans for the active pair",
            ["token_pair"],
            registry=self.registry,
        )

        # === QUOTE METRICS ===
        self.quote_fetches_total = Counter(
            "dex_arbitrage_quote_fetches_total",
            "Quote tier fetch attempts by outcome",
            ["tier", "outcome"],
            registry=self.registry,
        )

        self.cache_reads_total = Counter(
            "dex_arbitrage_cache_reads_total",
            "Quote cache reads by entry state",
            ["state"],
            registry=self.registry,
        )

    # === Recording helpers ===

    def record_scan(
        self,
        token_pair: str,
        outcome: str,
        duration_seconds: float,
        opportunity_count: int = 0,
        best_net_profit_pct: Optional[float] = None,
    ):
        self.scans_total.labels(token_pair=token_pair, outcome=outcome).inc()
        self.scan_duration_seconds.labels(token_pair=token_pair).observe(
            duration_seconds
        )
        self.opportunities.labels(token_pair=token_pair).set(opportunity_count)
        if best_net_profit_pct is not None:
            self.best_net_profit_pct.labels(token_pair=token_pair).set(
                best_net_profit_pct
            )

    def update_consecutive_failures(self, token_pair: str, count: int):
        self.consecutive_scan_failures.labels(token_pair=token_pair).set(count)

    def record_quote_fetch(self, tier: str, outcome: str):
        self.quote_fetches_total.labels(tier=tier, outcome=outcome).inc()

    def record_cache_read(self, state: str):
        self.cache_reads_total.labels(state=state).inc()

    # === HTTP exposure ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a content_type that carries a charset
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.json_response({"status": "healthy", "service": "dex_arbitrage"})

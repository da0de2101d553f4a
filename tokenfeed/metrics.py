"""
Prometheus metrics for the token feed service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os


class Metrics:
    """
    Centralized metrics for the token feed service.

    Each instance owns its registry so sessions and tests never collide.
    """

    def __init__(self, service_name: str = "tokenfeed", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Feed metrics
        self.records_appended_total = Counter(
            "tokenfeed_records_appended_total",
            "Records published to the feed",
            ["kind", "path"],
            registry=self.registry,
        )

        self.mints_filtered_total = Counter(
            "tokenfeed_mints_filtered_total",
            "Transfers from the zero address dropped by the normalizer",
            registry=self.registry,
        )

        self.block_lookups_total = Counter(
            "tokenfeed_block_lookups_total",
            "Block header lookups issued to the ledger",
            registry=self.registry,
        )

        self.block_resolution_failures_total = Counter(
            "tokenfeed_block_resolution_failures_total",
            "Block header lookups that failed",
            registry=self.registry,
        )

        self.live_events_dropped_total = Counter(
            "tokenfeed_live_events_dropped_total",
            "Live deliveries that never reached the feed",
            ["reason"],
            registry=self.registry,
        )

        self.feed_size = Gauge(
            "tokenfeed_feed_size",
            "Records currently held by the feed",
            registry=self.registry,
        )

        self.backfill_duration = Histogram(
            "tokenfeed_backfill_duration_seconds",
            "Time taken by the historical scan",
            registry=self.registry,
        )

        self.websocket_connections = Gauge(
            "tokenfeed_websocket_connections",
            "Connected feed stream clients",
            registry=self.registry,
        )

        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_memory_bytes = Gauge(
            "tokenfeed_process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "tokenfeed_process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())
            self.process_memory_bytes.labels(service=self.service_name).set(process.memory_info().rss)
            try:
                self.process_open_fds.labels(service=self.service_name).set(process.num_fds())
            except AttributeError:
                # num_fds() not available on all platforms
                pass
        except psutil.Error:
            pass

    def record_appended(self, kind: str, path: str):
        """Record a record reaching the feed through backfill or live path."""
        self.records_appended_total.labels(kind=kind, path=path).inc()

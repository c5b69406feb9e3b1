"""
Monitoring and metrics collection for the mirror crawler.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import start_http_server


@dataclass
class MetricPoint:
    """Individual metric data point."""
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """Metric container with history."""
    name: str
    description: str
    metric_type: str  # counter, gauge, histogram
    points: List[MetricPoint] = field(default_factory=list)
    current_value: float = 0.0


class MetricsCollector:
    """Collects crawler metrics in memory and, optionally, in a Prometheus registry."""

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.metrics: Dict[str, Metric] = {}
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.prometheus_registry: Optional[CollectorRegistry] = None
        self.prometheus_metrics: Dict[str, Any] = {}

        if self.enable_prometheus:
            self._setup_prometheus()

    def _setup_prometheus(self):
        """Setup Prometheus metrics."""
        self.prometheus_registry = CollectorRegistry()
        registry = self.prometheus_registry

        self.prometheus_metrics = {
            'urls_fetched_total': Counter(
                'sitemirror_urls_fetched_total',
                'Total number of URLs fetched over the network',
                registry=registry
            ),
            'disk_hits_total': Counter(
                'sitemirror_disk_hits_total',
                'URLs served from the existing mirror instead of the network',
                registry=registry
            ),
            'pages_stored_total': Counter(
                'sitemirror_pages_stored_total',
                'Total number of files written to the mirror',
                registry=registry
            ),
            'links_discovered_total': Counter(
                'sitemirror_links_discovered_total',
                'Links queued for crawling',
                registry=registry
            ),
            'mail_links_total': Counter(
                'sitemirror_mail_links_total',
                'mailto references found',
                registry=registry
            ),
            'errors_total': Counter(
                'sitemirror_errors_total',
                'Total number of crawl errors',
                ['error_type'],
                registry=registry
            ),
            'response_time_seconds': Histogram(
                'sitemirror_response_time_seconds',
                'Response time for HTTP requests',
                registry=registry
            ),
            'queue_size': Gauge(
                'sitemirror_queue_size',
                'Number of URLs in queue',
                registry=registry
            ),
            'active_workers': Gauge(
                'sitemirror_active_workers',
                'Number of active crawl workers',
                registry=registry
            ),
            'bytes_downloaded_total': Counter(
                'sitemirror_bytes_downloaded_total',
                'Total bytes downloaded',
                registry=registry
            )
        }

        self.logger.info("Prometheus metrics initialized")

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def _record_point(self, name: str, value: float, labels: Dict[str, str],
                      description: str, metric_type: str):
        if name not in self.metrics:
            self.metrics[name] = Metric(
                name=name,
                description=description,
                metric_type=metric_type
            )

        metric = self.metrics[name]
        metric.points.append(MetricPoint(timestamp=time.time(), value=value, labels=labels))
        metric.current_value = value

        # Keep only recent points (last 1000)
        if len(metric.points) > 1000:
            metric.points = metric.points[-1000:]

    def _prometheus(self, name: str, labels: Dict[str, str]):
        if not self.enable_prometheus or name not in self.prometheus_metrics:
            return None
        prom_metric = self.prometheus_metrics[name]
        return prom_metric.labels(**labels) if labels else prom_metric

    def increment_counter(self, name: str, amount: float = 1,
                          labels: Optional[Dict[str, str]] = None, description: str = ""):
        """Increment a counter metric."""
        labels = labels or {}
        current_value = self.metrics[name].current_value if name in self.metrics else 0
        self._record_point(name, current_value + amount, labels, description, "counter")

        prom_metric = self._prometheus(name, labels)
        if prom_metric is not None:
            prom_metric.inc(amount)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  description: str = ""):
        """Set a gauge metric value."""
        labels = labels or {}
        self._record_point(name, value, labels, description, "gauge")

        prom_metric = self._prometheus(name, labels)
        if prom_metric is not None:
            prom_metric.set(value)

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Record a histogram observation."""
        labels = labels or {}
        self._record_point(name, value, labels, description, "histogram")

        prom_metric = self._prometheus(name, labels)
        if prom_metric is not None:
            prom_metric.observe(value)

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name."""
        return self.metrics.get(name)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return {name: metric.current_value for name, metric in self.metrics.items()}


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()
        self.start_time = time.time()

    def record_fetch(self, url: str, status_code: int, response_time: float, size: int):
        """Record a network fetch."""
        self.metrics.increment_counter('urls_fetched_total', description='URLs fetched')
        self.metrics.observe_histogram('response_time_seconds', response_time,
                                       description='HTTP response time')
        if size:
            self.metrics.increment_counter('bytes_downloaded_total', size,
                                           description='Bytes downloaded')

    def record_disk_hit(self, url: str):
        self.metrics.increment_counter('disk_hits_total', description='Mirror reuse')

    def record_page_stored(self, url: str, content_size: int):
        """Record a file written to the mirror."""
        self.metrics.increment_counter('pages_stored_total', description='Pages stored')

    def record_error(self, error_type: str):
        """Record an error event."""
        self.metrics.increment_counter('errors_total', labels={'error_type': error_type},
                                       description='Crawl errors')

    def record_links_queued(self, count: int):
        if count:
            self.metrics.increment_counter('links_discovered_total', count,
                                           description='Links queued')

    def record_mail_link(self):
        self.metrics.increment_counter('mail_links_total', description='mailto references')

    def update_queue_size(self, size: int):
        """Update the queue size metric."""
        self.metrics.set_gauge('queue_size', size, description='URLs in queue')

    def update_active_workers(self, count: int):
        """Update the active workers count."""
        self.metrics.set_gauge('active_workers', count, description='Active workers')

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'urls_per_second': current_values.get('urls_fetched_total', 0) / runtime if runtime > 0 else 0,
                'pages_per_minute': current_values.get('pages_stored_total', 0) / (runtime / 60) if runtime > 0 else 0,
            }
        }

"""
Metrics instrumentation for stream reads and dynamic splitting.

This module provides observability metrics using the Prometheus client.

Usage:
    from splitread.metrics import get_metrics

    metrics = get_metrics()
    metrics.split_calls.labels(table='project.dataset.table').inc()

    # Start HTTP server to expose metrics
    from splitread.metrics import start_metrics_server
    start_metrics_server(port=8000)
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Union

from prometheus_client import REGISTRY, Counter, Gauge, generate_latest, start_http_server

# Attribute names of every metric owned by ReadMetrics
_METRIC_ATTRIBUTES = (
    'split_calls',
    'split_successful',
    'split_infeasible',
    'split_stale',
    'split_failed_other',
    'rows_read',
    'response_batches_received',
    'read_streams_opened',
    'active_readers',
)


@dataclass
class MetricsConfig:
    """Configuration for metrics collection.

    Attributes:
        enabled: Whether metrics collection is enabled
        namespace: Prefix for all metric names (default: 'splitread')
        subsystem: Optional subsystem name for grouping metrics
    """

    enabled: bool = True
    namespace: str = 'splitread'
    subsystem: str = ''


class NullMetric:
    """No-op metric that silently ignores all operations.

    Used when metrics are disabled.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def labels(self, *args: Any, **kwargs: Any) -> 'NullMetric':
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def dec(self, amount: float = 1) -> None:
        pass

    def set(self, value: float) -> None:
        pass

    @contextmanager
    def track_inprogress(self) -> Iterator[None]:
        yield


class ReadMetrics:
    """Central metrics registry for stream reads.

    Split-at-fraction counters, one per outcome of an attempt:
    - split_calls: every attempt
    - split_successful: the split committed and a remainder was returned
    - split_infeasible: the server could not split at the requested fraction
    - split_stale: the reader had already consumed past the split point
    - split_failed_other: any unexpected failure

    Read path counters: rows_read, response_batches_received, read_streams_opened,
    and the active_readers gauge.

    Thread-safe singleton implementation.
    """

    _instance: Optional['ReadMetrics'] = None
    _lock = threading.Lock()

    def __new__(cls, config: Optional[MetricsConfig] = None) -> 'ReadMetrics':
        """Singleton pattern with lazy initialization."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._initialized = False
                    cls._instance = instance
        return cls._instance

    def __init__(self, config: Optional[MetricsConfig] = None) -> None:
        if self._initialized:
            return

        self._config = config or MetricsConfig()
        self._setup_metrics()
        self._initialized = True

    @property
    def config(self) -> MetricsConfig:
        return self._config

    def _setup_metrics(self) -> None:
        """Set up all Prometheus metrics."""
        if not self._config.enabled:
            self._setup_null_metrics()
            return

        ns = self._config.namespace
        ss = self._config.subsystem

        self.split_calls: Counter = self._get_or_create_metric(
            Counter,
            name='split_at_fraction_calls_total',
            documentation='Total split-at-fraction attempts',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.split_successful: Counter = self._get_or_create_metric(
            Counter,
            name='split_at_fraction_calls_successful_total',
            documentation='Split-at-fraction attempts that produced a remainder',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.split_infeasible: Counter = self._get_or_create_metric(
            Counter,
            name='split_at_fraction_calls_failed_due_to_impossible_split_point_total',
            documentation='Split-at-fraction attempts the server could not honor',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.split_stale: Counter = self._get_or_create_metric(
            Counter,
            name='split_at_fraction_calls_failed_due_to_bad_split_point_total',
            documentation='Split-at-fraction attempts abandoned because the reader passed the split point',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.split_failed_other: Counter = self._get_or_create_metric(
            Counter,
            name='split_at_fraction_calls_failed_due_to_other_reasons_total',
            documentation='Split-at-fraction attempts that failed unexpectedly',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.rows_read: Counter = self._get_or_create_metric(
            Counter,
            name='rows_read_total',
            documentation='Total rows decoded from read streams',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.response_batches_received: Counter = self._get_or_create_metric(
            Counter,
            name='response_batches_received_total',
            documentation='Total response batches pulled from read streams',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.read_streams_opened: Counter = self._get_or_create_metric(
            Counter,
            name='read_streams_opened_total',
            documentation='Total read streams opened, including primaries opened by splits',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

        self.active_readers: Gauge = self._get_or_create_metric(
            Gauge,
            name='active_readers',
            documentation='Number of started readers that have not been closed',
            labelnames=['table'],
            namespace=ns,
            subsystem=ss,
        )

    def _get_or_create_metric(self, metric_class: type, name: str, **kwargs) -> Any:
        """Get an existing metric from the registry or create a new one.

        Metrics may already be registered (e.g. after reset_instance() during test runs),
        in which case the registered collector is returned instead of failing.
        """
        ns = kwargs.get('namespace', '')
        ss = kwargs.get('subsystem', '')

        # Prometheus strips the _total suffix from counter names
        metric_name = name
        if metric_class == Counter and name.endswith('_total'):
            metric_name = name[:-6]
        full_name = '_'.join(filter(None, [ns, ss, metric_name]))

        try:
            return metric_class(name=name, **kwargs)
        except ValueError as e:
            if 'Duplicated timeseries' in str(e) and full_name in REGISTRY._names_to_collectors:
                return REGISTRY._names_to_collectors[full_name]
            raise

    def _setup_null_metrics(self) -> None:
        """Set up no-op metrics when metrics are disabled."""
        for attribute in _METRIC_ATTRIBUTES:
            setattr(self, attribute, NullMetric())

    def split_counters(self, table: str) -> Dict[str, Any]:
        """Labelled split counters for a table, keyed by outcome name"""
        return {
            'attempted': self.split_calls.labels(table=table),
            'successful': self.split_successful.labels(table=table),
            'infeasible': self.split_infeasible.labels(table=table),
            'stale': self.split_stale.labels(table=table),
            'other': self.split_failed_other.labels(table=table),
        }

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (useful for testing).

        This also unregisters metrics from the Prometheus registry to allow
        re-registration with the same names.
        """
        with cls._lock:
            if cls._instance is not None:
                for attribute in _METRIC_ATTRIBUTES:
                    metric = getattr(cls._instance, attribute, None)
                    if metric is not None and not isinstance(metric, NullMetric):
                        try:
                            REGISTRY.unregister(metric)
                        except KeyError:
                            pass  # Not registered
            cls._instance = None


class NullReadMetrics:
    """Metrics of a reader whose MetricsConfig is disabled; every metric is a NullMetric."""

    def __init__(self, config: Optional[MetricsConfig] = None) -> None:
        self._config = config or MetricsConfig(enabled=False)
        for attribute in _METRIC_ATTRIBUTES:
            setattr(self, attribute, NullMetric())

    @property
    def config(self) -> MetricsConfig:
        return self._config

    def split_counters(self, table: str) -> Dict[str, Any]:
        return {key: NullMetric() for key in ('attempted', 'successful', 'infeasible', 'stale', 'other')}


def get_metrics(config: Optional[MetricsConfig] = None) -> Union[ReadMetrics, NullReadMetrics]:
    """Get the metrics for a configuration.

    A disabled configuration gets its own NullReadMetrics and never touches the
    process-wide instance. Enabled configurations share the singleton ReadMetrics,
    whose namespace and subsystem are taken from the first enabled configuration.

    Args:
        config: Optional configuration (default: enabled)

    Returns:
        NullReadMetrics if config is disabled, otherwise the singleton ReadMetrics instance
    """
    if config is not None and not config.enabled:
        return NullReadMetrics(config)
    return ReadMetrics(config)


def start_metrics_server(port: int = 8000, addr: str = '') -> None:
    """Start HTTP server to expose Prometheus metrics.

    Args:
        port: Port to listen on (default: 8000)
        addr: Address to bind to (default: all interfaces)
    """
    start_http_server(port, addr)


def generate_metrics_text() -> bytes:
    """Generate Prometheus metrics in text format."""
    return generate_latest(REGISTRY)

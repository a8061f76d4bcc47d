import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .metrics import MetricsConfig
from .resilience import RetryConfig

logger = logging.getLogger(__name__)

ENDPOINT_ENV = 'SPLITREAD_ENDPOINT'
MAX_RETRIES_ENV = 'SPLITREAD_MAX_RETRIES'
METRICS_ENABLED_ENV = 'SPLITREAD_METRICS_ENABLED'


@dataclass
class ReadOptions:
    """Options passed to StreamSource.create_reader() and StorageServices"""

    endpoint: Optional[str] = None  # e.g. grpc://localhost:8815
    retry: RetryConfig = field(default_factory=RetryConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    def __post_init__(self):
        if self.endpoint is not None and '://' not in self.endpoint:
            raise ValueError(f"Invalid endpoint '{self.endpoint}': expected a URI such as grpc://host:port")

    @classmethod
    def from_env(cls) -> 'ReadOptions':
        """Build options from SPLITREAD_* environment variables, falling back to defaults"""
        endpoint = os.getenv(ENDPOINT_ENV)

        retry = RetryConfig()
        max_retries = os.getenv(MAX_RETRIES_ENV)
        if max_retries is not None:
            retry = RetryConfig(enabled=int(max_retries) > 0, max_retries=int(max_retries))

        metrics_enabled = os.getenv(METRICS_ENABLED_ENV, 'true').lower() in ('1', 'true', 'yes')

        logger.debug(f'Loaded read options from environment (endpoint={endpoint}, metrics={metrics_enabled})')
        return cls(endpoint=endpoint, retry=retry, metrics=MetricsConfig(enabled=metrics_enabled))

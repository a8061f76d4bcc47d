"""
Retry primitives for opening read streams.

Transient transport failures when opening the initial read stream are retried
with exponential backoff; everything else fails the read immediately.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    enabled: bool = True
    max_retries: int = 3
    initial_backoff_ms: int = 500
    max_backoff_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f'max_retries must be >= 0, got {self.max_retries}')
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError('Backoff durations must be >= 0')
        if self.backoff_multiplier < 1.0:
            raise ValueError(f'backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}')


class ErrorClassifier:
    """Classify errors as transient (retryable) or permanent (fatal)."""

    TRANSIENT_PATTERNS = [
        'timeout',
        'timed out',
        'unavailable',
        'deadline exceeded',
        'deadline_exceeded',
        'resource exhausted',
        'resource_exhausted',
        'connection reset',
        'connection refused',
        'connection error',
        'broken pipe',
        'temporary failure',
        '503',
        '504',
    ]

    @staticmethod
    def is_transient(error: str) -> bool:
        """
        Determine if an error is transient and worth retrying.

        Args:
            error: Error message or exception string

        Returns:
            True if error appears transient, False if permanent
        """
        if not error:
            return False

        error_lower = error.lower()
        return any(pattern in error_lower for pattern in ErrorClassifier.TRANSIENT_PATTERNS)


class ExponentialBackoff:
    """
    Calculate exponential backoff delays with optional jitter.

    Jitter helps prevent thundering herd when many readers reopen streams simultaneously.
    """

    def __init__(self, config: RetryConfig):
        self.config = config
        self.attempt = 0

    def next_delay(self) -> Optional[float]:
        """
        Calculate next backoff delay in seconds.

        Returns:
            Delay in seconds, or None if max retries exceeded
        """
        if self.attempt >= self.config.max_retries:
            return None

        delay_ms = min(
            self.config.initial_backoff_ms * (self.config.backoff_multiplier**self.attempt),
            self.config.max_backoff_ms,
        )

        # Randomize to 50-150% of calculated delay
        if self.config.jitter:
            delay_ms *= 0.5 + random.random()

        self.attempt += 1
        return delay_ms / 1000.0

    def reset(self):
        """Reset backoff state for new operation."""
        self.attempt = 0

"""
Adaptive request pacing driven by a rolling success rate.
Provides the failure taxonomy used by the request scheduler.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from utils.logger import get_logger

logger = get_logger(__name__)


class ErrorType(Enum):
    """Types of request failures tracked by the scheduler."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    HTTP_5XX = "http_5xx"
    HTTP_4XX = "http_4xx"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, status_code: int) -> "ErrorType":
        if status_code == 429:
            return cls.RATE_LIMIT
        if 500 <= status_code < 600:
            return cls.HTTP_5XX
        if 400 <= status_code < 500:
            return cls.HTTP_4XX
        return cls.UNKNOWN


@dataclass
class BackoffConfig:
    base_delay: float = 0.015
    max_delay: float = 5.0
    smoothing: float = 0.95
    recovery_threshold: float = 0.9
    failure_threshold: float = 0.7
    recovery_factor: float = 0.95
    failure_multiplier: float = 1.2
    rate_limit_multiplier: float = 1.5
    rate_limit_floor: float = 0.1


class AdaptiveDelay:
    """Inter-request delay that follows an exponential moving average of success.

    Successes pull the delay back toward ``base_delay``; failures push the
    success rate down and, below ``failure_threshold``, scale the delay up to
    ``max_delay``. Rate-limit responses always lengthen the delay.
    """

    def __init__(self, config: BackoffConfig):
        self.config = config
        self.success_rate = 1.0
        self.current = config.base_delay
        self.rate_limit_hits = 0

        logger.debug(
            f"AdaptiveDelay initialized: base={config.base_delay}s, max={config.max_delay}s"
        )

    def record_success(self) -> float:
        cfg = self.config
        self.success_rate = self.success_rate * cfg.smoothing + (1 - cfg.smoothing)
        if self.success_rate > cfg.recovery_threshold and self.current > cfg.base_delay:
            self.current = max(cfg.base_delay, self.current * cfg.recovery_factor)
        return self.current

    def record_failure(self) -> float:
        cfg = self.config
        self.success_rate = self.success_rate * cfg.smoothing
        if self.success_rate < cfg.failure_threshold:
            grown = max(self.current, cfg.base_delay) * cfg.failure_multiplier
            self.current = min(cfg.max_delay, grown)
        return self.current

    def record_rate_limit(self) -> float:
        cfg = self.config
        self.rate_limit_hits += 1
        grown = max(self.current, cfg.rate_limit_floor) * cfg.rate_limit_multiplier
        self.current = min(cfg.max_delay, grown)
        logger.debug(f"Rate limited, delay raised to {self.current:.3f}s")
        return self.current

    def snapshot(self) -> Dict[str, Any]:
        return {
            "success_rate": round(self.success_rate, 4),
            "current_delay": round(self.current, 4),
            "rate_limit_hits": self.rate_limit_hits,
        }

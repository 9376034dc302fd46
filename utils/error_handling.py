import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# Custom Exception Classes
class ScannerError(Exception):
    """Base exception for all scanner errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(ScannerError):
    """Configuration-related errors"""

    pass


class ErrorReporter:
    """Failure aggregation for a single scan"""

    def __init__(self, keep_recent: int = 10):
        self.errors: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.error_stats: Dict[str, int] = defaultdict(int)
        self.keep_recent = keep_recent

    def report(self, category: str, message: str, url: Optional[str] = None) -> None:
        """Record one failure under ``category``."""
        record = {
            "timestamp": datetime.now().isoformat(),
            "category": category,
            "message": message,
            "url": url,
        }
        bucket = self.errors[category]
        bucket.append(record)
        if len(bucket) > self.keep_recent:
            del bucket[: len(bucket) - self.keep_recent]
        self.error_stats[category] += 1
        logger.debug(f"{category}: {message} ({url})")

    @property
    def total(self) -> int:
        return sum(self.error_stats.values())

    def generate_report(self) -> Dict[str, Any]:
        """Generate error report"""
        return {
            "generated_at": datetime.now().isoformat(),
            "total_errors": self.total,
            "error_types": dict(self.error_stats),
            "recent_errors": {key: list(value) for key, value in self.errors.items()},
        }

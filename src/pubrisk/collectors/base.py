"""Base collector interface."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil.parser import isoparse


class BaseCollector(ABC):
    """Abstract base class for data collectors."""

    @abstractmethod
    async def collect(self, identifier: str) -> Any:
        """
        Collect data for the given identifier.

        Args:
            identifier: Package name, repo URL, or other identifier

        Returns:
            Collected data, or None if it could not be obtained
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this collector is available (has required credentials, etc.)."""
        pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 API timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

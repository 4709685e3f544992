"""Services for scanning and caching."""

from pubrisk.services.cache import DiskCache

__all__ = ["DiskCache"]

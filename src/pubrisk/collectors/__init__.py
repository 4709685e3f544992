"""Data collectors for various sources."""

from pubrisk.collectors.gate import ConcurrencyGate
from pubrisk.collectors.github import GitHubCollector, RepoHealth
from pubrisk.collectors.probe import ReachabilityProbe
from pubrisk.collectors.pubdev import PackageMetadata, PackageVerification, PubDevCollector, Release
from pubrisk.collectors.retry import RateLimitError, RetryPolicy, TransientError

__all__ = [
    "ConcurrencyGate",
    "GitHubCollector",
    "PackageMetadata",
    "PackageVerification",
    "PubDevCollector",
    "RateLimitError",
    "ReachabilityProbe",
    "Release",
    "RepoHealth",
    "RetryPolicy",
    "TransientError",
]

"""pub.dev registry collector - versions, score, publisher, SDK constraint."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from pubrisk import config
from pubrisk.collectors.base import BaseCollector, parse_timestamp
from pubrisk.collectors.gate import ConcurrencyGate
from pubrisk.collectors.github import RepoHealth
from pubrisk.collectors.retry import RateLimitError, RetryPolicy, TransientError
from pubrisk.services.cache import DiskCache
from pubrisk.versions import Version, VersionRange, parse_constraint, try_parse_version

logger = logging.getLogger(__name__)

# First Dart SDK release with sound null safety
NULL_SAFETY_SDK = Version(2, 12, 0)

FAVOURITE_TAGS = frozenset({"flutter-favourite", "is:flutter-favorite"})


class PackageVerification(str, Enum):
    """Publisher verification tier on pub.dev."""

    NONE = "none"
    VERIFIED_PUBLISHER = "verified_publisher"
    FLUTTER_FAVOURITE = "flutter_favourite"
    VERIFIED_PUBLISHER_AND_FAVOURITE = "verified_publisher_and_favourite"

    @classmethod
    def from_flags(cls, has_publisher: bool, is_favourite: bool) -> "PackageVerification":
        if has_publisher and is_favourite:
            return cls.VERIFIED_PUBLISHER_AND_FAVOURITE
        if has_publisher:
            return cls.VERIFIED_PUBLISHER
        if is_favourite:
            return cls.FLUTTER_FAVOURITE
        return cls.NONE

    @property
    def has_verified_publisher(self) -> bool:
        return self in (PackageVerification.VERIFIED_PUBLISHER, PackageVerification.VERIFIED_PUBLISHER_AND_FAVOURITE)

    @property
    def is_favourite(self) -> bool:
        return self in (PackageVerification.FLUTTER_FAVOURITE, PackageVerification.VERIFIED_PUBLISHER_AND_FAVOURITE)


@dataclass(frozen=True)
class Release:
    """One published version."""

    version: Version
    published_at: datetime


@dataclass(frozen=True)
class PackageMetadata:
    """Everything the scorer needs to know about one dependency."""

    name: str
    current_version: Version
    latest_version: Optional[Version] = None
    latest_stable_version: Optional[Version] = None
    repository_url: Optional[str] = None
    issue_tracker_url: Optional[str] = None
    publisher_id: Optional[str] = None
    pub_score: Optional[float] = None  # 0-100
    popularity: Optional[float] = None  # 0-100
    likes: Optional[int] = None
    sdk_constraint: Optional[VersionRange] = None
    is_null_safe: Optional[bool] = None
    is_discontinued: Optional[bool] = None
    is_unlisted: Optional[bool] = None
    releases: tuple[Release, ...] = ()  # newest first
    verification: PackageVerification = PackageVerification.NONE
    repo_health: Optional[RepoHealth] = None
    fetched_at: Optional[datetime] = None
    from_cache: bool = False

    def with_repo_health(self, repo_health: RepoHealth) -> "PackageMetadata":
        """Return a copy enriched with repository health."""
        return dataclasses.replace(self, repo_health=repo_health)


def infer_null_safety(constraint: Optional[VersionRange]) -> Optional[bool]:
    """A package is null safe iff its SDK lower bound is at least 2.12.0."""
    if constraint is None:
        return None
    return constraint.min is not None and constraint.min >= NULL_SAFETY_SDK


def _parse_url(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return value.strip()


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def parse_releases(raw_versions: Any) -> tuple[Release, ...]:
    """Build release history, newest first, skipping unparseable entries."""
    if not isinstance(raw_versions, list):
        return ()
    by_version: dict[Version, Release] = {}
    for entry in raw_versions:
        if not isinstance(entry, dict):
            continue
        version = try_parse_version(entry.get("version"))
        published = parse_timestamp(entry.get("published"))
        if version is None or published is None:
            continue
        by_version.setdefault(version, Release(version=version, published_at=published))
    return tuple(sorted(by_version.values(), key=lambda r: r.published_at, reverse=True))


def parse_package_blob(
    blob: Mapping[str, Any],
    current_version: Version,
    from_cache: bool = False,
    fetched_at: Optional[datetime] = None,
    name: Optional[str] = None,
) -> Optional[PackageMetadata]:
    """
    Turn a merged ``{"info": ..., "score": ...}`` blob into PackageMetadata.

    ``name`` is used when the info document does not carry one.
    Returns None when the blob lacks the package info document.
    """
    info = blob.get("info")
    if not isinstance(info, dict):
        return None
    score = blob.get("score") if isinstance(blob.get("score"), dict) else {}
    latest = info.get("latest") if isinstance(info.get("latest"), dict) else {}
    pubspec = latest.get("pubspec") if isinstance(latest.get("pubspec"), dict) else {}

    releases = parse_releases(info.get("versions"))
    latest_any = releases[0].version if releases else None
    latest_stable = next((r.version for r in releases if not r.version.is_pre_release), None)
    if latest_any is None:
        # Fall back to the version advertised as latest
        latest_any = try_parse_version(latest.get("version"))
        if latest_any is not None and not latest_any.is_pre_release:
            latest_stable = latest_any

    granted = score.get("grantedPoints")
    max_points = score.get("maxPoints")
    pub_score = None
    if isinstance(granted, (int, float)) and isinstance(max_points, (int, float)) and max_points > 0:
        pub_score = granted / max_points * 100.0

    popularity = score.get("popularityScore")
    likes = score.get("likeCount")

    sdk_constraint = None
    environment = pubspec.get("environment")
    if isinstance(environment, dict) and isinstance(environment.get("sdk"), str):
        try:
            sdk_constraint = parse_constraint(environment["sdk"])
        except ValueError:
            logger.debug(f"Ignoring bad SDK constraint for {info.get('name')}: {environment['sdk']!r}")

    publisher = info.get("publisher")
    publisher_id = publisher.get("publisherId") if isinstance(publisher, dict) else None
    tags = [*_as_list(latest.get("tags")), *_as_list(score.get("tags"))]
    is_favourite = any(tag in FAVOURITE_TAGS for tag in tags if isinstance(tag, str))

    return PackageMetadata(
        name=info.get("name") or name or "",
        current_version=current_version,
        latest_version=latest_any,
        latest_stable_version=latest_stable,
        repository_url=_parse_url(pubspec.get("repository")) or _parse_url(pubspec.get("homepage")),
        issue_tracker_url=_parse_url(pubspec.get("issue_tracker")),
        publisher_id=publisher_id if isinstance(publisher_id, str) else None,
        pub_score=pub_score,
        popularity=popularity * 100 if isinstance(popularity, (int, float)) else None,
        likes=likes if isinstance(likes, int) else None,
        sdk_constraint=sdk_constraint,
        is_null_safe=infer_null_safety(sdk_constraint),
        is_discontinued=info.get("isDiscontinued") if isinstance(info.get("isDiscontinued"), bool) else None,
        is_unlisted=info.get("isUnlisted") if isinstance(info.get("isUnlisted"), bool) else None,
        releases=releases,
        verification=PackageVerification.from_flags(bool(publisher_id), is_favourite),
        fetched_at=fetched_at or datetime.now(timezone.utc),
        from_cache=from_cache,
    )


class PubDevCollector(BaseCollector):
    """Collector for pub.dev package metadata."""

    def __init__(
        self,
        cache: Optional[DiskCache] = None,
        concurrency: int = config.PUB_CONCURRENCY,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
        base_url: str = config.PUB_API_URL,
    ):
        """
        Initialize pub.dev collector.

        Args:
            cache: Disk cache for merged package documents. None disables caching.
            concurrency: Maximum simultaneous requests to pub.dev.
            client: Optional httpx client (tests inject a mock transport).
            retry: Retry policy for transient failures.
            base_url: Root of the pub.dev API.
        """
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.gate = ConcurrencyGate(concurrency)
        self.retry = retry or RetryPolicy()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=config.REQUEST_TIMEOUT,
            headers={"Accept": "application/json", "User-Agent": config.USER_AGENT},
            follow_redirects=True,
        )

    def is_available(self) -> bool:
        """pub.dev needs no credentials."""
        return True

    async def _get_once(self, url: str) -> Optional[dict]:
        async with self.gate:
            response = await self.client.get(url)

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise RateLimitError(f"pub.dev rate limit on {url}")
        if response.status_code != 200:
            raise TransientError(f"pub.dev returned {response.status_code} for {url}")
        try:
            data = response.json()
        except ValueError as e:
            raise TransientError(f"Malformed JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise TransientError(f"Unexpected payload type from {url}")
        return data

    async def _get(self, url: str) -> Optional[dict]:
        return await self.retry.run(lambda: self._get_once(url), label=url)

    @staticmethod
    def _parse(
        name: str, blob: dict, current_version: Version, from_cache: bool = False
    ) -> Optional[PackageMetadata]:
        try:
            return parse_package_blob(blob, current_version, from_cache=from_cache, name=name)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Could not parse pub.dev data for {name}: {e}")
            return None

    @staticmethod
    def cache_key(name: str) -> str:
        return f"pub:{name}"

    async def fetch(
        self,
        name: str,
        current_version: Version,
        fresh: bool = False,
        offline: bool = False,
    ) -> Optional[PackageMetadata]:
        """
        Fetch metadata for one package.

        Args:
            name: Package name on pub.dev.
            current_version: Version the project resolved.
            fresh: Ignore cached documents.
            offline: Only consult the cache; never touch the network.

        Returns:
            PackageMetadata, or None if the package can't be resolved.
        """
        key = self.cache_key(name)
        if self.cache is not None and not fresh:
            hit = self.cache.get(key)
            if isinstance(hit, dict):
                meta = self._parse(name, hit, current_version, from_cache=True)
                if meta is not None:
                    return meta
        if offline:
            return None

        try:
            info = await self._get(f"{self.base_url}/packages/{name}")
            if info is None:
                logger.info(f"Package {name} not found on pub.dev")
                return None
            score = await self._get(f"{self.base_url}/packages/{name}/score")
        except httpx.InvalidURL as e:
            logger.warning(f"Skipping {name!r}: not a valid pub.dev URL ({e})")
            return None

        blob = {"info": info, "score": score}
        meta = self._parse(name, blob, current_version)
        if meta is None:
            return None
        if self.cache is not None:
            self.cache.set(key, blob, ttl=config.PACKAGE_TTL)
        return meta

    async def fetch_all(
        self,
        dependencies: Mapping[str, Version],
        fresh: bool = False,
        offline: bool = False,
    ) -> dict[str, PackageMetadata]:
        """Fetch every dependency concurrently; unresolvable ones are dropped."""
        names = list(dependencies)
        results = await asyncio.gather(
            *(self.fetch(name, dependencies[name], fresh=fresh, offline=offline) for name in names)
        )
        return {name: meta for name, meta in zip(names, results) if meta is not None}

    async def collect(self, package_name: str) -> Optional[PackageMetadata]:
        """Fetch a package without a known current version (treated as 0.0.0)."""
        return await self.fetch(package_name, Version(0, 0, 0))

    async def close(self):
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()

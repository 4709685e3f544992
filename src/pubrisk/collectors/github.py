"""GitHub API collector - repository health: issues, commits, contributors."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

import httpx

from pubrisk import config
from pubrisk.collectors.base import BaseCollector, parse_timestamp
from pubrisk.collectors.gate import ConcurrencyGate
from pubrisk.collectors.retry import RetryPolicy, TransientError
from pubrisk.services.cache import DiskCache

logger = logging.getLogger(__name__)

GITHUB_HOST = "github.com"
CLOSED_ISSUES_PAGE_SIZE = 100


@dataclass(frozen=True)
class RepoHealth:
    """Repository health metrics. None means the value was unavailable."""

    open_issues: Optional[int] = None
    closed_issues: Optional[int] = None  # within the last page of closed issues
    open_pull_requests: Optional[int] = None
    stars: Optional[int] = None
    forks: Optional[int] = None
    contributors: Optional[int] = None
    avg_issue_close_days: Optional[float] = None
    last_commit_at: Optional[datetime] = None
    is_archived: Optional[bool] = None
    has_issues_enabled: Optional[bool] = None
    default_branch: Optional[str] = None

    @property
    def issue_resolution_rate(self) -> Optional[float]:
        """Closed / (open + closed), or None if unknown or no issues at all."""
        if self.open_issues is None or self.closed_issues is None:
            return None
        total = self.open_issues + self.closed_issues
        if total == 0:
            return None
        return self.closed_issues / total

    def to_dict(self) -> dict:
        return {
            "open_issues": self.open_issues,
            "closed_issues": self.closed_issues,
            "stars": self.stars,
            "forks": self.forks,
            "contributors": self.contributors,
            "avg_issue_close_days": self.avg_issue_close_days,
            "last_commit_at": self.last_commit_at.isoformat() if self.last_commit_at else None,
            "is_archived": self.is_archived,
            "issue_resolution_rate": self.issue_resolution_rate,
        }


def _int_or_none(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _closed_issues_only(items: Any) -> Optional[list[dict]]:
    # The issues endpoint also returns pull requests, marked by a pull_request key
    if not isinstance(items, list):
        return None
    return [i for i in items if isinstance(i, dict) and "pull_request" not in i]


def parse_repo_health(blob: Mapping[str, Any]) -> Optional[RepoHealth]:
    """Build RepoHealth from the merged sub-request blob."""
    repo = blob.get("repo")
    if not isinstance(repo, dict):
        return None

    last_commit = None
    commits = blob.get("commits")
    if isinstance(commits, list) and commits and isinstance(commits[0], dict):
        committer = (commits[0].get("commit") or {}).get("committer") or {}
        last_commit = parse_timestamp(committer.get("date"))

    closed = _closed_issues_only(blob.get("closed_issues"))
    avg_close_days = None
    if closed:
        total_days = 0.0
        counted = 0
        for issue in closed:
            created = parse_timestamp(issue.get("created_at"))
            closed_at = parse_timestamp(issue.get("closed_at"))
            if created is None or closed_at is None:
                continue
            hours = int((closed_at - created).total_seconds() / 3600)
            total_days += hours / 24.0
            counted += 1
        if counted:
            avg_close_days = total_days / counted

    contributors = blob.get("contributors")

    return RepoHealth(
        open_issues=_int_or_none(repo.get("open_issues_count")),
        closed_issues=len(closed) if closed is not None else None,
        stars=_int_or_none(repo.get("stargazers_count")),
        forks=_int_or_none(repo.get("forks_count")),
        contributors=len(contributors) if isinstance(contributors, list) else None,
        avg_issue_close_days=avg_close_days,
        last_commit_at=last_commit,
        is_archived=repo.get("archived") if isinstance(repo.get("archived"), bool) else None,
        has_issues_enabled=repo.get("has_issues") if isinstance(repo.get("has_issues"), bool) else None,
        default_branch=repo.get("default_branch") if isinstance(repo.get("default_branch"), str) else None,
    )


class GitHubCollector(BaseCollector):
    """Collector for GitHub repository health."""

    def __init__(
        self,
        token: Optional[str] = None,
        cache: Optional[DiskCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
        base_url: str = config.GITHUB_API_URL,
    ):
        """
        Initialize GitHub collector.

        Args:
            token: GitHub personal access token. Defaults to GITHUB_TOKEN env var.
            cache: Disk cache for merged repository documents.
            client: Optional httpx client (tests inject a mock transport).
            retry: Retry policy for 5xx and network failures.
            base_url: Root of the GitHub REST API.
        """
        self.token = token or config.GITHUB_TOKEN
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.gate = ConcurrencyGate(config.GITHUB_CONCURRENCY)
        self.retry = retry or RetryPolicy()
        self.rate_limited = False
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.GITHUB_TIMEOUT)

        self.client.headers["Accept"] = "application/vnd.github+json"
        self.client.headers["X-GitHub-Api-Version"] = "2022-11-28"
        self.client.headers["User-Agent"] = config.USER_AGENT
        if self.token:
            self.client.headers["Authorization"] = f"Bearer {self.token}"

    def is_available(self) -> bool:
        """Unauthenticated access works, but only at 60 requests/hour."""
        return bool(self.token)

    @staticmethod
    def parse_repo_url(repo_url: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        """
        Parse owner and repo from a GitHub URL.

        Only the first two path segments matter, so monorepo links such as
        ``https://github.com/org/repo/tree/main/pkg`` resolve to ``org/repo``.

        Returns:
            Tuple of (owner, repo) or (None, None) if not a GitHub repository URL
        """
        if not repo_url:
            return None, None
        if repo_url.startswith("git@"):
            # git@github.com:owner/repo.git
            repo_url = "ssh://" + repo_url[len("git@"):].replace(":", "/", 1)
        try:
            parts = urlsplit(repo_url)
        except ValueError:
            return None, None
        if GITHUB_HOST not in (parts.hostname or ""):
            return None, None

        segments = [s for s in parts.path.split("/") if s]
        if len(segments) < 2:
            return None, None
        owner, repo = segments[0], segments[1]
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        if not repo:
            return None, None
        return owner, repo

    @staticmethod
    def _parse(blob: dict) -> Optional[RepoHealth]:
        try:
            return parse_repo_health(blob)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Could not parse GitHub data: {e}")
            return None

    async def _get_once(self, path: str) -> Any:
        response = await self.client.get(f"{self.base_url}{path}")

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as e:
                raise TransientError(f"Malformed JSON from GitHub {path}: {e}") from e
        if response.status_code in (403, 429):
            if not self.rate_limited:
                logger.warning("GitHub rate limit hit. Set GITHUB_TOKEN for 5000 requests/hour.")
            self.rate_limited = True
            return None
        if response.status_code >= 500:
            raise TransientError(f"GitHub returned {response.status_code} for {path}")
        return None

    async def _get(self, path: str) -> Any:
        return await self.retry.run(lambda: self._get_once(path), label=f"GitHub {path}")

    async def fetch_repo_health(
        self,
        repo_url: Optional[str],
        fresh: bool = False,
        offline: bool = False,
    ) -> Optional[RepoHealth]:
        """
        Fetch health metrics for a GitHub repository.

        Args:
            repo_url: Repository URL as declared by the package.
            fresh: Ignore cached documents.
            offline: Only consult the cache.

        Returns:
            RepoHealth, or None for non-GitHub URLs and failed lookups.
        """
        owner, repo = self.parse_repo_url(repo_url)
        if not owner or not repo:
            return None

        cache_key = f"gh:health:{owner}/{repo}"
        if self.cache is not None and not fresh:
            hit = self.cache.get(cache_key)
            if isinstance(hit, dict):
                health = self._parse(hit)
                if health is not None:
                    return health
        if offline:
            return None

        base = f"/repos/{owner}/{repo}"
        async with self.gate:
            repo_data, commits, closed_issues, contributors = await asyncio.gather(
                self._get(base),
                self._get(f"{base}/commits?per_page=1"),
                self._get(f"{base}/issues?state=closed&per_page={CLOSED_ISSUES_PAGE_SIZE}&sort=updated"),
                self._get(f"{base}/contributors?per_page=1&anon=false"),
            )

        if repo_data is None:
            logger.debug(f"No repository data for {owner}/{repo}")
            return None

        blob = {
            "repo": repo_data,
            "commits": commits,
            "closed_issues": closed_issues,
            "contributors": contributors,
        }
        health = self._parse(blob)
        if health is not None and self.cache is not None:
            self.cache.set(cache_key, blob, ttl=config.REPO_HEALTH_TTL)
        return health

    async def collect(self, repo_url: str) -> Optional[RepoHealth]:
        """Collect repository health for a repository URL."""
        return await self.fetch_repo_health(repo_url)

    async def close(self):
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()

"""Project scan orchestration: fetch, enrich, probe, score."""

import asyncio
import json
import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, Union

import httpx

from pubrisk import config
from pubrisk.collectors.github import GitHubCollector
from pubrisk.collectors.probe import ReachabilityProbe
from pubrisk.collectors.pubdev import PackageMetadata, PubDevCollector
from pubrisk.collectors.retry import RetryPolicy
from pubrisk.scoring.engine import RiskScorer
from pubrisk.scoring.factors import ProjectDiagnosis
from pubrisk.services.cache import DiskCache
from pubrisk.versions import Version, try_parse_version

logger = logging.getLogger(__name__)

_SDK_VERSION_RE = re.compile(r"Dart SDK version:\s*(\S+)")


class ManifestError(Exception):
    """The dependency input is missing or structurally invalid."""


@dataclass
class Manifest:
    """Resolved dependencies of a project."""

    dependencies: dict[str, Version]
    sdk_constraint: Optional[str] = None
    sdk_version: Optional[Version] = None
    invalid: list[str] = field(default_factory=list)  # entries with unparseable versions


def _parse_pin(pin: str) -> tuple[str, str]:
    name, sep, version = pin.partition("==")
    if not sep or not name.strip() or not version.strip():
        raise ManifestError(f"Expected NAME==VERSION, got {pin!r}")
    return name.strip(), version.strip()


def load_dependencies(
    deps_file: Optional[Union[str, Path]] = None,
    pins: Sequence[str] = (),
) -> Manifest:
    """
    Load the name -> version mapping to scan.

    The file is JSON of the form::

        {"dependencies": {"http": "1.2.0"}, "sdk": ">=3.0.0 <4.0.0", "sdk_version": "3.4.0"}

    ``pins`` are ``name==version`` strings and override entries from the file.

    Raises:
        ManifestError: If the file is missing or malformed, or nothing is left to scan.
    """
    raw: dict[str, Any] = {}
    sdk_constraint = None
    sdk_version = None

    if deps_file is not None:
        path = Path(deps_file)
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ManifestError(f"Dependency file not found: {path}")
        except (OSError, ValueError) as e:
            raise ManifestError(f"Could not read {path}: {e}")

        if not isinstance(data, dict) or not isinstance(data.get("dependencies"), dict):
            raise ManifestError(f"Invalid dependency file: expected a 'dependencies' object in {path}")
        raw.update(data["dependencies"])

        if isinstance(data.get("sdk"), str):
            sdk_constraint = data["sdk"]
        if data.get("sdk_version") is not None:
            sdk_version = try_parse_version(str(data["sdk_version"]))
            if sdk_version is None:
                logger.warning(f"Ignoring invalid sdk_version {data['sdk_version']!r} in {path}")

    for pin in pins:
        name, version = _parse_pin(pin)
        raw[name] = version

    dependencies: dict[str, Version] = {}
    invalid = []
    for name, version in raw.items():
        parsed = try_parse_version(version) if isinstance(version, str) else None
        if parsed is None:
            logger.warning(f"Skipping {name}: invalid version {version!r}")
            invalid.append(name)
            continue
        dependencies[name] = parsed

    if not dependencies:
        raise ManifestError("No dependencies to scan")

    return Manifest(
        dependencies=dependencies,
        sdk_constraint=sdk_constraint,
        sdk_version=sdk_version,
        invalid=invalid,
    )


def detect_sdk_version(override: Optional[str] = None) -> Optional[Version]:
    """
    Find the host Dart SDK version.

    Tries, in order: the explicit override, PUBRISK_DART_SDK, then
    ``dart --version``. Returns None when none of them yields a version.
    """
    for candidate in (override, config.DART_SDK_OVERRIDE):
        if candidate:
            version = try_parse_version(candidate)
            if version is not None:
                return version
            logger.warning(f"Ignoring invalid Dart SDK version {candidate!r}")

    try:
        proc = subprocess.run(["dart", "--version"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not run dart --version: {e}")
        return None

    # Older SDKs print the banner on stderr
    match = _SDK_VERSION_RE.search(proc.stdout) or _SDK_VERSION_RE.search(proc.stderr)
    if not match:
        return None
    return try_parse_version(match.group(1))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scanner:
    """
    Scans a set of resolved dependencies.

    Stages:
        1. Fetch pub.dev metadata for every package (unresolvable ones are skipped)
        2. Enrich with GitHub repository health, bounded by a wall-clock deadline
        3. Probe repositories that have no health data, also deadline-bounded
        4. Score every package and sort by descending risk
    """

    def __init__(
        self,
        cache: Optional[DiskCache] = None,
        concurrency: int = config.PUB_CONCURRENCY,
        token: Optional[str] = None,
        pub_client: Optional[httpx.AsyncClient] = None,
        github_client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
        github_deadline: float = config.GITHUB_DEADLINE,
        probe_deadline: float = config.PROBE_DEADLINE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cache = cache if cache is not None else DiskCache()
        self.pubdev = PubDevCollector(cache=self.cache, concurrency=concurrency, client=pub_client, retry=retry)
        self.github = GitHubCollector(token=token, cache=self.cache, client=github_client, retry=retry)
        self.probe = ReachabilityProbe(self.pubdev.client, self.pubdev.gate, cache=self.cache)
        self.github_deadline = github_deadline
        self.probe_deadline = probe_deadline
        self.clock = clock
        self._abandoned: set[asyncio.Task] = set()

    async def __aenter__(self) -> "Scanner":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _forget(self, task: asyncio.Task):
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Late task failed: {task.exception()}")

    async def _gather_within(
        self,
        jobs: Mapping[str, Awaitable[Any]],
        deadline: float,
        stage: str,
    ) -> dict[str, Any]:
        """
        Run jobs concurrently and collect whatever finishes before the deadline.

        Jobs still running at the deadline are left alone; their results are
        never incorporated.
        """
        if not jobs:
            return {}
        tasks = {key: asyncio.ensure_future(job) for key, job in jobs.items()}
        done, pending = await asyncio.wait(tasks.values(), timeout=deadline)

        if pending:
            logger.warning(f"{stage}: {len(pending)} of {len(tasks)} still running after {deadline:.0f}s, continuing without them")
            for task in pending:
                self._abandoned.add(task)
                task.add_done_callback(self._forget)

        results = {}
        for key, task in tasks.items():
            if task not in done:
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"{stage} failed for {key}: {error}")
                continue
            results[key] = task.result()
        return results

    async def enrich(
        self,
        packages: dict[str, PackageMetadata],
        fresh: bool = False,
        offline: bool = False,
    ) -> dict[str, PackageMetadata]:
        """Attach GitHub repository health where it can be obtained in time."""
        jobs = {
            name: self.github.fetch_repo_health(meta.repository_url, fresh=fresh, offline=offline)
            for name, meta in packages.items()
            if GitHubCollector.parse_repo_url(meta.repository_url) != (None, None)
        }
        health_by_name = await self._gather_within(jobs, self.github_deadline, "Repository health")

        enriched = dict(packages)
        for name, health in health_by_name.items():
            if health is not None:
                enriched[name] = packages[name].with_repo_health(health)
        return enriched

    async def check_reachability(self, packages: Iterable[PackageMetadata]) -> dict[str, Optional[bool]]:
        """Probe declared repositories for which no health data exists."""
        urls = list(dict.fromkeys(
            meta.repository_url
            for meta in packages
            if meta.repository_url and meta.repo_health is None
        ))
        jobs = {url: self.probe.probe(url) for url in urls}
        return await self._gather_within(jobs, self.probe_deadline, "Reachability probe")

    async def scan(
        self,
        dependencies: Mapping[str, Version],
        sdk_version: Optional[Version] = None,
        sdk_constraint: Optional[str] = None,
        fresh: bool = False,
        offline: bool = False,
    ) -> ProjectDiagnosis:
        """
        Diagnose every dependency.

        Args:
            dependencies: Package name to resolved version.
            sdk_version: Host Dart SDK, if known.
            sdk_constraint: The project's own SDK constraint, reported as-is.
            fresh: Bypass cached documents.
            offline: Use only cached documents and skip probes.

        Returns:
            ProjectDiagnosis with results sorted by descending score, then name
        """
        scanned_at = self.clock()
        packages = await self.pubdev.fetch_all(dependencies, fresh=fresh, offline=offline)
        skipped = [name for name in dependencies if name not in packages]
        if skipped:
            logger.info(f"Could not resolve {len(skipped)} package(s): {', '.join(skipped)}")

        packages = await self.enrich(packages, fresh=fresh, offline=offline)
        reachability = {} if offline else await self.check_reachability(packages.values())

        scorer = RiskScorer(sdk_version=sdk_version, repo_reachability=reachability, clock=self.clock)
        results = [scorer.diagnose(meta) for meta in packages.values()]
        results.sort(key=lambda r: (-r.score, r.package_name))

        return ProjectDiagnosis(
            results=results,
            scanned_at=scanned_at,
            sdk_version=sdk_version,
            project_sdk_constraint=sdk_constraint,
            skipped=skipped,
        )

    async def close(self):
        """Cancel abandoned work and close HTTP clients."""
        for task in list(self._abandoned):
            task.cancel()
        if self._abandoned:
            await asyncio.gather(*self._abandoned, return_exceptions=True)
        self._abandoned.clear()
        await self.github.close()
        await self.pubdev.close()

"""
The ten risk signals.

Each signal is a pure function of (PackageMetadata, SignalContext) returning a
SignalResult with risk in [0, 1]. The set is closed: signals are looked up by
their SignalId and never registered at runtime.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pubrisk.collectors.pubdev import NULL_SAFETY_SDK, PackageMetadata, PackageVerification
from pubrisk.scoring.factors import SignalResult
from pubrisk.versions import Version

logger = logging.getLogger(__name__)

# Risk assigned when a signal raises during evaluation
FAILED_SIGNAL_RISK = 0.5

# Maintenance: days since last commit -> risk
MAINTENANCE_BUCKETS = ((90, 0.0), (180, 0.3), (365, 0.6))
MAINTENANCE_STALE_RISK = 1.0

# Release cadence: mean days between releases (exclusive upper bounds)
RELEASE_GAP_BUCKETS = ((90, 0.0), (180, 0.3), (365, 0.6))
RELEASE_GAP_STALE_RISK = 1.0

# Open issues: blend of backlog size and resolution rate
OPEN_ISSUE_COUNT_BUCKETS = ((0, 0.0), (10, 0.1), (30, 0.3), (100, 0.5), (300, 0.7))
OPEN_ISSUE_COUNT_MAX_RISK = 0.9
OPEN_ISSUES_COUNT_WEIGHT = 0.5
OPEN_ISSUES_RATE_WEIGHT = 0.5
UNKNOWN_RESOLUTION_RATE_RISK = 0.3

# Issue response: mean days to close -> risk
ISSUE_RESPONSE_BUCKETS = ((7, 0.0), (30, 0.2), (90, 0.5), (180, 0.75))
ISSUE_RESPONSE_SLOW_RISK = 1.0

# SDK upper bound this close to the host SDK (in minor versions, 12 per major)
SDK_UPPER_BOUND_WINDOW = 2


class SignalId(str, Enum):
    """Stable identifiers of the signals."""

    MAINTENANCE = "maintenance"
    VERSION_FRESHNESS = "version_freshness"
    PUB_SCORE = "pub_score"
    NULL_SAFETY = "null_safety"
    SDK_COMPAT = "sdk_compat"
    RELEASE_FREQUENCY = "release_frequency"
    REPO_AVAILABILITY = "repo_availability"
    OPEN_ISSUES = "open_issues"
    ISSUE_RESPONSE = "issue_response"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class SignalContext:
    """Scan-time inputs that are not part of the package metadata."""

    now: datetime
    sdk_version: Optional[Version] = None
    repo_reachable: Optional[bool] = None  # None: probe not attempted or inconclusive


def _result(
    signal_id: SignalId,
    risk: float,
    reason: str,
    detail: Optional[str] = None,
    failed: bool = False,
) -> SignalResult:
    return SignalResult(signal_id=signal_id.value, risk=risk, reason=reason, detail=detail, failed=failed)


def _bucket(value: float, buckets: tuple, above: float, inclusive: bool = True) -> float:
    for limit, risk in buckets:
        if value <= limit if inclusive else value < limit:
            return risk
    return above


def evaluate_maintenance(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """Days since the last commit; discontinued packages are always maximum risk."""
    sid = SignalId.MAINTENANCE
    if meta.is_discontinued:
        return _result(
            sid,
            1.0,
            "Officially discontinued on pub.dev",
            detail="The publisher marked this package discontinued. Migrate away from it.",
        )

    last_commit = meta.repo_health.last_commit_at if meta.repo_health else None
    if last_commit is None:
        if meta.repository_url is None:
            return _result(sid, 0.6, "No repository URL on pub.dev")
        return _result(sid, 0.5, "Could not fetch commit history", failed=True)

    days = (ctx.now - last_commit).days
    risk = _bucket(days, MAINTENANCE_BUCKETS, MAINTENANCE_STALE_RISK)
    if risk == 0.0:
        return _result(sid, risk, f"Active - last commit {days}d ago")
    elif risk == 0.3:
        return _result(sid, risk, f"Slowing down - last commit {days}d ago")
    elif risk == 0.6:
        return _result(
            sid, risk, f"Low activity - last commit {days}d ago",
            detail="No commits in 6-12 months. Evaluate alternatives.",
        )
    return _result(
        sid, risk, f"Possibly abandoned - {days}d since last commit",
        detail="No commits in over a year. Unpatched bugs and future breakage are likely.",
    )


def evaluate_version_freshness(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """How far the resolved version lags the latest (stable) release."""
    sid = SignalId.VERSION_FRESHNESS
    latest = meta.latest_stable_version or meta.latest_version
    if latest is None:
        return _result(sid, 0.3, "Latest version unavailable", failed=True)

    current = meta.current_version
    if current >= latest:
        return _result(sid, 0.0, f"Up to date ({current})")
    if current.is_pre_release and not latest.is_pre_release:
        return _result(sid, 0.4, f"On pre-release {current}, stable {latest} available")
    if latest.major > current.major:
        return _result(
            sid, 1.0, f"Major version behind: {current} -> {latest}",
            detail="Major bumps usually mean breaking API changes. Plan the migration.",
        )
    if latest.minor > current.minor:
        return _result(sid, 0.5, f"Minor version behind: {current} -> {latest}")
    return _result(sid, 0.2, f"Patch behind: {current} -> {latest}")


def evaluate_pub_score(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    sid = SignalId.PUB_SCORE
    score = meta.pub_score
    if score is None:
        return _result(sid, 0.4, "pub.dev score unavailable", failed=True)

    risk = min(max(1.0 - score / 100.0, 0.0), 1.0)
    label = f"pub.dev score {score:.0f}/100"
    if score >= 80:
        return _result(sid, risk, f"{label} - excellent")
    elif score >= 60:
        return _result(sid, risk, f"{label} - acceptable")
    elif score >= 40:
        return _result(sid, risk, f"{label} - low")
    return _result(
        sid, risk, f"{label} - very low",
        detail="Low scores usually mean missing docs, no example, or failing analysis.",
    )


def evaluate_null_safety(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    sid = SignalId.NULL_SAFETY
    safe = meta.is_null_safe
    if safe is None and meta.sdk_constraint is not None:
        lower = meta.sdk_constraint.min
        safe = lower is not None and lower >= NULL_SAFETY_SDK

    if safe is None:
        return _result(sid, 0.3, "Cannot determine null safety status", failed=True)
    if safe:
        return _result(sid, 0.0, "Null safe")
    return _result(
        sid, 1.0, "Not null safe - requires --no-sound-null-safety",
        detail="Non-null-safe packages force legacy mode on your entire build.",
    )


def evaluate_sdk_compat(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """Whether the host Dart SDK satisfies the package's SDK constraint."""
    sid = SignalId.SDK_COMPAT
    constraint = meta.sdk_constraint
    if constraint is None:
        return _result(
            sid, 0.4, "No SDK constraint declared",
            detail="Missing environment.sdk in pubspec. Bad practice but not necessarily broken.",
        )

    sdk = ctx.sdk_version
    if sdk is None:
        return _result(sid, 0.2, "Local Dart SDK version unknown", failed=True)

    if not constraint.allows(sdk):
        return _result(
            sid, 1.0, f"Incompatible with your Dart SDK {sdk}",
            detail=f"Package requires {constraint}. This will fail at pub get.",
        )

    upper = constraint.max
    if upper is not None:
        distance = (upper.major - sdk.major) * 12 + (upper.minor - sdk.minor)
        if distance <= SDK_UPPER_BOUND_WINDOW:
            return _result(
                sid, 0.4, f"SDK constraint upper bound close: {upper}",
                detail="The next SDK upgrade might break compatibility.",
            )
    return _result(sid, 0.0, f"Compatible with Dart SDK {sdk}")


def evaluate_release_frequency(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """Mean gap between consecutive releases."""
    sid = SignalId.RELEASE_FREQUENCY
    releases = meta.releases
    if len(releases) < 2:
        reason = "No release history available" if not releases else "Single release - no frequency data"
        return _result(sid, 0.5, reason)

    ordered = sorted(releases, key=lambda r: r.published_at)
    total_days = sum(
        (later.published_at - earlier.published_at).days
        for earlier, later in zip(ordered, ordered[1:])
    )
    avg = total_days / (len(ordered) - 1)

    risk = _bucket(avg, RELEASE_GAP_BUCKETS, RELEASE_GAP_STALE_RISK, inclusive=False)
    label = {0.0: "Frequent releases", 0.3: "Moderate cadence", 0.6: "Slow cadence"}.get(risk)
    if label:
        return _result(sid, risk, f"{label} (~{round(avg)}d avg)")
    return _result(
        sid, risk, f"Rare releases (~{round(avg)}d avg)",
        detail="More than a year between releases on average.",
    )


def evaluate_repo_availability(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    sid = SignalId.REPO_AVAILABILITY
    if meta.repository_url is None:
        return _result(
            sid, 0.8, "No repository URL on pub.dev",
            detail="Cannot inspect source, issues, or history.",
        )
    if ctx.repo_reachable is False:
        return _result(
            sid, 1.0, f"Repository unreachable: {meta.repository_url}",
            detail="The repository returned an error. It may have been deleted or moved.",
        )
    if ctx.repo_reachable is None:
        return _result(sid, 0.1, f"Repository declared: {meta.repository_url}")
    return _result(sid, 0.0, "Repository reachable")


def evaluate_open_issues(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """Blend of open-issue backlog size and issue resolution rate."""
    sid = SignalId.OPEN_ISSUES
    health = meta.repo_health
    if health is None or health.open_issues is None:
        return _result(sid, 0.3, "Issue data unavailable", failed=True)

    open_issues = health.open_issues
    count_risk = _bucket(open_issues, OPEN_ISSUE_COUNT_BUCKETS, OPEN_ISSUE_COUNT_MAX_RISK)

    rate = health.issue_resolution_rate
    rate_risk = UNKNOWN_RESOLUTION_RATE_RISK
    if rate is not None:
        rate_risk = 1.0 - min(max(rate, 0.0), 1.0)

    risk = min(max(OPEN_ISSUES_COUNT_WEIGHT * count_risk + OPEN_ISSUES_RATE_WEIGHT * rate_risk, 0.0), 1.0)
    resolved = f"{rate * 100:.0f}% resolved" if rate is not None else "resolution unknown"
    detail = None
    if rate is not None:
        closed = health.closed_issues if health.closed_issues is not None else "?"
        detail = f"Recently closed: {closed}. Resolution rate reflects maintainer responsiveness."
    return _result(sid, risk, f"{open_issues} open issues - {resolved}", detail=detail)


def evaluate_issue_response(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    sid = SignalId.ISSUE_RESPONSE
    avg = meta.repo_health.avg_issue_close_days if meta.repo_health else None
    if avg is None:
        return _result(sid, 0.3, "Issue response time unavailable", failed=True)

    risk = _bucket(avg, ISSUE_RESPONSE_BUCKETS, ISSUE_RESPONSE_SLOW_RISK)
    if risk == 0.0:
        return _result(sid, risk, f"Issues closed fast (~{avg:.0f}d avg)")
    elif risk == 0.2:
        return _result(sid, risk, f"Reasonable response time (~{avg:.0f}d avg)")
    elif risk == 0.5:
        return _result(sid, risk, f"Slow issue response (~{avg:.0f}d avg)")
    elif risk == 0.75:
        return _result(sid, risk, f"Very slow issue response (~{avg:.0f}d avg)")
    return _result(
        sid, risk, "Issues take >180d to close on average",
        detail="Maintainer is not actively triaging. Bug reports may never get addressed.",
    )


def evaluate_verification(meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    sid = SignalId.VERIFICATION
    verification = meta.verification
    if verification == PackageVerification.VERIFIED_PUBLISHER_AND_FAVOURITE:
        return _result(sid, 0.0, f"Verified publisher ({meta.publisher_id}) + Flutter Favourite")
    elif verification == PackageVerification.VERIFIED_PUBLISHER:
        return _result(sid, 0.05, f"Verified publisher: {meta.publisher_id}")
    elif verification == PackageVerification.FLUTTER_FAVOURITE:
        return _result(sid, 0.05, "Flutter Favourite")
    return _result(
        sid, 0.5, "Unverified community package",
        detail="No verified publisher badge. Review the source before trusting it in production.",
    )


@dataclass(frozen=True)
class Signal:
    """A scoring rule and its weight in the aggregate."""

    id: SignalId
    weight: float
    evaluate: Callable[[PackageMetadata, SignalContext], SignalResult]


SIGNALS: tuple[Signal, ...] = (
    Signal(SignalId.MAINTENANCE, 25, evaluate_maintenance),
    Signal(SignalId.VERSION_FRESHNESS, 20, evaluate_version_freshness),
    Signal(SignalId.PUB_SCORE, 10, evaluate_pub_score),
    Signal(SignalId.NULL_SAFETY, 8, evaluate_null_safety),
    Signal(SignalId.SDK_COMPAT, 7, evaluate_sdk_compat),
    Signal(SignalId.RELEASE_FREQUENCY, 8, evaluate_release_frequency),
    Signal(SignalId.REPO_AVAILABILITY, 5, evaluate_repo_availability),
    Signal(SignalId.OPEN_ISSUES, 7, evaluate_open_issues),
    Signal(SignalId.ISSUE_RESPONSE, 5, evaluate_issue_response),
    Signal(SignalId.VERIFICATION, 5, evaluate_verification),
)

WEIGHTS: dict[str, float] = {s.id.value: s.weight for s in SIGNALS}


def evaluate_signal(signal: Signal, meta: PackageMetadata, ctx: SignalContext) -> SignalResult:
    """
    Evaluate one signal, converting any exception into a failed result.

    A failed result is excluded from the aggregate score, so one broken rule
    never aborts the diagnosis of a package.
    """
    try:
        return signal.evaluate(meta, ctx)
    except Exception as e:
        logger.debug(f"Signal {signal.id.value} failed for {meta.name}: {e}")
        return _result(signal.id, FAILED_SIGNAL_RISK, f"Signal error: {e}", failed=True)

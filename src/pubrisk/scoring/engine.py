"""Risk scoring engine implementation."""

from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from pubrisk.collectors.pubdev import PackageMetadata
from pubrisk.scoring.factors import DiagnosisResult, RiskLevel, SignalResult
from pubrisk.scoring.signals import SIGNALS, WEIGHTS, SignalContext, SignalId, evaluate_signal
from pubrisk.versions import Version


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def aggregate_score(results: list[SignalResult]) -> float:
    """
    Weighted average risk of the non-failed signals, scaled to 0-100.

    Failed signals contribute to neither the numerator nor the denominator.
    When every signal failed the score is 0.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    for result in results:
        if result.failed:
            continue
        weight = WEIGHTS.get(result.signal_id, 0)
        weighted_sum += weight * result.risk
        total_weight += weight

    if total_weight == 0:
        return 0.0
    return min(max(weighted_sum / total_weight * 100, 0.0), 100.0)


class RiskScorer:
    """
    Scores a package by evaluating every signal against its metadata.

    Score = sum(weight * risk) / sum(weight) * 100 over non-failed signals
    Range: 0-100 (higher = riskier)
    """

    # Below this score a package with no specific hint is called healthy
    HEALTHY_HINT_THRESHOLD = 40

    def __init__(
        self,
        sdk_version: Optional[Version] = None,
        repo_reachability: Optional[Mapping[str, Optional[bool]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            sdk_version: Dart SDK on the host, if known.
            repo_reachability: Probe results keyed by repository URL.
            clock: Source of "now" for age-based signals.
        """
        self.sdk_version = sdk_version
        self.repo_reachability = dict(repo_reachability or {})
        self.clock = clock

    def _is_reachable(self, meta: PackageMetadata) -> Optional[bool]:
        if meta.repository_url is None:
            return None
        if meta.repo_health is not None:
            return True
        return self.repo_reachability.get(meta.repository_url)

    def context_for(self, meta: PackageMetadata) -> SignalContext:
        return SignalContext(
            now=self.clock(),
            sdk_version=self.sdk_version,
            repo_reachable=self._is_reachable(meta),
        )

    def diagnose(self, meta: PackageMetadata) -> DiagnosisResult:
        """
        Evaluate all signals for a package.

        Args:
            meta: Registry metadata, optionally enriched with repository health.

        Returns:
            DiagnosisResult with signals sorted by descending weight
        """
        ctx = self.context_for(meta)
        results = [evaluate_signal(signal, meta, ctx) for signal in SIGNALS]
        score = aggregate_score(results)

        # Unknown ids carry weight 0 and sort last; the sort is stable
        ordered = sorted(results, key=lambda r: WEIGHTS.get(r.signal_id, 0), reverse=True)

        return DiagnosisResult(
            package_name=meta.name,
            current_version=meta.current_version,
            latest_version=meta.latest_stable_version or meta.latest_version,
            score=score,
            risk_level=RiskLevel.from_score(score),
            signals=tuple(ordered),
            recommendations=tuple(self.generate_recommendations(meta, ordered, score)),
            verification=meta.verification,
            repo_health=meta.repo_health,
            from_cache=meta.from_cache,
        )

    def generate_recommendations(
        self, meta: PackageMetadata, results: list[SignalResult], score: float
    ) -> list[str]:
        """Generate actionable recommendations from the riskiest signals."""
        if meta.is_discontinued:
            return ["URGENT: package discontinued - replace it before the next release"]

        by_id = {r.signal_id: r for r in results}

        def risk_of(signal_id: SignalId) -> float:
            result = by_id.get(signal_id.value)
            return result.risk if result is not None else 0.0

        recs = []
        freshness = risk_of(SignalId.VERSION_FRESHNESS)
        if freshness >= 1.0:
            recs.append(f"Run `dart pub upgrade {meta.name}` - major version behind")
        elif freshness >= 0.5:
            recs.append(f"Run `dart pub upgrade {meta.name}` - newer version available")

        if risk_of(SignalId.NULL_SAFETY) >= 1.0:
            recs.append("Find a null-safe fork or alternative - legacy mode affects the entire build")

        if risk_of(SignalId.MAINTENANCE) >= 1.0:
            recs.append("No commits in 12+ months - check for forks or alternatives on pub.dev")

        if risk_of(SignalId.OPEN_ISSUES) >= 0.7:
            recs.append("High open issue count - check whether your use cases are affected before upgrading")

        if risk_of(SignalId.VERIFICATION) >= 0.5:
            recs.append("Unverified package - audit the source before shipping to production")

        if not recs:
            if score < self.HEALTHY_HINT_THRESHOLD:
                recs.append("Looks healthy - keep dependencies updated and watch for new releases")
            else:
                recs.append("Multiple risk factors present - review the signals above")

        return recs

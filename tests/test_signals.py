"""Tests for the individual risk signals."""

from datetime import datetime, timedelta, timezone

import pytest

from pubrisk.collectors.github import RepoHealth
from pubrisk.collectors.pubdev import PackageMetadata, PackageVerification, Release
from pubrisk.scoring.signals import (
    SIGNALS,
    WEIGHTS,
    Signal,
    SignalContext,
    SignalId,
    evaluate_issue_response,
    evaluate_maintenance,
    evaluate_null_safety,
    evaluate_open_issues,
    evaluate_pub_score,
    evaluate_release_frequency,
    evaluate_repo_availability,
    evaluate_sdk_compat,
    evaluate_signal,
    evaluate_verification,
    evaluate_version_freshness,
)
from pubrisk.versions import Version, parse_constraint

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def make_meta(**overrides) -> PackageMetadata:
    fields = dict(
        name="http",
        current_version=Version(1, 2, 0),
        latest_version=Version(1, 2, 0),
        latest_stable_version=Version(1, 2, 0),
        repository_url="https://github.com/dart-lang/http",
        pub_score=90.0,
        sdk_constraint=parse_constraint(">=3.0.0 <4.0.0"),
        is_null_safe=True,
        is_discontinued=False,
        verification=PackageVerification.VERIFIED_PUBLISHER,
        repo_health=RepoHealth(
            open_issues=5,
            closed_issues=95,
            avg_issue_close_days=3.0,
            last_commit_at=NOW - timedelta(days=10),
        ),
    )
    fields.update(overrides)
    return PackageMetadata(**fields)


def health(**kwargs) -> RepoHealth:
    return RepoHealth(**kwargs)


CTX = SignalContext(now=NOW, sdk_version=Version(3, 4, 0), repo_reachable=True)


class TestSignalSet:
    """Tests for the signal table itself."""

    def test_weights_sum_to_100(self):
        assert sum(s.weight for s in SIGNALS) == 100

    def test_ids_unique(self):
        assert len({s.id for s in SIGNALS}) == len(SIGNALS) == 10

    def test_weights_by_id(self):
        assert WEIGHTS["maintenance"] == 25
        assert WEIGHTS["version_freshness"] == 20
        assert WEIGHTS["verification"] == 5

    def test_every_signal_returns_its_own_id(self):
        meta = make_meta()
        for signal in SIGNALS:
            assert evaluate_signal(signal, meta, CTX).signal_id == signal.id.value

    def test_risk_always_in_range_for_sparse_metadata(self):
        sparse = PackageMetadata(name="bare", current_version=Version(0, 0, 1))
        for signal in SIGNALS:
            result = evaluate_signal(signal, sparse, SignalContext(now=NOW))
            assert 0.0 <= result.risk <= 1.0

    def test_evaluation_is_deterministic(self):
        meta = make_meta()
        for signal in SIGNALS:
            assert evaluate_signal(signal, meta, CTX) == evaluate_signal(signal, meta, CTX)


class TestEvaluateSignal:
    """Tests for the exception boundary."""

    def test_exception_becomes_failed_result(self):
        def explode(meta, ctx):
            raise RuntimeError("kaboom")

        result = evaluate_signal(Signal(SignalId.PUB_SCORE, 10, explode), make_meta(), CTX)
        assert result.failed
        assert result.risk == 0.5
        assert result.signal_id == "pub_score"
        assert "kaboom" in result.reason

    def test_out_of_range_risk_becomes_failed_result(self):
        def overshoot(meta, ctx):
            from pubrisk.scoring.factors import SignalResult

            return SignalResult("pub_score", 1.5, "too much")

        result = evaluate_signal(Signal(SignalId.PUB_SCORE, 10, overshoot), make_meta(), CTX)
        assert result.failed
        assert result.risk == 0.5


class TestMaintenance:
    def test_discontinued_is_max_risk_regardless(self):
        result = evaluate_maintenance(make_meta(is_discontinued=True), CTX)
        assert result.risk == 1.0
        assert not result.failed

    @pytest.mark.parametrize("days,risk", [(10, 0.0), (90, 0.0), (91, 0.3), (180, 0.3), (300, 0.6), (366, 1.0)])
    def test_buckets(self, days, risk):
        meta = make_meta(repo_health=health(last_commit_at=NOW - timedelta(days=days)))
        assert evaluate_maintenance(meta, CTX).risk == risk

    def test_no_repository(self):
        result = evaluate_maintenance(make_meta(repository_url=None, repo_health=None), CTX)
        assert result.risk == 0.6
        assert not result.failed

    def test_commit_data_unavailable(self):
        result = evaluate_maintenance(make_meta(repo_health=None), CTX)
        assert result.risk == 0.5
        assert result.failed


class TestVersionFreshness:
    def test_current_equals_latest_stable(self):
        assert evaluate_version_freshness(make_meta(), CTX).risk == 0.0

    def test_latest_stable_preferred_over_pre_release(self):
        meta = make_meta(latest_version=Version.parse("2.0.0-dev.1"))
        assert evaluate_version_freshness(meta, CTX).risk == 0.0

    def test_pre_release_behind_stable(self):
        meta = make_meta(current_version=Version.parse("1.3.0-beta.1"), latest_stable_version=Version(1, 3, 0))
        assert evaluate_version_freshness(meta, CTX).risk == 0.4

    def test_major_gap(self):
        meta = make_meta(latest_stable_version=Version(2, 0, 0))
        assert evaluate_version_freshness(meta, CTX).risk == 1.0

    def test_minor_gap(self):
        meta = make_meta(latest_stable_version=Version(1, 4, 0))
        assert evaluate_version_freshness(meta, CTX).risk == 0.5

    def test_patch_gap(self):
        meta = make_meta(latest_stable_version=Version(1, 2, 3))
        assert evaluate_version_freshness(meta, CTX).risk == 0.2

    def test_unknown_latest(self):
        result = evaluate_version_freshness(make_meta(latest_version=None, latest_stable_version=None), CTX)
        assert result.risk == 0.3
        assert result.failed


class TestPubScore:
    def test_inverse_of_score(self):
        assert evaluate_pub_score(make_meta(pub_score=75.0), CTX).risk == pytest.approx(0.25)

    def test_missing(self):
        result = evaluate_pub_score(make_meta(pub_score=None), CTX)
        assert result.risk == 0.4
        assert result.failed


class TestNullSafety:
    def test_null_safe(self):
        assert evaluate_null_safety(make_meta(), CTX).risk == 0.0

    def test_not_null_safe(self):
        assert evaluate_null_safety(make_meta(is_null_safe=False), CTX).risk == 1.0

    def test_inferred_from_constraint(self):
        meta = make_meta(is_null_safe=None, sdk_constraint=parse_constraint(">=2.7.0 <3.0.0"))
        assert evaluate_null_safety(meta, CTX).risk == 1.0

    def test_unknown(self):
        result = evaluate_null_safety(make_meta(is_null_safe=None, sdk_constraint=None), CTX)
        assert result.risk == 0.3
        assert result.failed


class TestSdkCompat:
    def test_compatible(self):
        assert evaluate_sdk_compat(make_meta(), CTX).risk == 0.0

    def test_no_constraint(self):
        result = evaluate_sdk_compat(make_meta(sdk_constraint=None), CTX)
        assert result.risk == 0.4
        assert not result.failed

    def test_unknown_host_sdk(self):
        result = evaluate_sdk_compat(make_meta(), SignalContext(now=NOW))
        assert result.risk == 0.2
        assert result.failed

    def test_excludes_host(self):
        meta = make_meta(sdk_constraint=parse_constraint(">=2.12.0 <3.0.0"))
        assert evaluate_sdk_compat(meta, CTX).risk == 1.0

    def test_upper_bound_close(self):
        meta = make_meta(sdk_constraint=parse_constraint(">=3.0.0 <3.6.0"))
        assert evaluate_sdk_compat(meta, CTX).risk == 0.4

    def test_upper_bound_outside_window(self):
        meta = make_meta(sdk_constraint=parse_constraint(">=3.0.0 <3.7.0"))
        assert evaluate_sdk_compat(meta, CTX).risk == 0.0


class TestReleaseFrequency:
    def releases(self, gap_days, count=4):
        start = NOW - timedelta(days=gap_days * count)
        return tuple(
            Release(Version(1, i, 0), start + timedelta(days=gap_days * i)) for i in reversed(range(count))
        )

    @pytest.mark.parametrize("gap,risk", [(30, 0.0), (89, 0.0), (90, 0.3), (200, 0.6), (365, 1.0)])
    def test_buckets(self, gap, risk):
        assert evaluate_release_frequency(make_meta(releases=self.releases(gap)), CTX).risk == risk

    def test_single_release(self):
        meta = make_meta(releases=self.releases(30, count=1))
        assert evaluate_release_frequency(meta, CTX).risk == 0.5

    def test_no_releases(self):
        assert evaluate_release_frequency(make_meta(releases=()), CTX).risk == 0.5


class TestRepoAvailability:
    def test_no_url(self):
        assert evaluate_repo_availability(make_meta(repository_url=None), CTX).risk == 0.8

    def test_unreachable(self):
        ctx = SignalContext(now=NOW, repo_reachable=False)
        assert evaluate_repo_availability(make_meta(), ctx).risk == 1.0

    def test_not_probed(self):
        ctx = SignalContext(now=NOW, repo_reachable=None)
        assert evaluate_repo_availability(make_meta(), ctx).risk == 0.1

    def test_reachable(self):
        assert evaluate_repo_availability(make_meta(), CTX).risk == 0.0


class TestOpenIssues:
    def test_healthy_backlog(self):
        meta = make_meta(repo_health=health(open_issues=5, closed_issues=200))
        assert evaluate_open_issues(meta, CTX).risk < 0.3

    def test_neglected_backlog(self):
        meta = make_meta(repo_health=health(open_issues=400, closed_issues=10))
        assert evaluate_open_issues(meta, CTX).risk > 0.6

    def test_blend(self):
        meta = make_meta(repo_health=health(open_issues=50, closed_issues=50))
        assert evaluate_open_issues(meta, CTX).risk == pytest.approx(0.5 * 0.5 + 0.5 * 0.5)

    def test_unknown_resolution_rate(self):
        meta = make_meta(repo_health=health(open_issues=0, closed_issues=None))
        assert evaluate_open_issues(meta, CTX).risk == pytest.approx(0.5 * 0.0 + 0.5 * 0.3)

    def test_no_data(self):
        result = evaluate_open_issues(make_meta(repo_health=None), CTX)
        assert result.risk == 0.3
        assert result.failed


class TestIssueResponse:
    @pytest.mark.parametrize("days,risk", [(4, 0.0), (7, 0.0), (20, 0.2), (60, 0.5), (120, 0.75), (200, 1.0)])
    def test_buckets(self, days, risk):
        meta = make_meta(repo_health=health(avg_issue_close_days=days))
        assert evaluate_issue_response(meta, CTX).risk == risk

    def test_no_data(self):
        result = evaluate_issue_response(make_meta(repo_health=health()), CTX)
        assert result.risk == 0.3
        assert result.failed


class TestVerification:
    @pytest.mark.parametrize("verification,risk", [
        (PackageVerification.VERIFIED_PUBLISHER_AND_FAVOURITE, 0.0),
        (PackageVerification.VERIFIED_PUBLISHER, 0.05),
        (PackageVerification.FLUTTER_FAVOURITE, 0.05),
        (PackageVerification.NONE, 0.5),
    ])
    def test_tiers(self, verification, risk):
        assert evaluate_verification(make_meta(verification=verification), CTX).risk == risk

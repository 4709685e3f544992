"""Tests for the pub.dev collector - parsing and fetch behaviour."""

import asyncio
import json

import httpx

from pubrisk.collectors.pubdev import (
    PackageVerification,
    PubDevCollector,
    infer_null_safety,
    parse_package_blob,
    parse_releases,
)
from pubrisk.collectors.retry import RetryPolicy
from pubrisk.services.cache import DiskCache
from pubrisk.versions import Version, parse_constraint


def package_info(name="http", versions=None, publisher="dart.dev", discontinued=False, sdk=">=3.0.0 <4.0.0"):
    versions = versions or [
        ("1.0.0", "2023-01-10T00:00:00Z"),
        ("1.1.0", "2023-06-01T00:00:00Z"),
        ("1.2.0", "2024-01-15T12:00:00Z"),
        ("2.0.0-dev.1", "2024-03-01T00:00:00Z"),
    ]
    latest_pubspec = {
        "name": name,
        "environment": {"sdk": sdk},
        "repository": f"https://github.com/dart-lang/{name}",
        "issue_tracker": f"https://github.com/dart-lang/{name}/issues",
    }
    return {
        "name": name,
        "isDiscontinued": discontinued,
        "latest": {"version": versions[-1][0], "pubspec": latest_pubspec},
        "publisher": {"publisherId": publisher} if publisher else None,
        "versions": [{"version": v, "published": p} for v, p in versions],
    }


def package_score(granted=130, max_points=160, tags=("is:flutter-favorite",)):
    return {
        "grantedPoints": granted,
        "maxPoints": max_points,
        "likeCount": 120,
        "popularityScore": 0.97,
        "tags": list(tags),
    }


def no_sleep_policy():
    async def no_sleep(_):
        return None

    return RetryPolicy(sleep=no_sleep)


class TestParsePackageBlob:
    """Tests for parse_package_blob."""

    def test_versions_and_latest_stable(self):
        meta = parse_package_blob({"info": package_info(), "score": package_score()}, Version(1, 1, 0))
        assert meta.latest_version == Version.parse("2.0.0-dev.1")
        assert meta.latest_stable_version == Version(1, 2, 0)
        assert [str(r.version) for r in meta.releases] == ["2.0.0-dev.1", "1.2.0", "1.1.0", "1.0.0"]

    def test_score_normalised(self):
        meta = parse_package_blob({"info": package_info(), "score": package_score()}, Version(1, 1, 0))
        assert meta.pub_score == 130 / 160 * 100
        assert meta.likes == 120
        assert round(meta.popularity) == 97

    def test_missing_score_document(self):
        meta = parse_package_blob({"info": package_info(), "score": None}, Version(1, 1, 0))
        assert meta.pub_score is None
        assert meta.verification == PackageVerification.VERIFIED_PUBLISHER

    def test_null_safety_from_sdk_constraint(self):
        meta = parse_package_blob({"info": package_info(sdk=">=2.7.0 <3.0.0")}, Version(1, 0, 0))
        assert meta.is_null_safe is False
        meta = parse_package_blob({"info": package_info(sdk=">=2.12.0 <3.0.0")}, Version(1, 0, 0))
        assert meta.is_null_safe is True

    def test_repository_and_tracker_urls(self):
        meta = parse_package_blob({"info": package_info()}, Version(1, 0, 0))
        assert meta.repository_url == "https://github.com/dart-lang/http"
        assert meta.issue_tracker_url == "https://github.com/dart-lang/http/issues"

    def test_homepage_fallback_and_bad_url(self):
        info = package_info()
        info["latest"]["pubspec"].pop("repository")
        info["latest"]["pubspec"]["homepage"] = "https://github.com/someone/http"
        info["latest"]["pubspec"]["issue_tracker"] = "not a url"
        meta = parse_package_blob({"info": info}, Version(1, 0, 0))
        assert meta.repository_url == "https://github.com/someone/http"
        assert meta.issue_tracker_url is None

    def test_verification_tiers(self):
        both = parse_package_blob({"info": package_info(), "score": package_score()}, Version(1, 0, 0))
        assert both.verification == PackageVerification.VERIFIED_PUBLISHER_AND_FAVOURITE
        favourite = parse_package_blob(
            {"info": package_info(publisher=None), "score": package_score()}, Version(1, 0, 0)
        )
        assert favourite.verification == PackageVerification.FLUTTER_FAVOURITE
        neither = parse_package_blob(
            {"info": package_info(publisher=None), "score": package_score(tags=())}, Version(1, 0, 0)
        )
        assert neither.verification == PackageVerification.NONE

    def test_discontinued_flag(self):
        meta = parse_package_blob({"info": package_info(discontinued=True)}, Version(1, 0, 0))
        assert meta.is_discontinued is True

    def test_missing_info_returns_none(self):
        assert parse_package_blob({"score": package_score()}, Version(1, 0, 0)) is None

    def test_name_falls_back_to_requested_name(self):
        info = package_info()
        del info["name"]
        meta = parse_package_blob({"info": info}, Version(1, 0, 0), name="http")
        assert meta.name == "http"


class TestParseReleases:
    """Tests for release history parsing."""

    def test_invalid_entries_skipped(self):
        releases = parse_releases([
            {"version": "1.0.0", "published": "2023-01-01T00:00:00Z"},
            {"version": "garbage", "published": "2023-02-01T00:00:00Z"},
            {"version": "1.1.0", "published": "not a date"},
            "nonsense",
        ])
        assert [str(r.version) for r in releases] == ["1.0.0"]

    def test_non_list_is_empty(self):
        assert parse_releases(None) == ()


class TestInferNullSafety:
    def test_unknown_without_constraint(self):
        assert infer_null_safety(None) is None

    def test_open_lower_bound_is_not_null_safe(self):
        assert infer_null_safety(parse_constraint("<3.0.0")) is False


class TestPubDevFetch:
    """Tests for PubDevCollector network behaviour."""

    def setup_method(self):
        self.requests = []
        self.responses = {
            "/api/packages/http": (200, package_info()),
            "/api/packages/http/score": (200, package_score()),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        status, body = self.responses.get(request.url.path, (404, {"error": "not found"}))
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def make_collector(self, cache=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return PubDevCollector(
            cache=cache, client=client, retry=no_sleep_policy(), base_url="https://pub.dev/api"
        )

    def test_fetch_merges_info_and_score(self):
        async def run():
            collector = self.make_collector()
            try:
                return await collector.fetch("http", Version(1, 1, 0))
            finally:
                await collector.client.aclose()

        meta = asyncio.run(run())
        assert meta.name == "http"
        assert meta.pub_score is not None
        assert self.requests == ["/api/packages/http", "/api/packages/http/score"]

    def test_not_found_is_dropped(self):
        async def run():
            collector = self.make_collector()
            try:
                return await collector.fetch_all({"http": Version(1, 1, 0), "missing": Version(1, 0, 0)})
            finally:
                await collector.client.aclose()

        result = asyncio.run(run())
        assert set(result) == {"http"}
        # 404 is not retried
        assert self.requests.count("/api/packages/missing") == 1

    def test_unusable_name_does_not_sink_batch(self):
        async def run():
            collector = self.make_collector()
            try:
                return await collector.fetch_all({"http": Version(1, 1, 0), "bad\x01name": Version(1, 0, 0)})
            finally:
                await collector.client.aclose()

        result = asyncio.run(run())
        assert set(result) == {"http"}

    def test_cache_hit_skips_network(self, tmp_path):
        cache = DiskCache(tmp_path)

        async def run():
            collector = self.make_collector(cache)
            try:
                await collector.fetch("http", Version(1, 1, 0))
                self.requests.clear()
                return await collector.fetch("http", Version(1, 2, 0))
            finally:
                await collector.client.aclose()

        meta = asyncio.run(run())
        assert self.requests == []
        assert meta.from_cache is True
        assert meta.current_version == Version(1, 2, 0)

    def test_fresh_bypasses_cache(self, tmp_path):
        cache = DiskCache(tmp_path)
        cache.set(PubDevCollector.cache_key("http"), {"info": package_info(), "score": None})

        async def run():
            collector = self.make_collector(cache)
            try:
                return await collector.fetch("http", Version(1, 1, 0), fresh=True)
            finally:
                await collector.client.aclose()

        meta = asyncio.run(run())
        assert meta.from_cache is False
        assert len(self.requests) == 2

    def test_offline_never_touches_network(self, tmp_path):
        async def run():
            collector = self.make_collector(DiskCache(tmp_path))
            try:
                return await collector.fetch("http", Version(1, 1, 0), offline=True)
            finally:
                await collector.client.aclose()

        assert asyncio.run(run()) is None
        assert self.requests == []

    def test_server_error_retried_then_absent(self):
        self.responses["/api/packages/http"] = (503, "unavailable")

        async def run():
            collector = self.make_collector()
            try:
                return await collector.fetch("http", Version(1, 1, 0))
            finally:
                await collector.client.aclose()

        assert asyncio.run(run()) is None
        assert self.requests.count("/api/packages/http") == 4

    def test_malformed_json_is_transient(self):
        self.responses["/api/packages/http"] = (200, "<html>oops</html>")

        async def run():
            collector = self.make_collector()
            try:
                return await collector.fetch("http", Version(1, 1, 0))
            finally:
                await collector.client.aclose()

        assert asyncio.run(run()) is None
        assert self.requests.count("/api/packages/http") == 4

    def test_cached_blob_is_json(self, tmp_path):
        cache = DiskCache(tmp_path)

        async def run():
            collector = self.make_collector(cache)
            try:
                await collector.fetch("http", Version(1, 1, 0))
            finally:
                await collector.client.aclose()

        asyncio.run(run())
        record = json.loads(cache.path_for("pub:http").read_text())
        assert set(record["_data"]) == {"info", "score"}

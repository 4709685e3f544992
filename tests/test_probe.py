"""Tests for the repository reachability probe."""

import asyncio

import httpx

from pubrisk.collectors.gate import ConcurrencyGate
from pubrisk.collectors.probe import ReachabilityProbe
from pubrisk.services.cache import DiskCache


class TestReachabilityProbe:
    """Tests for ReachabilityProbe."""

    def setup_method(self):
        self.calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, str(request.url)))
        host = request.url.host
        if host == "gone.example":
            return httpx.Response(404)
        if host == "down.example":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    def run_probe(self, urls, cache=None):
        async def run():
            client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
            probe = ReachabilityProbe(client, ConcurrencyGate(2), cache=cache)
            try:
                return await probe.probe_all(urls)
            finally:
                await client.aclose()

        return asyncio.run(run())

    def test_classification(self):
        results = self.run_probe([
            "https://ok.example/repo",
            "https://gone.example/repo",
            "https://down.example/repo",
        ])
        assert results == {
            "https://ok.example/repo": True,
            "https://gone.example/repo": False,
            "https://down.example/repo": None,
        }
        assert all(method == "HEAD" for method, _ in self.calls)

    def test_duplicates_probed_once(self):
        self.run_probe(["https://ok.example/a", "https://ok.example/a"])
        assert len(self.calls) == 1

    def test_definite_results_cached(self, tmp_path):
        cache = DiskCache(tmp_path)
        self.run_probe(["https://ok.example/a", "https://down.example/b"], cache=cache)
        self.calls.clear()
        results = self.run_probe(["https://ok.example/a", "https://down.example/b"], cache=cache)
        assert results["https://ok.example/a"] is True
        # Connection failures are not cached
        assert self.calls == [("HEAD", "https://down.example/b")]

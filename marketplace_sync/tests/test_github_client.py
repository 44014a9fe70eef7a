"""
Unit tests for marketplace_sync.ingestion.github_client.

All tests are fully offline: urllib.request.urlopen is replaced by a router
that serves canned responses per URL. Tests cover repository URL parsing,
metric extraction, the README fetch chain, caching, and the mapping of HTTP
failures onto RateLimited / HostNotFound / HostError.
"""
import hashlib
import io
import json
import shutil
import urllib.error

import pytest

from marketplace_sync.errors import HostError, HostNotFound, RateLimited
from marketplace_sync.ingestion.cache import FileResponseCache, MemoryResponseCache
from marketplace_sync.ingestion.github_client import (
    GITHUB_USER_AGENT,
    GitHubMetricsFetcher,
    RepoMetrics,
    parse_github_repository,
)
from marketplace_sync.reconciler import PackageReconciler

API = "https://api.github.com"

REPO_PAYLOAD = {
    "full_name": "acme/widgets",
    "stargazers_count": 42,
    "watchers_count": 40,
    "forks_count": 7,
    "open_issues_count": 3,
    "organization": {"login": "acme", "avatar_url": "https://avatars.githubusercontent.com/u/1?v=4"},
}


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class Router:
    """Stand-in for urlopen: maps URL → bytes, HTTP status, or exception."""

    def __init__(self) -> None:
        self.routes: dict[str, object] = {}
        self.requests: list = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        url = request.full_url
        if url not in self.routes:
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, io.BytesIO(b""))
        route = self.routes[url]
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            status, headers = route
            raise urllib.error.HTTPError(url, status, "Error", headers, io.BytesIO(b""))
        if isinstance(route, (dict, list)):
            return _Response(json.dumps(route).encode("utf-8"))
        return _Response(route)


@pytest.fixture
def router(monkeypatch):
    router = Router()
    monkeypatch.setattr("urllib.request.urlopen", router)
    return router


@pytest.fixture
def client():
    return GitHubMetricsFetcher(token="test-token", cache=MemoryResponseCache())


# ── parse_github_repository ───────────────────────────────────────────────────

@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/widgets",
        "http://github.com/acme/widgets",
        "https://github.com/acme/widgets/",
        "https://github.com/acme/widgets.git",
        "https://www.github.com/acme/widgets",
        "git://github.com/acme/widgets.git",
        "https://github.com/acme/widgets/tree/main",
        "https://github.com/acme/widgets.git/",
        "git@github.com:acme/widgets.git",
        "ssh://git@github.com/acme/widgets.git",
        "https://GitHub.com/acme/widgets",
    ],
)
def test_parse_github_repository_variants(url):
    assert parse_github_repository(url) == ("acme", "widgets")


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "https://gitlab.com/acme/widgets",
        "https://github.com/acme",
        "git@gitlab.com:acme/widgets.git",
        "https://notgithub.com/acme/widgets",
    ],
)
def test_parse_github_repository_rejects(url):
    assert parse_github_repository(url) is None


def test_parse_github_repository_custom_host():
    assert parse_github_repository("https://git.example.org/acme/widgets", host="git.example.org") == ("acme", "widgets")


# ── fetch_repo_metrics ────────────────────────────────────────────────────────

def test_fetch_repo_metrics(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    metrics = client.fetch_repo_metrics("acme", "widgets")
    assert metrics == RepoMetrics(
        stars=42,
        watchers=40,
        forks=7,
        open_issues=3,
        org_avatar_url="https://avatars.githubusercontent.com/u/1?v=4",
    )


def test_fetch_repo_metrics_sends_auth_headers(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    client.fetch_repo_metrics("acme", "widgets")
    request = router.requests[0]
    assert request.get_header("Authorization") == "Bearer test-token"
    assert request.get_header("User-agent") == GITHUB_USER_AGENT
    assert request.get_method() == "GET"


def test_fetch_repo_metrics_user_repo_has_no_avatar(router, client):
    """Repositories owned by a user (no organization) have no avatar."""
    payload = dict(REPO_PAYLOAD)
    del payload["organization"]
    router.routes[f"{API}/repos/acme/widgets"] = payload
    assert client.fetch_repo_metrics("acme", "widgets").org_avatar_url is None


def test_fetch_repo_metrics_is_cached(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    first = client.fetch_repo_metrics("acme", "widgets")
    second = client.fetch_repo_metrics("acme", "widgets")
    assert first == second
    assert len(router.requests) == 1


def test_fetch_repo_metrics_not_found(router, client):
    with pytest.raises(HostNotFound) as excinfo:
        client.fetch_repo_metrics("acme", "missing")
    assert excinfo.value.status == 404


def test_rate_limit_429(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = (429, {})
    with pytest.raises(RateLimited):
        client.fetch_repo_metrics("acme", "widgets")


def test_rate_limit_403_without_quota(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = (403, {"X-RateLimit-Remaining": "0"})
    with pytest.raises(RateLimited):
        client.fetch_repo_metrics("acme", "widgets")


def test_plain_403_is_host_error(router, client):
    """A 403 with quota left (e.g. a private repository) is not a rate limit."""
    router.routes[f"{API}/repos/acme/widgets"] = (403, {"X-RateLimit-Remaining": "4999"})
    with pytest.raises(HostError) as excinfo:
        client.fetch_repo_metrics("acme", "widgets")
    assert excinfo.value.status == 403


def test_server_error_is_host_error(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = (502, {})
    with pytest.raises(HostError):
        client.fetch_repo_metrics("acme", "widgets")


def test_network_error_is_host_error(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = urllib.error.URLError("connection refused")
    with pytest.raises(HostError):
        client.fetch_repo_metrics("acme", "widgets")


def test_invalid_json_is_host_error(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = b"<html>oops</html>"
    with pytest.raises(HostError):
        client.fetch_repo_metrics("acme", "widgets")


def test_failures_are_not_cached(router, client):
    router.routes[f"{API}/repos/acme/widgets"] = (429, {})
    with pytest.raises(RateLimited):
        client.fetch_repo_metrics("acme", "widgets")
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    assert client.fetch_repo_metrics("acme", "widgets").stars == 42


# ── fetch_rendered_readme ─────────────────────────────────────────────────────

def _readme_routes(router):
    raw_url = "https://raw.githubusercontent.com/acme/widgets/master/README.md"
    router.routes[f"{API}/repos/acme/widgets/readme"] = {"name": "README.md", "download_url": raw_url}
    router.routes[raw_url] = b"# Widgets"
    router.routes[f"{API}/markdown"] = b"<h1>Widgets</h1>"


def test_fetch_rendered_readme(router, client):
    _readme_routes(router)
    assert client.fetch_rendered_readme("acme", "widgets") == "<h1>Widgets</h1>"

    render = router.requests[-1]
    assert render.get_method() == "POST"
    assert json.loads(render.data) == {"text": "# Widgets", "mode": "gfm", "context": "acme/widgets"}


def test_fetch_rendered_readme_is_cached(router, client):
    _readme_routes(router)
    client.fetch_rendered_readme("acme", "widgets")
    client.fetch_rendered_readme("acme", "widgets")
    assert len(router.requests) == 3


def test_fetch_rendered_readme_missing(router, client):
    with pytest.raises(HostNotFound):
        client.fetch_rendered_readme("acme", "widgets")


def test_fetch_rendered_readme_without_download_url(router, client):
    router.routes[f"{API}/repos/acme/widgets/readme"] = {"name": "README.md"}
    with pytest.raises(HostError):
        client.fetch_rendered_readme("acme", "widgets")


# ── Construction ──────────────────────────────────────────────────────────────

def test_no_token_sends_no_authorization(router):
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    GitHubMetricsFetcher(token=None).fetch_repo_metrics("acme", "widgets")
    assert router.requests[0].get_header("Authorization") is None


def test_custom_api_base(router):
    router.routes["https://ghe.example.org/api/v3/repos/acme/widgets"] = REPO_PAYLOAD
    client = GitHubMetricsFetcher(token="t", api_base="https://ghe.example.org/api/v3/")
    assert client.fetch_repo_metrics("acme", "widgets").forks == 7


# ── File cache failures ───────────────────────────────────────────────────────

def _cache_file(cache_dir, key):
    return cache_dir / f"{hashlib.sha256(key.encode('utf-8')).hexdigest()}.json"


def test_non_object_cache_entry_is_refetched(router, tmp_path):
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    _cache_file(tmp_path, "repos/acme/widgets").write_text("[1, 2]", encoding="utf-8")
    client = GitHubMetricsFetcher(token="test-token", cache=FileResponseCache(str(tmp_path)))

    assert client.fetch_repo_metrics("acme", "widgets").stars == 42
    assert len(router.requests) == 1


def test_cached_metrics_of_wrong_shape_are_refetched(router):
    cache = MemoryResponseCache()
    cache.set("repos/acme/widgets", {"stargazers_count": 1})
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    client = GitHubMetricsFetcher(token="test-token", cache=cache)

    assert client.fetch_repo_metrics("acme", "widgets").stars == 42
    assert cache.get("repos/acme/widgets")["stars"] == 42


def test_unwritable_cache_still_returns_metrics(router, tmp_path):
    cache_dir = tmp_path / "cache"
    cache = FileResponseCache(str(cache_dir))
    shutil.rmtree(cache_dir)
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    client = GitHubMetricsFetcher(token="test-token", cache=cache)

    assert client.fetch_repo_metrics("acme", "widgets").forks == 7
    assert not cache_dir.exists()


@pytest.mark.parametrize("broken", ["non_object_entry", "missing_directory"])
def test_convert_completes_with_broken_cache(broken, router, tmp_path, store, signals, recorder, fixed_clock, make_package):
    """A misbehaving cache never aborts the conversion of a package."""
    cache_dir = tmp_path / "cache"
    cache = FileResponseCache(str(cache_dir))
    if broken == "non_object_entry":
        _cache_file(cache_dir, "repos/acme/widgets").write_text("[1, 2]", encoding="utf-8")
    else:
        shutil.rmtree(cache_dir)
    router.routes[f"{API}/repos/acme/widgets"] = REPO_PAYLOAD
    fetcher = GitHubMetricsFetcher(token="test-token", cache=cache)

    node = PackageReconciler(store, fetcher=fetcher, signals=signals, clock=fixed_clock).convert(make_package())

    assert store.get_property(node, "githubStargazers") == 42
    assert len(recorder.flushed) == 1

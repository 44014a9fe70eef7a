"""
GitHub metrics fetcher — repository counters and rendered READMEs.

Endpoints:
    GET  /repos/{org}/{repo}          stars, watchers, forks, open issues, org avatar
    GET  /repos/{org}/{repo}/readme   README metadata (download_url)
    POST /markdown                    README markdown → HTML (gfm, repo context)

Failure mapping (every failure raises, nothing is retried here):
    404                                  → HostNotFound
    429, or 403 with no quota remaining  → RateLimited
    any other HTTP / network / payload   → HostError

Successful responses are stored in the injected ResponseCache keyed by the
request, so repeated import runs stay inside the hourly API quota.
Uses only Python stdlib (urllib.request) for HTTP.
"""
import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Optional

from marketplace_sync import __version__
from marketplace_sync.config import DEFAULT_CONFIG
from marketplace_sync.errors import HostError, HostNotFound, RateLimited
from marketplace_sync.ingestion.cache import MemoryResponseCache, ResponseCache

logger = logging.getLogger(__name__)

GITHUB_USER_AGENT = f"marketplace-sync/{__version__}"
GITHUB_API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class RepoMetrics:
    """Repository counters shown next to a package."""

    stars: int
    watchers: int
    forks: int
    open_issues: int
    org_avatar_url: Optional[str] = None


def parse_github_repository(url: Optional[str], host: str = DEFAULT_CONFIG.github_host) -> Optional[tuple[str, str]]:
    """Extract ``(organization, repository)`` from a repository URL.

    Handles http/https/git/ssh URLs, the scp-like ``git@host:org/repo`` form,
    trailing slashes, ``.git`` suffixes and extra path segments after the
    repository (``/tree/main``). Returns None when the URL does not point at a
    repository on *host*.

    Examples:
        >>> parse_github_repository("https://github.com/acme/widgets.git")
        ('acme', 'widgets')
        >>> parse_github_repository("git@github.com:acme/widgets.git")
        ('acme', 'widgets')
        >>> parse_github_repository("https://gitlab.com/acme/widgets") is None
        True
    """
    if not url:
        return None
    url = url.strip().rstrip("/")
    host_re = rf"(?:www\.)?{re.escape(host)}"
    pattern = (
        rf"^(?:(?:https?|git|ssh)://(?:[^/@]+@)?{host_re}(?::\d+)?/|git@{host_re}:)"
        r"([^/]+)/([^/]+?)(?:\.git)?(?:/.*)?$"
    )
    match = re.match(pattern, url, re.IGNORECASE)
    if match is None:
        return None
    return match.group(1), match.group(2)


class HostMetricsFetcher(ABC):
    """Source-hosting metrics as consumed by the reconciler."""

    @abstractmethod
    def fetch_repo_metrics(self, organization: str, repository: str) -> RepoMetrics:
        """Repository counters.

        Raises:
            RateLimited, HostNotFound, HostError
        """

    @abstractmethod
    def fetch_rendered_readme(self, organization: str, repository: str) -> str:
        """README rendered to HTML (not yet post-processed).

        Raises:
            RateLimited, HostNotFound, HostError
        """


class GitHubMetricsFetcher(HostMetricsFetcher):
    """GitHub REST client with a response cache.

    Args:
        token:    GitHub personal access token. Without one the API allows
                  60 requests/hour.
        cache:    ResponseCache for successful responses (in-memory if None).
        api_base: REST base URL.
        timeout:  Socket timeout per request, in seconds.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        api_base: str = DEFAULT_CONFIG.github_api_base,
        timeout: float = DEFAULT_CONFIG.github_timeout_seconds,
    ) -> None:
        self._token = token
        self._cache = cache if cache is not None else MemoryResponseCache()
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        if not token:
            logger.warning(
                "No GitHub token: unauthenticated rate limit is 60 req/hr. "
                "Set GITHUB_TOKEN for a full import."
            )

    # ── HTTP ──────────────────────────────────────────────────────────────────

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {
            "Accept": accept,
            "User-Agent": GITHUB_USER_AGENT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(
        self,
        url: str,
        payload: Optional[dict] = None,
        accept: str = "application/vnd.github+json",
    ) -> bytes:
        """Perform one request and map failures onto the host error taxonomy."""
        data = None
        headers = self._headers(accept)
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(url, data=data, headers=headers, method="POST" if data else "GET")
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                raise HostNotFound(f"Not found: {url}", status=404) from exc
            remaining = exc.headers.get("X-RateLimit-Remaining") if exc.headers else None
            if exc.code == 429 or (exc.code == 403 and remaining == "0"):
                raise RateLimited(f"GitHub API rate limit exceeded ({exc.code}): {url}", status=exc.code) from exc
            raise HostError(f"HTTP {exc.code} from {url}: {exc.reason}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            raise HostError(f"Network error on {url}: {exc.reason}") from exc
        except OSError as exc:
            raise HostError(f"I/O error on {url}: {exc}") from exc

    def _get_json(self, path: str) -> Any:
        body = self._request(f"{self._api_base}{path}")
        try:
            return json.loads(body)
        except ValueError as exc:
            raise HostError(f"Invalid JSON from {path}: {exc}") from exc

    # ── HostMetricsFetcher ────────────────────────────────────────────────────

    def fetch_repo_metrics(self, organization: str, repository: str) -> RepoMetrics:
        cache_key = f"repos/{organization}/{repository}"
        cached = self._cache.get(cache_key)
        if isinstance(cached, dict):
            try:
                metrics = RepoMetrics(**cached)
            except TypeError:
                logger.warning("Ignoring malformed cached metrics for %s", cache_key)
            else:
                logger.debug("GitHub cache hit: %s", cache_key)
                return metrics

        org = urllib.parse.quote(organization, safe="")
        repo = urllib.parse.quote(repository, safe="")
        meta = self._get_json(f"/repos/{org}/{repo}")
        if not isinstance(meta, dict):
            raise HostError(f"No repository info returned for {organization}/{repository}")

        avatar = ((meta.get("organization") or {}).get("avatar_url") or "").strip()
        metrics = RepoMetrics(
            stars=int(meta.get("stargazers_count") or 0),
            watchers=int(meta.get("watchers_count") or 0),
            forks=int(meta.get("forks_count") or 0),
            open_issues=int(meta.get("open_issues_count") or 0),
            org_avatar_url=avatar or None,
        )
        self._cache.set(cache_key, asdict(metrics))
        return metrics

    def fetch_rendered_readme(self, organization: str, repository: str) -> str:
        cache_key = f"readme/{organization}/{repository}"
        cached = self._cache.get(cache_key)
        if isinstance(cached, str):
            logger.debug("GitHub cache hit: %s", cache_key)
            return cached

        org = urllib.parse.quote(organization, safe="")
        repo = urllib.parse.quote(repository, safe="")
        metadata = self._get_json(f"/repos/{org}/{repo}/readme")
        download_url = metadata.get("download_url") if isinstance(metadata, dict) else None
        if not download_url:
            raise HostError(f"README of {organization}/{repository} has no download_url")

        markdown = self._request(download_url, accept="text/plain").decode("utf-8", errors="replace")
        rendered = self._request(
            f"{self._api_base}/markdown",
            payload={"text": markdown, "mode": "gfm", "context": f"{organization}/{repository}"},
            accept="text/html",
        ).decode("utf-8", errors="replace")
        self._cache.set(cache_key, rendered)
        return rendered

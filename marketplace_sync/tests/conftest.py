"""
marketplace_sync/tests/conftest.py - Shared pytest fixtures.

Fixtures:
    store         — Empty GraphRecordStore.
    signals       — Fresh Signals instance.
    recorder      — SignalRecorder collecting every payload sent on `signals`.
    fetcher       — FakeFetcher returning fixed GitHub metrics and README HTML.
    make_package  — Factory for PackageDescriptor objects (acme/widgets by default).
    make_version_descriptor / make_maintainer — Factories for nested descriptors.
    fixed_clock   — Clock callable pinned to NOW.
    github_token  — GitHub PAT from GITHUB_TOKEN env var (or None).
"""

import os
from datetime import datetime, timezone

import pytest

from marketplace_sync.errors import HostFetchError
from marketplace_sync.ingestion.github_client import HostMetricsFetcher, RepoMetrics
from marketplace_sync.models import (
    Dist,
    Downloads,
    MaintainerDescriptor,
    PackageDescriptor,
    Source,
    VersionDescriptor,
)
from marketplace_sync.signals import Signals
from marketplace_sync.storage.graph_store import GraphRecordStore


# ── Pytest configuration hooks ────────────────────────────────────────────────

_INTEGRATION_FLAG = "--run-integration"


def pytest_addoption(parser):
    """Opt-in switch for tests that talk to api.github.com."""
    parser.addoption(
        _INTEGRATION_FLAG,
        action="store_true",
        default=False,
        help="Also run tests marked 'integration' (real GitHub API calls).",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        f"integration: needs network access to GitHub; skipped unless {_INTEGRATION_FLAG} "
        "is given or the run selects -m integration",
    )


def pytest_collection_modifyitems(config, items):
    """Mark integration tests as skipped for ordinary offline runs."""
    if config.getoption(_INTEGRATION_FLAG) or "integration" in (config.getoption("-m", default="") or ""):
        return
    offline = pytest.mark.skip(reason=f"network test, enable with {_INTEGRATION_FLAG}")
    for item in items:
        if item.get_closest_marker("integration") is not None:
            item.add_marker(offline)


# ── Constants ─────────────────────────────────────────────────────────────────

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

RELEASE_TIME = "2024-01-10T12:00:00+00:00"
DEV_TIME = "2023-12-01T08:00:00+00:00"

README_HTML = (
    '<article class="markdown-body entry-content">'
    '<h1><a id="user-content-widgets" class="anchor" href="#widgets">'
    '<svg aria-hidden="true" class="octicon octicon-link" height="16"><path d="M4"></path></svg>'
    "</a>Widgets</h1>"
    '<p><img src="docs/logo.png"> See <a href="/docs/usage.md">usage</a>.</p>'
    "</article>"
)


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeFetcher(HostMetricsFetcher):
    """In-memory HostMetricsFetcher.

    Set ``metrics_error`` / ``readme_error`` to an exception instance to make
    the corresponding call raise it.
    """

    def __init__(self) -> None:
        self.metrics = RepoMetrics(
            stars=42,
            watchers=42,
            forks=7,
            open_issues=3,
            org_avatar_url="https://avatars.githubusercontent.com/u/1?v=4",
        )
        self.readme = README_HTML
        self.metrics_error: HostFetchError | None = None
        self.readme_error: HostFetchError | None = None
        self.metrics_calls: list[tuple[str, str]] = []
        self.readme_calls: list[tuple[str, str]] = []

    def fetch_repo_metrics(self, organization, repository):
        self.metrics_calls.append((organization, repository))
        if self.metrics_error is not None:
            raise self.metrics_error
        return self.metrics

    def fetch_rendered_readme(self, organization, repository):
        self.readme_calls.append((organization, repository))
        if self.readme_error is not None:
            raise self.readme_error
        return self.readme


class SignalRecorder:
    """Collects every payload sent on a Signals instance."""

    def __init__(self, signals: Signals) -> None:
        self.abandoned: list = []
        self.package_deleted: list = []
        self.vendor_deleted: list = []
        self.flushed: list = []
        signals.package_abandoned.connect(self.abandoned.append)
        signals.package_deleted.connect(self.package_deleted.append)
        signals.vendor_deleted.connect(self.vendor_deleted.append)
        signals.cache_flushed.connect(self.flushed.append)


# ── Factories ─────────────────────────────────────────────────────────────────

def make_version(version: str, normalized: str = "", time: str | None = RELEASE_TIME, **kwargs) -> VersionDescriptor:
    return VersionDescriptor(
        version=version,
        version_normalized=normalized,
        time=time,
        **kwargs,
    )


def build_package(
    name: str = "acme/widgets",
    versions=None,
    maintainers=None,
    favers: int = 10,
    downloads: Downloads | None = Downloads(total=100, monthly=20, daily=1),
    repository: str = "https://github.com/acme/widgets.git",
    abandoned=False,
    **kwargs,
) -> PackageDescriptor:
    if versions is None:
        versions = (
            make_version(
                "1.0.0",
                "1.0.0.0",
                RELEASE_TIME,
                description="Widgets for everyone",
                keywords=("widgets", "ui"),
                license=("MIT",),
                type="library",
                require={"php": ">=8.1"},
                source=Source(type="git", reference="abc123", url="https://github.com/acme/widgets.git"),
                dist=Dist(type="zip", reference="abc123", url="https://api.github.com/repos/acme/widgets/zipball/abc123", shasum=""),
            ),
            make_version("dev-master", "9999999-dev", DEV_TIME),
        )
    if maintainers is None:
        maintainers = ()
    return PackageDescriptor(
        name=name,
        description=kwargs.pop("description", "Reusable widgets"),
        type=kwargs.pop("type", "library"),
        repository=repository,
        favers=favers,
        abandoned=abandoned,
        time=kwargs.pop("time", "2020-03-04T10:00:00+00:00"),
        downloads=downloads,
        versions=tuple(versions),
        maintainers=tuple(maintainers),
        **kwargs,
    )


def maintainer(name: str) -> MaintainerDescriptor:
    return MaintainerDescriptor(name=name, email=f"{name.lower()}@example.com", homepage=None)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def store() -> GraphRecordStore:
    return GraphRecordStore()


@pytest.fixture
def signals() -> Signals:
    return Signals()


@pytest.fixture
def recorder(signals) -> SignalRecorder:
    return SignalRecorder(signals)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_package():
    return build_package


@pytest.fixture
def fixed_clock():
    return lambda: NOW


@pytest.fixture(scope="session")
def github_token():
    """GitHub PAT from the GITHUB_TOKEN environment variable, or None."""
    return os.environ.get("GITHUB_TOKEN")


@pytest.fixture
def make_version_descriptor():
    return make_version


@pytest.fixture
def make_maintainer():
    return maintainer

"""
marketplace_sync/config.py - All tunable parameters for the marketplace import.

Endpoints, timeouts, cache lifetimes and default paths live here so that a
deployment change is a single-file diff. Secrets (the GitHub token) are never
stored in the config; they come from the environment.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class MarketplaceConfig:
    """
    Immutable configuration for a marketplace import run.

    Override by constructing a new MarketplaceConfig with the desired values.
    """

    # ── GitHub API ────────────────────────────────────────────────────────────
    github_api_base: str = "https://api.github.com"
    # REST base URL. Point at a GitHub Enterprise host to mirror private repos.

    github_host: str = "github.com"
    # Repository URLs containing this host are enriched with GitHub metrics.

    github_timeout_seconds: float = 30.0
    # Socket timeout for each GitHub request.

    readme_raw_base: str = "https://raw.githubusercontent.com"
    # Relative links in rendered READMEs are rewritten against
    # {readme_raw_base}/{org}/{repo}/master/.

    # ── Response cache ────────────────────────────────────────────────────────
    cache_dir: str = "data/cache/github"
    # Directory for the on-disk GitHub response cache.

    cache_ttl_seconds: int = 6 * 3600
    # Cached GitHub responses older than this are refetched. 0 disables expiry.

    # ── Record store ──────────────────────────────────────────────────────────
    store_path: str = "data/marketplace.json"
    # Default JSON file for the graph record store.

    # ── Batch import ──────────────────────────────────────────────────────────
    max_workers: int = 1
    # Vendor-level parallelism. 1 keeps the import strictly sequential.

    progress_every: int = 25
    # Log an INFO progress line every N packages.


# Singleton default: import this everywhere instead of constructing anew.
DEFAULT_CONFIG = MarketplaceConfig()

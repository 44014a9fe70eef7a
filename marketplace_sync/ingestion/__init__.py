"""
marketplace_sync.ingestion — Upstream data sources.

Modules:
    cache          — Response cache (in-memory and on-disk JSON).
    github_client  — GitHub repository metrics + rendered README fetcher.
    feed           — Packagist JSON dump → PackageDescriptor loader.
"""

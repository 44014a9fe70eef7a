"""
marketplace_sync/report.py - Tabular views of the record tree.

packages_frame() flattens every Package record into one DataFrame row so that
operators can sort, filter and export the marketplace with pandas.
"""
import logging
import os

import pandas as pd

from marketplace_sync.storage import schema
from marketplace_sync.storage.base import RecordStore

logger = logging.getLogger(__name__)

PACKAGE_COLUMNS = [
    "vendor",
    "package",
    "type",
    "last_version",
    "last_activity",
    "versions",
    "maintainers",
    "download_total",
    "download_monthly",
    "download_daily",
    "favers",
    "github_stargazers",
    "github_forks",
    "github_issues",
    "abandoned",
    "repository",
]


def store_summary(store: RecordStore) -> dict[str, int]:
    """Record counts per entity type."""
    root = store.root()
    return {
        "vendors": len(store.find_descendants(root, schema.VENDOR)),
        "packages": len(store.find_descendants(root, schema.PACKAGE)),
        "versions": len(store.find_descendants(root, schema.VERSION)),
        "maintainers": len(store.find_descendants(root, schema.MAINTAINER)),
    }


def packages_frame(store: RecordStore) -> pd.DataFrame:
    """One row per package, sorted by vendor then package title.

    ``last_activity`` is a timezone-aware datetime64 column (NaT when unknown).
    """
    rows: list[dict] = []
    root = store.root()
    for vendor in store.list_children(root, schema.VENDOR):
        vendor_title = store.get_property(vendor, "title") or vendor.name
        for package in store.list_children(vendor, schema.PACKAGE):
            props = store.get_properties(package)
            versions = store.find_child(package, schema.VERSIONS_NODE)
            maintainers = store.find_child(package, schema.MAINTAINERS_NODE)
            rows.append({
                "vendor": vendor_title,
                "package": props.get("title") or package.name,
                "type": props.get("type"),
                "last_version": props.get("lastVersion"),
                "last_activity": props.get("lastActivity"),
                "versions": len(store.list_children(versions, schema.VERSION)) if versions else 0,
                "maintainers": len(store.list_children(maintainers, schema.MAINTAINER)) if maintainers else 0,
                "download_total": props.get("downloadTotal"),
                "download_monthly": props.get("downloadMonthly"),
                "download_daily": props.get("downloadDaily"),
                "favers": props.get("favers"),
                "github_stargazers": props.get("githubStargazers"),
                "github_forks": props.get("githubForks"),
                "github_issues": props.get("githubIssues"),
                "abandoned": bool((props.get("abandoned") or "").strip()),
                "repository": props.get("repository"),
            })

    df = pd.DataFrame(rows, columns=PACKAGE_COLUMNS)
    df["last_activity"] = pd.to_datetime(df["last_activity"], utc=True, errors="coerce")
    for column in ("download_total", "download_monthly", "download_daily", "favers",
                   "github_stargazers", "github_forks", "github_issues"):
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0).astype(int)
    return df.sort_values(["vendor", "package"]).reset_index(drop=True)


def export_packages_csv(store: RecordStore, path: str) -> int:
    """Write packages_frame() to *path* atomically. Returns the row count."""
    df = packages_frame(store)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = path + ".tmp"
    df.to_csv(tmp, index=False)
    os.replace(tmp, path)
    logger.info("Exported %d packages to %s", len(df), path)
    return len(df)

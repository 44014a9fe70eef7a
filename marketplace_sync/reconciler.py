"""
marketplace_sync/reconciler.py - Convert one registry package into records.

PackageReconciler.convert() brings the subtree of a single package up to date
with its PackageDescriptor:

    1. find or create the Vendor record (slug of the name prefix before '/')
    2. find the Package record; create it, update it, or, when nothing
       relevant changed upstream, return it untouched
    3. merge maintainers and versions (create / update / remove)
    4. recompute lastActivity + lastVersion for the package, then the vendor
    5. refresh download counters
    6. refresh GitHub metrics and the README (failures are logged, not raised)
    7. persist the abandoned flag, signalling the blank → abandoned transition
    8. flush the downstream cache tag of the package

Every property write goes through _update_properties, which skips values that
are already stored (datetimes compare to the second). Processing an unchanged
descriptor twice therefore performs no writes the second time, and a package
whose conversion was interrupted can simply be converted again.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from marketplace_sync.config import DEFAULT_CONFIG, MarketplaceConfig
from marketplace_sync.errors import HostFetchError, HostNotFound, RateLimited
from marketplace_sync.ingestion.github_client import HostMetricsFetcher, parse_github_repository
from marketplace_sync.models import PackageDescriptor, VersionDescriptor, parse_timestamp
from marketplace_sync.readme import postprocess_readme
from marketplace_sync.signals import Signals, cache_tag
from marketplace_sync.slug import slugify
from marketplace_sync.storage import schema
from marketplace_sync.storage.base import Record, RecordStore
from marketplace_sync.versioning import DEV, STABLE, classify, last_version, version_to_integer

logger = logging.getLogger(__name__)

VERSION_KINDS = {
    STABLE: schema.RELEASED_VERSION,
    DEV: schema.DEVELOPMENT_VERSION,
}
_DEFAULT_VERSION_KIND = schema.PRERELEASED_VERSION

_RESET_GITHUB_METRICS = {
    "githubStargazers": 0,
    "githubWatchers": 0,
    "githubForks": 0,
    "githubIssues": 0,
    "githubAvatar": None,
}


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _same_value(stored: Any, value: Any) -> bool:
    if isinstance(stored, datetime) and isinstance(value, datetime):
        return int(_as_utc(stored).timestamp()) == int(_as_utc(value).timestamp())
    if isinstance(stored, datetime) or isinstance(value, datetime):
        return False
    return stored == value and type(stored) is type(value)


def join_list(value: Optional[tuple[str, ...]]) -> str:
    """Comma-separated text for keywords and licenses."""
    return ", ".join(value or ())


def dump_structure(value: Any) -> Optional[str]:
    """Indented JSON text for dependency maps; None when empty."""
    if not value:
        return None
    return json.dumps(value, indent=4, ensure_ascii=False)


def version_kind(tier: str) -> str:
    """Record kind used to store a version of stability *tier*."""
    return VERSION_KINDS.get(tier, _DEFAULT_VERSION_KIND)


def extract_last_version(store: RecordStore, package: Record) -> Optional[str]:
    """Version string to advertise for the Package record *package*.

    Highest-ranked stable version, else the highest-ranked version of any
    tier; None when the package has no versions.
    """
    container = store.find_child(package, schema.VERSIONS_NODE)
    if container is None:
        return None
    versions = [store.get_property(version, "version") for version in store.list_children(container, schema.VERSION)]
    return last_version(v for v in versions if v)


class PackageReconciler:
    """Reconciles PackageDescriptors into a RecordStore.

    Args:
        store:   Record store holding the vendor/package tree.
        fetcher: GitHub metrics fetcher. None skips metrics and READMEs
                 (abandoned packages still get their metrics reset).
        signals: Notification hooks; a private set is created if None.
        config:  MarketplaceConfig (GitHub host, README raw base).
        force:   Update every package even if the update-needed test says no.
        clock:   Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        store: RecordStore,
        fetcher: Optional[HostMetricsFetcher] = None,
        signals: Optional[Signals] = None,
        config: MarketplaceConfig = DEFAULT_CONFIG,
        force: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.signals = signals if signals is not None else Signals()
        self.config = config
        self.force = force
        self._clock = clock

    # ── Entry point ───────────────────────────────────────────────────────────

    def convert(self, package: PackageDescriptor) -> Record:
        """Bring the records of *package* up to date and return its Package record.

        Raises:
            StoreWriteFailure: a store write failed; the package is left
                partially updated and can be converted again.
        """
        slug = slugify(package.name)
        vendor = self.find_or_create_vendor(package.vendor)

        node = self.store.find_child(vendor, slug)
        if node is None:
            node = self._create(package, vendor, slug)
        elif self.force or self.package_requires_update(package, node):
            self._update(package, node)
        else:
            logger.debug("%s is up to date, skipped", package.name)
            return node

        self.reconcile_maintainers(package, node)
        self.reconcile_versions(package, node)

        self.update_package_last_activity(node)
        self.update_vendor_last_activity(vendor)

        self.update_downloads(package, node)
        self.update_github_metrics(package, node)

        self.update_abandoned(package, node)

        self.signals.cache_flushed.send(cache_tag(node.id))
        return node

    def package_requires_update(self, package: PackageDescriptor, node: Optional[Record]) -> bool:
        """Decide whether *node* is stale with respect to *package*.

        Stale when: no record; no recorded lastActivity; a version newer than
        the recorded lastActivity (packages without any dated version count
        as active now); a different favers count; a different total download
        count (descriptors without download data never trigger this).
        """
        if node is None:
            return True

        times = [t for t in (parse_timestamp(v.time) for v in package.versions) if t is not None]
        last_activity = max(times) if times else self._clock()

        recorded = self.store.get_property(node, "lastActivity")
        if not isinstance(recorded, datetime):
            return True
        if last_activity > _as_utc(recorded):
            return True
        if int(package.favers or 0) != self.store.get_property(node, "favers"):
            return True
        if package.downloads is not None and package.downloads.total != self.store.get_property(node, "downloadTotal"):
            return True
        return False

    # ── Vendor / package ──────────────────────────────────────────────────────

    def find_or_create_vendor(self, vendor_name: str) -> Record:
        """Vendor record for *vendor_name*, created on first use."""
        slug = slugify(vendor_name)
        root = self.store.root()
        vendor = self.store.find_child(root, slug)
        if vendor is None:
            vendor = self.store.create_child(root, slug, schema.VENDOR)
            self._set_properties(vendor, {"title": vendor_name, "uriPathSegment": slug})
            logger.info("New vendor: %s", vendor_name)
        return vendor

    def _package_data(self, package: PackageDescriptor) -> dict[str, Any]:
        data: dict[str, Any] = {
            "description": package.description,
            "type": package.type,
            "repository": package.repository,
            "favers": int(package.favers or 0),
        }
        created = parse_timestamp(package.time)
        if created is not None:
            data["time"] = created
        elif package.time:
            logger.debug("%s: unparseable time %r skipped", package.name, package.time)
        return data

    def _create(self, package: PackageDescriptor, vendor: Record, slug: str) -> Record:
        node = self.store.create_child(vendor, slug, schema.PACKAGE)
        data = {"uriPathSegment": slug, "title": package.name}
        data.update(self._package_data(package))
        self._set_properties(node, data)
        logger.info("New package: %s", package.name)
        return node

    def _update(self, package: PackageDescriptor, node: Record) -> None:
        # Spellings that slugify alike share a record; the latest name becomes its title.
        data = {"title": package.name}
        data.update(self._package_data(package))
        self._update_properties(node, data)

    # ── Nested collections ────────────────────────────────────────────────────

    def _child(self, parent: Record, name: str, kind: str) -> Record:
        child = self.store.find_child(parent, name)
        if child is None:
            child = self.store.create_child(parent, name, kind)
        return child

    def reconcile_maintainers(self, package: PackageDescriptor, node: Record) -> None:
        """Make the maintainers container match ``package.maintainers`` exactly."""
        container = self._child(node, schema.MAINTAINERS_NODE, schema.MAINTAINER_COLLECTION)
        upstream = {slugify(maintainer.name) for maintainer in package.maintainers}
        for existing in self.store.list_children(container, schema.MAINTAINER):
            if existing.name not in upstream:
                self.store.remove(existing)
                logger.debug("%s: maintainer %s removed", package.name, existing.name)

        for maintainer in package.maintainers:
            name = slugify(maintainer.name)
            data = {
                "title": maintainer.name,
                "email": maintainer.email,
                "homepage": maintainer.homepage,
            }
            record = self.store.find_child(container, name)
            if record is None:
                record = self.store.create_child(container, name, schema.MAINTAINER)
                self._set_properties(record, data)
            else:
                self._update_properties(record, data)

    def _version_data(self, package: PackageDescriptor, version: VersionDescriptor) -> dict[str, Any]:
        stability = classify(version.normalized)
        data: dict[str, Any] = {
            "version": version.version,
            "description": version.description,
            "keywords": join_list(version.keywords),
            "homepage": version.homepage,
            "versionNormalized": version_to_integer(version.normalized),
            "stability": stability.tier,
            "stabilityLevel": stability.rank,
            "license": join_list(version.license),
            "type": version.type,
            "provide": dump_structure(version.provide),
            "bin": dump_structure(version.bin),
            "require": dump_structure(version.require),
            "requireDev": dump_structure(version.require_dev),
            "suggest": dump_structure(version.suggest),
            "conflict": dump_structure(version.conflict),
            "replace": dump_structure(version.replace),
        }
        published = parse_timestamp(version.time)
        if published is not None:
            data["time"] = published
        elif version.time:
            logger.debug("%s %s: unparseable time %r skipped", package.name, version.version, version.time)
        return data

    def reconcile_versions(self, package: PackageDescriptor, node: Record) -> None:
        """Make the versions container match ``package.versions`` exactly.

        A version whose stability tier changed since the last run (dev-master
        aliased to a release, a beta re-tagged) has its record kind changed in
        place before its properties are written.
        """
        container = self._child(node, schema.VERSIONS_NODE, schema.VERSION_COLLECTION)
        upstream = {slugify(version.version) for version in package.versions}
        for existing in self.store.list_children(container, schema.VERSION):
            if existing.name not in upstream:
                self.store.remove(existing)
                logger.debug("%s: version %s removed", package.name, existing.name)

        for version in package.versions:
            data = self._version_data(package, version)
            kind = version_kind(data["stability"])
            name = slugify(version.version)
            record = self.store.find_child(container, name)
            if record is None:
                record = self.store.create_child(container, name, kind)
                self._set_properties(record, data)
            else:
                if self.store.get_kind(record) != kind:
                    logger.debug("%s %s: %s → %s", package.name, version.version, self.store.get_kind(record), kind)
                    self.store.change_kind(record, kind)
                self._update_properties(record, data)

            if version.source is not None:
                source = self._child(record, schema.SOURCE_NODE, schema.SOURCE)
                self._update_properties(source, {
                    "type": version.source.type,
                    "reference": version.source.reference,
                    "url": version.source.url,
                })
            if version.dist is not None:
                dist = self._child(record, schema.DIST_NODE, schema.DIST)
                self._update_properties(dist, {
                    "type": version.dist.type,
                    "reference": version.dist.reference,
                    "url": version.dist.url,
                    "shasum": version.dist.shasum,
                })

    # ── Derived fields ────────────────────────────────────────────────────────

    def update_package_last_activity(self, node: Record) -> None:
        """lastActivity = newest version time; lastVersion = version to advertise.

        Without any dated version lastActivity is left as it is.
        """
        container = self.store.find_child(node, schema.VERSIONS_NODE)
        versions = self.store.list_children(container, schema.VERSION) if container is not None else []

        latest: Optional[datetime] = None
        for version in versions:
            published = self.store.get_property(version, "time")
            if isinstance(published, datetime) and (latest is None or _as_utc(published) > _as_utc(latest)):
                latest = published
        if latest is not None:
            self._update_properties(node, {"lastActivity": latest})
        else:
            logger.debug("%s: no dated version, lastActivity unchanged", node.name)

        self._update_properties(node, {"lastVersion": extract_last_version(self.store, node)})

    def update_vendor_last_activity(self, vendor: Record) -> None:
        """Vendor lastActivity = newest package lastActivity (unchanged when none)."""
        latest: Optional[datetime] = None
        for package in self.store.list_children(vendor, schema.PACKAGE):
            activity = self.store.get_property(package, "lastActivity")
            if isinstance(activity, datetime) and (latest is None or _as_utc(activity) > _as_utc(latest)):
                latest = activity
        if latest is not None:
            self._update_properties(vendor, {"lastActivity": latest})

    def update_downloads(self, package: PackageDescriptor, node: Record) -> None:
        if package.downloads is None:
            return
        self._update_properties(node, {
            "downloadTotal": package.downloads.total,
            "downloadMonthly": package.downloads.monthly,
            "downloadDaily": package.downloads.daily,
        })

    # ── GitHub ────────────────────────────────────────────────────────────────

    def reset_github_metrics(self, node: Record) -> None:
        self._update_properties(node, dict(_RESET_GITHUB_METRICS))

    def update_github_metrics(self, package: PackageDescriptor, node: Record) -> None:
        """Refresh stars/watchers/forks/issues/avatar and the README.

        Abandoned packages get zeroed metrics. Rate limits and other host
        errors leave the stored metrics alone; a missing repository resets
        them.
        """
        if package.is_abandoned:
            self.reset_github_metrics(node)
            return
        if self.fetcher is None:
            return

        parsed = parse_github_repository(package.repository, host=self.config.github_host)
        if parsed is None:
            if package.repository and self.config.github_host in package.repository:
                logger.warning("%s: cannot parse repository URL %s", package.name, package.repository)
            return
        organization, repository = parsed

        try:
            metrics = self.fetcher.fetch_repo_metrics(organization, repository)
        except RateLimited as exc:
            logger.warning("%s: metrics skipped, %s", package.name, exc)
            return
        except HostNotFound:
            logger.warning("Repository %s/%s not found.", organization, repository)
            self.reset_github_metrics(node)
            return
        except HostFetchError as exc:
            logger.warning("%s: metrics skipped, %s", package.name, exc)
            return

        self._update_properties(node, {
            "githubStargazers": metrics.stars,
            "githubWatchers": metrics.watchers,
            "githubForks": metrics.forks,
            "githubIssues": metrics.open_issues,
            "githubAvatar": metrics.org_avatar_url,
        })
        self.update_readme(organization, repository, node)

    def update_readme(self, organization: str, repository: str, node: Record) -> None:
        """Store the post-processed README if the package has a readme record."""
        readme = self.store.find_child(node, schema.README_NODE)
        if readme is None or self.fetcher is None:
            return
        try:
            rendered = self.fetcher.fetch_rendered_readme(organization, repository)
        except HostNotFound:
            logger.debug("No README for %s/%s", organization, repository)
            return
        except HostFetchError as exc:
            logger.warning("README of %s/%s skipped: %s", organization, repository, exc)
            return
        content = postprocess_readme(organization, repository, rendered, raw_base=self.config.readme_raw_base)
        self._update_properties(readme, {"readmeSource": content})

    # ── Abandonment ───────────────────────────────────────────────────────────

    def update_abandoned(self, package: PackageDescriptor, node: Record) -> None:
        """Persist the abandoned flag; signal only the blank → abandoned transition."""
        recorded = str(self.store.get_property(node, "abandoned") or "").strip()
        if package.is_abandoned and not recorded:
            self.store.set_property(node, "abandoned", package.abandoned_flag)
            logger.info("%s is now abandoned", package.name)
            self.signals.package_abandoned.send(node)
        else:
            self._update_properties(node, {"abandoned": package.abandoned_flag})

    # ── Property writes ───────────────────────────────────────────────────────

    def _set_properties(self, record: Record, data: dict[str, Any]) -> None:
        for key, value in data.items():
            self.store.set_property(record, key, value)

    def _update_properties(self, record: Record, data: dict[str, Any]) -> None:
        for key, value in data.items():
            if _same_value(self.store.get_property(record, key), value):
                continue
            self.store.set_property(record, key, value)

"""
marketplace_sync/importer.py - Batch import of a full registry feed.

PackageImporter drives PackageReconciler over every descriptor of a feed,
remembers which package names it saw, and afterwards prunes what the feed no
longer contains:

    importer = PackageImporter(store, fetcher=GitHubMetricsFetcher(token))
    for descriptor in feed:
        importer.process(descriptor)
    importer.cleanup_packages()   # packages not seen in this run
    importer.cleanup_vendors()    # vendors left without packages

``run()`` does the three steps in that order, isolates per-package failures,
and can spread vendors over a thread pool. All packages of one vendor are
always converted by the same task, one after another, so two tasks never race
on a vendor's lastActivity.
"""
import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from marketplace_sync.config import DEFAULT_CONFIG, MarketplaceConfig
from marketplace_sync.ingestion.github_client import HostMetricsFetcher
from marketplace_sync.models import PackageDescriptor
from marketplace_sync.reconciler import PackageReconciler
from marketplace_sync.signals import Signals
from marketplace_sync.slug import slugify
from marketplace_sync.storage import schema
from marketplace_sync.storage.base import Record, RecordStore

logger = logging.getLogger(__name__)

RemovalCallback = Callable[[Record], None]


@dataclass
class ImportResult:
    """Outcome of one ``PackageImporter.run``.

    Attributes:
        processed:        Packages converted successfully.
        failed:           Packages whose conversion raised.
        removed_packages: Packages pruned because the feed no longer lists them.
        removed_vendors:  Vendors pruned because they had no packages left.
        errors:           One ``{"package", "error"}`` dict per failure.
    """

    processed: int = 0
    failed: int = 0
    removed_packages: int = 0
    removed_vendors: int = 0
    errors: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class PackageImporter:
    """Feed-level coordinator around a PackageReconciler.

    Args:
        store:   Record store shared with the reconciler.
        fetcher: GitHub metrics fetcher passed to the reconciler.
        signals: Notification hooks shared with the reconciler.
        config:  MarketplaceConfig (progress logging interval).
        force:   Convert every package even when it looks up to date.
    """

    def __init__(
        self,
        store: RecordStore,
        fetcher: Optional[HostMetricsFetcher] = None,
        signals: Optional[Signals] = None,
        config: MarketplaceConfig = DEFAULT_CONFIG,
        force: bool = False,
        reconciler: Optional[PackageReconciler] = None,
    ) -> None:
        self.store = store
        self.signals = signals if signals is not None else Signals()
        self.config = config
        self.reconciler = reconciler or PackageReconciler(
            store,
            fetcher=fetcher,
            signals=self.signals,
            config=config,
            force=force,
        )
        self._processed: dict[str, bool] = {}
        self._seen_titles: set[str] = set()
        self._lock = threading.Lock()

    # ── Seen-set ──────────────────────────────────────────────────────────────

    @property
    def processed_packages(self) -> list[str]:
        """Full names of the packages processed in this run."""
        with self._lock:
            return [name for name, seen in self._processed.items() if seen]

    @property
    def processed_packages_count(self) -> int:
        return len(self.processed_packages)

    def process(self, package: PackageDescriptor) -> Record:
        """Convert *package* and mark its name as seen.

        The title stored on the record is marked too: a package skipped as up
        to date keeps the title of an earlier spelling with the same slug.
        """
        node = self.reconciler.convert(package)
        title = self.store.get_property(node, "title")
        with self._lock:
            self._processed[package.name] = True
            if title:
                self._seen_titles.add(title)
        return node

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def cleanup_packages(self, callback: Optional[RemovalCallback] = None) -> int:
        """Remove every package record whose title was not processed in this run.

        Must run after the whole feed was processed.

        Returns:
            Number of removed packages.
        """
        upstream = set(self.processed_packages)
        with self._lock:
            upstream |= self._seen_titles
        count = 0
        for package in self.store.find_descendants(self.store.root(), schema.PACKAGE):
            title = self.store.get_property(package, "title")
            if title in upstream:
                continue
            self.store.remove(package)
            if callback is not None:
                callback(package)
            self.signals.package_deleted.send(package)
            logger.info("Package removed: %s", title)
            count += 1
        return count

    def cleanup_vendors(self, callback: Optional[RemovalCallback] = None) -> int:
        """Remove every vendor record without packages.

        Must run after cleanup_packages(), which is what empties vendors.

        Returns:
            Number of removed vendors.
        """
        count = 0
        for vendor in self.store.find_descendants(self.store.root(), schema.VENDOR):
            if self.store.find_descendants(vendor, schema.PACKAGE):
                continue
            self.store.remove(vendor)
            if callback is not None:
                callback(vendor)
            self.signals.vendor_deleted.send(vendor)
            logger.info("Vendor removed: %s", vendor.name)
            count += 1
        return count

    # ── Full run ──────────────────────────────────────────────────────────────

    def _process_isolated(self, package: PackageDescriptor, result: ImportResult) -> None:
        try:
            self.process(package)
        except Exception as exc:  # noqa: BLE001
            logger.error("Import of %s failed: %s", package.name, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            with self._lock:
                result.failed += 1
                result.errors.append({"package": package.name, "error": str(exc)})
            return
        with self._lock:
            result.processed += 1
            done = result.processed + result.failed
        if done % self.config.progress_every == 0:
            logger.info("Import progress: %d packages", done)

    def _process_vendor(self, packages: list[PackageDescriptor], result: ImportResult) -> None:
        for package in packages:
            self._process_isolated(package, result)

    def run(
        self,
        feed: Iterable[PackageDescriptor],
        max_workers: int = 1,
        cleanup: bool = True,
    ) -> ImportResult:
        """Process the whole feed, then prune packages and vendors.

        A package whose conversion raises is logged and recorded in
        ``ImportResult.errors``; the run continues with the next package. A
        failed package still counts as seen, so cleanup does not delete the
        record that was there before the failure.

        Args:
            feed:        PackageDescriptors, typically from ingestion.feed.load_feed.
            max_workers: Vendor-level thread pool size; 1 runs sequentially
                         in feed order.
            cleanup:     Run cleanup_packages + cleanup_vendors afterwards.
        """
        result = ImportResult()

        if max_workers <= 1:
            for package in feed:
                with self._lock:
                    self._processed.setdefault(package.name, True)
                self._process_isolated(package, result)
        else:
            by_vendor: "OrderedDict[str, list[PackageDescriptor]]" = OrderedDict()
            for package in feed:
                with self._lock:
                    self._processed.setdefault(package.name, True)
                by_vendor.setdefault(slugify(package.vendor), []).append(package)
            logger.info("Importing %d vendors with %d workers", len(by_vendor), max_workers)
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(self._process_vendor, packages, result): vendor
                    for vendor, packages in by_vendor.items()
                }
                for future in as_completed(futures):
                    future.result()

        logger.info("Processed %d packages (%d failed)", result.processed, result.failed)

        if cleanup:
            result.removed_packages = self.cleanup_packages()
            result.removed_vendors = self.cleanup_vendors()
            logger.info(
                "Cleanup removed %d packages and %d vendors",
                result.removed_packages,
                result.removed_vendors,
            )
        return result

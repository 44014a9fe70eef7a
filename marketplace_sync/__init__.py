"""
marketplace_sync — Incremental reconciliation of package registry metadata
into a vendor/package record tree.

Registry descriptors (versions, maintainers, download counts) and GitHub
repository metrics are merged into a persistent tree of Vendor → Package →
Version/Maintainer records with the minimum number of property writes.

Subpackages:
- marketplace_sync.storage    — Record store interface + NetworkX reference store.
- marketplace_sync.ingestion  — GitHub metrics fetcher, response cache, feed loader.

Entry points:
- marketplace_sync.reconciler.PackageReconciler  — one package at a time.
- marketplace_sync.importer.PackageImporter      — a whole feed, plus pruning.
"""

__version__ = "0.1.0"

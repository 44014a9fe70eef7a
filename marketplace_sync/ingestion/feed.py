"""
Registry feed loader.

Reads a JSON dump of Packagist package documents and yields
PackageDescriptor objects one at a time. Accepted layouts:

    [ {package}, {package}, ... ]
    { "packages": [ {package}, ... ] }
    { "packages": { "vendor/name": {package}, ... } }

Each {package} may be the bare package object or Packagist's
``{"package": {...}}`` wrapper. Malformed entries are logged at WARNING and
skipped; the rest of the feed is still delivered.
"""
import json
import logging
from typing import Any, Iterable, Iterator

from marketplace_sync.errors import MalformedUpstreamData
from marketplace_sync.models import PackageDescriptor

logger = logging.getLogger(__name__)


def _entries(document: Any) -> Iterable[Any]:
    if isinstance(document, dict):
        packages = document.get("packages", document.get("package", []))
        if isinstance(packages, dict) and "name" in packages:
            return [packages]
        if isinstance(packages, dict):
            return list(packages.values())
        return packages
    if isinstance(document, list):
        return document
    raise MalformedUpstreamData(f"Unsupported feed document of type {type(document).__name__}")


def iter_descriptors(document: Any) -> Iterator[PackageDescriptor]:
    """Yield descriptors from an already-parsed feed document."""
    for index, entry in enumerate(_entries(document)):
        if not isinstance(entry, dict):
            logger.warning("Feed entry #%d is not an object; skipped", index)
            continue
        try:
            yield PackageDescriptor.from_packagist(entry)
        except (MalformedUpstreamData, TypeError, ValueError) as exc:
            logger.warning("Feed entry #%d skipped: %s", index, exc)


def load_feed(path: str) -> list[PackageDescriptor]:
    """Read the feed file at *path* and return its descriptors.

    Raises:
        FileNotFoundError: *path* does not exist.
        MalformedUpstreamData: the file is not JSON or has an unknown layout.
    """
    with open(path, "r", encoding="utf-8") as fh:
        try:
            document = json.load(fh)
        except json.JSONDecodeError as exc:
            raise MalformedUpstreamData(f"Feed {path} is not valid JSON: {exc}") from exc
    descriptors = list(iter_descriptors(document))
    logger.info("Loaded %d package descriptors from %s", len(descriptors), path)
    return descriptors

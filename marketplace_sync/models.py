"""
marketplace_sync/models.py - Immutable registry descriptors.

A PackageDescriptor is a snapshot of one package as the registry published
it: scalar metadata, download counters, every version and every maintainer.
``PackageDescriptor.from_packagist`` builds one from the ``package`` object of
Packagist's ``/packages/{vendor}/{name}.json`` document.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from marketplace_sync.errors import MalformedUpstreamData

logger = logging.getLogger(__name__)

# Packagist publishes "2016-04-12T09:00:21+00:00"; older dumps use "+0000".
_TIME_FORMATS = ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%d %H:%M:%S%z", "%Y-%m-%d %H:%M:%S")

DEPENDENCY_FIELDS = ("require", "require_dev", "suggest", "conflict", "replace", "provide", "bin")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a registry timestamp into an aware UTC datetime.

    Returns None (and logs at DEBUG) for empty or unparseable values; callers
    skip the field rather than failing the package. Naive values are taken as
    UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif not value or not isinstance(value, str):
        return None
    else:
        text = value.strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _TIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            logger.debug("Could not parse timestamp %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _string_list(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def _mapping(value: Any) -> Union[dict[str, str], list[str]]:
    # "bin" is a list in composer.json; everything else is name → constraint.
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(key): str(constraint) for key, constraint in value.items()}
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return {}


@dataclass(frozen=True)
class Downloads:
    """Registry download counters."""

    total: int = 0
    monthly: int = 0
    daily: int = 0


@dataclass(frozen=True)
class Source:
    """VCS checkout location of a version."""

    type: Optional[str] = None
    reference: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Dist:
    """Archive download of a version."""

    type: Optional[str] = None
    reference: Optional[str] = None
    url: Optional[str] = None
    shasum: Optional[str] = None


@dataclass(frozen=True)
class MaintainerDescriptor:
    """A registry maintainer."""

    name: str
    email: Optional[str] = None
    homepage: Optional[str] = None


@dataclass(frozen=True)
class VersionDescriptor:
    """One published version of a package."""

    version: str
    version_normalized: str = ""
    description: Optional[str] = None
    keywords: tuple[str, ...] = ()
    homepage: Optional[str] = None
    license: tuple[str, ...] = ()
    type: Optional[str] = None
    time: Optional[str] = None
    require: Union[dict, list] = field(default_factory=dict)
    require_dev: Union[dict, list] = field(default_factory=dict)
    suggest: Union[dict, list] = field(default_factory=dict)
    conflict: Union[dict, list] = field(default_factory=dict)
    replace: Union[dict, list] = field(default_factory=dict)
    provide: Union[dict, list] = field(default_factory=dict)
    bin: Union[dict, list] = field(default_factory=dict)
    source: Optional[Source] = None
    dist: Optional[Dist] = None

    @property
    def normalized(self) -> str:
        """Normalized version string, falling back to the raw one."""
        return self.version_normalized or self.version

    @classmethod
    def from_packagist(cls, data: Mapping[str, Any], version_key: str = "") -> "VersionDescriptor":
        version = data.get("version") or version_key
        if not version:
            raise MalformedUpstreamData("Version entry without a version string")
        source = data.get("source")
        dist = data.get("dist")
        return cls(
            version=str(version),
            version_normalized=str(data.get("version_normalized") or ""),
            description=_text(data.get("description")),
            keywords=_string_list(data.get("keywords")),
            homepage=_text(data.get("homepage")),
            license=_string_list(data.get("license")),
            type=_text(data.get("type")),
            time=_text(data.get("time")),
            require=_mapping(data.get("require")),
            require_dev=_mapping(data.get("require-dev")),
            suggest=_mapping(data.get("suggest")),
            conflict=_mapping(data.get("conflict")),
            replace=_mapping(data.get("replace")),
            provide=_mapping(data.get("provide")),
            bin=_mapping(data.get("bin")),
            source=Source(
                type=_text(source.get("type")),
                reference=_text(source.get("reference")),
                url=_text(source.get("url")),
            ) if isinstance(source, Mapping) else None,
            dist=Dist(
                type=_text(dist.get("type")),
                reference=_text(dist.get("reference")),
                url=_text(dist.get("url")),
                shasum=_text(dist.get("shasum")),
            ) if isinstance(dist, Mapping) else None,
        )


@dataclass(frozen=True)
class PackageDescriptor:
    """Snapshot of one registry package.

    ``abandoned`` is False, True, or the name of the suggested replacement
    package.
    """

    name: str
    description: Optional[str] = None
    type: Optional[str] = None
    repository: Optional[str] = None
    favers: int = 0
    abandoned: Union[bool, str] = False
    time: Optional[str] = None
    downloads: Optional[Downloads] = None
    versions: tuple[VersionDescriptor, ...] = ()
    maintainers: tuple[MaintainerDescriptor, ...] = ()

    @property
    def vendor(self) -> str:
        """Name prefix before the first '/'."""
        return self.name.split("/", 1)[0]

    @property
    def is_abandoned(self) -> bool:
        if isinstance(self.abandoned, str):
            return bool(self.abandoned.strip())
        return bool(self.abandoned)

    @property
    def abandoned_flag(self) -> str:
        """Abandonment as stored text: '' when active, the replacement name or 'true'."""
        if not self.is_abandoned:
            return ""
        if isinstance(self.abandoned, str):
            return self.abandoned.strip()
        return "true"

    @classmethod
    def from_packagist(cls, data: Mapping[str, Any]) -> "PackageDescriptor":
        """Build a descriptor from a Packagist package document.

        Accepts either the bare package object or the ``{"package": {...}}``
        wrapper. Unusable version entries are logged and dropped.

        Raises:
            MalformedUpstreamData: the document has no usable package name.
        """
        if "package" in data and isinstance(data["package"], Mapping):
            data = data["package"]
        name = str(data.get("name") or "").strip()
        if "/" not in name:
            raise MalformedUpstreamData(f"Package name must be 'vendor/package', got {name!r}")

        raw_versions = data.get("versions") or {}
        if isinstance(raw_versions, Mapping):
            version_items = list(raw_versions.items())
        else:
            version_items = [("", item) for item in raw_versions]
        versions = []
        for key, item in version_items:
            if not isinstance(item, Mapping):
                logger.warning("Skipping malformed version %r of %s", key, name)
                continue
            try:
                versions.append(VersionDescriptor.from_packagist(item, version_key=key))
            except MalformedUpstreamData as exc:
                logger.warning("Skipping version of %s: %s", name, exc)

        maintainers = tuple(
            MaintainerDescriptor(
                name=str(item.get("name")),
                email=_text(item.get("email")),
                homepage=_text(item.get("homepage")),
            )
            for item in data.get("maintainers") or []
            if isinstance(item, Mapping) and item.get("name")
        )

        downloads = data.get("downloads")
        abandoned = data.get("abandoned", False)
        return cls(
            name=name,
            description=_text(data.get("description")),
            type=_text(data.get("type")),
            repository=_text(data.get("repository")),
            favers=int(data.get("favers") or 0),
            abandoned=abandoned if isinstance(abandoned, (bool, str)) else bool(abandoned),
            time=_text(data.get("time")),
            downloads=Downloads(
                total=int(downloads.get("total") or 0),
                monthly=int(downloads.get("monthly") or 0),
                daily=int(downloads.get("daily") or 0),
            ) if isinstance(downloads, Mapping) else None,
            versions=tuple(versions),
            maintainers=maintainers,
        )

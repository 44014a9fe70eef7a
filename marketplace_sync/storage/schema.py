"""
Record kinds of the marketplace tree and the properties each kind may carry.

Tree layout:
    Storage
    └── Vendor                       (one per name prefix before '/')
        └── Package                  (slug of the full package name)
            ├── maintainers: MaintainerCollection
            │   └── Maintainer       (slug of the maintainer name)
            ├── versions: VersionCollection
            │   └── ReleasedVersion | PrereleasedVersion | DevelopmentVersion
            │       ├── source: Source
            │       └── dist: Dist
            └── readme: Readme

The three concrete version kinds share the abstract parent kind ``Version`` so
that ``list_children(versions, "Version")`` returns all of them.
"""
from dataclasses import dataclass, field
from typing import Optional

from marketplace_sync.errors import SchemaError

STORAGE = "Storage"
VENDOR = "Vendor"
PACKAGE = "Package"
MAINTAINER_COLLECTION = "MaintainerCollection"
VERSION_COLLECTION = "VersionCollection"
MAINTAINER = "Maintainer"
VERSION = "Version"
RELEASED_VERSION = "ReleasedVersion"
PRERELEASED_VERSION = "PrereleasedVersion"
DEVELOPMENT_VERSION = "DevelopmentVersion"
SOURCE = "Source"
DIST = "Dist"
README = "Readme"

# Fixed child names created together with their parent.
MAINTAINERS_NODE = "maintainers"
VERSIONS_NODE = "versions"
README_NODE = "readme"
SOURCE_NODE = "source"
DIST_NODE = "dist"


@dataclass(frozen=True)
class KindSchema:
    """Declared shape of one record kind."""

    name: str
    properties: frozenset[str] = frozenset()
    parent: Optional[str] = None
    abstract: bool = False
    # Children created automatically with the record: {child name: kind}.
    auto_children: dict[str, str] = field(default_factory=dict)


_VERSION_PROPERTIES = frozenset({
    "version",
    "description",
    "keywords",
    "homepage",
    "versionNormalized",
    "stability",
    "stabilityLevel",
    "license",
    "type",
    "time",
    "provide",
    "bin",
    "require",
    "requireDev",
    "suggest",
    "conflict",
    "replace",
})
_VERSION_CHILDREN = {SOURCE_NODE: SOURCE, DIST_NODE: DIST}

SCHEMAS: dict[str, KindSchema] = {
    STORAGE: KindSchema(STORAGE, frozenset({"title"})),
    VENDOR: KindSchema(VENDOR, frozenset({"title", "uriPathSegment", "lastActivity"})),
    PACKAGE: KindSchema(
        PACKAGE,
        frozenset({
            "uriPathSegment",
            "title",
            "description",
            "repository",
            "time",
            "type",
            "favers",
            "downloadTotal",
            "downloadMonthly",
            "downloadDaily",
            "githubStargazers",
            "githubWatchers",
            "githubForks",
            "githubIssues",
            "githubAvatar",
            "abandoned",
            "lastActivity",
            "lastVersion",
        }),
        auto_children={
            MAINTAINERS_NODE: MAINTAINER_COLLECTION,
            VERSIONS_NODE: VERSION_COLLECTION,
            README_NODE: README,
        },
    ),
    MAINTAINER_COLLECTION: KindSchema(MAINTAINER_COLLECTION),
    VERSION_COLLECTION: KindSchema(VERSION_COLLECTION),
    MAINTAINER: KindSchema(MAINTAINER, frozenset({"title", "email", "homepage"})),
    VERSION: KindSchema(VERSION, _VERSION_PROPERTIES, abstract=True),
    RELEASED_VERSION: KindSchema(
        RELEASED_VERSION, _VERSION_PROPERTIES, parent=VERSION, auto_children=_VERSION_CHILDREN
    ),
    PRERELEASED_VERSION: KindSchema(
        PRERELEASED_VERSION, _VERSION_PROPERTIES, parent=VERSION, auto_children=_VERSION_CHILDREN
    ),
    DEVELOPMENT_VERSION: KindSchema(
        DEVELOPMENT_VERSION, _VERSION_PROPERTIES, parent=VERSION, auto_children=_VERSION_CHILDREN
    ),
    SOURCE: KindSchema(SOURCE, frozenset({"type", "reference", "url"})),
    DIST: KindSchema(DIST, frozenset({"type", "reference", "url", "shasum"})),
    README: KindSchema(README, frozenset({"readmeSource"})),
}


def schema_for(kind: str) -> KindSchema:
    """Return the schema of *kind*, raising SchemaError for unknown kinds."""
    try:
        return SCHEMAS[kind]
    except KeyError:
        raise SchemaError(f"Unknown record kind: {kind!r}") from None


def is_instance_of(kind: str, expected: str) -> bool:
    """True if *kind* is *expected* or inherits from it."""
    current: Optional[str] = kind
    while current is not None:
        if current == expected:
            return True
        current = SCHEMAS[current].parent if current in SCHEMAS else None
    return False


def check_creatable(kind: str) -> KindSchema:
    """Schema of *kind*, refusing abstract kinds."""
    kind_schema = schema_for(kind)
    if kind_schema.abstract:
        raise SchemaError(f"Record kind {kind!r} is abstract and cannot be created")
    return kind_schema


def check_property(kind: str, key: str) -> None:
    """Raise SchemaError if *kind* does not declare property *key*."""
    if key not in schema_for(kind).properties:
        raise SchemaError(f"Record kind {kind!r} has no property {key!r}")

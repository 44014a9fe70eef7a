"""
Version stability classification and ordering keys.

Registry versions arrive in Composer's normalized form ("1.2.0.0",
"2.0.0.0-beta1", "9999999-dev", "dev-master") or raw form ("v1.2.0",
"1.0.x-dev"). Every function here is pure: no I/O, same input → same output.

Tiers:
    stable      plain releases and patch-level suffixes (1.0.0, 1.0.0-p1)
    prerelease  alpha / beta / RC suffixes, and anything unparseable
    dev         branch names (dev-master) and -dev suffixes, whatever the numbers

Rank:
    A single int that orders versions: the four numeric components compare
    numerically, then the suffix (dev < alpha < beta < RC < stable < patch),
    then the suffix number (beta2 > beta1). Branch names and unparseable
    strings rank 0.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional

STABLE = "stable"
PRERELEASE = "prerelease"
DEV = "dev"

TIERS = (STABLE, PRERELEASE, DEV)

# Suffix weights inside the rank. The tier follows from the weight.
_MODIFIER_WEIGHTS = {
    "dev": 0,
    "alpha": 1,
    "beta": 2,
    "rc": 3,
    "stable": 4,
    "patch": 5,
}
_MODIFIER_ALIASES = {
    "a": "alpha",
    "b": "beta",
    "p": "patch",
    "pl": "patch",
}
_WEIGHT_TIERS = {0: DEV, 1: PRERELEASE, 2: PRERELEASE, 3: PRERELEASE, 4: STABLE, 5: STABLE}

# 9999999 is Composer's placeholder for "x" in branch aliases (1.0.x-dev).
_WILDCARD = 9999999

_COMPONENTS = 4
_COMPONENT_BASE = 10 ** 8
_SUFFIX_NUMBER_BASE = 10 ** 4
_INTEGER_COMPONENT_MAX = 999

_VERSION_RE = re.compile(
    r"^v?(?P<numbers>(?:\d+|x|\*)(?:\.(?:\d+|x|\*)){0,3})"
    r"(?:[-_.+]?(?P<modifier>stable|rc|beta|b|alpha|a|patch|pl|p)(?:[.-]?(?P<number>\d+))?)?"
    r"(?P<dev>[-_.+@]?dev)?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Stability:
    """Classification result for one version string."""

    tier: str
    rank: int

    @property
    def is_stable(self) -> bool:
        return self.tier == STABLE


@dataclass(frozen=True)
class _ParsedVersion:
    components: tuple[int, ...]
    weight: int
    number: int


def _parse(version: str) -> Optional[_ParsedVersion]:
    """Split a version string into numeric components and suffix, or None."""
    match = _VERSION_RE.match((version or "").strip())
    if match is None:
        return None

    components = []
    for part in match.group("numbers").split("."):
        components.append(_WILDCARD if part in ("x", "X", "*") else int(part))
    while len(components) < _COMPONENTS:
        components.append(0)

    if match.group("dev"):
        weight = _MODIFIER_WEIGHTS["dev"]
        number = 0
    elif match.group("modifier"):
        modifier = match.group("modifier").lower()
        weight = _MODIFIER_WEIGHTS[_MODIFIER_ALIASES.get(modifier, modifier)]
        number = int(match.group("number") or 0)
    else:
        weight = _MODIFIER_WEIGHTS["stable"]
        number = 0

    return _ParsedVersion(tuple(components), weight, number)


def _is_branch(version: str) -> bool:
    return (version or "").strip().lower().startswith("dev-")


def classify(version: str) -> Stability:
    """Classify *version* into a stability tier and an ordering rank.

    Examples:
        >>> classify("1.0.0").tier
        'stable'
        >>> classify("2.0.0-beta").tier
        'prerelease'
        >>> classify("dev-master")
        Stability(tier='dev', rank=0)
        >>> classify("2.0.0-beta2").rank > classify("2.0.0-beta1").rank
        True
    """
    if _is_branch(version):
        return Stability(tier=DEV, rank=0)

    parsed = _parse(version)
    if parsed is None:
        return Stability(tier=PRERELEASE, rank=0)

    rank = 0
    for component in parsed.components:
        rank = rank * _COMPONENT_BASE + min(component, _COMPONENT_BASE - 1)
    rank = rank * 10 + parsed.weight
    rank = rank * _SUFFIX_NUMBER_BASE + min(parsed.number, _SUFFIX_NUMBER_BASE - 1)

    return Stability(tier=_WEIGHT_TIERS[parsed.weight], rank=rank)


def version_to_integer(version: str) -> int:
    """Integer ordering key built from the numeric components only.

    Each of the four components is clamped to 0..999, so "1.2.3.0" becomes
    1002003000. Branch names and unparseable strings map to 0.
    """
    if _is_branch(version):
        return 0
    parsed = _parse(version)
    if parsed is None:
        return 0
    value = 0
    for component in parsed.components:
        value = value * (_INTEGER_COMPONENT_MAX + 1) + min(component, _INTEGER_COMPONENT_MAX)
    return value


def last_version(versions: Iterable[str]) -> Optional[str]:
    """Pick the version to advertise for a package.

    The highest-ranked stable version wins; without any stable version the
    highest-ranked version of any tier is used. Ties keep the first seen.
    Returns None for an empty iterable.
    """
    best_stable: Optional[tuple[int, str]] = None
    best_any: Optional[tuple[int, str]] = None
    for version in versions:
        stability = classify(version)
        if best_any is None or stability.rank > best_any[0]:
            best_any = (stability.rank, version)
        if stability.is_stable and (best_stable is None or stability.rank > best_stable[0]):
            best_stable = (stability.rank, version)
    chosen = best_stable or best_any
    return chosen[1] if chosen else None

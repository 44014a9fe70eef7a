"""
Slug helper — URL-safe record names derived from human-readable names.

Packages, versions and maintainers are keyed under their parent by slug.
Distinct upstream names can map to the same slug ("1.0.0" and "1-0-0");
callers treat that as the same record, so the last write wins.
"""
import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

EMPTY_SLUG = "unnamed"


def slugify(value: str) -> str:
    """Return a lowercase ASCII slug for *value*.

    Accented characters are folded to their ASCII base letter, every run of
    other characters becomes a single '-', and leading/trailing dashes are
    dropped.

    Examples:
        >>> slugify("Neos/Neos.Demo")
        'neos-neos-demo'
        >>> slugify("dev-master")
        'dev-master'
        >>> slugify("José Müller")
        'jose-muller'
    """
    folded = unicodedata.normalize("NFKD", value or "")
    folded = folded.encode("ascii", "ignore").decode("ascii").lower()
    slug = _NON_ALNUM.sub("-", folded).strip("-")
    return slug or EMPTY_SLUG

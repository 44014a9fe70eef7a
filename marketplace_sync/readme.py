"""
README post-processing for HTML rendered by the GitHub markdown API.

The rendered HTML carries GitHub page chrome that makes no sense outside
github.com (permalink icons, empty anchors, an ``<article>`` wrapper, an
announcement ``<div>``) and relative links that only resolve on github.com.
``postprocess_readme`` removes the chrome and points relative ``href``/``src``
attributes at raw.githubusercontent.com.
"""
import re

from marketplace_sync.config import DEFAULT_CONFIG

_FLAGS = re.MULTILINE | re.DOTALL | re.IGNORECASE

_OCTICON_LINK = re.compile(r'<svg aria-hidden="true" class="octicon octicon-link"[^>]*>.*?<\s*/\s*svg>', _FLAGS)
_EMPTY_ANCHOR = re.compile(r"<a[^>]*><\s*/\s*a>", _FLAGS)
_ARTICLE_WRAPPER = re.compile(r"<article[^>]*>(.*)<\s*/\s*article>", _FLAGS)
_ANNOUNCE_WRAPPER = re.compile(r'<div class="announce[^>]*>(.*)<\s*/\s*div>$', _FLAGS)
# Relative: anything not starting with http(s)://, data: or #.
_RELATIVE_LINK = re.compile(r'\b(href|src)="(?!https?://)(?!data:)(?!#)([^"]*)"', re.IGNORECASE)


def raw_content_base(organization: str, repository: str, raw_base: str = DEFAULT_CONFIG.readme_raw_base) -> str:
    """Base URL that relative README links are resolved against."""
    return f"{raw_base.rstrip('/')}/{organization}/{repository}/master/"


def postprocess_readme(
    organization: str,
    repository: str,
    content: str,
    raw_base: str = DEFAULT_CONFIG.readme_raw_base,
) -> str:
    """Clean rendered README HTML and absolutise its relative links.

    Examples:
        >>> postprocess_readme("acme", "widgets", '<a href="/foo">Foo</a>')
        '<a href="https://raw.githubusercontent.com/acme/widgets/master/foo">Foo</a>'
        >>> postprocess_readme("acme", "widgets", '<a href="https://example.com/x">X</a>')
        '<a href="https://example.com/x">X</a>'
    """
    base = raw_content_base(organization, repository, raw_base)
    content = content.strip()
    content = _OCTICON_LINK.sub("", content)
    content = _EMPTY_ANCHOR.sub("", content)
    content = _ARTICLE_WRAPPER.sub(r"\1", content)
    content = _ANNOUNCE_WRAPPER.sub(r"\1", content)
    content = _RELATIVE_LINK.sub(
        lambda match: f'{match.group(1)}="{base}{match.group(2).lstrip("/")}"',
        content,
    )
    return content.strip()

"""Rewrite cross-document Markdown links and enforce link integrity.

Links between documents are authored against the Markdown sources
(``../posts/crdt.md#deltas``). This extension rewrites them to the HTML page
that document renders to, relative to the current page, and records every
relative link or image whose target is not part of the build, including those
written as raw HTML tags. The caller turns recorded links into
:class:`~book_pages.errors.LinkError` so a broken link never reaches the
published site.
"""

from __future__ import annotations

import collections.abc as cabc
import posixpath
import re
import typing as typ
from html.parser import HTMLParser
from urllib.parse import unquote, urlsplit

from markdown.extensions import Extension
from markdown.postprocessors import Postprocessor
from markdown.treeprocessors import Treeprocessor

if typ.TYPE_CHECKING:
    from xml.etree.ElementTree import Element

    from markdown import Markdown
else:  # pragma: no cover - type-checking fallback
    Markdown = typ.Any
    Element = typ.Any

_EXTERNAL_PREFIXES = ("http://", "https://", "mailto:", "tel:", "data:", "javascript:")
_LINK_ATTRIBUTES = {"a": "href", "img": "src"}


class DocumentLinkExtension(Extension):
    """Rewrite ``.md`` links to rendered pages and collect dangling targets.

    Links written as Markdown and links inside raw HTML blocks or inline tags
    go through the same rules.

    Parameters
    ----------
    current : str
        Source-relative path of the document being rendered.
    documents : Collection[str]
        Source-relative paths of every document that renders to a page.
    static_files : Collection[str]
        Source-relative paths of files copied verbatim into the output.
    """

    def __init__(
        self,
        current: str,
        documents: cabc.Collection[str],
        static_files: cabc.Collection[str] = (),
    ) -> None:
        super().__init__()
        self.current = current
        self.documents = documents
        self.static_files = static_files
        self.unresolved: list[str] = []

    def extendMarkdown(self, md: Markdown) -> None:  # type: ignore[override]  # noqa: N802
        """Register the link processors on the Markdown instance."""
        md.treeprocessors.register(
            DocumentLinkTreeprocessor(md, self), "book_document_links", 15
        )
        # Must run before ``raw_html`` (30) puts the stashed blocks back.
        md.postprocessors.register(
            RawHtmlLinkPostprocessor(md, self), "book_raw_html_links", 35
        )

    def resolve(self, target: str) -> str:
        """Return the rewritten ``target``, recording it when it dangles."""
        rewritten = rewrite_link(
            target,
            current=self.current,
            documents=self.documents,
            static_files=self.static_files,
        )
        if rewritten is None:
            self.unresolved.append(target)
            return target
        return rewritten


class DocumentLinkTreeprocessor(Treeprocessor):
    """Rewrite anchors and check image sources in the parsed tree."""

    def __init__(self, md: Markdown, extension: DocumentLinkExtension) -> None:
        super().__init__(md)
        self.extension = extension

    def run(self, root: Element) -> Element:
        """Rewrite relative anchors and record unresolved targets."""
        for element in root.iter():
            attribute = _LINK_ATTRIBUTES.get(element.tag)
            target = element.get(attribute) if attribute else None
            if not target:
                continue
            rewritten = self.extension.resolve(target)
            if rewritten != target:
                element.set(attribute, rewritten)
        return root


class _RawLinkCollector(HTMLParser):
    """Collect ``(start tag, attribute, value)`` for links in an HTML chunk."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.links: list[tuple[str, str, str]] = []

    def handle_starttag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        attribute = _LINK_ATTRIBUTES.get(tag)
        if attribute is None:
            return
        for name, value in attrs:
            if name == attribute and value:
                self.links.append((self.get_starttag_text() or "", attribute, value))


class RawHtmlLinkPostprocessor(Postprocessor):
    """Apply the link rules to ``<a>``/``<img>`` tags in stashed raw HTML."""

    def __init__(self, md: Markdown, extension: DocumentLinkExtension) -> None:
        super().__init__(md)
        self.extension = extension

    def run(self, text: str) -> str:
        blocks = self.md.htmlStash.rawHtmlBlocks
        for index, block in enumerate(blocks):
            if isinstance(block, str):
                blocks[index] = self._rewrite_block(block)
        return text

    def _rewrite_block(self, block: str) -> str:
        collector = _RawLinkCollector()
        collector.feed(block)
        collector.close()
        for tag_text, attribute, value in collector.links:
            rewritten = self.extension.resolve(value)
            if rewritten == value or not tag_text:
                continue
            pattern = re.compile(
                rf"(\b{attribute}\s*=\s*)([\"']?){re.escape(value)}\2", re.IGNORECASE
            )
            new_tag = pattern.sub(
                lambda match: f"{match[1]}{match[2]}{rewritten}{match[2]}",
                tag_text,
                count=1,
            )
            block = block.replace(tag_text, new_tag)
        return block


def _is_local(target: str) -> bool:
    lower = target.lower()
    if lower.startswith(_EXTERNAL_PREFIXES):
        return False
    if target.startswith(("#", "//", "/")) or "://" in target:
        return False
    return True


def rewrite_link(
    target: str,
    *,
    current: str,
    documents: cabc.Collection[str],
    static_files: cabc.Collection[str] = (),
) -> str | None:
    """Return the output href for ``target`` as seen from ``current``.

    Parameters
    ----------
    target : str
        Link target as written in the Markdown source.
    current : str
        Source-relative path of the document containing the link.
    documents : Collection[str]
        Documents that render to pages.
    static_files : Collection[str]
        Files copied verbatim into the output tree.

    Returns
    -------
    str or None
        The unchanged target for external, fragment-only, and site-absolute
        links; a rewritten ``.html`` link for documents; ``None`` when the
        target does not exist in the build.

    Examples
    --------
    >>> rewrite_link("gone.md", current="posts/a.md", documents={"about.md"}) is None
    True
    >>> rewrite_link("../about.md#me", current="posts/a.md", documents={"about.md"})
    '../about.html#me'
    """
    if not _is_local(target):
        return target

    parsed = urlsplit(target)
    path = unquote(parsed.path)
    if not path:
        return target

    base_dir = posixpath.dirname(current)
    joined = posixpath.normpath(posixpath.join(base_dir, path))
    if joined == ".." or joined.startswith("../"):
        return None

    root, ext = posixpath.splitext(joined)
    if ext == ".md" and joined in documents:
        href = posixpath.relpath(f"{root}.html", base_dir or ".")
    elif ext == ".html" and f"{root}.md" in documents:
        href = parsed.path
    elif joined in static_files:
        href = parsed.path
    else:
        return None

    if parsed.query:
        href = f"{href}?{parsed.query}"
    if parsed.fragment:
        href = f"{href}#{parsed.fragment}"
    return href


__all__ = [
    "DocumentLinkExtension",
    "DocumentLinkTreeprocessor",
    "RawHtmlLinkPostprocessor",
    "rewrite_link",
]

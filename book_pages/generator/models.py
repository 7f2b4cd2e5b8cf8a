"""Shared dataclasses used by the page generation pipeline."""

from __future__ import annotations

import dataclasses as dc


@dc.dataclass(slots=True, frozen=True)
class NavItem:
    """One sidebar entry, with hrefs relative to the page being rendered.

    Attributes
    ----------
    title : str
        Label from the manifest.
    href : str or None
        Relative link to the page; ``None`` for part titles and drafts.
    number : str or None
        Chapter number such as ``"1.2."``.
    kind : str
        Manifest node kind (``chapter``, ``draft``, ``part``...).
    is_active : bool
        ``True`` for the entry of the page being rendered.
    children : tuple[NavItem, ...]
        Nested entries.
    """

    title: str
    href: str | None
    number: str | None
    kind: str
    is_active: bool = False
    children: tuple[NavItem, ...] = ()


@dc.dataclass(slots=True, frozen=True)
class PageLink:
    """Previous/next link in reading order."""

    title: str
    href: str


@dc.dataclass(slots=True, frozen=True)
class PageModel:
    """Structured data passed to the page template.

    Attributes
    ----------
    source_path : str
        Source-relative Markdown path.
    output_path : str
        Output-relative HTML path.
    title : str
        Document title (first heading or file stem).
    nav_label : str
        Title used for the page in the manifest.
    content_html : str
        Rendered document body.
    toc_items : tuple[dict[str, str], ...]
        In-page headings with ``label`` and ``anchor``.
    previous : PageLink or None
        Link to the preceding page in reading order.
    next : PageLink or None
        Link to the following page in reading order.
    path_to_root : str
        Relative prefix from this page to the site root (``""`` or ``"../"``).
    """

    source_path: str
    output_path: str
    title: str
    nav_label: str
    content_html: str
    toc_items: tuple[dict[str, str], ...]
    previous: PageLink | None
    next: PageLink | None
    path_to_root: str


__all__ = ["NavItem", "PageLink", "PageModel"]

"""Utilities for rendering documents, checking links, and generating the site."""

from .book_generator import BookGenerator
from .link_rewriter import DocumentLinkExtension, rewrite_link
from .models import NavItem, PageLink, PageModel
from .renderer import HtmlContentRenderer
from .search import build_search_index

__all__ = [
    "BookGenerator",
    "DocumentLinkExtension",
    "HtmlContentRenderer",
    "NavItem",
    "PageLink",
    "PageModel",
    "build_search_index",
    "rewrite_link",
]

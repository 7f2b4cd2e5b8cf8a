"""High-level orchestration for rendering a book into a static site.

This module turns a resolved :class:`~book_pages.book.Book` into the full
output tree: one themed HTML page per manifest document, ``index.html``
mirroring the first page, ``404.html``, the shared stylesheet and script,
the Pygments stylesheet, the search index, and every non-Markdown source file.

Rendering is a pure function of the book: :meth:`BookGenerator.render_site`
returns the tree in memory and :meth:`BookGenerator.run` only touches the
filesystem once every page has rendered, writing into a staging directory
that replaces the output directory as a whole.

Example
-------
>>> from pathlib import Path
>>> from book_pages.book import load_book
>>> from book_pages.config import load_book_config
>>> from book_pages.generator import BookGenerator
>>> book = load_book(load_book_config(Path("book.yaml")))  # doctest: +SKIP
>>> BookGenerator(book).run()  # doctest: +SKIP
[PosixPath('public/intro.html'), ...]
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tempfile
import typing as typ
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from book_pages._constants import (
    HIGHLIGHT_CSS_FILENAME,
    NOT_FOUND_FILENAME,
    SEARCH_INDEX_FILENAME,
    STAGING_PREFIX,
)
from book_pages.content import list_static_files
from book_pages.errors import LinkError, ValidationError
from book_pages.generator.link_rewriter import DocumentLinkExtension
from book_pages.generator.models import NavItem, PageLink, PageModel
from book_pages.generator.renderer import HtmlContentRenderer
from book_pages.generator.search import build_search_index, encode_search_index

if typ.TYPE_CHECKING:
    from book_pages.book import Book
    from book_pages.manifest import NavNode

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
STATIC_ASSETS = ("book.css", "book.js")


class BookGenerator:
    """Render manifest documents into themed HTML files."""

    def __init__(
        self,
        book: Book,
        *,
        templates_dir: Path | None = None,
        static_dir: Path | None = None,
    ) -> None:
        """Initialize the generator with the book and template context.

        Parameters
        ----------
        book : Book
            Configuration, documents, and resolved manifest.
        templates_dir : Path, optional
            Directory containing Jinja templates; defaults to the package templates.
        static_dir : Path, optional
            Directory holding ``book.css`` and ``book.js``; defaults to the
            package static assets.
        """
        self.book = book
        self.config = book.config
        self.templates_dir = templates_dir or PACKAGE_ROOT / "templates"
        self.static_dir = static_dir or PACKAGE_ROOT / "static"
        self.renderer = HtmlContentRenderer(self.config.output.pygments_style)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.page_template = self.env.get_template("page.jinja")
        self.not_found_template = self.env.get_template("404.jinja")
        self.redirect_template = self.env.get_template("redirect.jinja")
        self.static_files = (
            list_static_files(self.config.src_dir)
            if self.config.src_dir.is_dir()
            else []
        )
        self._rendered_paths = frozenset(book.manifest.paths)

    def run(self, output_dir: Path | None = None) -> list[Path]:
        """Render the book and replace ``output_dir`` with the result.

        Parameters
        ----------
        output_dir : Path, optional
            Destination directory; defaults to ``output.dir`` from the config.

        Returns
        -------
        list[Path]
            Paths to the generated HTML pages, in reading order.

        Raises
        ------
        LinkError
            If a document links to a target outside the build. Nothing is
            written in that case.
        ValidationError
            If a source asset would overwrite a generated file.
        """
        site = self.render_site()
        out_dir = (output_dir or self.config.output_dir).resolve()
        out_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=out_dir.parent))
        staging.chmod(0o755)
        try:
            for relative, payload in site.items():
                target = staging / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(payload)
            _replace_tree(staging, out_dir)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.info("Rendered %d page(s) into %s", len(self.book.manifest.leaves), out_dir)
        return [out_dir / leaf.href for leaf in self.book.manifest.leaves if leaf.href]

    def render_site(self) -> dict[str, bytes]:
        """Return the complete output tree as ``relative path -> bytes``.

        The result depends only on the book and the package assets, so two
        calls with unchanged inputs return identical bytes.
        """
        models = self._build_page_models()
        site: dict[str, bytes] = {}
        for model in models:
            site[model.output_path] = self._render_page(model).encode("utf-8")
        leaves = self.book.manifest.leaves
        if leaves and leaves[0].href:
            site["index.html"] = self._render_index(leaves[0].href, site)
        site[NOT_FOUND_FILENAME] = self._render_not_found().encode("utf-8")
        site[HIGHLIGHT_CSS_FILENAME] = (self.renderer.stylesheet + "\n").encode("utf-8")
        for asset in STATIC_ASSETS:
            site[asset] = (self.static_dir / asset).read_bytes()
        if self.config.output.search:
            site[SEARCH_INDEX_FILENAME] = self._render_search_index(models)
        collisions = sorted(site.keys() & set(self.static_files))
        if collisions:
            msg = "source file would overwrite a generated file"
            raise ValidationError(msg, path=collisions[0])
        for relative in self.static_files:
            site[relative] = (self.config.src_dir / relative).read_bytes()
        return dict(sorted(site.items()))

    def render_pages(self) -> dict[str, str]:
        """Render every manifest document to HTML keyed by output path.

        Raises
        ------
        LinkError
            On the first document containing an unresolvable link.
        """
        return {
            model.output_path: self._render_page(model)
            for model in self._build_page_models()
        }

    def _build_page_models(self) -> list[PageModel]:
        return [
            self._build_page_model(leaf)
            for leaf in self.book.manifest.leaves
            if leaf.path is not None
        ]

    def _render_page(self, model: PageModel) -> str:
        return self.page_template.render(
            book=self.config,
            page=model,
            nav_items=self._build_nav_items(model.source_path, model.path_to_root),
            pygments_css=HIGHLIGHT_CSS_FILENAME,
            search_enabled=self.config.output.search,
            search_index=SEARCH_INDEX_FILENAME,
        )

    def _build_page_model(self, leaf: NavNode) -> PageModel:
        """Render one document and gather its template context."""
        path = typ.cast("str", leaf.path)
        href = typ.cast("str", leaf.href)
        document = self.book.documents[path]
        links = DocumentLinkExtension(path, self._rendered_paths, self.static_files)
        content_html, toc_items = self.renderer.markdown(
            document.text, link_extension=links
        )
        if links.unresolved:
            raise LinkError(path, links.unresolved[0])

        previous, following = self.book.manifest.neighbours(path)
        return PageModel(
            source_path=path,
            output_path=href,
            title=document.title,
            nav_label=leaf.title,
            content_html=content_html,
            toc_items=tuple(toc_items),
            previous=self._page_link(previous, href),
            next=self._page_link(following, href),
            path_to_root=_path_to_root(href),
        )

    @staticmethod
    def _page_link(node: NavNode | None, current_href: str) -> PageLink | None:
        if node is None or node.href is None:
            return None
        return PageLink(title=node.title, href=_relative_href(node.href, current_href))

    def _build_nav_items(self, current: str, path_to_root: str) -> list[NavItem]:
        """Build the sidebar tree with links relative to the current page."""

        def convert(node: NavNode) -> NavItem:
            href = f"{path_to_root}{node.href}" if node.href else None
            return NavItem(
                title=node.title,
                href=href,
                number=node.number,
                kind=str(node.kind),
                is_active=node.path == current,
                children=tuple(convert(child) for child in node.children),
            )

        return [convert(node) for node in self.book.manifest.nodes]

    def _render_index(self, first_href: str, site: dict[str, bytes]) -> bytes:
        """Mirror the first page at the root, or redirect to it when nested."""
        if "/" not in first_href:
            return site[first_href]
        html = self.redirect_template.render(book=self.config, target=first_href)
        return html.encode("utf-8")

    def _render_not_found(self) -> str:
        """Render ``404.html`` with links anchored at the configured site URL."""
        site_url = self.config.output.site_url

        def convert(node: NavNode) -> NavItem:
            return NavItem(
                title=node.title,
                href=f"{site_url}{node.href}" if node.href else None,
                number=node.number,
                kind=str(node.kind),
                children=tuple(convert(child) for child in node.children),
            )

        return self.not_found_template.render(
            book=self.config,
            nav_items=[convert(node) for node in self.book.manifest.nodes],
            site_url=site_url,
            pygments_css=HIGHLIGHT_CSS_FILENAME,
        )

    def _render_search_index(self, models: list[PageModel]) -> bytes:
        entries = [
            (model.output_path, model.title, model.content_html) for model in models
        ]
        return encode_search_index(build_search_index(entries))


def _path_to_root(href: str) -> str:
    depth = href.count("/")
    return "../" * depth


def _relative_href(target: str, current: str) -> str:
    return posixpath.relpath(target, posixpath.dirname(current) or ".")


def _replace_tree(staging: Path, out_dir: Path) -> None:
    """Move ``staging`` into place as ``out_dir``, discarding the old tree."""
    previous: Path | None = None
    if out_dir.is_symlink() or out_dir.is_file():
        msg = f"Output path '{out_dir}' must be a directory"
        raise NotADirectoryError(msg)
    if out_dir.exists():
        previous = Path(
            tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}old-", dir=out_dir.parent)
        )
        os.replace(out_dir, previous / out_dir.name)
    try:
        os.replace(staging, out_dir)
    except OSError:
        if previous is not None:
            os.replace(previous / out_dir.name, out_dir)
            previous.rmdir()
        raise
    if previous is not None:
        shutil.rmtree(previous, ignore_errors=True)


__all__ = ["BookGenerator"]

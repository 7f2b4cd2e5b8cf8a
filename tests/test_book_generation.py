"""End-to-end tests for rendering a resolved book into a static site.

The fixtures in ``conftest.py`` lay out a small book on disk; these tests run
``BookGenerator`` over it and inspect the written tree with BeautifulSoup and
msgspec. They cover the sidebar and pager wiring, the generated
``index.html``/``404.html``/``searchindex.json`` artifacts, byte-for-byte
determinism, link integrity, and the all-or-nothing replacement of the output
directory.
"""

from __future__ import annotations

import os
import typing as typ
from pathlib import Path
from urllib.parse import urlsplit

import msgspec
import pytest
from bs4 import BeautifulSoup

from book_pages._constants import STAGING_PREFIX
from book_pages.book import Book, load_book
from book_pages.config import load_book_config
from book_pages.errors import LinkError, ValidationError
from book_pages.generator import BookGenerator
from book_pages.generator.search import SearchIndex

NESTED_SUMMARY = """\
# Summary

- [First post](posts/first.md)
    - [Details](posts/details.md)

---

[About](about.md)
"""
NESTED_DOCUMENTS = {
    "posts/first.md": (
        "# First post\n\nSee the [details](details.md#setup) and "
        "![a diagram](../images/diagram.svg).\n"
    ),
    "posts/details.md": "# Details\n\n## Setup\n\nBack to [about](../about.md).\n",
    "about.md": "# About me\n\nStart at the [first post](posts/first.md).\n",
    "drafts/unlisted.md": "# Unlisted\n\n[dangling](nowhere.md)\n",
    "images/diagram.svg": b"<svg xmlns='http://www.w3.org/2000/svg'/>",
}


def _soup(path: Path) -> BeautifulSoup:
    return BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")


def _tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def nested_book(write_book: typ.Callable[..., Path]) -> Book:
    config_path = write_book(NESTED_DOCUMENTS, summary=NESTED_SUMMARY)
    return load_book(load_book_config(config_path))


def test_two_page_book_has_matching_nav_and_pager(two_page_book: Book) -> None:
    out_dir = two_page_book.config.output_dir

    written = BookGenerator(two_page_book).run()

    assert written == [out_dir / "intro.html", out_dir / "about.html"]
    intro, about = (_soup(path) for path in written)

    for soup in (intro, about):
        labels = [
            anchor.get_text(" ", strip=True)
            for anchor in soup.select("nav.book-sidebar .book-nav__item > a")
        ]
        assert labels == ["1. Intro", "2. About"]

    active = intro.select_one(".book-nav__item.is-active a")
    assert active["href"] == "intro.html"
    assert active["aria-current"] == "page"
    assert intro.select_one("a.book-pager__previous") is None
    assert intro.select_one("a.book-pager__next")["href"] == "about.html"
    assert about.select_one("a.book-pager__previous")["href"] == "intro.html"
    assert about.select_one("a.book-pager__next") is None
    assert intro.title.get_text() == "Intro - Test Book"


def test_cross_document_links_point_at_rendered_pages(two_page_book: Book) -> None:
    written = BookGenerator(two_page_book).run()

    intro, about = (_soup(path) for path in written)
    assert intro.select_one("article a")["href"] == "about.html"
    assert about.select_one("article a")["href"] == "intro.html#intro"


def test_site_artifacts_are_written(two_page_book: Book) -> None:
    out_dir = two_page_book.config.output_dir

    BookGenerator(two_page_book).run()

    assert (out_dir / "index.html").read_bytes() == (out_dir / "intro.html").read_bytes()
    assert {"book.css", "book.js", "highlight.css", "404.html"} <= set(_tree(out_dir))
    not_found = _soup(out_dir / "404.html")
    assert not_found.select_one("base")["href"] == "/"
    assert [a["href"] for a in not_found.select(".book-nav__item > a")] == [
        "/intro.html",
        "/about.html",
    ]


def test_search_index_maps_terms_to_pages(two_page_book: Book) -> None:
    out_dir = two_page_book.config.output_dir

    BookGenerator(two_page_book).run()

    index = msgspec.json.decode(
        (out_dir / "searchindex.json").read_bytes(), type=SearchIndex
    )
    assert [(page.title, page.url) for page in index.pages] == [
        ("Intro", "intro.html"),
        ("About", "about.html"),
    ]
    assert index.terms["welcome"] == [0]
    assert index.terms["intro"] == [0, 1]
    assert "the" not in index.terms
    assert list(index.terms) == sorted(index.terms)


def test_search_can_be_disabled(write_book: typ.Callable[..., Path]) -> None:
    config = load_book_config(
        write_book(
            {"intro.md": "# Intro\n", "about.md": "# About\n"},
            config="output:\n  search: false\n",
        )
    )

    site = BookGenerator(load_book(config)).render_site()

    assert "searchindex.json" not in site
    assert "book-search__input" not in site["intro.html"].decode("utf-8")


def test_rendering_is_byte_identical_across_runs(nested_book: Book) -> None:
    out_dir = nested_book.config.output_dir
    generator = BookGenerator(nested_book)

    assert generator.render_site() == BookGenerator(nested_book).render_site()
    generator.run()
    first = _tree(out_dir)
    generator.run()

    assert _tree(out_dir) == first


def test_nested_pages_use_relative_paths(nested_book: Book) -> None:
    out_dir = nested_book.config.output_dir

    BookGenerator(nested_book).run()

    first = _soup(out_dir / "posts" / "first.html")
    assert first.body["data-path-to-root"] == "../"
    assert first.select_one('link[rel="stylesheet"]')["href"] == "../book.css"
    assert first.select_one("article a")["href"] == "details.html#setup"
    assert first.select_one("article img")["src"] == "../images/diagram.svg"
    assert first.select_one("a.book-pager__next")["href"] == "details.html"
    nav = [a["href"] for a in first.select(".book-nav__item > a")]
    assert nav == ["../posts/first.html", "../posts/details.html", "../about.html"]

    details = _soup(out_dir / "posts" / "details.html")
    assert details.select_one(".book-toc a")["href"] == "#setup"
    assert details.select_one("a.book-pager__next")["href"] == "../about.html"

    about = _soup(out_dir / "about.html")
    assert about.select_one("a.book-pager__previous")["href"] == "posts/details.html"


def test_nested_first_page_gets_redirecting_index(nested_book: Book) -> None:
    out_dir = nested_book.config.output_dir

    BookGenerator(nested_book).run()

    index = _soup(out_dir / "index.html")
    assert index.select_one('meta[http-equiv="refresh"]')["content"] == (
        "0; url=posts/first.html"
    )


def test_unlisted_documents_are_not_rendered_but_assets_are_copied(
    nested_book: Book,
) -> None:
    out_dir = nested_book.config.output_dir

    BookGenerator(nested_book).run()

    files = _tree(out_dir)
    assert "drafts/unlisted.html" not in files
    assert files["images/diagram.svg"] == NESTED_DOCUMENTS["images/diagram.svg"]


def test_every_internal_link_resolves(nested_book: Book) -> None:
    out_dir = nested_book.config.output_dir
    site_url = nested_book.config.output.site_url

    BookGenerator(nested_book).run()

    for page in out_dir.rglob("*.html"):
        soup = _soup(page)
        for element, attribute in [
            *((tag, "href") for tag in soup.find_all(["a", "link"], href=True)),
            *((tag, "src") for tag in soup.find_all(["img", "script"], src=True)),
        ]:
            target = urlsplit(element[attribute])
            if target.scheme or not target.path:
                continue
            if target.path.startswith(site_url):
                resolved = out_dir / target.path.removeprefix(site_url)
            else:
                resolved = page.parent / target.path
            assert resolved.resolve().is_file(), (
                f"{page.relative_to(out_dir)} links to missing {element[attribute]}"
            )


def test_dangling_link_aborts_without_touching_output(
    write_book: typ.Callable[..., Path],
) -> None:
    config = load_book_config(
        write_book(
            {
                "intro.md": "# Intro\n\nSee [the missing page](missing.md).\n",
                "about.md": "# About\n",
            }
        )
    )
    out_dir = config.output_dir
    out_dir.mkdir(parents=True)
    (out_dir / "previous.html").write_text("old build", encoding="utf-8")

    with pytest.raises(LinkError) as excinfo:
        BookGenerator(load_book(config)).run()

    assert excinfo.value.document == "intro.md"
    assert excinfo.value.target == "missing.md"
    assert _tree(out_dir) == {"previous.html": b"old build"}
    leftovers = [
        path.name
        for path in out_dir.parent.iterdir()
        if path.name.startswith(".book-pages")
    ]
    assert leftovers == []


def test_successful_build_replaces_stale_output(two_page_book: Book) -> None:
    out_dir = two_page_book.config.output_dir
    out_dir.mkdir(parents=True)
    (out_dir / "stale.html").write_text("gone soon", encoding="utf-8")

    BookGenerator(two_page_book).run()

    assert not (out_dir / "stale.html").exists()
    assert (out_dir / "intro.html").is_file()


def test_dangling_link_in_raw_html_aborts_the_build(
    write_book: typ.Callable[..., Path],
) -> None:
    config = load_book_config(
        write_book(
            {
                "intro.md": "# Intro\n\n<p><a href=\"missing.md\">gone</a></p>\n",
                "about.md": "# About\n",
            }
        )
    )

    with pytest.raises(LinkError) as excinfo:
        BookGenerator(load_book(config)).run()

    assert excinfo.value.target == "missing.md"
    assert not config.output_dir.exists()


@pytest.mark.parametrize("name", ["book.css", "404.html", "index.html", "intro.html"])
def test_source_asset_cannot_overwrite_generated_file(
    write_book: typ.Callable[..., Path], name: str
) -> None:
    config = load_book_config(
        write_book(
            {
                "intro.md": "# Intro\n",
                "about.md": "# About\n",
                name: "authored by hand",
            }
        )
    )

    with pytest.raises(ValidationError) as excinfo:
        BookGenerator(load_book(config)).run()

    assert excinfo.value.path == name
    assert not config.output_dir.exists()


def test_failed_swap_restores_previous_output(
    two_page_book: Book, monkeypatch: pytest.MonkeyPatch
) -> None:
    out_dir = two_page_book.config.output_dir
    out_dir.mkdir(parents=True)
    (out_dir / "previous.html").write_text("old build", encoding="utf-8")
    real_replace = os.replace

    def replace_failing_for_staging(src: str | Path, dst: str | Path) -> None:
        if Path(src).name.startswith(STAGING_PREFIX):
            raise OSError("disk full")
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", replace_failing_for_staging)

    with pytest.raises(OSError, match="disk full"):
        BookGenerator(two_page_book).run()

    monkeypatch.undo()
    assert _tree(out_dir) == {"previous.html": b"old build"}
    leftovers = [
        path.name
        for path in out_dir.parent.iterdir()
        if path.name.startswith(".book-pages")
    ]
    assert leftovers == []

"""Shared fixtures for building throwaway books on disk."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import pytest

from book_pages.book import Book, load_book
from book_pages.config import BookConfig, load_book_config

TWO_PAGE_SUMMARY = "# Summary\n\n- [Intro](intro.md)\n- [About](about.md)\n"
TWO_PAGE_DOCUMENTS = {
    "intro.md": "# Intro\n\nWelcome. Read [about me](about.md).\n",
    "about.md": "# About\n\nBack to the [intro](intro.md#intro).\n",
}


class BookWriter(typ.Protocol):
    def __call__(
        self,
        documents: typ.Mapping[str, str | bytes],
        *,
        summary: str | None = ...,
        config: str = ...,
    ) -> Path: ...


@pytest.fixture
def write_book(tmp_path: Path) -> BookWriter:
    """Return a helper that lays out ``book.yaml`` and ``src/`` under tmp_path.

    The helper returns the ``book.yaml`` path; the build output defaults to
    ``<tmp_path>/book/public``.
    """

    def _write(
        documents: typ.Mapping[str, str | bytes],
        *,
        summary: str | None = TWO_PAGE_SUMMARY,
        config: str = "",
    ) -> Path:
        root = tmp_path / "book"
        src = root / "src"
        src.mkdir(parents=True, exist_ok=True)
        if summary is not None:
            (src / "SUMMARY.md").write_text(summary, encoding="utf-8")
        for relative, content in documents.items():
            path = src / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        config_path = root / "book.yaml"
        config_path.write_text(
            "book:\n  title: Test Book\n  authors: [Tester]\n" + config,
            encoding="utf-8",
        )
        return config_path

    return _write


@pytest.fixture
def two_page_config(write_book: BookWriter) -> BookConfig:
    """Load the configuration of a two-document book."""
    return load_book_config(write_book(TWO_PAGE_DOCUMENTS))


@pytest.fixture
def two_page_book(two_page_config: BookConfig) -> Book:
    """Resolve the two-document book."""
    return load_book(two_page_config)

"""Build the client-side search index shipped as ``searchindex.json``.

The index lists every page once and maps each lower-cased term to the
positions of the pages containing it. Keys and page lists are sorted so the
encoded bytes only change when the content does.
"""

from __future__ import annotations

import collections.abc as cabc
import html
import re

import msgspec

TAG_PATTERN = re.compile(r"<[^>]+>")
TERM_PATTERN = re.compile(r"[a-z0-9][a-z0-9_'-]*[a-z0-9]|[a-z0-9]")
MIN_TERM_LENGTH = 2
STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if",
        "in", "into", "is", "it", "no", "not", "of", "on", "or", "such",
        "that", "the", "their", "then", "there", "these", "they", "this",
        "to", "was", "will", "with",
    }
)  # fmt: skip


class SearchPage(msgspec.Struct, frozen=True):
    """Page entry referenced by position from the term index."""

    title: str
    url: str


class SearchIndex(msgspec.Struct, frozen=True):
    """Serialized form of ``searchindex.json``."""

    pages: list[SearchPage]
    terms: dict[str, list[int]]


def extract_terms(text: str) -> set[str]:
    """Return the searchable terms in an HTML or plain-text fragment."""
    plain = html.unescape(TAG_PATTERN.sub(" ", text)).lower()
    return {
        term
        for term in TERM_PATTERN.findall(plain)
        if len(term) >= MIN_TERM_LENGTH and term not in STOP_WORDS
    }


def build_search_index(
    pages: cabc.Iterable[tuple[str, str, str]],
) -> SearchIndex:
    """Index ``(url, title, html)`` triples in reading order.

    Example
    -------
    >>> index = build_search_index([("intro.html", "Intro", "<p>Delta CRDTs</p>")])
    >>> index.terms["crdts"]
    [0]
    """
    entries: list[SearchPage] = []
    postings: dict[str, set[int]] = {}
    for position, (url, title, body) in enumerate(pages):
        entries.append(SearchPage(title=title, url=url))
        for term in extract_terms(f"{title} {body}"):
            postings.setdefault(term, set()).add(position)
    terms = {term: sorted(postings[term]) for term in sorted(postings)}
    return SearchIndex(pages=entries, terms=terms)


def encode_search_index(index: SearchIndex) -> bytes:
    """Encode ``index`` as compact JSON."""
    return msgspec.json.encode(index)


__all__ = [
    "SearchIndex",
    "SearchPage",
    "build_search_index",
    "encode_search_index",
    "extract_terms",
]

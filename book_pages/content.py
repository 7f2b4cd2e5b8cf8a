r"""Load Markdown documents from a book's source directory.

A :class:`Document` is one authored page. Documents are immutable once
loaded so the renderer can treat the whole set as a read-only arena.

Example
-------
>>> from book_pages.content import Document
>>> doc = Document.from_text("posts/crdt.md", "# Delta CRDTs\nBody")
>>> doc.title
'Delta CRDTs'
>>> Document.from_text("about.md", "No heading").title
'about'
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import re
import typing as typ
from pathlib import Path, PurePosixPath

from ._constants import SUMMARY_FILENAME

FENCE_PATTERN = re.compile(r"^[ ]{0,3}(`{3,}|~{3,})")
TITLE_PATTERN = re.compile(r"^#[ \t]+(.+?)[ \t#]*$")


@dc.dataclass(slots=True, frozen=True)
class Document:
    """One authored page.

    Attributes
    ----------
    path : str
        POSIX path relative to the source directory (``posts/intro.md``).
    text : str
        Raw Markdown content.
    title : str
        First level-one heading, or the file stem when the page has none.
    """

    path: str
    text: str
    title: str

    @classmethod
    def from_text(cls, path: str, text: str) -> Document:
        """Build a document, deriving its title from the Markdown body."""
        return cls(path=path, text=text, title=extract_title(text) or _stem(path))

    @property
    def output_path(self) -> str:
        """Return the HTML path this document renders to."""
        return str(PurePosixPath(self.path).with_suffix(".html"))


def _stem(path: str) -> str:
    return PurePosixPath(path).stem


def extract_title(text: str) -> str | None:
    """Return the first level-one ATX heading outside fenced code, if any."""
    fence: str | None = None
    for line in text.splitlines():
        match = FENCE_PATTERN.match(line)
        if match:
            marker = match.group(1)
            if fence is None:
                fence = marker
            elif marker[0] == fence[0] and len(marker) >= len(fence):
                fence = None
            continue
        if fence is not None:
            continue
        heading = TITLE_PATTERN.match(line)
        if heading:
            return heading.group(1).replace("\\", "").strip()
    return None


class DocumentSet(cabc.Mapping[str, Document]):
    """Read-only mapping of source-relative path to :class:`Document`."""

    def __init__(self, documents: typ.Iterable[Document]) -> None:
        self._documents = {doc.path: doc for doc in documents}

    def __getitem__(self, key: str) -> Document:
        return self._documents[key]

    def __iter__(self) -> typ.Iterator[str]:
        return iter(self._documents)

    def __len__(self) -> int:
        return len(self._documents)


def load_documents(src_dir: Path) -> DocumentSet:
    """Read every Markdown file below ``src_dir`` except the manifest.

    Parameters
    ----------
    src_dir : Path
        Root of the book sources.

    Returns
    -------
    DocumentSet
        Documents keyed by their POSIX path relative to ``src_dir``.

    Raises
    ------
    FileNotFoundError
        If ``src_dir`` does not exist.
    """
    if not src_dir.is_dir():
        msg = f"Source directory '{src_dir}' not found."
        raise FileNotFoundError(msg)
    documents: list[Document] = []
    for path in sorted(src_dir.rglob("*.md")):
        relative = path.relative_to(src_dir).as_posix()
        if relative == SUMMARY_FILENAME:
            continue
        documents.append(Document.from_text(relative, path.read_text(encoding="utf-8")))
    return DocumentSet(documents)


def list_static_files(src_dir: Path) -> list[str]:
    """Return non-Markdown files below ``src_dir`` that are copied verbatim."""
    return [
        path.relative_to(src_dir).as_posix()
        for path in sorted(src_dir.rglob("*"))
        if path.is_file()
        and path.suffix != ".md"
        and not any(part.startswith(".") for part in path.relative_to(src_dir).parts)
    ]


__all__ = [
    "Document",
    "DocumentSet",
    "extract_title",
    "list_static_files",
    "load_documents",
]

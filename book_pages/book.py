"""Bind a configuration, its documents, and the resolved manifest together."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from .content import Document, DocumentSet, load_documents
from .errors import ValidationError
from .manifest import Manifest, resolve_manifest

if typ.TYPE_CHECKING:
    from .config import BookConfig


@dc.dataclass(slots=True, frozen=True)
class Book:
    """Immutable inputs of one build: configuration, documents, manifest."""

    config: BookConfig
    documents: DocumentSet
    manifest: Manifest

    def ordered_documents(self) -> list[Document]:
        """Return manifest documents in reading order."""
        return [self.documents[path] for path in self.manifest.paths]


def load_book(config: BookConfig) -> Book:
    """Read documents and resolve ``SUMMARY.md`` for ``config``.

    Raises
    ------
    ValidationError
        If the summary file is missing, malformed, or references a document
        that does not exist.
    """
    summary = config.summary_path
    if not summary.is_file():
        msg = "navigation manifest not found"
        raise ValidationError(msg, path=str(summary))
    try:
        documents = load_documents(config.src_dir)
    except FileNotFoundError as exc:
        raise ValidationError(str(exc)) from exc
    manifest = resolve_manifest(
        summary.read_text(encoding="utf-8"), documents, source=summary.name
    )
    return Book(config=config, documents=documents, manifest=manifest)


__all__ = ["Book", "load_book"]

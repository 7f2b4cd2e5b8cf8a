r"""Parse a ``SUMMARY.md`` outline into an immutable navigation tree.

The manifest uses the mdBook outline syntax: optional prefix chapters,
a nested list of numbered chapters (optionally grouped under ``#`` part
titles), and optional suffix chapters. Draft chapters (``[Title]()``) become
section nodes without a document. The resolver validates every reference
against the set of available documents and fails with
:class:`~book_pages.errors.ValidationError` before anything is rendered.

Example
-------
>>> from book_pages.manifest import resolve_manifest
>>> manifest = resolve_manifest(
...     "- [Intro](intro.md)\n- [About](about.md)\n", {"intro.md", "about.md"}
... )
>>> [node.title for node in manifest.leaves]
['Intro', 'About']
>>> manifest.neighbours("about.md")[0].path
'intro.md'
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import posixpath
import re
from urllib.parse import unquote

from ._constants import SUMMARY_FILENAME
from .errors import ValidationError

HEADING_PATTERN = re.compile(r"^#{1,6}[ \t]+(?P<title>.+?)[ \t#]*$")
SEPARATOR_PATTERN = re.compile(r"^(?:-{3,}|\*{3,}|_{3,})$")
LIST_ITEM_PATTERN = re.compile(r"^(?P<indent>[ ]*)[-*+][ \t]+(?P<body>.*?)\s*$")
LINK_PATTERN = re.compile(
    r"^\[(?P<title>(?:[^\]\\]|\\.)+)\]\((?P<target>[^()]*)\)$"
)
COMMENT_PATTERN = re.compile(r"^<!--.*-->$")
INDENT_WIDTHS = (2, 4)


class NodeKind(enum.StrEnum):
    """Where a navigation node came from in the outline."""

    PREFIX = "prefix"
    CHAPTER = "chapter"
    DRAFT = "draft"
    PART = "part"
    SUFFIX = "suffix"


@dc.dataclass(slots=True, frozen=True)
class NavNode:
    """One entry of the navigation tree.

    Attributes
    ----------
    title : str
        Label shown in the sidebar.
    path : str or None
        Source-relative document path; ``None`` for part titles and drafts.
    kind : NodeKind
        Outline construct the node was parsed from.
    children : tuple[NavNode, ...]
        Nested entries, in manifest order.
    number : str or None
        Section number such as ``"2.1."`` for numbered chapters and drafts.
    line : int
        1-based line of the entry in the manifest.
    """

    title: str
    path: str | None
    kind: NodeKind
    children: tuple[NavNode, ...] = ()
    number: str | None = None
    line: int = dc.field(default=0, compare=False)

    @property
    def is_section(self) -> bool:
        """Return ``True`` when the node groups children without a document."""
        return self.path is None

    @property
    def href(self) -> str | None:
        """Return the output HTML path for leaf nodes."""
        if self.path is None:
            return None
        root, _ext = posixpath.splitext(self.path)
        return f"{root}.html"

    def walk(self) -> cabc.Iterator[NavNode]:
        """Yield this node and its descendants depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dc.dataclass(slots=True, frozen=True)
class Manifest:
    """Resolved navigation tree plus the linear reading order."""

    nodes: tuple[NavNode, ...]
    leaves: tuple[NavNode, ...]
    title: str | None = None

    def get(self, path: str) -> NavNode | None:
        """Return the leaf bound to ``path`` or ``None``."""
        for leaf in self.leaves:
            if leaf.path == path:
                return leaf
        return None

    def neighbours(self, path: str) -> tuple[NavNode | None, NavNode | None]:
        """Return the previous and next leaves around ``path`` in reading order."""
        for index, leaf in enumerate(self.leaves):
            if leaf.path == path:
                previous = self.leaves[index - 1] if index > 0 else None
                following = (
                    self.leaves[index + 1] if index + 1 < len(self.leaves) else None
                )
                return previous, following
        msg = f"'{path}' is not part of the manifest"
        raise KeyError(msg)

    @property
    def paths(self) -> tuple[str, ...]:
        """Return document paths in reading order."""
        return tuple(leaf.path for leaf in self.leaves if leaf.path is not None)


@dc.dataclass(slots=True)
class _Entry:
    """Mutable builder used while the outline is being parsed."""

    title: str
    path: str | None
    kind: NodeKind
    line: int
    children: list[_Entry] = dc.field(default_factory=list)

    def freeze(self, number: str | None) -> NavNode:
        children: list[NavNode] = []
        counter = 0
        for child in self.children:
            child_number = None
            if child.kind in (NodeKind.CHAPTER, NodeKind.DRAFT) and number:
                counter += 1
                child_number = f"{number}{counter}."
            children.append(child.freeze(child_number))
        return NavNode(
            title=self.title,
            path=self.path,
            kind=self.kind,
            children=tuple(children),
            number=number,
            line=self.line,
        )


class _Phase(enum.Enum):
    PREFIX = enum.auto()
    NUMBERED = enum.auto()
    SUFFIX = enum.auto()


class _OutlineParser:
    """Line-oriented parser for the summary outline."""

    def __init__(self, text: str, source: str) -> None:
        self.lines = text.expandtabs(4).splitlines()
        self.source = source
        self.title: str | None = None
        self.roots: list[_Entry] = []
        self.phase = _Phase.PREFIX
        self.part: _Entry | None = None
        self.stack: list[_Entry] = []
        self.indent_unit: int | None = None

    def fail(self, message: str, line: int) -> ValidationError:
        return ValidationError(message, path=self.source, line=line)

    def parse(self) -> tuple[str | None, list[_Entry]]:
        seen_content = False
        for lineno, raw in enumerate(self.lines, start=1):
            stripped = raw.strip()
            if not stripped or COMMENT_PATTERN.match(stripped):
                continue
            if SEPARATOR_PATTERN.match(stripped):
                seen_content = True
                continue
            heading = HEADING_PATTERN.match(stripped)
            if heading and not raw.startswith(" "):
                if not seen_content:
                    self.title = _clean_title(heading.group("title"))
                else:
                    self._start_part(_clean_title(heading.group("title")), lineno)
                seen_content = True
                continue
            seen_content = True
            item = LIST_ITEM_PATTERN.match(raw)
            if item:
                self._add_list_item(item.group("indent"), item.group("body"), lineno)
                continue
            if raw.startswith(" "):
                msg = f"unexpected indented text: {stripped!r}"
                raise self.fail(msg, lineno)
            self._add_affix(stripped, lineno)
        return self.title, self.roots

    def _start_part(self, title: str, lineno: int) -> None:
        if self.phase is _Phase.SUFFIX:
            msg = f"part title '{title}' appears after suffix chapters"
            raise self.fail(msg, lineno)
        self.phase = _Phase.NUMBERED
        self.part = _Entry(title=title, path=None, kind=NodeKind.PART, line=lineno)
        self.roots.append(self.part)
        self.stack = []

    def _add_affix(self, body: str, lineno: int) -> None:
        title, target = self._parse_link(body, lineno)
        if target is None:
            msg = f"prefix and suffix chapters need a document: '{title}'"
            raise self.fail(msg, lineno)
        if self.phase is _Phase.NUMBERED:
            self.phase = _Phase.SUFFIX
        kind = NodeKind.PREFIX if self.phase is _Phase.PREFIX else NodeKind.SUFFIX
        self.roots.append(_Entry(title=title, path=target, kind=kind, line=lineno))

    def _add_list_item(self, indent: str, body: str, lineno: int) -> None:
        if self.phase is _Phase.SUFFIX:
            msg = "numbered chapters cannot follow suffix chapters"
            raise self.fail(msg, lineno)
        self.phase = _Phase.NUMBERED
        level = self._level(len(indent), lineno)
        if level > len(self.stack):
            msg = "list item is nested more than one level below its parent"
            raise self.fail(msg, lineno)
        title, target = self._parse_link(body, lineno)
        entry = _Entry(
            title=title,
            path=target,
            kind=NodeKind.DRAFT if target is None else NodeKind.CHAPTER,
            line=lineno,
        )
        del self.stack[level:]
        if self.stack:
            self.stack[-1].children.append(entry)
        elif self.part is not None:
            self.part.children.append(entry)
        else:
            self.roots.append(entry)
        self.stack.append(entry)

    def _level(self, width: int, lineno: int) -> int:
        if width == 0:
            return 0
        if self.indent_unit is None:
            if width not in INDENT_WIDTHS:
                msg = f"nested items must be indented by 2 or 4 spaces, not {width}"
                raise self.fail(msg, lineno)
            self.indent_unit = width
        if width % self.indent_unit:
            msg = (
                f"indentation of {width} spaces is not a multiple of "
                f"{self.indent_unit}"
            )
            raise self.fail(msg, lineno)
        return width // self.indent_unit

    def _parse_link(self, body: str, lineno: int) -> tuple[str, str | None]:
        match = LINK_PATTERN.match(body)
        if not match:
            msg = f"expected a '[Title](path.md)' link, found {body!r}"
            raise self.fail(msg, lineno)
        title = _clean_title(match.group("title"))
        target = match.group("target").strip()
        if not target:
            return title, None
        return title, self._normalize_target(target, lineno)

    def _normalize_target(self, target: str, lineno: int) -> str:
        if target.startswith("<") and target.endswith(">"):
            target = target[1:-1]
        target = unquote(target)
        if "#" in target or "?" in target:
            msg = f"manifest entries must reference a whole document: '{target}'"
            raise self.fail(msg, lineno)
        if "://" in target or target.startswith("/"):
            msg = f"manifest entries must be relative paths: '{target}'"
            raise self.fail(msg, lineno)
        normalized = posixpath.normpath(target)
        if normalized == ".." or normalized.startswith("../"):
            msg = f"'{target}' escapes the source directory"
            raise self.fail(msg, lineno)
        return normalized


def _clean_title(text: str) -> str:
    """Return a title with Markdown escapes removed."""
    return re.sub(r"\\(.)", r"\1", text).strip()


def _number_roots(entries: list[_Entry]) -> tuple[NavNode, ...]:
    """Freeze builders, numbering chapters continuously across parts."""
    counter = 0
    nodes: list[NavNode] = []

    def numbered(entry: _Entry) -> NavNode:
        nonlocal counter
        counter += 1
        return entry.freeze(f"{counter}.")

    for entry in entries:
        if entry.kind is NodeKind.PART:
            children = tuple(
                numbered(child)
                if child.kind in (NodeKind.CHAPTER, NodeKind.DRAFT)
                else child.freeze(None)
                for child in entry.children
            )
            nodes.append(
                NavNode(
                    title=entry.title,
                    path=None,
                    kind=entry.kind,
                    children=children,
                    line=entry.line,
                )
            )
        elif entry.kind in (NodeKind.CHAPTER, NodeKind.DRAFT):
            nodes.append(numbered(entry))
        else:
            nodes.append(entry.freeze(None))
    return tuple(nodes)


def parse_manifest(text: str, *, source: str = SUMMARY_FILENAME) -> Manifest:
    """Parse outline syntax into a :class:`Manifest` without checking paths.

    Parameters
    ----------
    text : str
        Contents of the summary file.
    source : str, optional
        Name used in error messages. Defaults to ``SUMMARY.md``.

    Returns
    -------
    Manifest
        Navigation tree and reading order.

    Raises
    ------
    ValidationError
        If a line cannot be parsed, indentation is inconsistent, or a
        document is listed more than once.
    """
    title, entries = _OutlineParser(text, source).parse()
    nodes = _number_roots(entries)
    leaves: list[NavNode] = []
    seen: dict[str, int] = {}
    for root in nodes:
        for node in root.walk():
            if node.path is None:
                continue
            if node.path in seen:
                msg = (
                    f"'{node.path}' is listed twice (first on line {seen[node.path]})"
                )
                raise ValidationError(msg, path=source, line=node.line)
            seen[node.path] = node.line
            leaves.append(node)
    return Manifest(nodes=nodes, leaves=tuple(leaves), title=title)


def resolve_manifest(
    text: str,
    available: cabc.Collection[str],
    *,
    source: str = SUMMARY_FILENAME,
) -> Manifest:
    """Parse the outline and check every reference against ``available``.

    Parameters
    ----------
    text : str
        Contents of the summary file.
    available : Collection[str]
        Source-relative POSIX paths of the documents that exist.
    source : str, optional
        Name used in error messages.

    Returns
    -------
    Manifest
        Tree containing exactly one leaf per reference, in manifest order.

    Raises
    ------
    ValidationError
        If the outline is malformed or references a missing document.
    """
    manifest = parse_manifest(text, source=source)
    for leaf in manifest.leaves:
        if leaf.path not in available:
            msg = f"'{leaf.title}' references missing document '{leaf.path}'"
            raise ValidationError(msg, path=source, line=leaf.line)
    return manifest


__all__ = [
    "Manifest",
    "NavNode",
    "NodeKind",
    "parse_manifest",
    "resolve_manifest",
]

"""Utilities for rendering markdown and syntax-highlighted code snippets."""

from __future__ import annotations

import re
import typing as typ
from html import escape

from markdown import Markdown
from pygments.formatters.html import HtmlFormatter

from book_pages.samples import HIDDEN_LINE_LANGUAGES, hide_lines, iter_code_blocks

if typ.TYPE_CHECKING:
    from markdown.extensions import Extension
else:  # pragma: no cover - type-checking fallback
    Extension = typ.Any

CODEHILITE_OPEN_TAG = re.compile(r'<div class="codehilite">')


class HtmlContentRenderer:
    """Render markdown and code snippets with consistent styling."""

    def __init__(self, pygments_style: str = "monokai") -> None:
        """Initialize a renderer with the pygments style used for code blocks.

        Parameters
        ----------
        pygments_style : str, optional
            Name of the Pygments style used for syntax highlighting. Defaults to
            ``"monokai"``.
        """
        self.pygments_style = pygments_style
        self._formatter = HtmlFormatter(style=pygments_style, cssclass="codehilite")

    @property
    def stylesheet(self) -> str:
        """Return the CSS used for highlighted code blocks."""
        return self._formatter.get_style_defs(".codehilite")

    def markdown(
        self, text: str, *, link_extension: Extension | None = None
    ) -> tuple[str, list[dict[str, str]]]:
        """Render markdown into HTML using the configured extensions.

        Parameters
        ----------
        text : str
            Markdown source.
        link_extension : Extension, optional
            Extension that rewrites and checks links for the current document.

        Returns
        -------
        tuple[str, list[dict[str, str]]]
            The HTML body and the table of contents as ``label``/``anchor``
            entries for second- and third-level headings.
        """
        normalized, languages = self._normalize_fenced_blocks(text)
        if not normalized.strip():
            return "", []
        extensions: list[Extension | str] = [
            "fenced_code",
            "codehilite",
            "tables",
            "sane_lists",
            "toc",
        ]
        if link_extension is not None:
            extensions.append(link_extension)
        md = Markdown(
            extensions=extensions,
            extension_configs={
                "codehilite": {
                    "linenums": False,
                    "guess_lang": False,
                    "css_class": "codehilite",
                    "pygments_style": self.pygments_style,
                },
                "toc": {"toc_depth": "2-3"},
            },
        )
        html = md.convert(normalized)
        toc_items = [
            {"label": token["name"], "anchor": token["id"]}
            for token in _flatten_toc(getattr(md, "toc_tokens", []))
        ]
        return self._annotate_codehilite(html, languages), toc_items

    @staticmethod
    def _annotate_codehilite(html: str, languages: list[str]) -> str:
        """Attach language metadata to each highlighted block in converted markdown."""
        if not languages:
            return html
        lang_iter = iter(languages)

        def _repl(match: re.Match[str]) -> str:
            lang = next(lang_iter, "text")
            return (
                f'<div class="codehilite" data-language="{escape(lang, quote=True)}">'
            )

        return CODEHILITE_OPEN_TAG.sub(_repl, html, len(languages))

    @staticmethod
    def _normalize_fenced_blocks(text: str) -> tuple[str, list[str]]:
        """Hoist fences to column zero, drop directive flags and hidden lines.

        Returns the rewritten markdown and the block languages in order.
        """
        lines = text.splitlines()
        output: list[str] = []
        languages: list[str] = []
        cursor = 0
        for block in iter_code_blocks(text):
            output.extend(lines[cursor : block.start])
            language = block.language or ""
            code = block.code
            if language in HIDDEN_LINE_LANGUAGES:
                code = hide_lines(code)
            fence = "```"
            while fence in code:
                fence += "`"
            output.append(f"{fence}{language}")
            output.extend(code.splitlines())
            output.append(fence)
            languages.append(language or "text")
            cursor = block.end + 1
        output.extend(lines[cursor:])
        return "\n".join(output) + "\n", languages


def _flatten_toc(tokens: list[dict[str, typ.Any]]) -> list[dict[str, typ.Any]]:
    """Return toc tokens depth-first without their nesting."""
    flat: list[dict[str, typ.Any]] = []
    for token in tokens:
        flat.append(token)
        flat.extend(_flatten_toc(token.get("children", [])))
    return flat


__all__ = ["HtmlContentRenderer"]

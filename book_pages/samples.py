r"""Find fenced code blocks and turn the runnable ones into samples.

The fence scanner is shared with the renderer: it reports every block with
its language, directive flags, and line span so the renderer can strip flags
and hidden lines while the verification pass reads the untouched code.

Example
-------
>>> from book_pages.samples import iter_code_blocks
>>> block = next(iter_code_blocks("```rust,should_panic\npanic!();\n```\n"))
>>> block.language, block.flags
('rust', ('should_panic',))
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import re
import typing as typ

if typ.TYPE_CHECKING:
    from .config import RunnerConfig, TestConfig
    from .content import Document

OPEN_FENCE_PATTERN = re.compile(r"^(?P<indent>[ ]*)(?P<fence>`{3,}|~{3,})(?P<info>[^`]*)$")
INFO_SPLIT_PATTERN = re.compile(r"[,\s]+")
HIDDEN_LINE_PATTERN = re.compile(r"^(?P<indent>\s*)#(?: (?P<rest>.*)|)$")

MUST_FAIL_FLAGS = frozenset(
    {"must-fail", "must_fail", "should-fail", "should_panic", "compile_fail"}
)
COMPILE_FAIL_FLAG = "compile_fail"
NO_RUN_FLAGS = frozenset({"no-execute", "no_execute", "no-run", "no_run"})
SKIP_FLAGS = frozenset({"ignore", "skip"})
KNOWN_FLAGS = MUST_FAIL_FLAGS | NO_RUN_FLAGS | SKIP_FLAGS
HIDDEN_LINE_LANGUAGES = frozenset({"rust"})


class Outcome(enum.StrEnum):
    """Expected (or observed) result of running a sample."""

    MUST_SUCCEED = "must-succeed"
    MUST_FAIL = "must-fail"
    SKIP = "skip"


@dc.dataclass(slots=True, frozen=True)
class CodeBlock:
    """A fenced block located in a Markdown document.

    Attributes
    ----------
    language : str or None
        Lower-cased language from the info string.
    flags : tuple[str, ...]
        Remaining info-string tokens, lower-cased (``no_run``, ``must-fail``).
    code : str
        Block body with the fence indentation removed.
    start : int
        0-based index of the opening fence line.
    end : int
        0-based index of the closing fence line (or the last line when the
        block is unterminated).
    indent : str
        Indentation preceding the fence.
    """

    language: str | None
    flags: tuple[str, ...]
    code: str
    start: int
    end: int
    indent: str = ""

    @property
    def line(self) -> int:
        """Return the 1-based line number of the opening fence."""
        return self.start + 1


def parse_info_string(info: str) -> tuple[str | None, tuple[str, ...]]:
    """Split a fence info string into a language and directive flags."""
    tokens = [
        token.lower()
        for token in INFO_SPLIT_PATTERN.split(info.strip().strip("{}"))
        if token
    ]
    if not tokens:
        return None, ()
    first, *rest = tokens
    if first in KNOWN_FLAGS:
        return None, tuple(tokens)
    return first.lstrip("."), tuple(rest)


def iter_code_blocks(text: str) -> cabc.Iterator[CodeBlock]:
    """Yield every fenced code block in ``text`` in document order."""
    lines = text.splitlines()
    index = 0
    while index < len(lines):
        opening = OPEN_FENCE_PATTERN.match(lines[index])
        if not opening:
            index += 1
            continue
        indent = opening.group("indent")
        fence = opening.group("fence")
        language, flags = parse_info_string(opening.group("info"))
        closing = re.compile(
            rf"^[ ]*{re.escape(fence[0])}{{{len(fence)},}}[ \t]*$"
        )
        body: list[str] = []
        cursor = index + 1
        while cursor < len(lines) and not closing.match(lines[cursor]):
            body.append(_dedent_line(lines[cursor], len(indent)))
            cursor += 1
        end = min(cursor, len(lines) - 1)
        code = "\n".join(body)
        if body:
            code += "\n"
        yield CodeBlock(
            language=language,
            flags=flags,
            code=code,
            start=index,
            end=end,
            indent=indent,
        )
        index = cursor + 1


def _dedent_line(line: str, width: int) -> str:
    """Remove up to ``width`` leading spaces from ``line``."""
    stripped = 0
    while stripped < width and stripped < len(line) and line[stripped] == " ":
        stripped += 1
    return line[stripped:]


def hide_lines(code: str) -> str:
    """Drop ``# ``-prefixed boilerplate lines from a sample for display."""
    kept: list[str] = []
    for line in code.splitlines():
        match = HIDDEN_LINE_PATTERN.match(line)
        if match:
            continue
        if line.lstrip().startswith("##"):
            line = line.replace("##", "#", 1)
        kept.append(line)
    return "\n".join(kept) + ("\n" if kept else "")


def reveal_lines(code: str) -> str:
    """Return the sample with hidden-line markers removed, for execution."""
    revealed: list[str] = []
    for line in code.splitlines():
        match = HIDDEN_LINE_PATTERN.match(line)
        if match:
            revealed.append(f"{match.group('indent')}{match.group('rest') or ''}")
            continue
        if line.lstrip().startswith("##"):
            line = line.replace("##", "#", 1)
        revealed.append(line)
    return "\n".join(revealed) + ("\n" if revealed else "")


def expected_outcome(flags: cabc.Iterable[str]) -> Outcome:
    """Map directive flags onto the outcome a sample must produce."""
    flag_set = set(flags)
    if flag_set & SKIP_FLAGS:
        return Outcome.SKIP
    if flag_set & MUST_FAIL_FLAGS:
        return Outcome.MUST_FAIL
    return Outcome.MUST_SUCCEED


@dc.dataclass(slots=True, frozen=True)
class Sample:
    """A runnable code block together with its declared expectation."""

    document: str
    line: int
    language: str
    code: str
    expected: Outcome
    runner: RunnerConfig
    compile_only: bool = False
    compile_fail: bool = False

    def __str__(self) -> str:
        return f"{self.document}:{self.line} ({self.language})"

    @property
    def source(self) -> str:
        """Return the code that is handed to the runner."""
        code = self.code
        if self.language in HIDDEN_LINE_LANGUAGES:
            code = reveal_lines(code)
        if self.runner.wrap_main and "fn main" not in code:
            body = "".join(f"    {line}\n" if line else "\n" for line in code.splitlines())
            code = f"fn main() {{\n{body}}}\n"
        return code


def extract_samples(
    documents: cabc.Iterable[Document], test_config: TestConfig
) -> list[Sample]:
    """Collect runnable samples from ``documents`` in document order.

    Blocks whose language has no configured runner are illustrative only and
    are not returned. ``no_run`` blocks keep only the compile step; when the
    runner has none they are returned as skipped.
    ``compile_fail`` blocks must fail in the compile step when the runner has
    one; every other must-fail block has to compile and then fail when run.
    """
    samples: list[Sample] = []
    for document in documents:
        for block in iter_code_blocks(document.text):
            runner = test_config.runner_for(block.language)
            if runner is None:
                continue
            expected = expected_outcome(block.flags)
            compile_only = bool(set(block.flags) & NO_RUN_FLAGS)
            if compile_only and runner.compile is None:
                expected = Outcome.SKIP
            samples.append(
                Sample(
                    document=document.path,
                    line=block.line,
                    language=runner.language,
                    code=block.code,
                    expected=expected,
                    runner=runner,
                    compile_only=compile_only,
                    compile_fail=COMPILE_FAIL_FLAG in block.flags,
                )
            )
    return samples


__all__ = [
    "CodeBlock",
    "Outcome",
    "Sample",
    "expected_outcome",
    "extract_samples",
    "hide_lines",
    "iter_code_blocks",
    "parse_info_string",
    "reveal_lines",
]

"""Typed dataclasses describing book configuration structures."""

from __future__ import annotations

import dataclasses as dc
from pathlib import Path

from book_pages._constants import SUMMARY_FILENAME
from book_pages.errors import ConfigError


@dc.dataclass(slots=True, frozen=True)
class OutputConfig:
    """Where and how the rendered site is written."""

    dir: Path = Path("public")
    site_url: str = "/"
    pygments_style: str = "monokai"
    search: bool = True


@dc.dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Commands used to execute samples written in one language.

    Attributes
    ----------
    language : str
        Canonical fence language handled by the runner.
    extension : str
        Suffix of the temporary source file the sample is written to.
    run : tuple[str, ...]
        Command template that executes the sample. Placeholders ``{file}``,
        ``{exe}``, ``{dir}``, and ``{python}`` are substituted per sample.
    compile : tuple[str, ...] or None
        Optional command template run before ``run``; ``no_run`` samples stop
        after this step.
    aliases : tuple[str, ...]
        Additional fence languages routed to this runner.
    wrap_main : bool
        Wrap samples lacking ``fn main`` in one and reveal ``# `` hidden lines.
    """

    language: str
    extension: str
    run: tuple[str, ...]
    compile: tuple[str, ...] | None = None
    aliases: tuple[str, ...] = ()
    wrap_main: bool = False


@dc.dataclass(slots=True, frozen=True)
class TestConfig:
    """Settings for the verification pass."""

    __test__ = False  # not a pytest test class

    timeout: float = 60.0
    jobs: int | None = None
    runners: tuple[RunnerConfig, ...] = ()

    def runner_for(self, language: str | None) -> RunnerConfig | None:
        """Return the runner handling ``language`` or ``None`` when illustrative."""
        if not language:
            return None
        wanted = language.lower()
        for runner in self.runners:
            if wanted == runner.language or wanted in runner.aliases:
                return runner
        return None


@dc.dataclass(slots=True, frozen=True)
class PublishConfig:
    """Publish target defaults; the token is never stored here."""

    remote: str | None = None
    branch: str = "gh-pages"
    cname: str | None = None
    user_name: str = "book-pages"
    user_email: str = "book-pages@users.noreply.github.com"


@dc.dataclass(slots=True, frozen=True)
class BookConfig:
    """A fully resolved book definition sourced from ``book.yaml``."""

    root: Path
    title: str
    src_dir: Path
    description: str = ""
    authors: tuple[str, ...] = ()
    language: str = "en"
    output: OutputConfig = dc.field(default_factory=OutputConfig)
    test: TestConfig = dc.field(default_factory=TestConfig)
    publish: PublishConfig = dc.field(default_factory=PublishConfig)

    @property
    def summary_path(self) -> Path:
        """Return the path of the navigation manifest inside ``src_dir``."""
        return self.src_dir / SUMMARY_FILENAME

    @property
    def output_dir(self) -> Path:
        """Return the absolute build output directory."""
        return self.output.dir


__all__ = [
    "BookConfig",
    "ConfigError",
    "OutputConfig",
    "PublishConfig",
    "RunnerConfig",
    "TestConfig",
]

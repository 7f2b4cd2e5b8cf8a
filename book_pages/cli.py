"""Cyclopts CLI entrypoint for testing, building, and publishing a book.

The ``book-pages`` console script defined here runs the code samples embedded
in the book's Markdown, renders the site described by ``src/SUMMARY.md`` into
static HTML, and publishes the rendered tree to a ``gh-pages`` branch or a
served directory. CI typically calls ``book-pages deploy`` on every push to
``main``; locally ``book-pages build`` previews the output.

Examples
--------
Build the book described by ``book.yaml`` in the current directory:

>>> from book_pages.cli import main
>>> main(["build"])  # doctest: +SKIP

Publish an existing tree into a directory served by a web host:

>>> main(["publish", "public", "--target", "dir:/srv/blog"])  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import os
import sys
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter

from ._constants import DEFAULT_CONFIG_FILENAME
from .book import load_book
from .config import load_book_config
from .deploy import (
    DEFAULT_CREDENTIALS_PATH,
    GitTarget,
    parse_target,
    publish,
    resolve_revision,
    resolve_token,
)
from .errors import BookError
from .generator import BookGenerator
from .pipeline import run_pipeline
from .verify import run_verification

if typ.TYPE_CHECKING:
    from .config import BookConfig
    from .deploy import PublishResult, PublishTarget

DEFAULT_CONFIG = Path(DEFAULT_CONFIG_FILENAME)
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

app = App(name="book-pages", config=cyclopts.config.Env("INPUT_", command=False))  # type: ignore[unknown-argument]

ConfigOption = typ.Annotated[
    Path, Parameter(help="Path to book.yaml", env_var="INPUT_CONFIG")
]
TargetOption = typ.Annotated[
    str | None,
    Parameter(
        help="Git remote or dir:<path> (defaults to publish.remote)",
        env_var="INPUT_TARGET",
    ),
]
BranchOption = typ.Annotated[
    str | None,
    Parameter(help="Branch for git targets (defaults to publish.branch)"),
]
TokenOption = typ.Annotated[
    str | None,
    Parameter(
        help="Token for https remotes (falls back to GITHUB_TOKEN)",
        env_var="INPUT_TOKEN",
    ),
]
CommitOption = typ.Annotated[
    str | None,
    Parameter(help="Source commit id (defaults to GITHUB_SHA or HEAD)"),
]
TimestampOption = typ.Annotated[
    int | None,
    Parameter(help="Source commit time in seconds since the epoch"),
]
RunOption = typ.Annotated[
    int | None,
    Parameter(
        help="Number that grows with every push; the later run wins "
        "(defaults to GITHUB_RUN_NUMBER)",
    ),
]


def _format_path(path: Path) -> str:
    """Return a cwd-relative path when possible, otherwise the absolute path."""
    if path.is_absolute():
        try:
            return str(path.relative_to(Path.cwd()))
        except ValueError:  # pragma: no cover - fallback for different roots
            return str(path)
    return str(path)


def _resolve_publish_inputs(
    book_config: BookConfig,
    *,
    target: str | None,
    branch: str | None,
    token: str | None,
    save_token: bool,
    credentials_path: Path,
) -> tuple[PublishTarget, str | None]:
    """Pick the publish target and, for git remotes, the token to use."""
    resolved = parse_target(target, book_config.publish, branch=branch)
    if not isinstance(resolved, GitTarget):
        return resolved, None
    secret = resolve_token(token=token, config_path=credentials_path, save=save_token)
    return resolved, secret


def _report_publish(result: PublishResult) -> None:
    print(result)


@app.command(name="test", help="Run the book's code samples against their fences.")
def run_tests(*, config: ConfigOption = DEFAULT_CONFIG) -> None:
    """Execute every runnable sample in the manifest documents.

    Raises
    ------
    SampleFailure
        If any sample's outcome differs from the one its fence declares.
    """
    book = load_book(load_book_config(config))
    results = run_verification(book, book.config.test)
    print(f"verified {len(results)} sample(s)")


@app.command(help="Render the book into static HTML.")
def build(
    *,
    config: ConfigOption = DEFAULT_CONFIG,
    out: typ.Annotated[
        Path | None,
        Parameter(help="Override the output folder", env_var="INPUT_OUTPUT_DIR"),
    ] = None,
) -> None:
    """Render manifest documents and print the path of each written page."""
    book = load_book(load_book_config(config))
    for path in BookGenerator(book).run(out):
        print(f"wrote {_format_path(path)}")


@app.command(name="publish", help="Publish an already rendered site.")
def publish_site(
    site_dir: Path,
    *,
    config: ConfigOption = DEFAULT_CONFIG,
    target: TargetOption = None,
    branch: BranchOption = None,
    token: TokenOption = None,
    commit: CommitOption = None,
    commit_timestamp: TimestampOption = None,
    run_id: RunOption = None,
    save_token: bool = False,
    credentials_path: typ.Annotated[
        Path,
        Parameter(
            help="Where to store the token (TOML)",
            env_var="BOOK_PAGES_CONFIG_FILE",
        ),
    ] = DEFAULT_CREDENTIALS_PATH,
) -> None:
    """Replace the publish target's contents with ``site_dir``.

    Parameters
    ----------
    site_dir : Path
        Output of a previous ``book-pages build``.
    config : Path, optional
        ``book.yaml`` providing the publish defaults.
    target : str or None, optional
        Git remote or ``dir:<path>``; defaults to ``publish.remote``.
    branch : str or None, optional
        Branch for git targets; defaults to ``publish.branch``.
    token : str or None, optional
        Token for ``https://`` remotes. Falls back to ``BOOK_PAGES_TOKEN``,
        ``GITHUB_TOKEN``, ``GH_TOKEN`` and then the credentials file.
    commit, commit_timestamp : optional
        Identify the source revision when git metadata is unavailable.
    run_id : int or None, optional
        Trigger number used to order competing publishes.
    save_token : bool, optional
        Persist the resolved token to ``credentials_path``.
    """
    book_config = load_book_config(config)
    resolved, secret = _resolve_publish_inputs(
        book_config,
        target=target,
        branch=branch,
        token=token,
        save_token=save_token,
        credentials_path=credentials_path,
    )
    revision = resolve_revision(
        book_config.root, commit=commit, timestamp=commit_timestamp, run=run_id
    )
    _report_publish(publish(site_dir, resolved, revision, token=secret))


@app.command(name="deploy", help="Test, build, and publish the book in one run.")
def deploy_book(
    *,
    config: ConfigOption = DEFAULT_CONFIG,
    out: typ.Annotated[
        Path | None,
        Parameter(help="Override the output folder", env_var="INPUT_OUTPUT_DIR"),
    ] = None,
    target: TargetOption = None,
    branch: BranchOption = None,
    token: TokenOption = None,
    commit: CommitOption = None,
    commit_timestamp: TimestampOption = None,
    run_id: RunOption = None,
) -> None:
    """Run the whole pipeline; the target is untouched if any stage fails."""
    book_config = load_book_config(config)
    resolved, secret = _resolve_publish_inputs(
        book_config,
        target=target,
        branch=branch,
        token=token,
        save_token=False,
        credentials_path=DEFAULT_CREDENTIALS_PATH,
    )
    revision = resolve_revision(
        book_config.root, commit=commit, timestamp=commit_timestamp, run=run_id
    )
    result = run_pipeline(
        book_config,
        target=resolved,
        output_dir=out,
        revision=revision,
        token=secret,
    )
    for path in result.pages:
        print(f"wrote {_format_path(path)}")
    if result.published is not None:
        _report_publish(result.published)


def _configure_logging() -> None:
    level = os.getenv("BOOK_PAGES_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    """Invoke the Cyclopts application behind the ``book-pages`` command.

    Any :class:`~book_pages.errors.BookError` is reported on stderr and turned
    into exit status 1.

    Examples
    --------
    >>> main(["test"])  # doctest: +SKIP
    """
    _configure_logging()
    try:
        app(argv)
    except BookError as exc:
        print(f"book-pages: error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":  # pragma: no cover - manual invocation helper
    main()

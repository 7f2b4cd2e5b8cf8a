"""Build, verify, and publish a personal blog written as a Markdown book.

This package exposes the CLI entry points used by ``book-pages`` (locally or
from CI) to run the code samples embedded in posts, render the static site,
and publish it to a ``gh-pages`` branch or a served directory.

Exports
-------
- ``app``: Cyclopts application entry for subcommands.
- ``main``: Convenience function that invokes the Cyclopts app.

Examples
--------
>>> from book_pages import main
>>> main(["build"])  # doctest: +SKIP
"""

from __future__ import annotations

from .cli import app, main

__all__ = ["app", "main"]

"""Load and validate book configuration YAML for static builds.

This subpackage parses the project's ``book.yaml`` file, merges built-in
defaults (sample runners, output locations, publish branch) with the values the
author supplies, and produces frozen dataclasses (:class:`BookConfig`,
:class:`TestConfig`, etc.) that the resolver, renderer, verifier, and
publisher consume. The primary entry point is :func:`load_book_config`.

Examples
--------
>>> from pathlib import Path
>>> from book_pages.config import load_book_config
>>> book = load_book_config(Path("book.yaml"))  # doctest: +SKIP
>>> book.publish.branch  # doctest: +SKIP
'gh-pages'
"""

from book_pages.errors import ConfigError

from .loader import load_book_config
from .models import (
    BookConfig,
    OutputConfig,
    PublishConfig,
    RunnerConfig,
    TestConfig,
)

__all__ = [
    "BookConfig",
    "ConfigError",
    "OutputConfig",
    "PublishConfig",
    "RunnerConfig",
    "TestConfig",
    "load_book_config",
]

"""Load book configuration YAML into typed dataclasses."""

from __future__ import annotations

import logging
import typing as typ
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from book_pages.errors import ConfigError

from .helpers import (
    _as_bool,
    _as_positive_number,
    _merge_runners,
    _normalize_authors,
    _normalize_site_url,
    _optional_str,
)
from .models import BookConfig, OutputConfig, PublishConfig, TestConfig

logger = logging.getLogger(__name__)


def load_book_config(path: Path) -> BookConfig:
    """Load the YAML configuration describing a book and its pipeline.

    Parameters
    ----------
    path : Path
        Filesystem path to ``book.yaml``. Relative paths inside the file are
        resolved against its parent directory.

    Returns
    -------
    BookConfig
        Parsed configuration. When ``path`` does not exist, defaults are
        returned and the book title falls back to the directory name.

    Raises
    ------
    ConfigError
        If the YAML cannot be parsed, the top level is not a mapping, or a
        value has the wrong type.

    Examples
    --------
    >>> from pathlib import Path
    >>> from book_pages.config import load_book_config
    >>> config = load_book_config(Path("book.yaml"))  # doctest: +SKIP
    >>> config.summary_path.name  # doctest: +SKIP
    'SUMMARY.md'
    """
    root = path.resolve().parent
    raw: dict[str, typ.Any] = {}
    if path.exists():
        loader = YAML(typ="safe")
        loader.version = (1, 2)
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = loader.load(handle) or {}
        except YAMLError as exc:
            msg = f"unable to parse YAML: {exc}"
            raise ConfigError(msg, path=str(path)) from exc
        if not isinstance(loaded, dict):
            msg = "top-level YAML structure must be a mapping"
            raise ConfigError(msg, path=str(path))
        raw = dict(loaded)
    else:
        logger.info("No config at %s; using defaults", path)

    book_raw = _section(raw, "book", path)
    output_raw = _section(raw, "output", path)
    test_raw = _section(raw, "test", path)
    publish_raw = _section(raw, "publish", path)

    title = _optional_str(book_raw.get("title")) or root.name
    src_dir = root / str(book_raw.get("src", "src"))

    return BookConfig(
        root=root,
        title=title,
        src_dir=src_dir,
        description=_optional_str(book_raw.get("description")) or "",
        authors=_normalize_authors(book_raw.get("authors")),
        language=_optional_str(book_raw.get("language")) or "en",
        output=_build_output_config(output_raw, root),
        test=_build_test_config(test_raw),
        publish=_build_publish_config(publish_raw),
    )


def _section(
    raw: typ.Mapping[str, typ.Any], key: str, path: Path
) -> dict[str, typ.Any]:
    """Return the mapping stored under ``key`` or an empty dict."""
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        msg = f"'{key}' must be a mapping"
        raise ConfigError(msg, path=str(path))
    return dict(value)


def _build_output_config(payload: typ.Mapping[str, typ.Any], root: Path) -> OutputConfig:
    base = OutputConfig()
    return OutputConfig(
        dir=root / str(payload.get("dir", base.dir)),
        site_url=_normalize_site_url(payload.get("site_url")),
        pygments_style=_optional_str(payload.get("pygments_style"))
        or base.pygments_style,
        search=_as_bool(payload.get("search", base.search), key="output.search"),
    )


def _build_test_config(payload: typ.Mapping[str, typ.Any]) -> TestConfig:
    base = TestConfig()
    timeout = _as_positive_number(
        payload.get("timeout", base.timeout), key="test.timeout"
    )
    jobs = payload.get("jobs")
    if jobs is not None:
        jobs = int(_as_positive_number(jobs, key="test.jobs"))
    runners = payload.get("runners")
    if runners is not None and not isinstance(runners, dict):
        msg = "'test.runners' must be a mapping"
        raise ConfigError(msg)
    return TestConfig(timeout=timeout, jobs=jobs, runners=_merge_runners(runners))


def _build_publish_config(payload: typ.Mapping[str, typ.Any]) -> PublishConfig:
    base = PublishConfig()
    return PublishConfig(
        remote=_optional_str(payload.get("remote")),
        branch=_optional_str(payload.get("branch")) or base.branch,
        cname=_optional_str(payload.get("cname")),
        user_name=_optional_str(payload.get("user_name")) or base.user_name,
        user_email=_optional_str(payload.get("user_email")) or base.user_email,
    )


__all__ = ["load_book_config"]

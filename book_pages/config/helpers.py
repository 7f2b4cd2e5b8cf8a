"""Utility helpers shared by the book configuration loader."""

from __future__ import annotations

import typing as typ

from book_pages.errors import ConfigError

from .models import RunnerConfig

DEFAULT_RUNNERS: tuple[RunnerConfig, ...] = (
    RunnerConfig(
        language="python",
        extension=".py",
        run=("{python}", "{file}"),
        aliases=("py", "python3"),
    ),
    RunnerConfig(
        language="bash",
        extension=".sh",
        run=("bash", "{file}"),
        aliases=("sh", "shell"),
    ),
    RunnerConfig(
        language="rust",
        extension=".rs",
        compile=("rustc", "--edition", "2021", "-o", "{exe}", "{file}"),
        run=("{exe}",),
        wrap_main=True,
    ),
)


def _optional_str(value: object | None) -> str | None:
    """Return a stripped string value or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_authors(value: object | None) -> tuple[str, ...]:
    """Accept a single author string or a list of names."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, list):
        return tuple(text for item in value if (text := str(item).strip()))
    msg = "'book.authors' must be a string or a list of strings"
    raise ConfigError(msg)


def _normalize_site_url(value: object | None) -> str:
    """Return a base path that starts and ends with a slash."""
    text = _optional_str(value) or "/"
    if "://" not in text and not text.startswith("/"):
        text = f"/{text}"
    if not text.endswith("/"):
        text = f"{text}/"
    return text


def _as_bool(value: object, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    msg = f"'{key}' must be true or false"
    raise ConfigError(msg)


def _as_positive_number(value: object, *, key: str) -> float:
    match value:
        case bool():
            pass
        case int() | float() if value > 0:
            return float(value)
    msg = f"'{key}' must be a positive number"
    raise ConfigError(msg)


def _as_command(value: object, *, key: str) -> tuple[str, ...]:
    """Normalize a command template given as a list or a whitespace string."""
    if isinstance(value, str):
        parts = tuple(value.split())
    elif isinstance(value, list):
        parts = tuple(str(part) for part in value)
    else:
        parts = ()
    if not parts:
        msg = f"'{key}' must be a non-empty command"
        raise ConfigError(msg)
    return parts


def _build_runner(
    language: str, payload: typ.Mapping[str, typ.Any], base: RunnerConfig | None
) -> RunnerConfig:
    """Build a runner from YAML, inheriting unspecified keys from ``base``."""
    prefix = f"test.runners.{language}"
    if "run" in payload:
        run = _as_command(payload["run"], key=f"{prefix}.run")
    elif base is not None:
        run = base.run
    else:
        msg = f"'{prefix}.run' is required"
        raise ConfigError(msg)

    compile_cmd = base.compile if base else None
    if "compile" in payload:
        raw_compile = payload["compile"]
        compile_cmd = (
            None
            if raw_compile is None
            else _as_command(raw_compile, key=f"{prefix}.compile")
        )

    extension = str(payload.get("extension", base.extension if base else ".txt"))
    if not extension.startswith("."):
        extension = f".{extension}"
    aliases = payload.get("aliases", list(base.aliases) if base else [])
    if not isinstance(aliases, list):
        msg = f"'{prefix}.aliases' must be a list"
        raise ConfigError(msg)
    wrap_main = payload.get("wrap_main", base.wrap_main if base else False)
    return RunnerConfig(
        language=language,
        extension=extension,
        run=run,
        compile=compile_cmd,
        aliases=tuple(str(alias).lower() for alias in aliases),
        wrap_main=_as_bool(wrap_main, key=f"{prefix}.wrap_main"),
    )


def _merge_runners(
    overrides: typ.Mapping[str, typ.Any] | None,
) -> tuple[RunnerConfig, ...]:
    """Merge configured runners over the built-in defaults.

    A runner set to ``false`` disables the built-in entry for that language,
    turning its samples into illustrative-only blocks.
    """
    merged: dict[str, RunnerConfig] = {
        runner.language: runner for runner in DEFAULT_RUNNERS
    }
    for raw_language, payload in (overrides or {}).items():
        language = str(raw_language).lower()
        match payload:
            case False | None:
                merged.pop(language, None)
            case dict():
                merged[language] = _build_runner(
                    language, payload, merged.get(language)
                )
            case _:
                msg = f"'test.runners.{language}' must be a mapping or false"
                raise ConfigError(msg)
    return tuple(merged.values())


__all__ = [
    "DEFAULT_RUNNERS",
    "_as_bool",
    "_as_positive_number",
    "_merge_runners",
    "_normalize_authors",
    "_normalize_site_url",
    "_optional_str",
]

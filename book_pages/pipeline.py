"""Run the full validate, verify, build, publish sequence for one trigger."""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ

from .book import load_book
from .deploy import PublishResult, publish, resolve_revision
from .generator import BookGenerator
from .verify import run_verification

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .config import BookConfig
    from .deploy import PublishTarget, SourceRevision
    from .verify import SampleResult

logger = logging.getLogger(__name__)


@dc.dataclass(slots=True, frozen=True)
class PipelineResult:
    """What one pipeline run produced."""

    samples: list[SampleResult]
    pages: list[Path]
    published: PublishResult | None = None


def run_pipeline(
    config: BookConfig,
    *,
    target: PublishTarget | None = None,
    output_dir: Path | None = None,
    revision: SourceRevision | None = None,
    token: str | None = None,
) -> PipelineResult:
    """Validate, verify, render, and (optionally) publish ``config``'s book.

    Each stage only runs when the previous one succeeded, so a broken manifest,
    a misbehaving sample, or a dangling link leaves the publish target as it
    was.

    Parameters
    ----------
    config : BookConfig
        Loaded book configuration.
    target : GitTarget or DirectoryTarget, optional
        Where to publish; when ``None`` the run stops after the build.
    output_dir : Path, optional
        Build directory; defaults to ``output.dir``.
    revision : SourceRevision, optional
        Source commit being published; resolved from git when omitted.
    token : str, optional
        Token for authenticated git remotes.

    Raises
    ------
    ValidationError, SampleFailure, LinkError, PublishError
        From the stage that failed.
    """
    book = load_book(config)
    logger.info(
        "Resolved %d document(s) from %s",
        len(book.manifest.paths),
        config.summary_path,
    )
    samples = run_verification(book, config.test)
    out_dir = output_dir or config.output_dir
    pages = BookGenerator(book).run(out_dir)
    if target is None:
        return PipelineResult(samples=samples, pages=pages)
    revision = revision or resolve_revision(config.root)
    result = publish(out_dir, target, revision, token=token)
    return PipelineResult(samples=samples, pages=pages, published=result)


__all__ = ["PipelineResult", "run_pipeline"]

"""Execute runnable samples and compare them with their declared outcome.

Each sample is written into its own temporary directory and run through the
command templates of its :class:`~book_pages.config.RunnerConfig`. Samples
share no state, so they are dispatched to a thread pool; every worker blocks
on its own subprocess. Any mismatch raises
:class:`~book_pages.errors.SampleFailure` after all samples have finished, so
one run reports every broken example.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import logging
import os
import subprocess
import sys
import tempfile
import typing as typ
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .errors import SampleFailure
from .samples import Outcome, Sample, extract_samples

if typ.TYPE_CHECKING:
    from .book import Book
    from .config import TestConfig

logger = logging.getLogger(__name__)

_STDERR_TAIL = 400


class Actual(enum.StrEnum):
    """What actually happened when a sample ran."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    COMPILE_FAILED = "failed to compile"
    TIMED_OUT = "timed out"
    UNAVAILABLE = "runner unavailable"
    SKIPPED = "skipped"


@dc.dataclass(slots=True, frozen=True)
class SampleResult:
    """Outcome of one sample run."""

    sample: Sample
    actual: Actual
    stderr: str = ""

    @property
    def passed(self) -> bool:
        """Return ``True`` when the observed outcome matches the expectation."""
        match self.sample.expected:
            case Outcome.SKIP:
                return True
            case Outcome.MUST_SUCCEED:
                return self.actual is Actual.SUCCEEDED
            case Outcome.MUST_FAIL:
                return self.actual is self._expected_failure
        return False  # pragma: no cover - exhaustive match

    @property
    def _expected_failure(self) -> Actual:
        if self.sample.compile_fail and self.sample.runner.compile:
            return Actual.COMPILE_FAILED
        return Actual.FAILED

    def __str__(self) -> str:
        summary = (
            f"{self.sample}: expected {self.sample.expected}, got {self.actual}"
        )
        tail = self.stderr.strip()[-_STDERR_TAIL:]
        if tail and not self.passed:
            summary = f"{summary}\n    {tail.replace(chr(10), chr(10) + '    ')}"
        return summary


def run_sample(sample: Sample, *, timeout: float) -> SampleResult:
    """Run ``sample`` in a scratch directory and classify the result.

    Parameters
    ----------
    sample : Sample
        Sample to execute.
    timeout : float
        Seconds allowed for each runner step.

    Returns
    -------
    SampleResult
        ``SUCCEEDED`` when every step exits zero, ``COMPILE_FAILED`` or
        ``FAILED`` when the compile or run step exits non-zero, ``TIMED_OUT``
        or ``UNAVAILABLE`` when a step cannot complete. Skipped samples are
        not executed, and ``compile_fail`` samples stop after compiling.
    """
    if sample.expected is Outcome.SKIP:
        return SampleResult(sample, Actual.SKIPPED)

    runner = sample.runner
    with tempfile.TemporaryDirectory(prefix="book-pages-sample-") as tmp:
        workdir = Path(tmp)
        source = workdir / f"sample{runner.extension}"
        source.write_text(sample.source, encoding="utf-8")
        values = {
            "file": str(source),
            "exe": str(workdir / "sample-bin"),
            "dir": str(workdir),
            "python": sys.executable,
        }
        steps: list[tuple[tuple[str, ...], Actual]] = []
        if runner.compile:
            steps.append((runner.compile, Actual.COMPILE_FAILED))
        if not (sample.compile_only or (runner.compile and sample.compile_fail)):
            steps.append((runner.run, Actual.FAILED))

        for step, failure in steps:
            command = [part.format(**values) for part in step]
            logger.debug("Running %s: %s", sample, " ".join(command))
            try:
                completed = subprocess.run(  # noqa: S603 - commands come from book config
                    command,
                    cwd=workdir,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    check=False,
                )
            except FileNotFoundError as exc:
                return SampleResult(sample, Actual.UNAVAILABLE, str(exc))
            except subprocess.TimeoutExpired:
                msg = f"step '{command[0]}' exceeded {timeout:g}s"
                return SampleResult(sample, Actual.TIMED_OUT, msg)
            if completed.returncode != 0:
                return SampleResult(sample, failure, completed.stderr)
    return SampleResult(sample, Actual.SUCCEEDED)


def verify_samples(
    samples: cabc.Sequence[Sample],
    *,
    timeout: float = 60.0,
    jobs: int | None = None,
) -> list[SampleResult]:
    """Run every sample and raise when any of them misbehaves.

    Parameters
    ----------
    samples : Sequence[Sample]
        Samples to execute.
    timeout : float, optional
        Per-step timeout in seconds.
    jobs : int or None, optional
        Worker threads; defaults to the CPU count.

    Returns
    -------
    list[SampleResult]
        Results in the order of ``samples`` when all of them pass.

    Raises
    ------
    SampleFailure
        If at least one sample's actual outcome differs from its expectation.
    """
    if not samples:
        return []
    workers = jobs or os.cpu_count() or 1
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(
            pool.map(lambda sample: run_sample(sample, timeout=timeout), samples)
        )
    failures = [result for result in results if not result.passed]
    skipped = sum(result.actual is Actual.SKIPPED for result in results)
    logger.info(
        "Verified %d sample(s): %d passed, %d skipped, %d failed",
        len(results),
        len(results) - len(failures) - skipped,
        skipped,
        len(failures),
    )
    if failures:
        raise SampleFailure(list(failures))
    return results


def run_verification(book: Book, test_config: TestConfig) -> list[SampleResult]:
    """Extract samples from every manifest document and verify them."""
    samples = extract_samples(book.ordered_documents(), test_config)
    return verify_samples(
        samples, timeout=test_config.timeout, jobs=test_config.jobs
    )


__all__ = [
    "Actual",
    "SampleResult",
    "run_sample",
    "run_verification",
    "verify_samples",
]

"""Error taxonomy shared by every stage of the book pipeline.

Each error is fatal to the current run. The CLI catches :class:`BookError`,
prints the diagnostic, and exits non-zero so no partial site is published.
"""

from __future__ import annotations


class BookError(RuntimeError):
    """Base class for failures that abort a build or publish run."""


class ValidationError(BookError):
    """Raised when the manifest or configuration is malformed or dangling.

    Attributes
    ----------
    path : str or None
        File the problem was found in (for example ``SUMMARY.md``).
    line : int or None
        1-based line number within ``path`` when known.
    """

    def __init__(
        self, message: str, *, path: str | None = None, line: int | None = None
    ) -> None:
        location = ""
        if path:
            location = f"{path}:{line}: " if line else f"{path}: "
        super().__init__(f"{location}{message}")
        self.path = path
        self.line = line


class ConfigError(ValidationError):
    """Raised when ``book.yaml`` cannot be turned into a usable configuration."""


class LinkError(BookError):
    """Raised when a document links to a target missing from the build."""

    def __init__(self, document: str, target: str) -> None:
        super().__init__(f"{document}: unresolved link to '{target}'")
        self.document = document
        self.target = target


class SampleFailure(BookError):
    """Raised when runnable samples do not behave as their fences declare.

    Attributes
    ----------
    results : list
        The mismatching :class:`~book_pages.verify.SampleResult` objects.
    """

    def __init__(self, results: list[object]) -> None:
        lines = [f"{len(results)} code sample(s) did not match their expectation:"]
        lines.extend(f"  {result}" for result in results)
        super().__init__("\n".join(lines))
        self.results = results


class PublishError(BookError):
    """Raised when the publish target cannot be written."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"failed to publish to {target}: {reason}")
        self.target = target
        self.reason = reason


__all__ = [
    "BookError",
    "ConfigError",
    "LinkError",
    "PublishError",
    "SampleFailure",
    "ValidationError",
]

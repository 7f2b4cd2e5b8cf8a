"""Publish a rendered site to its hosting target with all-or-nothing semantics.

This module powers the ``book-pages publish`` and ``deploy`` sub-commands by:

* Resolving the publish token from the CLI, the environment, or
  ``~/.config/book-pages/config.toml`` (and optionally persisting it there).
* Pushing the output tree to a git branch as a single orphan commit, guarded
  by ``--force-with-lease`` so concurrent runs cannot interleave.
* Swapping a ``current`` symlink for directory targets served by a web host.
* Refusing to replace a build published by a later run, so the most recent
  push wins whatever order overlapping runs finish in.
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import fcntl
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import typing as typ
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import tomlkit
from tomlkit.exceptions import ParseError

from ._constants import PUBLISH_META_FILENAME
from .errors import PublishError

if typ.TYPE_CHECKING:
    from .config import PublishConfig

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_PATH = Path(
    os.getenv(
        "BOOK_PAGES_CONFIG_FILE",
        Path.home() / ".config" / "book-pages" / "config.toml",
    )
)
TOKEN_ENV_VARS = ("BOOK_PAGES_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
RUN_NUMBER_ENV_VAR = "GITHUB_RUN_NUMBER"
MAX_LEASE_ATTEMPTS = 3

# Credential files should be readable by the owner only
_SECRET_FILE_MODE = 0o600

_COMMIT_TRAILER = re.compile(r"^Source-Commit:\s*(\S+)\s*$", re.MULTILINE)
_TIMESTAMP_TRAILER = re.compile(r"^Source-Timestamp:\s*(\d+)\s*$", re.MULTILINE)
_RUN_TRAILER = re.compile(r"^Source-Run:\s*(\d+)\s*$", re.MULTILINE)


@dc.dataclass(slots=True, frozen=True)
class SourceRevision:
    """Commit a build was produced from and the run that triggered it.

    ``run`` is a number that grows with every push, such as
    ``GITHUB_RUN_NUMBER``. Competing publishes are ordered by it rather than
    by commit time, so re-pushing an older commit rolls the site back.
    """

    commit: str
    timestamp: int
    run: int | None = None

    @property
    def short(self) -> str:
        return self.commit[:12]

    @property
    def label(self) -> str:
        return self.short if self.run is None else f"{self.short} (run {self.run})"

    def supersedes(self, other: SourceRevision | None) -> bool:
        """Return ``True`` when this revision may replace ``other``.

        Only a live build from a later run blocks a publish. Without run
        numbers on both sides the last writer wins.
        """
        if other is None or self.run is None or other.run is None:
            return True
        return self.run >= other.run

    def trailers(self) -> str:
        lines = [f"Source-Commit: {self.commit}", f"Source-Timestamp: {self.timestamp}"]
        if self.run is not None:
            lines.append(f"Source-Run: {self.run}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_trailers(cls, message: str) -> SourceRevision | None:
        """Parse the trailers written by :meth:`trailers`, if present."""
        commit = _COMMIT_TRAILER.search(message)
        timestamp = _TIMESTAMP_TRAILER.search(message)
        if not commit or not timestamp:
            return None
        run = _RUN_TRAILER.search(message)
        return cls(
            commit=commit.group(1),
            timestamp=int(timestamp.group(1)),
            run=int(run.group(1)) if run else None,
        )


@dc.dataclass(slots=True, frozen=True)
class GitTarget:
    """A branch on a git remote served by a pages host."""

    remote: str
    branch: str = "gh-pages"
    cname: str | None = None
    user_name: str = "book-pages"
    user_email: str = "book-pages@users.noreply.github.com"

    def describe(self) -> str:
        parts = urlsplit(self.remote)
        remote = self.remote
        if parts.username or parts.password:
            netloc = parts.hostname or ""
            if parts.port:
                netloc = f"{netloc}:{parts.port}"
            remote = urlunsplit(parts._replace(netloc=netloc))
        return f"{remote}#{self.branch}"


@dc.dataclass(slots=True, frozen=True)
class DirectoryTarget:
    """A local directory whose ``current`` symlink is served by a web host."""

    root: Path

    def describe(self) -> str:
        return f"dir:{self.root}"


PublishTarget = GitTarget | DirectoryTarget


@dc.dataclass(slots=True, frozen=True)
class PublishResult:
    """Summary of one publish attempt."""

    target: str
    revision: SourceRevision
    published: bool
    reference: str | None = None
    live_revision: SourceRevision | None = None

    def __str__(self) -> str:
        if self.published:
            return f"published {self.revision.short} to {self.target} ({self.reference})"
        live = self.live_revision.label if self.live_revision else "unknown"
        return (
            f"skipped {self.revision.label}: {self.target} already serves "
            f"{live} from a later run"
        )


def parse_target(
    target: str | None,
    publish_config: PublishConfig,
    *,
    branch: str | None = None,
) -> PublishTarget:
    """Turn a ``--target`` value (or the configured remote) into a target.

    ``dir:<path>`` selects a directory target; anything else is a git remote.

    Raises
    ------
    PublishError
        If neither ``target`` nor ``publish.remote`` names a target.
    """
    value = target or publish_config.remote
    if not value:
        msg = "no publish target given and 'publish.remote' is not configured"
        raise PublishError("<unset>", msg)
    if value.startswith("dir:"):
        return DirectoryTarget(root=Path(value[4:]).expanduser())
    return GitTarget(
        remote=value,
        branch=branch or publish_config.branch,
        cname=publish_config.cname,
        user_name=publish_config.user_name,
        user_email=publish_config.user_email,
    )


def _load_stored_token(path: Path) -> str | None:
    if not path.exists():
        return None
    try:
        doc = tomlkit.parse(path.read_text(encoding="utf-8"))
    except ParseError as exc:
        msg = f"Unable to parse credentials TOML at {path}"
        raise PublishError(str(path), msg) from exc
    auth = doc.get("auth") or {}
    token = auth.get("github_token")
    return str(token) if token else None


def save_token(token: str, *, path: Path = DEFAULT_CREDENTIALS_PATH) -> None:
    """Persist ``token`` into the credentials file preserving its formatting."""
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        doc = tomlkit.parse(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        doc = tomlkit.document()
    except ParseError as exc:
        msg = f"Unable to parse credentials TOML at {path}"
        raise PublishError(str(path), msg) from exc

    auth_table = doc.get("auth")
    if not isinstance(auth_table, tomlkit.items.Table):
        auth_table = tomlkit.table()
    auth_table["github_token"] = token
    doc["auth"] = auth_table

    path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    os.chmod(path, _SECRET_FILE_MODE)


def resolve_token(
    *,
    token: str | None = None,
    config_path: Path = DEFAULT_CREDENTIALS_PATH,
    save: bool = False,
) -> str | None:
    """Merge CLI, environment, and stored credentials into one publish token."""
    resolved = token
    for name in TOKEN_ENV_VARS:
        resolved = resolved or os.getenv(name)
    resolved = resolved or _load_stored_token(config_path)
    if save and resolved:
        save_token(resolved, path=config_path)
    return resolved


def run_git(
    args: list[str], *, cwd: Path, env: dict[str, str]
) -> subprocess.CompletedProcess[str]:
    """Invoke git with the provided arguments and environment."""
    return subprocess.run(  # noqa: S603
        ["git", *args],
        check=True,
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
    )


def resolve_revision(
    source_dir: Path,
    *,
    commit: str | None = None,
    timestamp: int | None = None,
    run: int | None = None,
) -> SourceRevision:
    """Identify the source commit being published and the run publishing it.

    The commit defaults to ``GITHUB_SHA`` and then ``git rev-parse HEAD`` in
    ``source_dir``; the timestamp defaults to that commit's committer time
    and the run number to ``GITHUB_RUN_NUMBER``.

    Raises
    ------
    PublishError
        If the commit cannot be determined from git and was not supplied, or
        ``GITHUB_RUN_NUMBER`` is not a number.
    """
    env = os.environ.copy()
    if run is None and os.getenv(RUN_NUMBER_ENV_VAR):
        try:
            run = int(os.environ[RUN_NUMBER_ENV_VAR])
        except ValueError as exc:
            msg = f"{RUN_NUMBER_ENV_VAR} must be an integer"
            raise PublishError(str(source_dir), msg) from exc
    sha = commit or os.getenv("GITHUB_SHA")
    try:
        if not sha:
            sha = run_git(["rev-parse", "HEAD"], cwd=source_dir, env=env).stdout.strip()
        if timestamp is None:
            shown = run_git(
                ["show", "-s", "--format=%ct", sha], cwd=source_dir, env=env
            )
            timestamp = int(shown.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError, ValueError) as exc:
        msg = "unable to determine the source commit; pass --commit and --commit-timestamp"
        raise PublishError(str(source_dir), msg) from exc
    return SourceRevision(commit=sha, timestamp=timestamp, run=run)


def publish(
    site_dir: Path,
    target: PublishTarget,
    revision: SourceRevision,
    *,
    token: str | None = None,
) -> PublishResult:
    """Replace the contents of ``target`` with ``site_dir`` in one step.

    Parameters
    ----------
    site_dir : Path
        Rendered output tree.
    target : GitTarget or DirectoryTarget
        Where the tree is published.
    revision : SourceRevision
        Source commit the tree was built from.
    token : str, optional
        Token used to authenticate ``https://`` git remotes.

    Returns
    -------
    PublishResult
        ``published`` is ``False`` when the target already serves a build
        from a later run.

    Raises
    ------
    PublishError
        If the tree is missing or the target cannot be written. The target is
        unchanged in that case.
    """
    if not site_dir.is_dir() or not any(site_dir.iterdir()):
        raise PublishError(target.describe(), f"'{site_dir}' is not a built site")
    match target:
        case GitTarget():
            return publish_to_branch(site_dir, target, revision, token=token)
        case DirectoryTarget():
            return publish_to_directory(site_dir, target, revision)
    msg = f"unsupported target {target!r}"  # pragma: no cover - exhaustive match
    raise PublishError(str(target), msg)  # pragma: no cover


def _authenticated_remote(remote: str, token: str | None) -> str:
    """Embed ``token`` into an ``https://`` remote as the access-token user."""
    parts = urlsplit(remote)
    if not token or parts.scheme != "https" or parts.username:
        return remote
    return urlunsplit(parts._replace(netloc=f"x-access-token:{token}@{parts.netloc}"))


def _redact(text: str, token: str | None) -> str:
    return text.replace(token, "***") if token else text


def build_git_env(target: GitTarget, revision: SourceRevision) -> dict[str, str]:
    """Construct an environment for non-interactive, reproducible commits."""
    env = os.environ.copy()
    stamp = f"@{revision.timestamp} +0000"
    env.update(
        {
            "GIT_AUTHOR_NAME": target.user_name,
            "GIT_AUTHOR_EMAIL": target.user_email,
            "GIT_COMMITTER_NAME": target.user_name,
            "GIT_COMMITTER_EMAIL": target.user_email,
            "GIT_AUTHOR_DATE": stamp,
            "GIT_COMMITTER_DATE": stamp,
            "GIT_TERMINAL_PROMPT": "0",
        }
    )
    return env


def _remote_head(workdir: Path, branch: str, env: dict[str, str]) -> str | None:
    """Return the commit the remote branch points at, or ``None``."""
    listed = run_git(
        ["ls-remote", "origin", f"refs/heads/{branch}"], cwd=workdir, env=env
    )
    for line in listed.stdout.splitlines():
        sha, _, ref = line.partition("\t")
        if ref == f"refs/heads/{branch}":
            return sha
    return None


def _live_revision(
    workdir: Path, branch: str, env: dict[str, str]
) -> SourceRevision | None:
    """Read the source revision recorded on the remote branch tip."""
    run_git(
        ["fetch", "--quiet", "--depth=1", "origin", f"refs/heads/{branch}"],
        cwd=workdir,
        env=env,
    )
    message = run_git(["log", "-1", "--format=%B", "FETCH_HEAD"], cwd=workdir, env=env)
    return SourceRevision.from_trailers(message.stdout)


def _commit_tree(
    workdir: Path,
    site_dir: Path,
    target: GitTarget,
    revision: SourceRevision,
    env: dict[str, str],
) -> str:
    """Stage the site into ``workdir`` as a parentless commit and return its id."""
    shutil.copytree(
        site_dir, workdir, dirs_exist_ok=True, ignore=shutil.ignore_patterns(".git")
    )
    (workdir / ".nojekyll").touch()
    if target.cname:
        (workdir / "CNAME").write_text(f"{target.cname}\n", encoding="utf-8")
    run_git(["add", "--all"], cwd=workdir, env=env)
    message = f"Publish {revision.short}\n\n{revision.trailers()}"
    run_git(["commit", "--quiet", "--no-verify", "-m", message], cwd=workdir, env=env)
    return run_git(["rev-parse", "HEAD"], cwd=workdir, env=env).stdout.strip()


def publish_to_branch(
    site_dir: Path,
    target: GitTarget,
    revision: SourceRevision,
    *,
    token: str | None = None,
    max_attempts: int = MAX_LEASE_ATTEMPTS,
) -> PublishResult:
    """Force-push ``site_dir`` to ``target.branch`` as one orphan commit.

    The push carries a lease on the branch value read before committing; if
    another run moves the branch in between, the remote is re-read and the
    run-order check repeated before pushing again.
    """
    description = target.describe()
    env = build_git_env(target, revision)
    try:
        with tempfile.TemporaryDirectory(prefix="book-pages-publish-") as tmp:
            workdir = Path(tmp)
            run_git(["init", "--quiet"], cwd=workdir, env=env)
            run_git(
                ["remote", "add", "origin", _authenticated_remote(target.remote, token)],
                cwd=workdir,
                env=env,
            )
            commit_sha = _commit_tree(workdir, site_dir, target, revision, env)
            for attempt in range(1, max_attempts + 1):
                observed = _remote_head(workdir, target.branch, env)
                live = (
                    _live_revision(workdir, target.branch, env) if observed else None
                )
                if not revision.supersedes(live):
                    logger.info(
                        "%s serves a build from a later run; skipping", description
                    )
                    return PublishResult(
                        target=description,
                        revision=revision,
                        published=False,
                        live_revision=live,
                    )
                lease = f"--force-with-lease=refs/heads/{target.branch}:{observed or ''}"
                try:
                    run_git(
                        [
                            "push",
                            "--quiet",
                            lease,
                            "origin",
                            f"{commit_sha}:refs/heads/{target.branch}",
                        ],
                        cwd=workdir,
                        env=env,
                    )
                except subprocess.CalledProcessError as exc:
                    if "stale info" not in (exc.stderr or ""):
                        raise
                    logger.warning(
                        "%s moved during publish (attempt %d of %d)",
                        description,
                        attempt,
                        max_attempts,
                    )
                    continue
                logger.info("Pushed %s to %s", commit_sha[:12], description)
                return PublishResult(
                    target=description,
                    revision=revision,
                    published=True,
                    reference=commit_sha,
                    live_revision=live,
                )
    except subprocess.CalledProcessError as exc:
        detail = _redact((exc.stderr or str(exc)).strip(), token)
        raise PublishError(description, detail) from exc
    except OSError as exc:
        raise PublishError(description, _redact(str(exc), token)) from exc
    reason = f"branch kept moving after {max_attempts} attempts"
    raise PublishError(description, reason)


@contextlib.contextmanager
def _exclusive_lock(path: Path) -> typ.Iterator[None]:
    """Hold an exclusive ``flock`` on ``path`` for the duration of the block."""
    with path.open("a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def read_directory_revision(current: Path) -> SourceRevision | None:
    """Return the revision recorded in a published directory, if any.

    Raises
    ------
    PublishError
        If the metadata file exists but cannot be parsed.
    """
    meta = current / PUBLISH_META_FILENAME
    if not meta.is_file():
        return None
    try:
        data = json.loads(meta.read_text(encoding="utf-8"))
        run = data.get("run")
        return SourceRevision(
            commit=str(data["commit"]),
            timestamp=int(data["timestamp"]),
            run=None if run is None else int(run),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        msg = f"corrupt publish metadata: {exc}"
        raise PublishError(str(meta), msg) from exc


def publish_to_directory(
    site_dir: Path, target: DirectoryTarget, revision: SourceRevision
) -> PublishResult:
    """Copy ``site_dir`` into a new release and atomically repoint ``current``."""
    description = target.describe()
    root = target.root
    current = root / "current"
    try:
        releases = root / "releases"
        releases.mkdir(parents=True, exist_ok=True)
        with _exclusive_lock(root / ".lock"):
            if current.exists() and not current.is_symlink():
                msg = f"'{current}' exists and is not a symlink"
                raise PublishError(description, msg)
            live = read_directory_revision(current)
            if not revision.supersedes(live):
                logger.info(
                    "%s serves a build from a later run; skipping", description
                )
                return PublishResult(
                    target=description,
                    revision=revision,
                    published=False,
                    live_revision=live,
                )
            release = Path(
                tempfile.mkdtemp(
                    prefix=f"{revision.timestamp}-{revision.short}-", dir=releases
                )
            )
            release.chmod(0o755)
            shutil.copytree(site_dir, release, dirs_exist_ok=True)
            (release / PUBLISH_META_FILENAME).write_text(
                json.dumps(dc.asdict(revision), sort_keys=True) + "\n",
                encoding="utf-8",
            )
            pending = root / f".current-{release.name}"
            os.symlink(os.path.relpath(release, root), pending)
            os.replace(pending, current)
            for stale in releases.iterdir():
                if stale != release:
                    shutil.rmtree(stale, ignore_errors=True)
    except OSError as exc:
        raise PublishError(description, str(exc)) from exc
    logger.info("Published %s to %s", revision.short, description)
    return PublishResult(
        target=description,
        revision=revision,
        published=True,
        reference=release.name,
        live_revision=live,
    )


__all__ = [
    "DEFAULT_CREDENTIALS_PATH",
    "DirectoryTarget",
    "GitTarget",
    "PublishResult",
    "PublishTarget",
    "SourceRevision",
    "build_git_env",
    "parse_target",
    "publish",
    "publish_to_branch",
    "publish_to_directory",
    "read_directory_revision",
    "resolve_revision",
    "resolve_token",
    "run_git",
    "save_token",
]

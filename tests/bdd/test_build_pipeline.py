"""Behaviour tests for the validate, verify, build, publish pipeline.

These pytest-bdd scenarios drive ``book_pages.pipeline.run_pipeline`` and the
directory publisher against books written to a temporary directory. The
feature file ``build_pipeline.feature`` covers the happy path, a dangling
manifest reference, a misbehaving sample that leaves the live site alone, and
publishes ordered by run number, including a rollback.

Usage
-----
Run ``pytest tests/bdd/test_build_pipeline.py -v`` after installing the test
extra (``pip install -e .[test]``). Samples run through the current Python
interpreter, so no other toolchain is required.
"""

from __future__ import annotations

import dataclasses as dc
import os
import typing as typ
from pathlib import Path

import pytest
from bs4 import BeautifulSoup
from pytest_bdd import given, parsers, scenarios, then, when

from book_pages.book import load_book
from book_pages.config import BookConfig, load_book_config
from book_pages.deploy import (
    DirectoryTarget,
    PublishResult,
    SourceRevision,
    publish,
    read_directory_revision,
)
from book_pages.errors import BookError, SampleFailure, ValidationError
from book_pages.generator import BookGenerator
from book_pages.pipeline import run_pipeline

FEATURE_FILE = (
    Path(__file__).resolve().parents[2] / "features" / "build_pipeline.feature"
)
scenarios(FEATURE_FILE)

REVISIONS = {
    "X": SourceRevision(commit="x" * 40, timestamp=1_700_000_000),
    "Y": SourceRevision(commit="y" * 40, timestamp=1_700_000_300),
}


@pytest.fixture
def scenario_state() -> dict[str, object]:
    """Return a mutable dict used to share scenario state across BDD steps."""
    return {}


def _config(state: dict[str, object]) -> BookConfig:
    return typ.cast("BookConfig", state["config"])


def _soup(path: Path) -> BeautifulSoup:
    return BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")


def _tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _revision(name: str, *, run: int) -> SourceRevision:
    return dc.replace(REVISIONS[name], run=run)


@given('a book with documents "intro.md" and "about.md" listed in order')
def given_two_page_book(
    write_book: typ.Callable[..., Path], scenario_state: dict[str, object]
) -> None:
    """Write a two-page book whose pages link to each other."""
    scenario_state["config"] = load_book_config(
        write_book(
            {
                "intro.md": "# Intro\n\nNext up: [about](about.md).\n",
                "about.md": "# About\n\n```python\nprint('about')\n```\n",
            }
        )
    )


@given('a book whose manifest references "missing.md"')
def given_dangling_manifest(
    write_book: typ.Callable[..., Path], scenario_state: dict[str, object]
) -> None:
    """Write a book whose summary lists a document that does not exist."""
    scenario_state["config"] = load_book_config(
        write_book(
            {"intro.md": "# Intro\n"},
            summary="- [Intro](intro.md)\n- [Missing](missing.md)\n",
        )
    )


@given("a book with a must-fail sample that exits cleanly")
def given_misbehaving_sample(
    write_book: typ.Callable[..., Path], scenario_state: dict[str, object]
) -> None:
    """Write a book whose must-fail sample succeeds."""
    scenario_state["config"] = load_book_config(
        write_book(
            {
                "intro.md": "# Intro\n",
                "about.md": (
                    "# About\n\nText.\n\n```python,must-fail\nprint('ok')\n```\n"
                ),
            }
        )
    )


@given("a directory publish target")
def given_directory_target(
    tmp_path: Path,
    write_book: typ.Callable[..., Path],
    scenario_state: dict[str, object],
) -> None:
    """Prepare an empty served directory and a buildable book."""
    scenario_state["target"] = DirectoryTarget(tmp_path / "srv")
    scenario_state["config"] = load_book_config(
        write_book({"intro.md": "# Intro\n", "about.md": "# About\n"})
    )


@given(parsers.parse('a directory publish target already serving commit "{name}"'))
def given_live_target(
    name: str, tmp_path: Path, scenario_state: dict[str, object]
) -> None:
    """Publish a build of the current book and remember the live tree."""
    target = DirectoryTarget(tmp_path / "srv")
    scenario_state["target"] = target
    assert _publish_build(scenario_state, tmp_path, name, run=1).published
    current = target.root / "current"
    scenario_state["live_link"] = os.readlink(current)
    scenario_state["live_tree"] = _tree(current)


def _run(scenario_state: dict[str, object], target: DirectoryTarget | None) -> None:
    try:
        scenario_state["result"] = run_pipeline(
            _config(scenario_state),
            target=target,
            revision=_revision("X", run=2),
        )
    except BookError as exc:
        scenario_state["error"] = exc


@when("I run the pipeline")
def when_run_pipeline(scenario_state: dict[str, object]) -> None:
    """Run validation, verification, and the build without publishing."""
    _run(scenario_state, None)


@when("I run the pipeline with the directory target")
def when_run_pipeline_with_target(scenario_state: dict[str, object]) -> None:
    """Run the whole pipeline against the served directory."""
    _run(scenario_state, typ.cast("DirectoryTarget", scenario_state["target"]))


def _publish_build(
    scenario_state: dict[str, object], tmp_path: Path, name: str, *, run: int
) -> PublishResult:
    """Build a site stamped with ``name`` and publish it from ``run``."""
    config = _config(scenario_state)
    site = tmp_path / f"build-{name}-{run}"
    BookGenerator(load_book(config)).run(site)
    (site / "revision.txt").write_text(name, encoding="utf-8")
    target = typ.cast("DirectoryTarget", scenario_state["target"])
    return publish(site, target, _revision(name, run=run))


@when(
    parsers.parse(
        'run {first_run:d} publishes commit "{first}" and then '
        'run {second_run:d} publishes commit "{second}"'
    )
)
def when_publish_in_order(
    first_run: int,
    first: str,
    second_run: int,
    second: str,
    tmp_path: Path,
    scenario_state: dict[str, object],
) -> None:
    """Publish two revisions one after the other."""
    for run, name in ((first_run, first), (second_run, second)):
        assert _publish_build(scenario_state, tmp_path, name, run=run).published


@when(parsers.parse('run {run:d} publishes commit "{name}" again late'))
def when_publish_late(
    run: int, name: str, tmp_path: Path, scenario_state: dict[str, object]
) -> None:
    """Publish from a run that started before the live one."""
    scenario_state["late"] = _publish_build(scenario_state, tmp_path, name, run=run)


@when(parsers.parse('run {run:d} re-publishes commit "{name}"'))
def when_republish(
    run: int, name: str, tmp_path: Path, scenario_state: dict[str, object]
) -> None:
    """Publish an older commit from a newer run, as a rollback push does."""
    assert _publish_build(scenario_state, tmp_path, name, run=run).published


@then('the output contains "intro.html" and "about.html"')
def then_output_has_pages(scenario_state: dict[str, object]) -> None:
    """Check both pages were written."""
    out_dir = _config(scenario_state).output_dir
    assert "error" not in scenario_state
    assert (out_dir / "intro.html").is_file()
    assert (out_dir / "about.html").is_file()


@then("both pages show the same navigation in manifest order")
def then_navigation_matches(scenario_state: dict[str, object]) -> None:
    """Check the sidebar is identical on every page."""
    out_dir = _config(scenario_state).output_dir
    for page in ("intro.html", "about.html"):
        soup = _soup(out_dir / page)
        hrefs = [a["href"] for a in soup.select(".book-nav__item > a")]
        assert hrefs == ["intro.html", "about.html"]


@then('"intro.html" links forward to "about.html" and "about.html" links back')
def then_pager_links(scenario_state: dict[str, object]) -> None:
    """Check the previous/next links follow the reading order."""
    out_dir = _config(scenario_state).output_dir
    intro = _soup(out_dir / "intro.html")
    about = _soup(out_dir / "about.html")
    assert intro.select_one("a[rel=next]")["href"] == "about.html"
    assert intro.select_one("a[rel=prev]") is None
    assert about.select_one("a[rel=prev]")["href"] == "intro.html"
    assert about.select_one("a[rel=next]") is None


@then(parsers.parse('a validation error names "{name}"'))
def then_validation_error(name: str, scenario_state: dict[str, object]) -> None:
    """Check the dangling reference was reported."""
    error = scenario_state.get("error")
    assert isinstance(error, ValidationError)
    assert name in str(error)


@then("no output directory is written")
def then_no_output(scenario_state: dict[str, object]) -> None:
    """Check the build never started."""
    assert not _config(scenario_state).output_dir.exists()


@then("a sample failure names the document and line")
def then_sample_failure(scenario_state: dict[str, object]) -> None:
    """Check the mismatch is reported with its location."""
    error = scenario_state.get("error")
    assert isinstance(error, SampleFailure)
    assert "about.md:5 (python): expected must-fail, got succeeded" in str(error)


@then("nothing is rendered")
def then_nothing_rendered(scenario_state: dict[str, object]) -> None:
    """Check the build never started."""
    assert not _config(scenario_state).output_dir.exists()


@then("the previously published site is unchanged")
def then_live_site_unchanged(scenario_state: dict[str, object]) -> None:
    """Check ``current`` still points at the same release with the same bytes."""
    target = typ.cast("DirectoryTarget", scenario_state["target"])
    current = target.root / "current"
    assert os.readlink(current) == scenario_state["live_link"]
    assert _tree(current) == scenario_state["live_tree"]
    assert len(list((target.root / "releases").iterdir())) == 1


@then(parsers.parse('the target serves the complete build of "{name}"'))
def then_target_serves(name: str, scenario_state: dict[str, object]) -> None:
    """Check the live tree is exactly one build, tagged with ``name``."""
    target = typ.cast("DirectoryTarget", scenario_state["target"])
    current = target.root / "current"
    assert (current / "revision.txt").read_text(encoding="utf-8") == name
    assert (current / "intro.html").is_file()
    assert (current / "about.html").is_file()
    live = read_directory_revision(current)
    assert live is not None
    assert live.commit == REVISIONS[name].commit


@then("the late publish is skipped")
def then_late_publish_skipped(scenario_state: dict[str, object]) -> None:
    """Check the older revision did not replace the newer one."""
    late = typ.cast("PublishResult", scenario_state["late"])
    assert not late.published
    assert late.live_revision == _revision("Y", run=2)

"""Tests for changed-path collection and the lookup map."""

import logging

import pytest

from push_guard.changed_paths import ChangedPathCollector, build_lookup_map, lookup_map_stats
from push_guard.errors import RepositoryDiffError
from push_guard.models import SUBMODULE_MODE, DiffStatus, PathOccurrence, PushContext
from tests.fakes import FakeDiffSource, entry, push_change


def test_collect_drops_deletions_and_requests_scannable_statuses() -> None:
    source = FakeDiffSource(
        paths=[
            entry("keep.py", "a" * 40),
            entry("gone.py", "0" * 40, status=DiffStatus.DELETED),
            entry("blank.py", "", status=DiffStatus.DELETED),
        ]
    )
    collected = ChangedPathCollector(source).collect(PushContext(changes=[push_change()]))

    assert [item.path for item in collected] == ["keep.py"]
    assert set(source.status_filters[0]) == {
        DiffStatus.ADDED,
        DiffStatus.MODIFIED,
        DiffStatus.TYPE_CHANGED,
        DiffStatus.COPIED,
        DiffStatus.RENAMED,
    }


def test_collect_drops_submodule_entries() -> None:
    source = FakeDiffSource(
        paths=[
            entry("vendor/lib", "c" * 40, new_mode=SUBMODULE_MODE),
            entry("app.py", "a" * 40),
        ]
    )
    collected = ChangedPathCollector(source).collect(PushContext(changes=[push_change()]))
    assert [item.path for item in collected] == ["app.py"]


def test_collect_without_new_commits_skips_path_lookup() -> None:
    source = FakeDiffSource(commits=[], paths=[entry("keep.py", "a" * 40)])
    assert ChangedPathCollector(source).collect(PushContext(changes=[push_change()])) == []
    assert source.status_filters == []


def test_collect_logs_arguments_and_reraises(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR)
    source = FakeDiffSource(commits=["c1", "c2"], fail_on="find_changed_paths")

    with pytest.raises(RepositoryDiffError):
        ChangedPathCollector(source).collect(PushContext(changes=[push_change()]))

    assert "find_changed_paths call failed with args" in caplog.text
    assert "c2" in caplog.text


def test_lookup_map_keeps_every_occurrence_of_a_blob() -> None:
    blob = "b" * 40
    lookup_map = build_lookup_map(
        [
            entry("config/app.yml", blob, commit_id="c1"),
            entry("config/copy.yml", blob, commit_id="c2"),
            entry("config/app.yml", blob, commit_id="c1"),
            entry("", "e" * 40, commit_id=""),
        ]
    )

    assert lookup_map[blob] == [
        PathOccurrence("c1", "config/app.yml"),
        PathOccurrence("c2", "config/copy.yml"),
        PathOccurrence("c1", "config/app.yml"),
    ]
    assert lookup_map["e" * 40] == [PathOccurrence("", "")]
    assert not lookup_map["e" * 40][0].is_usable
    assert lookup_map_stats(lookup_map) == {
        "total_payloads": 2,
        "total_changed_path_entries": 4,
    }

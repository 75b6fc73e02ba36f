from __future__ import annotations

from pathlib import Path

import allure

from wikidata_filter_runner.orchestrator.models import (
    ProcessHandle,
    TaskInvocation,
    TaskRunStatus,
    TokenState,
)
from wikidata_filter_runner.orchestrator.repository import SQLiteTokenStore

pytestmark = [
    allure.epic("Background Tasks"),
    allure.feature("Tracking Tokens"),
]


def _invocation(tmp_path: Path) -> TaskInvocation:
    return TaskInvocation(
        executable="/root/wikidata-filter/background.sh",
        args=("--labels", "--statement-counts", "wikidata-20201230-truthy-BETA.nt.bz2"),
        working_dir=tmp_path,
    )


def test_reserve_is_exclusive_per_run_id(token_store: SQLiteTokenStore, tmp_path: Path) -> None:
    first = token_store.reserve("20201230", _invocation(tmp_path), log_path=tmp_path / "a.log")
    second = token_store.reserve("20201230", _invocation(tmp_path), log_path=tmp_path / "b.log")

    assert first is not None
    assert first.state is TokenState.RESERVED
    assert second is None
    assert token_store.reserve("20210104", _invocation(tmp_path), log_path=None) is not None


def test_activate_round_trips_invocation_and_handle(
    token_store: SQLiteTokenStore,
    tmp_path: Path,
) -> None:
    reserved = token_store.reserve("20201230", _invocation(tmp_path), log_path=tmp_path / "a.log")
    assert reserved is not None

    active = token_store.activate(
        "20201230",
        reserved.token_id,
        ProcessHandle(pid=4242, created_at=1700000000.5),
    )

    assert active is not None
    assert active.state is TokenState.ACTIVE
    assert active.handle == ProcessHandle(pid=4242, created_at=1700000000.5)
    assert active.invocation.args == _invocation(tmp_path).args
    assert active.log_path == tmp_path / "a.log"
    assert active.started_at is not None
    assert active.reserved_at.tzinfo is not None


def test_remove_requires_matching_token_id(token_store: SQLiteTokenStore, tmp_path: Path) -> None:
    reserved = token_store.reserve("20201230", _invocation(tmp_path), log_path=None)
    assert reserved is not None

    assert token_store.remove("20201230", "someone-else", status=TaskRunStatus.STALE) is False
    assert token_store.get("20201230") is not None
    assert token_store.remove("20201230", reserved.token_id, status=TaskRunStatus.STOPPED)
    assert token_store.get("20201230") is None


def test_history_excludes_spawn_failures(token_store: SQLiteTokenStore, tmp_path: Path) -> None:
    failed = token_store.reserve("r1", _invocation(tmp_path), log_path=None)
    assert failed is not None
    token_store.remove(
        "r1",
        failed.token_id,
        status=TaskRunStatus.SPAWN_FAILED,
        error_summary="No such file or directory",
    )
    assert token_store.has_history("r1") is False

    ran = token_store.reserve("r1", _invocation(tmp_path), log_path=None)
    assert ran is not None
    token_store.remove("r1", ran.token_id, status=TaskRunStatus.STOPPED)
    assert token_store.has_history("r1") is True

    runs = token_store.list_runs(limit=10, run_id="r1")
    assert [run.status for run in runs] == [TaskRunStatus.STOPPED, TaskRunStatus.SPAWN_FAILED]
    assert runs[1].error_summary == "No such file or directory"
    assert runs[0].finished_at is not None


def test_environment_is_persisted_with_the_token(
    token_store: SQLiteTokenStore,
    tmp_path: Path,
) -> None:
    invocation = TaskInvocation(
        executable="/root/wikidata-filter/background.sh",
        args=("--labels",),
        working_dir=tmp_path,
        env={"LANG": "C.UTF-8", "WIKIDATA_DUMP_DATE": "20201230"},
    )
    reserved = token_store.reserve("20201230", invocation, log_path=None)
    assert reserved is not None

    stored = token_store.get("20201230")
    assert stored is not None
    assert stored.invocation.env == {"LANG": "C.UTF-8", "WIKIDATA_DUMP_DATE": "20201230"}

    handle = ProcessHandle(pid=4242, created_at=None)
    active = token_store.activate("20201230", reserved.token_id, handle)
    assert active is not None
    assert active.invocation.env == invocation.env


def test_activate_returns_none_once_token_is_reclaimed(
    token_store: SQLiteTokenStore,
    tmp_path: Path,
) -> None:
    reserved = token_store.reserve("20201230", _invocation(tmp_path), log_path=None)
    assert reserved is not None
    token_store.remove("20201230", reserved.token_id, status=TaskRunStatus.STALE)

    handle = ProcessHandle(pid=4242, created_at=None)
    assert token_store.activate("20201230", reserved.token_id, handle) is None

"""SQLModel-backed tracking-token store and task run history."""

from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from wikidata_filter_runner.orchestrator.models import (
    JobRecord,
    ProcessHandle,
    TaskInvocation,
    TaskRunStatus,
    TaskRunView,
    TokenState,
)
from wikidata_filter_runner.storage.alembic_runner import upgrade_head
from wikidata_filter_runner.storage.common import (
    build_sqlite_engine,
    to_utc,
    utc_now,
)
from wikidata_filter_runner.storage.sqlmodel_models import TaskRun, TrackingToken


class SQLiteTokenStore:
    """Persists tracking tokens so the primary key enforces one token per run id."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def reserve(
        self,
        run_id: str,
        invocation: TaskInvocation,
        *,
        log_path: Path | None,
    ) -> JobRecord | None:
        token_id = str(uuid4())
        now = utc_now()
        args_json = json.dumps(list(invocation.args))
        with Session(self.engine) as session:
            session.add(
                TrackingToken(
                    run_id=run_id,
                    token_id=token_id,
                    state=TokenState.RESERVED.value,
                    executable=invocation.executable,
                    args_json=args_json,
                    env_json=json.dumps(dict(invocation.env)),
                    working_dir=str(invocation.working_dir),
                    log_path=str(log_path) if log_path is not None else None,
                    reserved_at=now,
                ),
            )
            session.add(
                TaskRun(
                    run_id=run_id,
                    token_id=token_id,
                    status=TaskRunStatus.RUNNING.value,
                    executable=invocation.executable,
                    args_json=args_json,
                    working_dir=str(invocation.working_dir),
                    log_path=str(log_path) if log_path is not None else None,
                    started_at=now,
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None

        return JobRecord(
            run_id=run_id,
            token_id=token_id,
            state=TokenState.RESERVED,
            invocation=TaskInvocation(
                executable=invocation.executable,
                args=tuple(invocation.args),
                working_dir=invocation.working_dir,
                env=dict(invocation.env),
            ),
            reserved_at=now,
            log_path=log_path,
        )

    def get(self, run_id: str) -> JobRecord | None:
        with Session(self.engine) as session:
            row = session.get(TrackingToken, run_id)
            if row is None:
                return None
            return _to_job_record(row)

    def activate(self, run_id: str, token_id: str, handle: ProcessHandle) -> JobRecord | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrackingToken).where(
                    TrackingToken.run_id == run_id,
                    TrackingToken.token_id == token_id,
                ),
            ).one_or_none()
            if row is None:
                return None
            now = utc_now()
            row.state = TokenState.ACTIVE.value
            row.pid = handle.pid
            row.process_created_at = handle.created_at
            row.started_at = now
            session.add(row)

            history = _history_row(session, token_id)
            if history is not None:
                history.pid = handle.pid
                history.started_at = now
                session.add(history)

            session.commit()
            session.refresh(row)
            return _to_job_record(row)

    def remove(
        self,
        run_id: str,
        token_id: str,
        *,
        status: TaskRunStatus,
        error_summary: str | None = None,
    ) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrackingToken).where(
                    TrackingToken.run_id == run_id,
                    TrackingToken.token_id == token_id,
                ),
            ).one_or_none()
            if row is None:
                return False
            session.delete(row)

            history = _history_row(session, token_id)
            if history is not None:
                history.status = status.value
                history.finished_at = utc_now()
                history.error_summary = error_summary
                session.add(history)

            session.commit()
            return True

    def has_history(self, run_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskRun.task_run_id)
                .where(
                    TaskRun.run_id == run_id,
                    TaskRun.status != TaskRunStatus.SPAWN_FAILED.value,
                )
                .limit(1),
            ).first()
            return row is not None

    def list_runs(self, *, limit: int, run_id: str | None = None) -> list[TaskRunView]:
        with Session(self.engine) as session:
            statement = select(TaskRun)
            if run_id is not None:
                statement = statement.where(TaskRun.run_id == run_id)
            rows = session.exec(
                statement.order_by(
                    col(TaskRun.started_at).desc(),
                    col(TaskRun.task_run_id).desc(),
                ).limit(limit),
            ).all()
            return [
                TaskRunView(
                    run_id=row.run_id,
                    status=TaskRunStatus(row.status),
                    pid=row.pid,
                    executable=row.executable,
                    args=tuple(json.loads(row.args_json)),
                    working_dir=Path(row.working_dir),
                    started_at=to_utc(row.started_at),
                    finished_at=to_utc(row.finished_at) if row.finished_at else None,
                    error_summary=row.error_summary,
                )
                for row in rows
            ]


def _history_row(session: Session, token_id: str) -> TaskRun | None:
    return session.exec(select(TaskRun).where(TaskRun.token_id == token_id)).one_or_none()


def _to_job_record(row: TrackingToken) -> JobRecord:
    return JobRecord(
        run_id=row.run_id,
        token_id=row.token_id,
        state=TokenState(row.state),
        invocation=TaskInvocation(
            executable=row.executable,
            args=tuple(json.loads(row.args_json)),
            working_dir=Path(row.working_dir),
            env=json.loads(row.env_json),
        ),
        reserved_at=to_utc(row.reserved_at),
        pid=row.pid,
        process_created_at=row.process_created_at,
        started_at=to_utc(row.started_at) if row.started_at else None,
        log_path=Path(row.log_path) if row.log_path else None,
    )

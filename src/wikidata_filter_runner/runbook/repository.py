"""Persisted step state, keyed by pipeline id and step name."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import delete
from sqlmodel import Session, col, select

from wikidata_filter_runner.runbook.models import PipelineStepResult, StepStatus
from wikidata_filter_runner.storage.alembic_runner import upgrade_head
from wikidata_filter_runner.storage.common import build_sqlite_engine, utc_now
from wikidata_filter_runner.storage.sqlmodel_models import PipelineStepRow


class SQLitePipelineStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def completed_steps(self, pipeline_id: str) -> set[str]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineStepRow.step_name).where(
                    PipelineStepRow.pipeline_id == pipeline_id,
                    PipelineStepRow.status == StepStatus.COMPLETED.value,
                ),
            ).all()
            return set(rows)

    def record(self, pipeline_id: str, position: int, result: PipelineStepResult) -> None:
        with Session(self.engine) as session:
            row = session.get(PipelineStepRow, (pipeline_id, result.step_name))
            if row is None:
                row = PipelineStepRow(
                    pipeline_id=pipeline_id,
                    step_name=result.step_name,
                    position=position,
                    status=result.status.value,
                    updated_at=utc_now(),
                )
            row.position = position
            row.status = result.status.value
            row.detail = result.detail
            row.error = result.error
            row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def reset_from(self, pipeline_id: str, position: int) -> None:
        """Forget results of the step at ``position`` and every later one."""

        with Session(self.engine) as session:
            session.execute(
                delete(PipelineStepRow).where(
                    col(PipelineStepRow.pipeline_id) == pipeline_id,
                    col(PipelineStepRow.position) >= position,
                ),
            )
            session.commit()

    def list_steps(self, pipeline_id: str) -> list[PipelineStepResult]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineStepRow)
                .where(PipelineStepRow.pipeline_id == pipeline_id)
                .order_by(col(PipelineStepRow.position)),
            ).all()
            return [
                PipelineStepResult(
                    step_name=row.step_name,
                    status=StepStatus(row.status),
                    detail=row.detail,
                    error=row.error,
                )
                for row in rows
            ]

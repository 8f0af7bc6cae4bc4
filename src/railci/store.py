# store.py
from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .model import Event, EventType, JobInstance, JobStatus, Run, RunStatus, Workflow


class Base(DeclarativeBase):
    pass


class RunRecord(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    workflow: Mapped[str] = mapped_column(sa.Text, nullable=False)
    concurrency_key: Mapped[str] = mapped_column(sa.Text, nullable=False, index=True)
    ref: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    target_ref: Mapped[str] = mapped_column(sa.Text, nullable=False)
    commit_sha: Mapped[str] = mapped_column(sa.Text, nullable=False)
    head_ref: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    head_sha: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)


class JobRecord(Base):
    __tablename__ = "job_instances"
    run_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey("runs.id", ondelete="CASCADE"), primary_key=True)
    name: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    environment: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    step_cursor: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything railci writes is UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class RunStore:
    """
    Persisted run history.

    Every status change is upserted, so after a restart the concurrency
    registry can be rebuilt from the runs that were still active.
    """

    def __init__(self, database_url: str):
        url = make_url(database_url)
        kwargs: dict = {}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            else:
                # one shared connection, or every thread sees its own empty database
                kwargs["poolclass"] = StaticPool
        self.engine = sa.create_engine(url, **kwargs)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(self.engine, expire_on_commit=False)
        self._lock = threading.Lock()

    def close(self) -> None:
        self.engine.dispose()

    # ---- writes ----

    def save(self, run: Run) -> None:
        # snapshot and write under one lock, or a stale snapshot can land
        # after a newer one
        with self._lock:
            with run.lock:
                record = RunRecord(
                    id=run.id,
                    workflow=run.workflow,
                    concurrency_key=run.concurrency_key,
                    ref=run.ref,
                    event_type=run.event.type.value,
                    target_ref=run.event.target_ref,
                    commit_sha=run.event.commit_sha,
                    head_ref=run.event.head_ref,
                    head_sha=run.event.head_sha,
                    status=run.status.value,
                    created_at=run.created_at,
                    ended_at=run.ended_at,
                )
                jobs = [
                    JobRecord(
                        run_id=run.id,
                        name=inst.name,
                        position=pos,
                        status=inst.status.value,
                        reason=inst.reason,
                        environment=inst.environment,
                        step_cursor=inst.step_cursor,
                        started_at=inst.started_at,
                        ended_at=inst.ended_at,
                    )
                    for pos, inst in enumerate(run.jobs.values())
                ]

            with self._session.begin() as s:
                s.merge(record)
                for job in jobs:
                    s.merge(job)

    # ---- reads ----

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._session() as s:
            return s.get(RunRecord, run_id)

    def jobs(self, run_id: str) -> List[JobRecord]:
        with self._session() as s:
            q = sa.select(JobRecord).where(JobRecord.run_id == run_id).order_by(JobRecord.position)
            return list(s.scalars(q))

    def list_runs(self, *, limit: int = 20, concurrency_key: Optional[str] = None) -> List[RunRecord]:
        with self._session() as s:
            q = sa.select(RunRecord).order_by(RunRecord.created_at.desc()).limit(limit)
            if concurrency_key:
                q = q.where(RunRecord.concurrency_key == concurrency_key)
            return list(s.scalars(q))

    def load_active(self, workflow: Workflow) -> List[Run]:
        """
        Rebuild the Pending/Running runs of `workflow` as Run objects.

        Nothing executes them after a restart, so unfinished jobs come back
        Pending; terminal job statuses are kept. Jobs no longer in the
        workflow are dropped.
        """
        active = [RunStatus.PENDING.value, RunStatus.RUNNING.value]
        with self._session() as s:
            q = (
                sa.select(RunRecord)
                .where(RunRecord.workflow == workflow.name, RunRecord.status.in_(active))
                .order_by(RunRecord.created_at)
            )
            records = list(s.scalars(q))

        templates = {j.name: j for j in workflow.jobs}
        runs: List[Run] = []
        for rec in records:
            jobs = {}
            for jr in self.jobs(rec.id):
                if jr.name not in templates:
                    continue
                status = JobStatus(jr.status)
                inst = JobInstance(job=templates[jr.name])
                if status.terminal:
                    inst.status = status
                    inst.reason = jr.reason
                    inst.started_at = _aware(jr.started_at)
                    inst.ended_at = _aware(jr.ended_at)
                jobs[jr.name] = inst

            event = Event(
                type=EventType(rec.event_type),
                target_ref=rec.target_ref,
                commit_sha=rec.commit_sha,
                head_ref=rec.head_ref,
                head_sha=rec.head_sha,
            )
            runs.append(
                Run(
                    id=rec.id,
                    workflow=rec.workflow,
                    event=event,
                    concurrency_key=rec.concurrency_key,
                    jobs=jobs,
                    status=RunStatus(rec.status),
                    created_at=_aware(rec.created_at),
                )
            )
        return runs

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from railci.model import Event, EventType, Run
from railci.store import JobRecord, RunRecord

# -------------------- Requests --------------------

class EventRequest(BaseModel):
    type: EventType = EventType.PUSH
    ref: str = Field(description="Pushed branch, or the branch a pull request targets")
    commit_sha: str = ""
    head_ref: Optional[str] = None
    head_sha: Optional[str] = None

    @model_validator(mode="after")
    def _pull_request_needs_head(self) -> "EventRequest":
        if self.type is EventType.PULL_REQUEST and not self.head_ref:
            raise ValueError("pull_request events must carry head_ref")
        return self

    def to_event(self) -> Event:
        return Event(
            type=self.type,
            target_ref=self.ref,
            commit_sha=self.commit_sha,
            head_ref=self.head_ref,
            head_sha=self.head_sha,
        )

# -------------------- Responses --------------------

class EventResponse(BaseModel):
    admitted: bool
    run_id: Optional[str] = None
    status: Optional[str] = None
    concurrency_key: Optional[str] = None
    reason: Optional[str] = None

class JobResponse(BaseModel):
    name: str
    status: str
    reason: Optional[str] = None
    environment: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

class RunResponse(BaseModel):
    id: str
    workflow: str
    event_type: str
    ref: str
    commit_sha: str
    concurrency_key: str
    status: str
    created_at: datetime
    ended_at: Optional[datetime] = None
    jobs: list[JobResponse] = Field(default_factory=list)


def run_response(run: Run) -> RunResponse:
    with run.lock:
        return RunResponse(
            id=run.id,
            workflow=run.workflow,
            event_type=run.event.type.value,
            ref=run.ref,
            commit_sha=run.event.commit_sha,
            concurrency_key=run.concurrency_key,
            status=run.status.value,
            created_at=run.created_at,
            ended_at=run.ended_at,
            jobs=[
                JobResponse(
                    name=inst.name,
                    status=inst.status.value,
                    reason=inst.reason,
                    environment=inst.environment,
                    started_at=inst.started_at,
                    ended_at=inst.ended_at,
                )
                for inst in run.jobs.values()
            ],
        )


def record_response(rec: RunRecord, jobs: list[JobRecord]) -> RunResponse:
    return RunResponse(
        id=rec.id,
        workflow=rec.workflow,
        event_type=rec.event_type,
        ref=rec.ref,
        commit_sha=rec.commit_sha,
        concurrency_key=rec.concurrency_key,
        status=rec.status,
        created_at=rec.created_at,
        ended_at=rec.ended_at,
        jobs=[
            JobResponse(
                name=j.name,
                status=j.status,
                reason=j.reason,
                environment=j.environment,
                started_at=j.started_at,
                ended_at=j.ended_at,
            )
            for j in jobs
        ],
    )

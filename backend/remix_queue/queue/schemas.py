"""Queue statuses, transition table, and result models."""

from enum import Enum

from pydantic import BaseModel


class JobStatus(str, Enum):
    """Persisted job lifecycle states."""

    WAITING = "waiting"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


# Reported for ids the store does not know (swept or never created). Never persisted.
NOT_FOUND = "not_found"

ACTIVE_STATUSES = (JobStatus.WAITING, JobStatus.RUNNING)
TERMINAL_STATUSES = (JobStatus.DONE, JobStatus.ERROR)

# Valid state transitions. WAITING -> DONE/ERROR covers a client giving up before admission.
TRANSITIONS = {
    JobStatus.WAITING: [JobStatus.RUNNING, JobStatus.DONE, JobStatus.ERROR],
    JobStatus.RUNNING: [JobStatus.DONE, JobStatus.ERROR],
    JobStatus.DONE: [],  # Terminal state
    JobStatus.ERROR: [],  # Terminal state
}


def allowed_sources(target: JobStatus) -> list[JobStatus]:
    """Return the statuses a job may be in for a transition to ``target``."""
    return [source for source, targets in TRANSITIONS.items() if target in targets]


class JoinResult(BaseModel):
    """Outcome of enqueueing a job. ``position`` is an advisory snapshot."""

    queue_id: str
    position: int
    status: str = JobStatus.WAITING.value


class PollResult(BaseModel):
    """Outcome of a status poll."""

    status: str
    position: int
    can_start: bool

    @classmethod
    def not_found(cls) -> "PollResult":
        return cls(status=NOT_FOUND, position=0, can_start=False)


class FinishResult(BaseModel):
    """Outcome of a done/error call. ``ok`` is False only for unknown ids."""

    ok: bool
    status: str


class SweepReport(BaseModel):
    """Rows removed by one sweeper pass."""

    stale_deleted: int = 0
    expired_deleted: int = 0

    @property
    def total(self) -> int:
        return self.stale_deleted + self.expired_deleted


class QueueSummary(BaseModel):
    """Row counts per status plus the current slot holder."""

    waiting: int = 0
    running: int = 0
    done: int = 0
    error: int = 0
    running_id: str | None = None

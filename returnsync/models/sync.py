from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from returnsync.models.candidate import CandidateReturn


class SubtaskName(StrEnum):
    """Independent subtasks fanned out by one run"""

    TRACKING = "tracking"
    INBOX = "inbox"


class SubtaskOutcome(BaseModel):
    """Result of one subtask within a run"""

    name: SubtaskName
    success: bool = True
    skipped: bool = False
    timed_out: bool = False
    error: Optional[str] = Field(default=None, description="Error summary if failed")

    # Tracking counters
    items_attempted: int = 0
    items_updated: int = 0
    items_failed: int = 0
    transitions: int = 0
    deadline_warnings: int = 0

    # Inbox counters
    candidates: list[CandidateReturn] = Field(default_factory=list)
    new_candidates: int = 0

    @classmethod
    def skipped_success(cls, name: SubtaskName) -> "SubtaskOutcome":
        return cls(name=name, success=True, skipped=True)


class SyncRun(BaseModel):
    """
    One bounded-time synchronization run.

    Once a run is closed, any result still arriving for it is discarded
    instead of written.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deadline: datetime = Field(description="Absolute deadline for this run")
    closed: bool = False
    close_reason: Optional[str] = None

    def close(self, reason: str) -> None:
        if not self.closed:
            self.closed = True
            self.close_reason = reason


class RunResult(BaseModel):
    """Aggregate outcome reported back to the supervisor"""

    run_id: str
    success: bool
    timed_out: bool = False
    tracking: SubtaskOutcome
    inbox: SubtaskOutcome
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def candidates(self) -> list[CandidateReturn]:
        return self.inbox.candidates

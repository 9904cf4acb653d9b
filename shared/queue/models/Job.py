"""Job records and options for the Redis-backed job queue."""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class BackoffPolicy(BaseModel):
    """Delay between attempts.

    Exponential: ``delay_ms * 2 ** (attempts_made - 1)``, capped at ``max_delay_ms``.
    """

    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=60_000, ge=0)

    def compute(self, attempts_made: int) -> int:
        if self.type == "fixed":
            return min(self.delay_ms, self.max_delay_ms)
        exponent = max(attempts_made - 1, 0)
        return min(self.delay_ms * (2 ** exponent), self.max_delay_ms)


class RetentionPolicy(BaseModel):
    """How long finished jobs are kept. None disables the respective limit."""

    age_ms: int | None = None
    count: int | None = None


class JobOptions(BaseModel):
    job_id: str | None = None
    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    # lower number is dispatched first
    priority: int = Field(default=10, ge=0, le=1000)
    delay_ms: int = Field(default=0, ge=0)
    remove_on_complete: RetentionPolicy = Field(
        default_factory=lambda: RetentionPolicy(age_ms=24 * 3600 * 1000, count=1000)
    )
    remove_on_fail: RetentionPolicy = Field(
        default_factory=lambda: RetentionPolicy(age_ms=7 * 24 * 3600 * 1000)
    )


class JobRecord(BaseModel):
    id: str
    name: str
    data: dict[str, Any]
    opts: JobOptions
    state: JobState
    progress: int = 0
    attempts_made: int = 0
    stalled_count: int = 0
    created_at: int
    processed_on: int | None = None
    finished_on: int | None = None
    failed_reason: str | None = None
    return_value: dict[str, Any] | None = None
    lock_token: str | None = None

    def to_hash(self) -> dict[str, str]:
        """Flatten the record into Redis hash fields. None values are left out."""
        raw = {
            "id": self.id,
            "name": self.name,
            "data": json.dumps(self.data),
            "opts": self.opts.model_dump_json(),
            "state": self.state.value,
            "progress": str(self.progress),
            "attempts_made": str(self.attempts_made),
            "stalled_count": str(self.stalled_count),
            "created_at": str(self.created_at),
            "processed_on": None if self.processed_on is None else str(self.processed_on),
            "finished_on": None if self.finished_on is None else str(self.finished_on),
            "failed_reason": self.failed_reason,
            "return_value": None if self.return_value is None else json.dumps(self.return_value),
            "lock_token": self.lock_token,
        }
        return {key: value for key, value in raw.items() if value is not None}

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> "JobRecord":
        return cls(
            id=raw["id"],
            name=raw["name"],
            data=json.loads(raw["data"]),
            opts=JobOptions.model_validate_json(raw["opts"]),
            state=JobState(raw["state"]),
            progress=int(raw.get("progress", 0)),
            attempts_made=int(raw.get("attempts_made", 0)),
            stalled_count=int(raw.get("stalled_count", 0)),
            created_at=int(raw["created_at"]),
            processed_on=int(raw["processed_on"]) if raw.get("processed_on") else None,
            finished_on=int(raw["finished_on"]) if raw.get("finished_on") else None,
            failed_reason=raw.get("failed_reason"),
            return_value=json.loads(raw["return_value"]) if raw.get("return_value") else None,
            lock_token=raw.get("lock_token"),
        )

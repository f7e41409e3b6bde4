"""Typed events published on a job's progress channel."""
from typing import ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: ClassVar[str]
    terminal: ClassVar[bool] = False

    def to_message(self) -> dict:
        return {"event": self.name, "data": self.model_dump(by_alias=True)}


class ProgressEvent(JobEvent):
    name: ClassVar[str] = "progress"

    stage: str
    message: str
    progress: float = Field(ge=0, le=100)


class InvalidUrlsEvent(JobEvent):
    name: ClassVar[str] = "invalid-urls"

    count: int
    urls: list[str]
    message: str


class RateLimitEvent(JobEvent):
    name: ClassVar[str] = "rate-limit"

    message: str
    processed: int
    total: int
    remaining: int


class BatchErrorEvent(JobEvent):
    name: ClassVar[str] = "batch-error"

    batch_num: int
    total_batches: int
    error: str
    message: str


class UrlLimitWarningEvent(JobEvent):
    name: ClassVar[str] = "url-limit-warning"

    total: int
    processing: int
    remaining: int
    message: str


class CompleteEvent(JobEvent):
    name: ClassVar[str] = "complete"
    terminal: ClassVar[bool] = True

    success: bool
    total: int
    reported: int
    skipped: int
    failed: int
    invalid: int
    rate_limit_reached: bool = False
    message: str | None = None


class StoppedEvent(JobEvent):
    name: ClassVar[str] = "stopped"
    terminal: ClassVar[bool] = True


class ErrorEvent(JobEvent):
    name: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True

    message: str


class JobObserver(Protocol):
    async def publish(self, job_id: str, event: JobEvent) -> None:
        ...

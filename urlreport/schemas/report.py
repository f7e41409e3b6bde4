from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from urlreport.models.submission import ALL_STATES


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReportRequest(BaseModel):
    urls: list[str]

    @field_validator("urls")
    @classmethod
    def urls_must_not_be_empty(cls, v: list[str]) -> list[str]:
        if not any(url.strip() for url in v):
            raise ValueError("urls must contain at least one entry")
        return v


class ReportResponse(CamelModel):
    success: bool
    job_id: str
    message: str


class JobStatusResponse(CamelModel):
    job_id: str
    status: str
    active: bool


class CancelResponse(BaseModel):
    success: bool
    message: str


class CheckStatusesResponse(CamelModel):
    success: bool
    updated: int
    total_checked: int
    batches: int
    message: str


class SubmissionOut(BaseModel):
    url: str
    identifier: str | None
    state: str
    tags: list[str]
    error: str | None
    reported_at: datetime


class SubmissionsResponse(BaseModel):
    success: bool
    submissions: list[SubmissionOut]


class DeleteRequest(BaseModel):
    urls: list[str] = []
    states: list[str] = []

    @field_validator("states")
    @classmethod
    def states_must_be_known(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - set(ALL_STATES))
        if unknown:
            raise ValueError(f"unknown states: {', '.join(unknown)}")
        return v

    @model_validator(mode="after")
    def needs_a_selector(self) -> "DeleteRequest":
        if not self.urls and not self.states:
            raise ValueError("either urls or states is required")
        return self


class DeleteResponse(BaseModel):
    success: bool
    deleted: int

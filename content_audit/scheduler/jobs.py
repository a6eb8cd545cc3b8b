"""
Queued job payloads.

Every job travels as ``(name, payload)`` and is decoded into one member of
the ``Job`` union before a handler sees it. A payload that does not fit its
name is rejected with ``JobPayloadError`` and never retried.
"""

import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from content_audit.errors import JobPayloadError


class _JobModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe payload without the name tag."""
        return self.model_dump(mode="json", exclude={"name"})


class ScorePageJob(_JobModel):
    name: Literal["score-page"] = "score-page"
    page_id: int
    page_text: Optional[str] = None
    follow_up_alerts: bool = False


class AnalyzeKeywordJob(_JobModel):
    name: Literal["analyze-keyword"] = "analyze-keyword"
    page_id: int
    keyword: str = Field(min_length=1)
    country: str = "us"
    language: str = "en"


class ImportPagesJob(_JobModel):
    name: Literal["import-pages"] = "import-pages"
    project_id: int
    user_id: str
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None


class EvaluatePageChangesJob(_JobModel):
    name: Literal["evaluate-page-changes"] = "evaluate-page-changes"
    page_id: int


class EvaluateProjectChangesJob(_JobModel):
    name: Literal["evaluate-project-changes"] = "evaluate-project-changes"
    project_id: int


class GenerateSuggestionsJob(_JobModel):
    name: Literal["generate-suggestions"] = "generate-suggestions"
    page_id: int
    user_id: str
    auto_optimize: bool = True
    internal_links: bool = True


Job = Annotated[
    Union[
        ScorePageJob,
        AnalyzeKeywordJob,
        ImportPagesJob,
        EvaluatePageChangesJob,
        EvaluateProjectChangesJob,
        GenerateSuggestionsJob,
    ],
    Field(discriminator="name"),
]

_JOB_ADAPTER = TypeAdapter(Job)

JOB_NAMES = (
    "score-page",
    "analyze-keyword",
    "import-pages",
    "evaluate-page-changes",
    "evaluate-project-changes",
    "generate-suggestions",
)


def task_name(job_name: str) -> str:
    """Celery task name for a job, e.g. ``content_audit.score_page``."""
    return "content_audit." + job_name.replace("-", "_")


def decode_job(name: str, payload: Any) -> Job:
    if name not in JOB_NAMES:
        raise JobPayloadError(f"Unknown job name: {name!r}")
    if not isinstance(payload, dict):
        raise JobPayloadError(f"{name} payload must be an object, got {type(payload).__name__}")
    if payload.get("name", name) != name:
        raise JobPayloadError(f"Payload is tagged {payload['name']!r}, expected {name!r}")

    try:
        return _JOB_ADAPTER.validate_python({**payload, "name": name})
    except PydanticValidationError as exc:
        raise JobPayloadError(f"Invalid {name} payload: {exc}") from exc

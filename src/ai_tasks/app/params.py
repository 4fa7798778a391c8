"""Strict Pydantic schemas for generation parameters, one per content type."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import CONTENT_TYPES

CoverLetterTone = Literal["professional", "enthusiastic", "formal", "conversational"]


class StrictModel(BaseModel):
    """Base model for strict schema validation."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ResumeSourceMixin(StrictModel):
    resume_text: str | None = Field(default=None, min_length=1)
    resume_version_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _require_one_resume_source(self) -> ResumeSourceMixin:
        has_text = self.resume_text is not None
        has_version = self.resume_version_id is not None
        if has_text == has_version:
            raise ValueError("provide exactly one of resume_text or resume_version_id")
        return self


class CoverLetterParams(ResumeSourceMixin):
    job_description: str = Field(min_length=1)
    company_name: str = Field(min_length=1)
    job_title: str = Field(min_length=1)
    tone: CoverLetterTone = "professional"
    application_id: int | None = None


class JobMatchParams(ResumeSourceMixin):
    job_description: str = Field(min_length=1)
    application_id: int | None = None


class InterviewQuestionsParams(StrictModel):
    job_description: str = Field(min_length=1)
    company_name: str = Field(min_length=1)
    job_title: str = Field(min_length=1)
    question_count: int = Field(default=10, ge=1, le=50)
    application_id: int | None = None


PARAMS_BY_KIND: dict[str, type[StrictModel]] = {
    "cover_letter": CoverLetterParams,
    "job_match": JobMatchParams,
    "interview_questions": InterviewQuestionsParams,
}


def validate_parameters(kind: str, parameters: dict[str, Any]) -> dict[str, Any]:
    """Validate raw parameters for ``kind`` and return them with defaults applied."""
    model = PARAMS_BY_KIND.get(kind)
    if model is None:
        raise ValidationError(
            f"Unknown content type: {kind!r}. Expected one of {', '.join(CONTENT_TYPES)}"
        )
    try:
        validated = model.model_validate(parameters)
    except PydanticValidationError as exc:
        errors = [
            {"loc": list(item["loc"]), "msg": item["msg"], "type": item["type"]}
            for item in exc.errors()
        ]
        raise ValidationError(f"Invalid parameters for {kind}", errors=errors) from exc
    return validated.model_dump(exclude_none=True)

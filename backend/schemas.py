# schemas.py
from datetime import datetime
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

QuizStatus = Literal["draft", "published"]
AnswerSource = Literal["platform", "ai", "ai-edited"]


class GenerateIn(BaseModel):
    source_url: str = Field(min_length=1, max_length=1024)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    # Raw platform JSON, only sent when retrying after SCRAPER_FAILED
    manual_payload: Optional[Any] = None


class RegenerateIn(BaseModel):
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    seed: Optional[int] = None


class QuizSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    status: QuizStatus
    source_url: str
    external_set_id: str
    question_count: int
    created_at: datetime
    updated_at: datetime


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    answer_text: str
    is_correct: bool
    source: AnswerSource


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    question_text: str
    metadata: Optional[dict] = Field(default=None, validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime
    answers: List[AnswerOut]


class QuizOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    status: QuizStatus
    source_url: str
    external_set_id: str
    created_at: datetime
    updated_at: datetime
    questions: List[QuestionOut]


class QuizListOut(BaseModel):
    items: List[QuizSummary]


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[dict] = None


class ErrorOut(BaseModel):
    error: ErrorBody

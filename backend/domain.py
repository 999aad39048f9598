# domain.py
"""
In-memory types that flow between pipeline stages.

Everything here is already validated: raw platform JSON and raw model output
are checked at the edge (validator.py, llm.py) before they become one of these.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

GenerationMode = Literal["batch", "per_question"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Flashcard(BaseModel):
    model_config = ConfigDict(frozen=True)

    term: str
    definition: str


class FlashcardSet(BaseModel):
    id: str
    title: str
    flashcards: List[Flashcard]


class GenerationMetadata(BaseModel):
    model: str
    temperature: float
    seed: Optional[int] = None
    prompt: str
    mode: GenerationMode
    regenerated_at: Optional[str] = None


def check_incorrect_answers(answers: List[str]) -> List[str]:
    cleaned = [a.strip() for a in answers]
    if len(cleaned) != 3:
        raise ValueError(f"expected exactly 3 incorrect answers, got {len(cleaned)}")
    if any(not a for a in cleaned):
        raise ValueError("incorrect answers must not be empty")
    return cleaned


class DistractorResult(CamelModel):
    incorrect_answers: List[str]
    metadata: GenerationMetadata

    validate_incorrect_answers = field_validator("incorrect_answers")(check_incorrect_answers)


class GeneratedQuestion(CamelModel):
    question: str = Field(min_length=1)
    correct_answer: str = Field(min_length=1)
    incorrect_answers: List[str]
    metadata: Optional[GenerationMetadata] = None

    validate_incorrect_answers = field_validator("incorrect_answers")(check_incorrect_answers)


class BatchResult(BaseModel):
    title: str
    questions: List[GeneratedQuestion]
    metadata: GenerationMetadata

# llm.py
import asyncio
import json
import os
from typing import List, Optional, Sequence

import google.generativeai as genai
from pydantic import BaseModel, Field, ValidationError, field_validator

import config
from domain import (
    BatchResult, CamelModel, DistractorResult, Flashcard, GeneratedQuestion,
    GenerationMetadata, check_incorrect_answers,
)
from errors import AiGenerationFailed, ContentBlocked, InvalidResponseData
from log import get_logger
from utils import schema_violations, strip_code_fences

logger = get_logger(__name__)

PROMPT_DIR = os.path.join(os.path.dirname(__file__), "prompts")


def _load_prompt(name: str) -> str:
    with open(os.path.join(PROMPT_DIR, name), "r", encoding="utf-8") as f:
        return f.read()


DISTRACTOR_PROMPT_MD = _load_prompt("distractors.md")
BATCH_PROMPT_MD = _load_prompt("batch_quiz.md")

# Finish reasons that mean the provider withheld the content
BLOCKING_FINISH_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


# --- Shapes we accept back from the model
class IncorrectAnswersPayload(CamelModel):
    incorrect_answers: List[str]

    validate_incorrect_answers = field_validator("incorrect_answers")(check_incorrect_answers)


class QuizQuestionPayload(CamelModel):
    question: str = Field(min_length=1)
    correct_answer: str = Field(min_length=1)
    incorrect_answers: List[str]

    validate_incorrect_answers = field_validator("incorrect_answers")(check_incorrect_answers)


class BatchQuizPayload(BaseModel):
    title: str = Field(min_length=1)
    questions: List[QuizQuestionPayload] = Field(min_length=1)


def _response_shape(model: type[BaseModel]) -> str:
    return json.dumps(model.model_json_schema(by_alias=True), indent=2)


def _format_distractor_prompt(term: str, correct_answer: str) -> str:
    return f"""Question: {term}
Correct answer: {correct_answer}

Respond with JSON matching this JSON Schema:
{_response_shape(IncorrectAnswersPayload)}
"""


def _format_batch_prompt(flashcards: Sequence[Flashcard], topic: str) -> str:
    cards = [
        {"index": i + 1, "term": card.term, "definition": card.definition}
        for i, card in enumerate(flashcards)
    ]
    return f"""Topic: {topic}
Number of flashcards: {len(cards)}

Flashcards:
{json.dumps(cards, ensure_ascii=False, indent=2)}

Respond with JSON matching this JSON Schema:
{_response_shape(BatchQuizPayload)}
"""


def _enum_name(value) -> str:
    return getattr(value, "name", str(value))


async def with_ai_deadline(awaitable, timeout: Optional[float] = None):
    """Hard deadline around one AI invocation; a timeout becomes AiGenerationFailed."""
    timeout = config.AI_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AiGenerationFailed(
            f"AI service timeout - request took longer than {timeout:g} seconds.",
            {"timeout_seconds": timeout},
        ) from e


class DistractorGenerator:
    def __init__(self, model_name: Optional[str] = None, fallback_models: Optional[List[str]] = None,
                 api_key: Optional[str] = None, default_temperature: Optional[float] = None,
                 request_timeout: Optional[float] = None, model_factory=None):
        self.model_name = model_name or config.GEMINI_MODEL
        self.fallback_models = config.GEMINI_FALLBACK_MODELS if fallback_models is None else fallback_models
        self.api_key = config.GOOGLE_API_KEY if api_key is None else api_key
        self.default_temperature = config.AI_TEMPERATURE if default_temperature is None else default_temperature
        self.request_timeout = config.AI_TIMEOUT_SECONDS if request_timeout is None else request_timeout
        self._model_factory = model_factory or self._gemini_model
        self._configured = False

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    async def generate(self, term: str, correct_answer: str, temperature: Optional[float] = None,
                       seed: Optional[int] = None) -> DistractorResult:
        temperature = self.default_temperature if temperature is None else temperature
        prompt = _format_distractor_prompt(term, correct_answer)
        used_model, text = await self._call(prompt, DISTRACTOR_PROMPT_MD, temperature)
        payload = self._parse(text, IncorrectAnswersPayload)
        return DistractorResult(
            incorrect_answers=payload.incorrect_answers,
            metadata=GenerationMetadata(
                model=used_model, temperature=temperature, seed=seed, prompt=prompt, mode="per_question",
            ),
        )

    async def generate_batch(self, flashcards: Sequence[Flashcard], topic: str,
                             temperature: Optional[float] = None, seed: Optional[int] = None) -> BatchResult:
        temperature = self.default_temperature if temperature is None else temperature
        prompt = _format_batch_prompt(flashcards, topic)
        used_model, text = await self._call(prompt, BATCH_PROMPT_MD, temperature)
        payload = self._parse(text, BatchQuizPayload)

        if len(payload.questions) != len(flashcards):
            raise InvalidResponseData(
                f"Model returned {len(payload.questions)} questions for {len(flashcards)} flashcards.",
                {"expected": len(flashcards), "received": len(payload.questions)},
            )

        metadata = GenerationMetadata(
            model=used_model, temperature=temperature, seed=seed, prompt=prompt, mode="batch",
        )
        # Question and correct answer always come from the flashcard itself
        questions = [
            GeneratedQuestion(
                question=card.term,
                correct_answer=card.definition,
                incorrect_answers=generated.incorrect_answers,
                metadata=metadata,
            )
            for card, generated in zip(flashcards, payload.questions)
        ]
        return BatchResult(title=payload.title.strip(), questions=questions, metadata=metadata)

    # -------------------------------------------------------------------------
    # Provider plumbing
    # -------------------------------------------------------------------------
    def _gemini_model(self, model_name: str, system_instruction: str, temperature: float):
        if not self.api_key:
            raise AiGenerationFailed("GOOGLE_API_KEY is not configured.")
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True
        return genai.GenerativeModel(
            model_name,
            system_instruction=system_instruction,
            generation_config=genai.GenerationConfig(
                temperature=temperature,
                response_mime_type="application/json",
            ),
        )

    def _models_to_try(self) -> List[str]:
        return [self.model_name] + [m for m in self.fallback_models if m != self.model_name]

    async def _call(self, prompt: str, system_instruction: str, temperature: float) -> tuple[str, str]:
        """Try the primary model, then fallbacks, on provider errors only."""
        errors = []
        for name in self._models_to_try():
            model = self._model_factory(name, system_instruction, temperature)
            try:
                logger.info("Calling model %s", name)
                resp = await model.generate_content_async(
                    prompt, request_options={"timeout": self.request_timeout},
                )
            except Exception as e:
                logger.warning("Model %s failed: %s", name, e)
                errors.append(f"{name}: {e}")
                continue
            return name, self._response_text(resp, name)
        raise AiGenerationFailed("All candidate models failed.", {"attempts": errors})

    @staticmethod
    def _response_text(resp, model_name: str) -> str:
        feedback = getattr(resp, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", 0):
            raise ContentBlocked(
                "The AI provider blocked this content.",
                {"model": model_name, "block_reason": _enum_name(feedback.block_reason)},
            )
        candidates = list(getattr(resp, "candidates", None) or [])
        if candidates and _enum_name(getattr(candidates[0], "finish_reason", "")) in BLOCKING_FINISH_REASONS:
            raise ContentBlocked(
                "The AI provider blocked this content.",
                {"model": model_name, "finish_reason": _enum_name(candidates[0].finish_reason)},
            )
        try:
            text = resp.text
        except ValueError:
            # .text raises when the candidate has no parts
            text = ""
        if not text or not text.strip():
            raise InvalidResponseData(f"Model {model_name} returned an empty response.", {"model": model_name})
        return text

    @staticmethod
    def _parse(text: str, payload_model: type[BaseModel]):
        content = strip_code_fences(text)
        try:
            data = json.loads(content)
        except ValueError as e:
            raise InvalidResponseData(
                "Model returned non-JSON or bad JSON.", {"error": str(e), "raw": content[:400]},
            ) from e
        try:
            return payload_model.model_validate(data)
        except ValidationError as e:
            raise InvalidResponseData(
                "Model response does not match the expected shape.",
                {"violations": schema_violations(e), "raw": content[:400]},
            ) from e

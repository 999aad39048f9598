# pipeline.py
"""
Generation pipeline: URL -> flashcards -> distractors -> persisted quiz.

States run strictly in order::

    Idle -> LocatingSet -> FetchingFlashcards -> GeneratingDistractors -> Persisting -> Done

and any stage failure ends the run in ``Aborted`` carrying that stage's error.
A manual re-entry (operator pasted the platform JSON) starts at
FetchingFlashcards and goes through ``parse_manual_import`` instead of the
browser scraper.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from fastapi.concurrency import run_in_threadpool

import config
from domain import Flashcard, FlashcardSet, GeneratedQuestion
from errors import AppError, InternalError
from llm import DistractorGenerator, with_ai_deadline
from locator import locate_set
from log import get_logger
from persistence import QuizPersister
from schemas import QuizSummary
from scraper import FlashcardScraper
from validator import parse_manual_import

logger = get_logger(__name__)


class PipelineState(str, enum.Enum):
    IDLE = "Idle"
    LOCATING_SET = "LocatingSet"
    FETCHING_FLASHCARDS = "FetchingFlashcards"
    GENERATING_DISTRACTORS = "GeneratingDistractors"
    PERSISTING = "Persisting"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass
class GenerationRequest:
    source_url: str
    title: Optional[str] = None
    manual_payload: Optional[Any] = None
    temperature: Optional[float] = None
    seed: Optional[int] = None


@dataclass
class Done:
    summary: QuizSummary
    trail: List[PipelineState] = field(default_factory=list)
    state: PipelineState = PipelineState.DONE


@dataclass
class Aborted:
    stage: PipelineState
    error: AppError
    trail: List[PipelineState] = field(default_factory=list)
    state: PipelineState = PipelineState.ABORTED


GenerationResult = Union[Done, Aborted]


class GenerationOrchestrator:
    def __init__(self, scraper: Optional[FlashcardScraper] = None,
                 generator: Optional[DistractorGenerator] = None,
                 persister: Optional[QuizPersister] = None,
                 mode: Optional[str] = None, concurrency: Optional[int] = None,
                 ai_timeout: Optional[float] = None, host: Optional[str] = None):
        self.scraper = scraper or FlashcardScraper()
        self.generator = generator or DistractorGenerator()
        self.persister = persister or QuizPersister()
        self.mode = (mode or config.GENERATION_MODE).lower()
        if self.mode not in ("batch", "per_question"):
            raise ValueError(f"unknown generation mode {self.mode!r}")
        self.concurrency = max(1, concurrency or config.AI_CONCURRENCY)
        self.ai_timeout = config.AI_TIMEOUT_SECONDS if ai_timeout is None else ai_timeout
        self.host = host or config.PLATFORM_HOST

    async def run(self, request: GenerationRequest, owner: str,
                  correlation_id: Optional[str] = None) -> GenerationResult:
        trail: List[PipelineState] = [PipelineState.IDLE]
        state = PipelineState.IDLE

        def enter(next_state: PipelineState) -> None:
            nonlocal state
            state = next_state
            trail.append(next_state)
            logger.info("Pipeline -> %s", next_state.value)

        try:
            if request.manual_payload is not None:
                enter(PipelineState.FETCHING_FLASHCARDS)
                flashcard_set = parse_manual_import(request.manual_payload, request.source_url, self.host)
            else:
                enter(PipelineState.LOCATING_SET)
                location = locate_set(request.source_url, self.host)
                enter(PipelineState.FETCHING_FLASHCARDS)
                flashcard_set = await self.scraper.scrape(location.set_id, location.title_guess)

            enter(PipelineState.GENERATING_DISTRACTORS)
            title = request.title or flashcard_set.title
            questions = await self._generate(flashcard_set, title, request.temperature, request.seed)
            if len(questions) != len(flashcard_set.flashcards):
                raise InternalError(
                    "Generated question count does not match the flashcard count.",
                    {"flashcards": len(flashcard_set.flashcards), "questions": len(questions)},
                )

            enter(PipelineState.PERSISTING)
            summary = await run_in_threadpool(
                self.persister.persist, title, request.source_url, flashcard_set.id, owner, questions,
            )
        except AppError as e:
            e.correlation_id = correlation_id
            logger.warning("Pipeline aborted in %s: %s %s", state.value, e.code, e.message)
            trail.append(PipelineState.ABORTED)
            return Aborted(stage=state, error=e, trail=trail)
        except Exception as e:
            logger.exception("Pipeline crashed in %s", state.value)
            error = InternalError("An unexpected error occurred. Please try again later.",
                                  {"correlationId": correlation_id, "stage": state.value},
                                  correlation_id)
            error.__cause__ = e
            trail.append(PipelineState.ABORTED)
            return Aborted(stage=state, error=error, trail=trail)

        enter(PipelineState.DONE)
        return Done(summary=summary, trail=trail)

    async def _generate(self, flashcard_set: FlashcardSet, topic: str,
                        temperature: Optional[float], seed: Optional[int]) -> List[GeneratedQuestion]:
        if self.mode == "batch":
            batch = await with_ai_deadline(
                self.generator.generate_batch(flashcard_set.flashcards, topic, temperature, seed),
                self.ai_timeout,
            )
            logger.info("Batch generation produced %d questions (model title: %r)",
                        len(batch.questions), batch.title)
            return batch.questions
        return await self._fan_out(flashcard_set.flashcards, temperature, seed)

    async def _fan_out(self, flashcards: List[Flashcard], temperature: Optional[float],
                       seed: Optional[int]) -> List[GeneratedQuestion]:
        sem = asyncio.Semaphore(self.concurrency)

        async def one(card: Flashcard) -> GeneratedQuestion:
            async with sem:
                result = await with_ai_deadline(
                    self.generator.generate(card.term, card.definition, temperature, seed),
                    self.ai_timeout,
                )
            return GeneratedQuestion(
                question=card.term,
                correct_answer=card.definition,
                incorrect_answers=result.incorrect_answers,
                metadata=result.metadata,
            )

        tasks = [asyncio.ensure_future(one(card)) for card in flashcards]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            # first failure (or our own cancellation) stops the rest
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

# persistence.py
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from db import SessionLocal, get_session
from domain import DistractorResult, GeneratedQuestion
from errors import DatabaseError, ResourceNotFound
from log import get_logger
from models import Answer, Question, Quiz
from schemas import QuestionOut, QuizOut, QuizSummary

logger = get_logger(__name__)

ANSWERS_PER_QUESTION = 4


def build_answers(question_id: int, generated: GeneratedQuestion) -> List[Answer]:
    answers = [Answer(question_id=question_id, answer_text=generated.correct_answer,
                      is_correct=True, source="platform")]
    answers += [
        Answer(question_id=question_id, answer_text=text, is_correct=False, source="ai")
        for text in generated.incorrect_answers
    ]
    return answers


def _summary(quiz: Quiz, question_count: int) -> QuizSummary:
    return QuizSummary(
        id=quiz.id,
        title=quiz.title,
        status=quiz.status,
        source_url=quiz.source_url,
        external_set_id=quiz.external_set_id,
        question_count=question_count,
        created_at=quiz.created_at,
        updated_at=quiz.updated_at,
    )


class QuizPersister:
    """
    Writes a quiz as Quiz -> Question -> 4 Answers, committing as it goes.

    There is no surrounding transaction: if anything fails after the quiz row
    is committed, the quiz and everything written under it are deleted
    explicitly (answers, then questions, then the quiz) before the error is
    raised. Callers never see a partially written quiz.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def persist(self, title: str, source_url: str, set_id: str, owner: str,
                questions: Sequence[GeneratedQuestion]) -> QuizSummary:
        with get_session(self.session_factory) as db:
            quiz = Quiz(owner=owner, title=title, status="draft",
                        source_url=source_url, external_set_id=set_id)
            try:
                db.add(quiz)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Quiz insert failed: %s", e)
                raise DatabaseError("Failed to create quiz.", {"operation": "insert_quiz", "error": str(e)}) from e

            quiz_id = quiz.id
            try:
                for position, generated in enumerate(questions):
                    self._write_question(db, quiz_id, generated)
                    logger.debug("Quiz %s: question %d/%d written", quiz_id, position + 1, len(questions))
                self._verify(db, quiz_id, len(questions))
            except Exception as e:
                db.rollback()
                cleanup_error = self._delete_quiz_tree(db, quiz_id)
                details = {"operation": "insert_questions", "quiz_id": quiz_id,
                           "rolled_back": cleanup_error is None}
                if cleanup_error:
                    details["cleanup_error"] = cleanup_error
                if isinstance(e, DatabaseError):
                    e.details.update(details)
                    raise
                details["error"] = str(e)
                raise DatabaseError("Failed to save quiz questions.", details) from e

            db.refresh(quiz)
            logger.info("Quiz %s persisted with %d questions", quiz_id, len(questions))
            return _summary(quiz, len(questions))

    @staticmethod
    def _write_question(db, quiz_id: int, generated: GeneratedQuestion) -> None:
        question = Question(
            quiz_id=quiz_id,
            question_text=generated.question,
            metadata_=generated.metadata.model_dump() if generated.metadata else None,
        )
        db.add(question)
        db.flush()
        # all four answers go out in one flush with the commit
        db.add_all(build_answers(question.id, generated))
        db.commit()

    @staticmethod
    def _verify(db, quiz_id: int, expected: int) -> None:
        question_count = db.scalar(select(func.count(Question.id)).where(Question.quiz_id == quiz_id))
        answer_count = db.scalar(
            select(func.count(Answer.id))
            .join(Question, Answer.question_id == Question.id)
            .where(Question.quiz_id == quiz_id)
        )
        if question_count != expected or answer_count != expected * ANSWERS_PER_QUESTION:
            raise DatabaseError(
                "Quiz was not fully written.",
                {"expected_questions": expected, "questions": question_count,
                 "expected_answers": expected * ANSWERS_PER_QUESTION, "answers": answer_count},
            )

    @staticmethod
    def _delete_quiz_tree(db, quiz_id: int) -> Optional[str]:
        """Answers -> questions -> quiz. Returns the error text if cleanup itself failed."""
        try:
            question_ids = select(Question.id).where(Question.quiz_id == quiz_id)
            db.execute(delete(Answer).where(Answer.question_id.in_(question_ids)))
            db.execute(delete(Question).where(Question.quiz_id == quiz_id))
            db.execute(delete(Quiz).where(Quiz.id == quiz_id))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Rollback of quiz %s failed: %s", quiz_id, e)
            return str(e)
        logger.warning("Quiz %s rolled back after a failed write", quiz_id)
        return None


class QuizRepository:
    """Owner-scoped reads plus answer regeneration."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def list_quizzes(self, owner: str, status: Optional[str] = None) -> List[QuizSummary]:
        with get_session(self.session_factory) as db:
            counts = (
                select(Question.quiz_id, func.count(Question.id).label("n"))
                .group_by(Question.quiz_id)
                .subquery()
            )
            stmt = (
                select(Quiz, func.coalesce(counts.c.n, 0))
                .outerjoin(counts, counts.c.quiz_id == Quiz.id)
                .where(Quiz.owner == owner)
                .order_by(Quiz.created_at.desc(), Quiz.id.desc())
            )
            if status:
                stmt = stmt.where(Quiz.status == status)
            return [_summary(quiz, n) for quiz, n in db.execute(stmt).all()]

    def get_quiz(self, owner: str, quiz_id: int) -> QuizOut:
        with get_session(self.session_factory) as db:
            quiz = db.scalar(
                select(Quiz)
                .options(selectinload(Quiz.questions).selectinload(Question.answers))
                .where(Quiz.id == quiz_id, Quiz.owner == owner)
            )
            if quiz is None:
                raise ResourceNotFound("Quiz not found.", {"quiz_id": quiz_id})
            return QuizOut.model_validate(quiz)

    def get_question(self, owner: str, question_id: int) -> QuestionOut:
        with get_session(self.session_factory) as db:
            return QuestionOut.model_validate(self._owned_question(db, owner, question_id))

    def question_context(self, owner: str, question_id: int) -> tuple[str, str]:
        """(question text, correct answer text) for a question the owner can edit."""
        with get_session(self.session_factory) as db:
            question = self._owned_question(db, owner, question_id)
            correct = next((a for a in question.answers if a.is_correct), None)
            if correct is None:
                raise DatabaseError("Question has no correct answer.", {"question_id": question_id})
            return question.question_text, correct.answer_text

    def replace_incorrect_answers(self, owner: str, question_id: int,
                                  result: DistractorResult) -> QuestionOut:
        with get_session(self.session_factory) as db:
            question = self._owned_question(db, owner, question_id)
            try:
                db.execute(delete(Answer).where(Answer.question_id == question_id,
                                                Answer.is_correct.is_(False)))
                db.add_all([
                    Answer(question_id=question_id, answer_text=text, is_correct=False, source="ai")
                    for text in result.incorrect_answers
                ])
                metadata = result.metadata.model_copy(
                    update={"regenerated_at": datetime.utcnow().isoformat() + "Z"}
                )
                question.metadata_ = metadata.model_dump()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise DatabaseError(
                    "Failed to save regenerated answers.",
                    {"operation": "regenerate_answers", "question_id": question_id, "error": str(e)},
                ) from e
            db.refresh(question)
            return QuestionOut.model_validate(question)

    @staticmethod
    def _owned_question(db, owner: str, question_id: int) -> Question:
        question = db.scalar(
            select(Question)
            .join(Quiz, Question.quiz_id == Quiz.id)
            .options(selectinload(Question.answers))
            .where(Question.id == question_id, Quiz.owner == owner)
        )
        if question is None:
            raise ResourceNotFound("Question not found.", {"question_id": question_id})
        return question

# models.py
from datetime import datetime
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String, Text,
)
from sqlalchemy.orm import relationship
from db import Base

QUIZ_STATUSES = ("draft", "published")
ANSWER_SOURCES = ("platform", "ai", "ai-edited")


class Quiz(Base):
    __tablename__ = "quizzes"
    __table_args__ = (
        CheckConstraint(f"status IN {QUIZ_STATUSES}", name="ck_quizzes_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner = Column(String(128), index=True, nullable=False)
    title = Column(String(200), nullable=False)
    status = Column(String(16), nullable=False, default="draft")
    source_url = Column(String(1024), nullable=False)
    external_set_id = Column(String(64), index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    questions = relationship(
        "Question", back_populates="quiz", cascade="all, delete-orphan",
        order_by="Question.id",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    question_text = Column(Text, nullable=False)
    # {model, temperature, seed, prompt, mode, regenerated_at}
    metadata_ = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")
    answers = relationship(
        "Answer", back_populates="question", cascade="all, delete-orphan",
        order_by="Answer.id",
    )


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        CheckConstraint(f"source IN {ANSWER_SOURCES}", name="ck_answers_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    answer_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    source = Column(String(16), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    question = relationship("Question", back_populates="answers")

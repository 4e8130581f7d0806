"""
Content hierarchy models: Year -> Module -> Subject -> Lecture -> Question.

Parent references hold the parent's external identifier, never its storage key.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """Mixin for automatic timestamp management."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ContentMixin(TimestampMixin):
    """Opaque storage key plus the admin-assigned external identifier."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    def to_dict(self, exclude: frozenset = frozenset()) -> Dict[str, Any]:
        """Convert model to dictionary."""
        result = {}
        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, uuid.UUID):
                value = str(value)
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(external_id={self.external_id!r})>"


class Year(ContentMixin, Base):
    __tablename__ = "years"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(255))


class Module(ContentMixin, Base):
    __tablename__ = "modules"
    __table_args__ = (Index("idx_modules_year", "year_id"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    year_id: Mapped[str] = mapped_column(String(255), nullable=False)


class Subject(ContentMixin, Base):
    __tablename__ = "subjects"
    __table_args__ = (Index("idx_subjects_module", "module_id"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    module_id: Mapped[str] = mapped_column(String(255), nullable=False)


class Lecture(ContentMixin, Base):
    __tablename__ = "lectures"
    __table_args__ = (Index("idx_lectures_subject", "subject_id"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # NULL while the lecture is not attached to any subject
    subject_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Question(ContentMixin, Base):
    __tablename__ = "questions"
    __table_args__ = (Index("idx_questions_lecture", "lecture_id"),)

    lecture_id: Mapped[str] = mapped_column(String(255), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False)
    correct_answer_index: Mapped[int] = mapped_column(Integer, nullable=False)
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    difficulty_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    question_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class UserResponse(Base):
    __tablename__ = "user_responses"
    __table_args__ = (
        Index("idx_ur_user", "user_id"),
        Index("idx_ur_question", "question_id"),
        Index("idx_ur_lecture", "lecture_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # storage keys, so responses survive renames of their lecture or question
    lecture_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    question_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    selected_answer_index: Mapped[int] = mapped_column(Integer, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

"""
Server-side grading.

Correctness is always derived from the stored answer index; nothing a client
says about correctness is ever read.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import delete, func, select

from medquiz.core.database import Database, run_atomic
from medquiz.core.errors import ContentError
from medquiz.models.hierarchy import Kind
from medquiz.models.orm import Lecture, Question, UserResponse
from medquiz.services.resolver import ReferenceResolver

logger = logging.getLogger(__name__)


class NoValidAnswersError(ContentError):
    status_code = 400
    error_type = "no_valid_answers"

    def __init__(self, lecture_id: str):
        super().__init__(
            "No valid answers to process",
            kind="lecture",
            identifier=lecture_id,
            field="answers",
            invariant="at least one answer must reference a question of the lecture",
        )


def percentage(correct: int, total: int) -> int:
    """Whole-number percentage, halves rounded up."""
    if total <= 0:
        return 0
    return (correct * 200 + total) // (2 * total)


@dataclass
class GradedAnswer:
    question_id: str
    selected_answer_index: int
    is_correct: bool


@dataclass
class QuizResult:
    lecture_id: str
    answers: List[GradedAnswer] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def score(self) -> int:
        return sum(1 for a in self.answers if a.is_correct)

    @property
    def total(self) -> int:
        return len(self.answers)

    @property
    def percentage(self) -> int:
        return percentage(self.score, self.total)


class QuizGrader:
    def __init__(self, db: Database):
        self.db = db

    async def submit(self, user_id: str, lecture_identifier: str, answers: Sequence[Tuple[str, int]]) -> QuizResult:
        """Grade and record (question identifier, selected index) pairs for one lecture."""
        return await run_atomic(self._submit(user_id, lecture_identifier, list(answers)))

    async def _submit(self, user_id: str, lecture_identifier: str, answers: List[Tuple[str, int]]) -> QuizResult:
        async with self.db.transaction("quiz submission", Kind.LECTURE.value, lecture_identifier) as session:
            lecture = await ReferenceResolver(session).resolve(Kind.LECTURE, lecture_identifier)
            questions = list(await session.scalars(select(Question).where(Question.lecture_id == lecture.external_id)))
            lookup: Dict[str, Question] = {}
            for q in questions:
                lookup[q.external_id] = q
                lookup[str(q.id)] = q

            result = QuizResult(lecture_id=lecture.external_id)
            graded: List[Tuple[Question, int, bool]] = []
            for question_identifier, selected in answers:
                question = lookup.get(str(question_identifier))
                if question is None:
                    logger.warning(f"Question {question_identifier} not found in lecture {lecture.external_id}, skipping")
                    result.skipped.append(str(question_identifier))
                    continue
                is_correct = selected == question.correct_answer_index
                graded.append((question, selected, is_correct))
                result.answers.append(GradedAnswer(question.external_id, selected, is_correct))

            if not graded:
                raise NoValidAnswersError(lecture.external_id)

            previous = dict(
                (await session.execute(
                    select(UserResponse.question_id, func.count())
                    .where(UserResponse.user_id == user_id,
                           UserResponse.question_id.in_([q.id for q, _, _ in graded]))
                    .group_by(UserResponse.question_id)
                )).all()
            )
            for question, selected, is_correct in graded:
                previous[question.id] = previous.get(question.id, 0) + 1
                session.add(UserResponse(
                    user_id=user_id,
                    lecture_id=lecture.id,
                    question_id=question.id,
                    selected_answer_index=selected,
                    is_correct=is_correct,
                    attempt_number=previous[question.id],
                ))

        logger.info(f"Quiz graded for lecture {result.lecture_id}: {result.score}/{result.total} ({result.percentage}%)")
        return result

    async def check_answer(
        self,
        question_identifier: str,
        selected: int,
        user_id: Optional[str] = None,
        lecture_identifier: Optional[str] = None,
    ) -> Dict:
        """Immediate practice feedback; the attempt is only stored for known users."""
        return await run_atomic(self._check_answer(question_identifier, selected, user_id, lecture_identifier))

    async def _check_answer(self, question_identifier, selected, user_id, lecture_identifier) -> Dict:
        async with self.db.transaction("practice check", Kind.QUESTION.value, question_identifier) as session:
            resolver = ReferenceResolver(session)
            question = await resolver.resolve(Kind.QUESTION, question_identifier)
            is_correct = selected == question.correct_answer_index

            if user_id:
                lecture = None
                if lecture_identifier:
                    lecture = await resolver.find(Kind.LECTURE, lecture_identifier)
                if lecture is None:
                    lecture = await resolver.find(Kind.LECTURE, question.lecture_id)
                if lecture is not None:
                    # practice keeps only the latest attempt per question
                    await session.execute(
                        delete(UserResponse).where(
                            UserResponse.user_id == user_id, UserResponse.question_id == question.id
                        )
                    )
                    session.add(UserResponse(
                        user_id=user_id,
                        lecture_id=lecture.id,
                        question_id=question.id,
                        selected_answer_index=selected,
                        is_correct=is_correct,
                        attempt_number=1,
                    ))

        return {
            "success": True,
            "is_correct": is_correct,
            "correct_answer_index": question.correct_answer_index,
            "explanation": question.explanation,
        }

    async def performance(self, user_id: str) -> Dict:
        async with self.db.session() as session:
            rows = (await session.execute(
                select(UserResponse.is_correct, Lecture.external_id, Lecture.name)
                .select_from(UserResponse)
                .outerjoin(Lecture, Lecture.id == UserResponse.lecture_id)
                .where(UserResponse.user_id == user_id)
            )).all()

        by_lecture: Dict[str, Dict] = {}
        correct = 0
        for is_correct, lecture_id, lecture_name in rows:
            key = lecture_id or "unknown"
            entry = by_lecture.setdefault(key, {"name": lecture_name or "Unknown", "total": 0, "correct": 0})
            entry["total"] += 1
            if is_correct:
                entry["correct"] += 1
                correct += 1
        return {
            "total_questions_answered": len(rows),
            "overall_accuracy": percentage(correct, len(rows)),
            "by_lecture": by_lecture,
        }

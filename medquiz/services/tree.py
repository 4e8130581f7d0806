"""
Tree materialization and student-facing lecture reads.

The full hierarchy is built from one bulk read per level, joined in memory,
instead of one query per node. Each result carries a content fingerprint used
as an HTTP cache validator.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence
from collections import defaultdict
import asyncio
import hashlib
import json
import logging

from sqlalchemy import select

from medquiz.core.database import Database
from medquiz.core.errors import BatchLimitError, NotFoundError
from medquiz.models.hierarchy import Kind
from medquiz.models.orm import Lecture, Module, Question, Subject, Year
from medquiz.services.resolver import ReferenceResolver, as_storage_key
from medquiz.services.validation import display_options, public_options

logger = logging.getLogger(__name__)

# Never part of a student-facing payload.
SECRET_QUESTION_FIELDS = frozenset({"correct_answer_index"})


def fingerprint(document: Any) -> str:
    """Deterministic content hash of a JSON-serialisable document."""
    payload = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def parse_if_none_match(header: Optional[str]) -> List[str]:
    if not header:
        return []
    tags = []
    for part in header.split(","):
        tag = part.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        tags.append(tag.strip('"'))
    return tags


@dataclass
class MaterializedTree:
    years: List[Dict[str, Any]]
    fingerprint: str

    @property
    def etag(self) -> str:
        return f'"{self.fingerprint}"'

    @property
    def is_empty(self) -> bool:
        return not self.years

    def matches(self, if_none_match: Optional[str]) -> bool:
        tags = parse_if_none_match(if_none_match)
        return "*" in tags or self.fingerprint in tags


def _group(records: Iterable, attr: str) -> Dict[Optional[str], list]:
    grouped = defaultdict(list)
    for record in records:
        grouped[getattr(record, attr)].append(record)
    return grouped


def _lecture_key(lecture: Lecture):
    return (lecture.order_index, lecture.external_id)


def _question_key(question: Question):
    return (question.question_order, question.external_id)


def admin_question_node(question: Question) -> Dict[str, Any]:
    return {
        "id": str(question.id),
        "external_id": question.external_id,
        "lecture_id": question.lecture_id,
        "text": question.text,
        "options": question.options,
        "correct_answer_index": question.correct_answer_index,
        "explanation": question.explanation,
        "question_order": question.question_order,
        "difficulty_level": question.difficulty_level,
    }


def student_question_node(question: Question, flatten_options: bool = True) -> Dict[str, Any]:
    if flatten_options:
        options = display_options(question.options, question.external_id)
    else:
        options = public_options(question.options)
    return {
        "id": str(question.id),
        "external_id": question.external_id,
        "text": question.text,
        "options": options,
        "explanation": question.explanation,
        "question_order": question.question_order,
        "difficulty_level": question.difficulty_level,
    }


class TreeMaterializer:
    def __init__(self, db: Database, flatten_options: bool = True, batch_limit: int = 50):
        self.db = db
        self.flatten_options = flatten_options
        self.batch_limit = batch_limit

    async def _load_all(self, model, *order_by) -> list:
        # each bulk read gets its own session so the reads can run concurrently
        async with self.db.session() as session:
            return list(await session.scalars(select(model).order_by(*order_by)))

    async def load_tree(self, include_questions: bool = False) -> MaterializedTree:
        """
        Years -> Modules -> Subjects -> Lectures as one nested document.

        The admin variant (``include_questions``) nests every Question, answer
        index included; it must never reach student callers.
        """
        reads = [
            self._load_all(Year, Year.external_id),
            self._load_all(Module, Module.external_id),
            self._load_all(Subject, Subject.external_id),
            self._load_all(Lecture, Lecture.order_index, Lecture.external_id),
        ]
        if include_questions:
            reads.append(self._load_all(Question, Question.question_order, Question.external_id))
        results = await asyncio.gather(*reads)
        years, modules, subjects, lectures = results[:4]
        questions_by_lecture = _group(results[4], "lecture_id") if include_questions else {}

        modules_by_year = _group(modules, "year_id")
        subjects_by_module = _group(subjects, "module_id")
        lectures_by_subject = _group(lectures, "subject_id")

        def lecture_node(lecture: Lecture) -> Dict[str, Any]:
            node = {
                "id": str(lecture.id),
                "external_id": lecture.external_id,
                "name": lecture.name,
                "order_index": lecture.order_index,
            }
            if include_questions:
                node["questions"] = [
                    admin_question_node(q)
                    for q in sorted(questions_by_lecture.get(lecture.external_id, []), key=_question_key)
                ]
            return node

        document = [
            {
                "id": str(year.id),
                "external_id": year.external_id,
                "name": year.name,
                "icon": year.icon,
                "modules": [
                    {
                        "id": str(module.id),
                        "external_id": module.external_id,
                        "name": module.name,
                        "subjects": [
                            {
                                "id": str(subject.id),
                                "external_id": subject.external_id,
                                "name": subject.name,
                                "lectures": [
                                    lecture_node(lecture)
                                    for lecture in lectures_by_subject.get(subject.external_id, [])
                                ],
                            }
                            for subject in subjects_by_module.get(module.external_id, [])
                        ],
                    }
                    for module in modules_by_year.get(year.external_id, [])
                ],
            }
            for year in years
        ]
        logger.debug(
            f"Materialized tree: {len(years)} years, {len(modules)} modules, "
            f"{len(subjects)} subjects, {len(lectures)} lectures"
        )
        return MaterializedTree(years=document, fingerprint=fingerprint(document))

    def _lecture_document(self, lecture: Lecture, questions: Sequence[Question]) -> Dict[str, Any]:
        return {
            "id": str(lecture.id),
            "external_id": lecture.external_id,
            "name": lecture.name,
            "subject_id": lecture.subject_id,
            "order_index": lecture.order_index,
            "questions": [
                student_question_node(q, self.flatten_options) for q in sorted(questions, key=_question_key)
            ],
        }

    async def load_lecture(self, identifier: str) -> Dict[str, Any]:
        """One lecture with its questions, answer indexes stripped."""
        async with self.db.session() as session:
            lecture = await ReferenceResolver(session).find(Kind.LECTURE, identifier)
            if lecture is None:
                raise NotFoundError("lecture", identifier)
            questions = await session.scalars(select(Question).where(Question.lecture_id == lecture.external_id))
            return self._lecture_document(lecture, list(questions))

    async def load_lectures(self, identifiers: Sequence[str]) -> List[Dict[str, Any]]:
        """Batch variant of load_lecture; unknown identifiers are skipped."""
        identifiers = [i for i in (s.strip() for s in identifiers) if i]
        if not identifiers:
            raise BatchLimitError("lecture_ids must be a non-empty list", count=0, limit=self.batch_limit)
        if len(identifiers) > self.batch_limit:
            raise BatchLimitError(
                f"Maximum batch size is {self.batch_limit}", count=len(identifiers), limit=self.batch_limit
            )

        keys = [k for k in (as_storage_key(i) for i in identifiers) if k is not None]
        async with self.db.session() as session:
            condition = Lecture.external_id.in_(identifiers)
            if keys:
                condition = condition | Lecture.id.in_(keys)
            lectures = list(await session.scalars(select(Lecture).where(condition)))
            if not lectures:
                return []
            questions = await session.scalars(
                select(Question).where(Question.lecture_id.in_([lec.external_id for lec in lectures]))
            )
            by_lecture = _group(questions, "lecture_id")

        # keep the caller's order
        position = {}
        for index, identifier in enumerate(identifiers):
            position.setdefault(identifier, index)
        lectures.sort(key=lambda lec: min(position.get(lec.external_id, len(identifiers)),
                                          position.get(str(lec.id), len(identifiers))))
        return [self._lecture_document(lec, by_lecture.get(lec.external_id, [])) for lec in lectures]

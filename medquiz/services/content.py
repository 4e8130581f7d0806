"""
Content store: the single entry point for every hierarchy write.

Creates, updates, renames and deletes all pass through the resolver, the
rename propagator and the cascade engine, each inside one transaction.
"""
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func, select

from medquiz.core.database import Database, run_atomic
from medquiz.models.hierarchy import Kind, level_of
from medquiz.models.orm import Lecture, Question
from medquiz.services.cascade import CascadeEngine, CascadeSummary
from medquiz.services.rename import RenamePropagator, RenameSummary, propagate_rename
from medquiz.services.resolver import ReferenceResolver
from medquiz.services.validation import normalize_options, validate_question

logger = logging.getLogger(__name__)


class ContentStore:
    def __init__(self, db: Database):
        self.db = db
        self.cascade = CascadeEngine(db)
        self.renamer = RenamePropagator(db)

    # ---------- reads ----------

    async def get(self, kind: Kind, identifier: str):
        async with self.db.session() as session:
            return await ReferenceResolver(session).resolve(Kind(kind), identifier)

    async def list(self, kind: Kind, parent: Optional[str] = None, unassigned: bool = False) -> List[Any]:
        level = level_of(kind)
        model = level.model
        stmt = select(model)
        if unassigned and level.parent_nullable:
            stmt = stmt.where(level.parent_column.is_(None))
        elif parent is not None and level.parent_column is not None:
            stmt = stmt.where(level.parent_column == parent)
        if model is Lecture:
            stmt = stmt.order_by(Lecture.order_index, Lecture.external_id)
        elif model is Question:
            stmt = stmt.order_by(Question.question_order, Question.external_id)
        else:
            stmt = stmt.order_by(model.external_id)
        async with self.db.session() as session:
            return list(await session.scalars(stmt))

    async def question_counts(self, lecture_ids: List[str]) -> Dict[str, int]:
        if not lecture_ids:
            return {}
        async with self.db.session() as session:
            rows = await session.execute(
                select(Question.lecture_id, func.count())
                .where(Question.lecture_id.in_(lecture_ids))
                .group_by(Question.lecture_id)
            )
            return {lecture_id: count for lecture_id, count in rows}

    # ---------- writes ----------

    async def create(self, kind: Kind, data: Dict[str, Any]):
        return await run_atomic(self._create(Kind(kind), dict(data)))

    async def _create(self, kind: Kind, data: Dict[str, Any]):
        level = level_of(kind)
        external_id = data["external_id"]
        if kind is Kind.QUESTION:
            validate_question(data.get("options"), data.get("correct_answer_index"), identifier=external_id)
            data["options"] = normalize_options(data["options"])
        async with self.db.transaction("create", kind.value, external_id) as session:
            resolver = ReferenceResolver(session)
            await resolver.assert_unique(kind, external_id)
            if level.parent_field:
                data[level.parent_field] = await resolver.assert_parent_exists(kind, data.get(level.parent_field))
            record = level.model(**data)
            session.add(record)
            await session.flush()
        logger.info(f"Created {kind.value} {external_id}")
        return record

    async def add_question(self, lecture_identifier: str, data: Dict[str, Any]) -> Question:
        """Attach one new question to an existing lecture."""
        data = dict(data)
        data["lecture_id"] = lecture_identifier
        return await self.create(Kind.QUESTION, data)

    async def update(self, kind: Kind, identifier: str, changes: Dict[str, Any]):
        return await run_atomic(self._update(Kind(kind), identifier, dict(changes)))

    async def _update(self, kind: Kind, identifier: str, changes: Dict[str, Any]):
        level = level_of(kind)
        new_external_id = changes.pop("external_id", None)
        async with self.db.transaction("update", kind.value, identifier, target=new_external_id) as session:
            resolver = ReferenceResolver(session)
            record = await resolver.resolve(kind, identifier)

            if level.parent_field and level.parent_field in changes:
                changes[level.parent_field] = await resolver.assert_parent_exists(kind, changes[level.parent_field])

            if kind is Kind.QUESTION and ("options" in changes or "correct_answer_index" in changes):
                options = changes.get("options", record.options)
                index = changes.get("correct_answer_index", record.correct_answer_index)
                validate_question(options, index, identifier=record.external_id)
                if "options" in changes:
                    changes["options"] = normalize_options(options)

            columns = level.model.__table__.columns
            for key, value in changes.items():
                if value is None and key in columns and not columns[key].nullable:
                    continue
                setattr(record, key, value)

            summary = None
            if new_external_id and new_external_id != record.external_id:
                summary = await propagate_rename(session, kind, record.external_id, new_external_id)
            await session.flush()
        if summary is not None:
            logger.info(
                f"Updated {kind.value} {summary.old_external_id} -> {summary.new_external_id}, "
                f"children updated: {summary.children_updated}"
            )
        else:
            logger.info(f"Updated {kind.value} {record.external_id}")
        return record

    async def rename(self, kind: Kind, identifier: str, new_external_id: str) -> RenameSummary:
        return await self.renamer.rename(kind, identifier, new_external_id)

    async def delete(self, kind: Kind, identifier: str) -> CascadeSummary:
        return await self.cascade.delete_subtree(kind, identifier)

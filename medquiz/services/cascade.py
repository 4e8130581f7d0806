"""
Cascade deletion.

A delete first walks down from the target to discover every descendant, then
removes records level by level from the deepest one up to the target. The whole
plan runs in one transaction: either every planned row is gone or none is.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple
import enum
import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from medquiz.core.database import Database, run_atomic
from medquiz.core.errors import NotFoundError, TransactionAbortedError
from medquiz.models.hierarchy import Kind, Level, descendants_of, level_of
from medquiz.models.orm import Question, UserResponse
from medquiz.services.resolver import ReferenceResolver

logger = logging.getLogger(__name__)

RESPONSES = "response"


class CascadeOutcome(str, enum.Enum):
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    NOT_FOUND = "not_found"


@dataclass
class CascadePlan:
    """Everything a delete will remove, discovered before the first write."""
    target: Level
    target_external_id: str
    # external ids per descendant level, top-down
    descendants: List[Tuple[Level, List[str]]] = field(default_factory=list)
    question_keys: List[uuid.UUID] = field(default_factory=list)

    def ids_for(self, kind: Kind) -> List[str]:
        for level, ids in self.descendants:
            if level.kind is kind:
                return ids
        return []


@dataclass
class CascadeSummary:
    kind: str
    external_id: str
    outcome: CascadeOutcome = CascadeOutcome.COMMITTED
    deleted: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(n for k, n in self.deleted.items() if k != RESPONSES)

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "external_id": self.external_id,
            "outcome": self.outcome.value,
            "deleted": self.deleted,
        }


class CascadeEngine:
    def __init__(self, db: Database):
        self.db = db

    async def delete_subtree(self, kind: Kind, identifier: str) -> CascadeSummary:
        """Delete ``identifier`` and all of its descendants atomically."""
        kind = Kind(kind)
        try:
            summary = await run_atomic(self._delete_subtree(kind, identifier))
        except NotFoundError:
            logger.info(f"Delete {kind.value} {identifier}: {CascadeOutcome.NOT_FOUND.value}")
            raise
        except TransactionAbortedError:
            logger.error(f"Delete {kind.value} {identifier}: {CascadeOutcome.ROLLED_BACK.value}")
            raise
        logger.info(f"Deleted {kind.value} {summary.external_id}: {summary.deleted}")
        return summary

    async def _delete_subtree(self, kind: Kind, identifier: str) -> CascadeSummary:
        # an absent target is reported before any transaction is opened
        async with self.db.session() as session:
            external_id = (await ReferenceResolver(session).resolve(kind, identifier)).external_id

        async with self.db.transaction("delete", kind.value, external_id) as session:
            # re-checked: a concurrent delete may have removed it since the lookup
            target = await ReferenceResolver(session).resolve(kind, external_id)
            plan = await self.plan(session, kind, target.external_id)
            return await self._execute(session, plan)

    async def plan(self, session: AsyncSession, kind: Kind, external_id: str) -> CascadePlan:
        target = level_of(kind)
        plan = CascadePlan(target=target, target_external_id=external_id)
        parent_ids = [external_id]
        for level in descendants_of(kind):
            if not parent_ids:
                plan.descendants.append((level, []))
                continue
            rows = await session.scalars(
                select(level.model.external_id).where(level.parent_column.in_(parent_ids))
            )
            parent_ids = list(rows)
            plan.descendants.append((level, parent_ids))

        question_ids = [external_id] if kind is Kind.QUESTION else plan.ids_for(Kind.QUESTION)
        if question_ids:
            plan.question_keys = list(
                await session.scalars(select(Question.id).where(Question.external_id.in_(question_ids)))
            )
        return plan

    async def _execute(self, session: AsyncSession, plan: CascadePlan) -> CascadeSummary:
        summary = CascadeSummary(plan.target.kind.value, plan.target_external_id)

        summary.deleted[RESPONSES] = await self._delete_level(
            session, UserResponse, UserResponse.question_id, plan.question_keys
        )
        # deepest level first, target last
        for level, ids in reversed(plan.descendants):
            summary.deleted[level.kind.value] = await self._delete_level(
                session, level.model, level.model.external_id, ids
            )
        summary.deleted[plan.target.kind.value] = await self._delete_level(
            session, plan.target.model, plan.target.model.external_id, [plan.target_external_id]
        )
        return summary

    async def _delete_level(self, session: AsyncSession, model, column, values: Sequence) -> int:
        if not values:
            return 0
        result = await session.execute(
            delete(model).where(column.in_(list(values))).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

"""
Rename propagation.

Changing an entity's external identifier rewrites the parent reference of every
direct child in the same transaction, so the tree stays addressable by id.
"""
from dataclasses import dataclass, field
from typing import Dict
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from medquiz.core.database import Database, run_atomic
from medquiz.models.hierarchy import Kind, LEVELS, level_of
from medquiz.services.resolver import ReferenceResolver

logger = logging.getLogger(__name__)


@dataclass
class RenameSummary:
    kind: str
    old_external_id: str
    new_external_id: str
    children_updated: Dict[str, int] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.old_external_id != self.new_external_id

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "old_external_id": self.old_external_id,
            "new_external_id": self.new_external_id,
            "children_updated": self.children_updated,
        }


async def propagate_rename(session: AsyncSession, kind: Kind, old_identifier: str, new_identifier: str) -> RenameSummary:
    """
    Rename inside the caller's transaction: entity first, then its direct children.

    The caller owns commit/rollback; raising here leaves nothing renamed.
    """
    kind = Kind(kind)
    resolver = ReferenceResolver(session)
    record = await resolver.resolve(kind, old_identifier)
    old_external_id = record.external_id
    summary = RenameSummary(kind.value, old_external_id, new_identifier)
    if new_identifier == old_external_id:
        return summary

    await resolver.assert_unique(kind, new_identifier)

    record.external_id = new_identifier
    await session.flush()

    child_kind = level_of(kind).child_kind
    if child_kind is not None:
        child = LEVELS[child_kind]
        result = await session.execute(
            update(child.model)
            .where(child.parent_column == old_external_id)
            .values({child.parent_field: new_identifier})
            .execution_options(synchronize_session=False)
        )
        summary.children_updated[child_kind.value] = result.rowcount or 0
    return summary


class RenamePropagator:
    def __init__(self, db: Database):
        self.db = db

    async def rename(self, kind: Kind, old_identifier: str, new_identifier: str) -> RenameSummary:
        return await run_atomic(self._rename(Kind(kind), old_identifier, new_identifier))

    async def _rename(self, kind: Kind, old_identifier: str, new_identifier: str) -> RenameSummary:
        async with self.db.transaction("rename", kind.value, old_identifier, target=new_identifier) as session:
            summary = await propagate_rename(session, kind, old_identifier, new_identifier)
        if summary.changed:
            logger.info(
                f"Renamed {kind.value} {summary.old_external_id} -> {summary.new_external_id}, "
                f"children updated: {summary.children_updated}"
            )
        return summary

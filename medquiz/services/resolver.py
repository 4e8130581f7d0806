"""
Identity and reference resolution.

Maps external identifiers (or, for older clients, raw storage keys) to records
and guards every write that introduces an identifier or a parent reference.
"""
from typing import Optional
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medquiz.core.errors import DuplicateIdentifierError, NotFoundError, ReferenceViolationError
from medquiz.models.hierarchy import Kind, level_of


def as_storage_key(identifier: str) -> Optional[uuid.UUID]:
    """Parse a legacy storage-key identifier; None if it isn't one."""
    try:
        return uuid.UUID(str(identifier))
    except (ValueError, TypeError, AttributeError):
        return None


class ReferenceResolver:
    """Lookups and integrity checks bound to one session (and its transaction)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, kind: Kind, identifier: str):
        model = level_of(kind).model
        record = await self.session.scalar(select(model).where(model.external_id == identifier))
        if record is not None:
            return record
        key = as_storage_key(identifier)
        if key is not None:
            return await self.session.scalar(select(model).where(model.id == key))
        return None

    async def resolve(self, kind: Kind, identifier: str):
        """Canonical record for an external id or legacy storage key; NotFoundError otherwise."""
        record = await self.find(kind, identifier)
        if record is None:
            raise NotFoundError(Kind(kind).value, str(identifier))
        return record

    async def exists(self, kind: Kind, external_id: str) -> bool:
        model = level_of(kind).model
        count = await self.session.scalar(
            select(func.count()).select_from(model).where(model.external_id == external_id)
        )
        return bool(count)

    async def assert_unique(self, kind: Kind, identifier: str) -> None:
        if await self.exists(kind, identifier):
            raise DuplicateIdentifierError(Kind(kind).value, identifier)

    async def assert_parent_exists(self, kind: Kind, parent_identifier: Optional[str]) -> Optional[str]:
        """
        Check the parent named by a child of ``kind`` and return its canonical external id.

        Lectures may be unattached, so a None subject is accepted for them.
        """
        level = level_of(kind)
        if level.parent_kind is None:
            return None
        if parent_identifier is None or parent_identifier == "":
            if level.parent_nullable:
                return None
            raise ReferenceViolationError(level.parent_kind.value, str(parent_identifier), level.parent_field)
        parent = await self.find(level.parent_kind, parent_identifier)
        if parent is None:
            raise ReferenceViolationError(level.parent_kind.value, parent_identifier, level.parent_field)
        return parent.external_id

import asyncio

import pytest
from sqlalchemy import func, select

from medquiz.core.errors import DuplicateIdentifierError, NotFoundError, ReferenceViolationError
from medquiz.models.hierarchy import Kind
from medquiz.models.orm import Module, Year
from medquiz.services.resolver import ReferenceResolver, as_storage_key


def test_as_storage_key():
    assert as_storage_key("y1") is None
    assert as_storage_key(None) is None
    key = as_storage_key("3f2504e0-4f89-11d3-9a0c-0305e82c3301")
    assert str(key) == "3f2504e0-4f89-11d3-9a0c-0305e82c3301"


async def test_resolves_external_id_and_legacy_key(seeded, database):
    async with database.session() as session:
        resolver = ReferenceResolver(session)
        year = await resolver.resolve(Kind.YEAR, "y1")
        assert year.name == "Year 1"
        again = await resolver.resolve(Kind.YEAR, str(year.id))
        assert again.external_id == "y1"


async def test_resolve_missing_raises_not_found(seeded, database):
    async with database.session() as session:
        with pytest.raises(NotFoundError) as exc:
            await ReferenceResolver(session).resolve(Kind.MODULE, "nope")
    assert exc.value.kind == "module"
    assert exc.value.identifier == "nope"


async def test_duplicate_create_leaves_count_unchanged(seeded, store, database):
    async with database.session() as session:
        before = await session.scalar(select(func.count()).select_from(Year))
    with pytest.raises(DuplicateIdentifierError) as exc:
        await store.create(Kind.YEAR, {"external_id": "y1", "name": "Again"})
    assert exc.value.status_code == 409
    async with database.session() as session:
        assert await session.scalar(select(func.count()).select_from(Year)) == before


async def test_same_identifier_allowed_across_kinds(seeded, store):
    module = await store.create(Kind.MODULE, {"external_id": "y1", "name": "Odd but legal", "year_id": "y2"})
    assert module.year_id == "y2"


async def test_missing_parent_rejected(seeded, store, database):
    with pytest.raises(ReferenceViolationError) as exc:
        await store.create(Kind.SUBJECT, {"external_id": "s9", "name": "Orphan", "module_id": "m404"})
    assert exc.value.identifier == "m404"
    assert exc.value.kind == "module"
    assert exc.value.field == "module_id"
    async with database.session() as session:
        assert await ReferenceResolver(session).find(Kind.SUBJECT, "s9") is None


async def test_parent_given_as_legacy_key_is_canonicalised(seeded, store, database):
    async with database.session() as session:
        year = await ReferenceResolver(session).resolve(Kind.YEAR, "y2")
    module = await store.create(Kind.MODULE, {"external_id": "m9", "name": "Legacy", "year_id": str(year.id)})
    assert module.year_id == "y2"


async def test_lecture_may_have_no_subject(seeded, database):
    async with database.session() as session:
        resolver = ReferenceResolver(session)
        assert await resolver.assert_parent_exists(Kind.LECTURE, None) is None
        with pytest.raises(ReferenceViolationError):
            await resolver.assert_parent_exists(Kind.MODULE, None)
        assert await resolver.assert_parent_exists(Kind.YEAR, "anything") is None


async def test_referential_integrity_of_seed(seeded, database):
    async with database.session() as session:
        resolver = ReferenceResolver(session)
        for module in await session.scalars(select(Module)):
            assert await resolver.exists(Kind.YEAR, module.year_id)


async def skip_uniqueness_check(self, kind, identifier):
    # stands in for a concurrent writer that passed the same check first
    return None


async def test_create_losing_a_race_is_duplicate_not_retryable(seeded, store, database, monkeypatch):
    monkeypatch.setattr(ReferenceResolver, "assert_unique", skip_uniqueness_check)
    with pytest.raises(DuplicateIdentifierError) as exc:
        await store.create(Kind.YEAR, {"external_id": "y1", "name": "Racer"})
    assert exc.value.identifier == "y1"
    assert exc.value.status_code == 409
    assert exc.value.retryable is False
    async with database.session() as session:
        assert await session.scalar(select(func.count()).select_from(Year)) == 2


async def test_rename_losing_a_race_names_the_target(seeded, store, database, monkeypatch):
    monkeypatch.setattr(ReferenceResolver, "assert_unique", skip_uniqueness_check)
    with pytest.raises(DuplicateIdentifierError) as exc:
        await store.rename(Kind.MODULE, "m1", "m2")
    assert exc.value.identifier == "m2"
    assert exc.value.kind == "module"
    async with database.session() as session:
        assert set(await session.scalars(select(Module.external_id))) == {"m1", "m2", "m3"}


async def test_concurrent_creates_of_one_identifier(database, store):
    results = await asyncio.gather(
        *(store.create(Kind.YEAR, {"external_id": "dup", "name": f"Year {i}"}) for i in range(4)),
        return_exceptions=True,
    )
    created = [r for r in results if isinstance(r, Year)]
    failed = [r for r in results if not isinstance(r, Year)]
    assert len(created) == 1
    assert len(failed) == 3
    assert all(isinstance(e, DuplicateIdentifierError) for e in failed)
    async with database.session() as session:
        assert await session.scalar(select(func.count()).select_from(Year)) == 1

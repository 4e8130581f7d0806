import pytest

from medquiz.core.errors import BatchLimitError, NotFoundError
from medquiz.models.hierarchy import Kind
from medquiz.models.orm import Question
from medquiz.services.tree import TreeMaterializer, fingerprint, parse_if_none_match


def walk(node):
    """Yield every key anywhere in a nested document."""
    if isinstance(node, dict):
        for key, value in node.items():
            yield key
            yield from walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from walk(item)


def test_fingerprint_is_order_independent_for_keys():
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})


def test_parse_if_none_match():
    assert parse_if_none_match(None) == []
    assert parse_if_none_match('"abc", W/"def"') == ["abc", "def"]
    assert parse_if_none_match("*") == ["*"]


async def test_empty_store(database):
    tree = await TreeMaterializer(database).load_tree()
    assert tree.is_empty
    assert tree.years == []


async def test_tree_shape_and_ordering(seeded, database):
    tree = await TreeMaterializer(database).load_tree()
    assert [y["external_id"] for y in tree.years] == ["y1", "y2"]
    y1 = tree.years[0]
    assert y1["icon"] == "1"
    assert [m["external_id"] for m in y1["modules"]] == ["m1", "m2"]
    s1 = y1["modules"][0]["subjects"][0]
    assert s1["external_id"] == "s1"
    # lectures follow order_index, not insertion order
    assert [lec["external_id"] for lec in s1["lectures"]] == ["l2", "l1"]
    assert "questions" not in s1["lectures"][0]
    assert tree.years[1]["modules"][0]["subjects"] == []


async def test_unattached_lectures_are_not_in_tree(seeded, database):
    tree = await TreeMaterializer(database).load_tree()
    lecture_ids = {
        lec["external_id"]
        for y in tree.years for m in y["modules"] for s in m["subjects"] for lec in s["lectures"]
    }
    assert lecture_ids == {"l1", "l2", "l3"}


async def test_fingerprint_stable_and_changes_on_edit(seeded, store, database):
    materializer = TreeMaterializer(database)
    first = await materializer.load_tree()
    second = await materializer.load_tree()
    assert first.fingerprint == second.fingerprint
    assert first.matches(first.etag)
    assert first.matches("*")

    await store.update(Kind.MODULE, "m2", {"name": "Neurology II"})
    third = await materializer.load_tree()
    assert third.fingerprint != first.fingerprint
    assert not third.matches(first.etag)


async def test_admin_tree_includes_answers(seeded, database):
    tree = await TreeMaterializer(database).load_tree(include_questions=True)
    l1 = tree.years[0]["modules"][0]["subjects"][0]["lectures"][1]
    assert [q["external_id"] for q in l1["questions"]] == ["q1", "q2"]
    assert l1["questions"][1]["correct_answer_index"] == 2


async def test_lecture_read_hides_answers(seeded, database):
    lecture = await TreeMaterializer(database).load_lecture("l1")
    assert [q["external_id"] for q in lecture["questions"]] == ["q1", "q2"]
    assert lecture["questions"][1]["options"] == ["C", "D", "E"]
    assert "correct_answer_index" not in set(walk(lecture))


async def test_lecture_read_without_option_transform(seeded, database):
    lecture = await TreeMaterializer(database, flatten_options=False).load_lecture("l3")
    assert lecture["questions"][0]["options"][0]["text"] == "Axon"


async def test_lecture_read_by_legacy_key(seeded, store, database):
    record = await store.get(Kind.LECTURE, "l3")
    lecture = await TreeMaterializer(database).load_lecture(str(record.id))
    assert lecture["external_id"] == "l3"


async def test_missing_lecture(seeded, database):
    with pytest.raises(NotFoundError):
        await TreeMaterializer(database).load_lecture("l404")


async def test_batch_keeps_order_and_skips_unknown(seeded, database):
    lectures = await TreeMaterializer(database).load_lectures(["l3", "missing", " l1 "])
    assert [lec["external_id"] for lec in lectures] == ["l3", "l1"]
    assert "correct_answer_index" not in set(walk(lectures))


async def test_batch_limits(seeded, database):
    materializer = TreeMaterializer(database, batch_limit=2)
    with pytest.raises(BatchLimitError):
        await materializer.load_lectures([])
    with pytest.raises(BatchLimitError):
        await materializer.load_lectures(["", "  "])
    with pytest.raises(BatchLimitError) as exc:
        await materializer.load_lectures(["l1", "l2", "l3"])
    assert exc.value.count == 3
    assert len(await materializer.load_lectures(["l1", "l2"])) == 2


async def test_unflattened_options_never_carry_correctness(seeded, store, database):
    await store.create(Kind.QUESTION, {
        "external_id": "qx", "lecture_id": "l2", "text": "Which?",
        "options": [{"text": "A", "is_correct": False}, {"text": "B", "is_correct": True, "image_url": "b.png"}],
        "correct_answer_index": 1,
    })
    lecture = await TreeMaterializer(database, flatten_options=False).load_lecture("l2")
    assert lecture["questions"][0]["options"] == [
        {"id": 1, "text": "A"},
        {"id": 2, "text": "B", "image_url": "b.png"},
    ]
    keys = set(walk(lecture))
    assert "is_correct" not in keys
    assert "correct_answer_index" not in keys


async def test_unflattened_read_filters_rows_stored_with_extra_keys(seeded, database):
    # rows written before options were normalized on the way in
    async with database.transaction("seed", "question", "legacy") as session:
        session.add(Question(
            external_id="legacy", lecture_id="l2", text="Old?", correct_answer_index=0,
            options=[{"id": 1, "text": "Yes", "is_correct": True}, {"id": 2, "text": "No", "is_correct": False}],
        ))
    lectures = await TreeMaterializer(database, flatten_options=False).load_lectures(["l2"])
    assert lectures[0]["questions"][0]["options"] == [{"id": 1, "text": "Yes"}, {"id": 2, "text": "No"}]
    assert "is_correct" not in set(walk(lectures))

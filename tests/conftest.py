"""
Shared fixtures.

Environment variables are set before anything imports the settings module,
which is evaluated once at import time.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PROMETHEUS_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from httpx import AsyncClient, ASGITransport

from medquiz.core.auth import create_token
from medquiz.core.config import Settings
from medquiz.core.database import Database
from medquiz.models.hierarchy import Kind
from medquiz.services.content import ContentStore


@pytest.fixture
def settings(tmp_path):
    # a file database: tree reads run on several connections at once
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'medquiz.db'}",
        ENVIRONMENT="test",
        PROMETHEUS_ENABLED=False,
        AUTO_CREATE_TABLES=False,
        LECTURE_BATCH_LIMIT=50,
    )


@pytest.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def store(database):
    return ContentStore(database)


SEED = [
    (Kind.YEAR, {"external_id": "y1", "name": "Year 1", "icon": "1"}),
    (Kind.YEAR, {"external_id": "y2", "name": "Year 2"}),
    (Kind.MODULE, {"external_id": "m1", "name": "Cardiology", "year_id": "y1"}),
    (Kind.MODULE, {"external_id": "m2", "name": "Neurology", "year_id": "y1"}),
    (Kind.MODULE, {"external_id": "m3", "name": "Surgery", "year_id": "y2"}),
    (Kind.SUBJECT, {"external_id": "s1", "name": "Anatomy", "module_id": "m1"}),
    (Kind.SUBJECT, {"external_id": "s2", "name": "Physiology", "module_id": "m2"}),
    (Kind.LECTURE, {"external_id": "l1", "name": "Heart", "subject_id": "s1", "order_index": 1}),
    (Kind.LECTURE, {"external_id": "l2", "name": "Vessels", "subject_id": "s1", "order_index": 0}),
    (Kind.LECTURE, {"external_id": "l3", "name": "Neurons", "subject_id": "s2"}),
    (Kind.LECTURE, {"external_id": "l4", "name": "Unfiled", "subject_id": None}),
    (Kind.QUESTION, {"external_id": "q1", "lecture_id": "l1", "text": "First?",
                     "options": ["A", "B"], "correct_answer_index": 0, "question_order": 0}),
    (Kind.QUESTION, {"external_id": "q2", "lecture_id": "l1", "text": "Second?",
                     "options": ["C", "D", "E"], "correct_answer_index": 2,
                     "explanation": "E is right", "question_order": 1}),
    (Kind.QUESTION, {"external_id": "q3", "lecture_id": "l3", "text": "Third?",
                     "options": [{"text": "Axon"}, {"text": "Dendrite"}], "correct_answer_index": 1}),
]


@pytest.fixture
async def seeded(store):
    for kind, data in SEED:
        await store.create(kind, data)
    return store


@pytest.fixture
def admin_headers(settings):
    return {"Authorization": f"Bearer {create_token('admin-1', ['admin'], settings=settings)}"}


@pytest.fixture
def student_headers(settings):
    return {"Authorization": f"Bearer {create_token('student-1', ['student'], settings=settings)}"}


@pytest.fixture
async def app(settings, database):
    from medquiz.main import create_app

    application = create_app(settings)
    # share the tables created by the database fixture
    await application.state.db.dispose()
    application.state.db = database
    return application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

import os
import tempfile
import uuid

_TEST_DB_DIR = tempfile.mkdtemp(prefix="docman-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import docman.models  # noqa: E402,F401
from docman.db import Base, SessionLocal  # noqa: E402
from docman.models.person import Person  # noqa: E402
from docman.models.review import Document  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    engine = SessionLocal.kw["bind"]
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture()
def person(db_session):
    p = Person(
        first_name="Test",
        last_name="User",
        email=f"test-{uuid.uuid4().hex[:8]}@example.com",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture()
def document(db_session, person):
    doc = Document(
        title=f"doc_{uuid.uuid4().hex[:8]}",
        created_by=person.id,
    )
    db_session.add(doc)
    db_session.commit()
    db_session.refresh(doc)
    return doc


@pytest.fixture()
def client(db_session):
    from docman.api import reviews
    from docman.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[reviews.get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

import os
import shutil
import tempfile

import pytest

# Create a temporary SQLite database file for the whole test session
_TEMP_DIR = tempfile.mkdtemp(prefix="payables_tests_")
_DB_FILE = os.path.join(_TEMP_DIR, "test_payables.db")
os.environ["PAYABLES_DATABASE_URL"] = f"sqlite:///{_DB_FILE}"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize a fresh temporary SQLite database for tests and clean it up after."""
    # Import after setting env var so the app uses the temp DB
    from payables.database import engine, init_db

    init_db()

    yield

    try:
        engine.dispose()
    except Exception:
        pass
    shutil.rmtree(_TEMP_DIR, ignore_errors=True)


# Each test starts with an empty submission log.
@pytest.fixture(autouse=True)
def _clean_submissions():
    from payables import crud
    from payables.database import SessionLocal

    session = SessionLocal()
    try:
        crud.clear_batch_submissions(session)
    finally:
        session.close()


@pytest.fixture
def test_db():
    """Provide a database session for each test with automatic rollback."""
    from payables.database import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        try:
            session.rollback()
        except Exception:
            pass
        session.close()

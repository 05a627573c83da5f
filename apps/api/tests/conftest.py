"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database migrated to Alembic head
once per session. Every test starts from empty tables, no lockouts and no
event subscriptions.
"""
import pytest
import sys
import os
from pathlib import Path

# Settings are read at import time: configure before anything imports core.config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-coach-portal-0123456789abcdef")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("WEB_APP_BASE_URL", "http://portal.test")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(scope="session", autouse=True)
def _ensure_db_schema_is_at_head():
    """
    Ensure the test database schema includes the latest Alembic migrations.
    """
    try:
        from alembic import command
        from alembic.config import Config

        api_root = Path(__file__).resolve().parents[1]
        alembic_ini = api_root / "alembic.ini"

        cfg = Config(str(alembic_ini))
        # Alembic's script_location in alembic.ini is relative ("alembic")
        # so we set the working directory explicitly.
        cfg.set_main_option("script_location", str(api_root / "alembic"))
        command.upgrade(cfg, "head")
    except Exception as e:
        # Tests should fail loudly if migrations cannot be applied.
        raise RuntimeError(f"Failed to upgrade DB to Alembic head: {e}") from e


from core import account_security, events
from core.database import Base, SessionLocal, engine, session_guard
from services.membership.models import Identity, Profile, ProfileStatus, Role


def _truncate_all() -> None:
    with session_guard(engine):
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture(autouse=True)
def clean_state():
    """Empty tables, lockouts and event handlers around every test."""
    _truncate_all()
    account_security._failed_attempts.clear()
    events.clear_handlers()
    yield
    _truncate_all()
    account_security._failed_attempts.clear()
    events.clear_handlers()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def admin_profile():
    return Profile(
        id="admin-1",
        email="admin@club.be",
        name="Head Administrator",
        role=Role.ADMIN,
        status=ProfileStatus.ACTIVE,
    )


@pytest.fixture
def ann_identity():
    return Identity(id="ann-1", email="a@x.com", display_name="Ann")

# conftest.py

import os
import tempfile
import uuid

import pytest
from flask_login import FlaskLoginClient

# Set testing environment BEFORE importing app so app.py loads TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from feedback_app.models import User, Village, db  # noqa: E402
from feedback_app.models.enums import UserRole  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SQLALCHEMY_ECHO": False,
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "MONITORING_ENABLED": False,
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": False,
                "LOG_LEVEL": "WARNING",
                "HRIS_SYNC_ENABLED": False,
                "HRIS_CLIENT": "mock",
            }
        )
        flask_app.test_client_class = FlaskLoginClient

        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.session.close()
            db.drop_all()
    finally:
        flask_app.extensions.get("hris", {}).pop("client", None)
        try:
            os.close(db_fd)
        except OSError:
            pass
        try:
            if os.path.exists(temp_db):
                os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create an anonymous test client"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def village_factory(app):
    """Persist villages by id."""

    def _factory(*village_ids: str, active: bool = True):
        villages = []
        for village_id in village_ids:
            village = Village(id=village_id, name=village_id.replace("_", " ").title(), is_active=active)
            db.session.add(village)
            villages.append(village)
        db.session.commit()
        return villages

    return _factory


@pytest.fixture
def user_factory(app):
    """Persist local identities with sensible defaults."""
    counter = {"value": 0}

    def _factory(**overrides):
        counter["value"] += 1
        values = {
            "email": f"person{counter['value']}@clubmed.com",
            "first_name": "Test",
            "last_name": f"Person{counter['value']}",
            "role": UserRole.USER,
        }
        values.update(overrides)
        user = User(**values)
        db.session.add(user)
        db.session.commit()
        return user

    return _factory


@pytest.fixture
def admin_user(user_factory):
    return user_factory(email="admin@clubmed.com", first_name="Admin", last_name="User", role=UserRole.ADMIN)


@pytest.fixture
def moderator_user(user_factory):
    return user_factory(email="moderator@clubmed.com", first_name="Mod", last_name="User", role=UserRole.MODERATOR)


@pytest.fixture
def super_admin_user(user_factory):
    return user_factory(email="superadmin@clubmed.com", first_name="Super", last_name="Admin", is_super_admin=True)

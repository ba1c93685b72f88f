import pytest

from app import create_app
from models import db, User


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "REGENERATION_ASYNC": False,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_id(app):
    with app.app_context():
        user = User(name="Test Student", email="student@test.local")
        db.session.add(user)
        db.session.commit()
        return user.id

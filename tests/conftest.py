import os

os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

import pytest

from app import app as flask_app
from models import db
from services.series_service import SeriesService
from services.task_store import SqlTaskStore


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return SqlTaskStore(db.session)


@pytest.fixture
def service(store):
    return SeriesService(store)

import httpx
import pytest

from marksync import create_app
from marksync.config import TestConfig
from marksync.extensions import db
from marksync.models import User


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(username: str, password: str = "secret", **profile):
        with app.app_context():
            user = User(username=username, is_active=True, **profile)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make_user


def flask_transport(client, intercept=None):
    """Route httpx requests into the Flask test client."""

    def handler(request: httpx.Request) -> httpx.Response:
        if intercept is not None:
            response = intercept(request)
            if response is not None:
                return response
        headers = {
            name: value
            for name, value in request.headers.items()
            if name.lower() in {"authorization", "content-type"}
        }
        response = client.open(
            request.url.raw_path.decode("ascii"),
            method=request.method,
            headers=headers,
            data=request.content,
        )
        return httpx.Response(
            response.status_code,
            headers={"Content-Type": response.headers.get("Content-Type", "")},
            content=response.get_data(),
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def transport(client):
    return flask_transport(client)


@pytest.fixture
def make_transport(client):
    def _make_transport(intercept=None):
        return flask_transport(client, intercept=intercept)

    return _make_transport

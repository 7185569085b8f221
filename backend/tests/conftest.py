import os
import random
import sys
import pytest

# Ensure the backend root (containing the `typeduel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from typeduel import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ['http://localhost:5173']
    MIN_PLAYERS = 2
    ROOM_CAPACITY = 5
    ROOM_CODE_ATTEMPTS = 10
    SCALED_REWARDS = True
    SETTLE_ON_WIN = True
    LEADERBOARD_SIZE = 10


@pytest.fixture()
def flask_app():
    # No app context is held across the test: each test-client request and
    # socket event gets its own, so Flask-Login's per-context user cache
    # never leaks between clients
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import typeduel.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """App context for tests that call services directly."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
def make_user(app_ctx):
    """Create a user row directly; returns its id."""
    from typeduel.models import User

    counter = {'n': 0}

    def _make(name=None, score=None, password='password'):
        counter['n'] += 1
        username = name or f"racer{counter['n']}"
        user = User(username=username, name=username, score=score)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id

    return _make


@pytest.fixture()
def login_client(flask_app):
    """Register a user over HTTP and return a test client logged in as them."""
    def _login(username, password='password'):
        c = flask_app.test_client()
        res = c.post('/users/add', json={'username': username, 'password': password})
        assert res.status_code == 201
        res = c.post('/login', json={'username': username, 'password': password})
        assert res.status_code == 200
        c.user_id = res.get_json()['user']['id']
        return c

    return _login


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass

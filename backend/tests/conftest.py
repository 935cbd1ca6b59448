import os
import sys
import datetime
from pathlib import Path

import pytest
from bson.objectid import ObjectId
from httpx import AsyncClient, ASGITransport

# Ensure the backend directory is on PYTHONPATH when pytest is run from repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Ensure test env
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ALLOWED_ORIGINS", "*")
os.environ.setdefault("USE_FAKE_DB_FOR_TESTS", "1")

# Import app AFTER env vars
from eventhub.main import app  # noqa: E402
from eventhub import db as db_mod  # noqa: E402
from eventhub import notifications  # noqa: E402
from eventhub.auth import create_access_token  # noqa: E402
from eventhub.db import connect as connect_to_mongo  # noqa: E402
from eventhub.schemas import Actor  # noqa: E402


def _now():
    return datetime.datetime.now(datetime.timezone.utc)


@pytest.fixture(autouse=True)
async def fresh_db():
    # startup events are not run by ASGITransport; connect is idempotent
    await connect_to_mongo()
    db_mod.db.reset()
    yield db_mod.db
    await notifications.drain()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def make_user():
    counter = {'n': 0}

    async def _make(role='user', **fields):
        counter['n'] += 1
        doc = {
            '_id': ObjectId(),
            'name': f"{role.title()} {counter['n']}",
            'email': f"{role}{counter['n']}@example.com",
            'role': role,
            'created_at': _now(),
        }
        doc.update(fields)
        await db_mod.db.users.insert_one(doc)
        return doc

    return _make


@pytest.fixture
async def organizer(make_user):
    return await make_user('organizer')


@pytest.fixture
async def admin(make_user):
    return await make_user('admin')


@pytest.fixture
async def attendee(make_user):
    return await make_user('user')


@pytest.fixture
def make_event(organizer):
    async def _make(**overrides):
        doc = {
            '_id': ObjectId(),
            'title': 'Spring Meetup',
            'organizer_id': organizer['_id'],
            'capacity': 10,
            'is_published': True,
            'is_paid': False,
            'price': 0,
            'start_date': _now() + datetime.timedelta(days=7),
            'status': 'active',
            'attendees_count': 0,
            'created_at': _now(),
        }
        doc.update(overrides)
        await db_mod.db.events.insert_one(doc)
        return doc

    return _make


def actor_for(user) -> Actor:
    return Actor(id=str(user['_id']), role=user.get('role', 'user'))


def auth_headers(user) -> dict:
    token = create_access_token({'sub': str(user['_id'])})
    return {'Authorization': f'Bearer {token}'}


async def event_doc(event_id):
    return await db_mod.db.events.find_one({'_id': event_id})

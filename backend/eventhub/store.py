"""Entity store access for the registration core.

Thin async helpers over the Motor collections. They own ObjectId parsing and
the translation of driver failures into the domain taxonomy: a unique index
violation becomes ``DuplicateError``, any other ``PyMongoError`` becomes
``StorageError``. Nothing here retries.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from . import db as db_mod
from .errors import DuplicateError, NotFoundError, StorageError, ValidationError


@contextmanager
def storage_guard(operation: str):
    """Re-raise driver errors (other than unique violations) as StorageError."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        raise StorageError(operation) from exc


def to_object_id(value: Any, entity: str = 'id') -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value).strip())
    except (InvalidId, TypeError) as exc:
        raise ValidationError(f'invalid {entity} id') from exc


# ---- events ----

async def get_event(event_id) -> dict:
    oid = to_object_id(event_id, 'event')
    with storage_guard('event lookup'):
        ev = await db_mod.db.events.find_one({'_id': oid})
    if not ev:
        raise NotFoundError('event', event_id)
    return ev


async def set_event_fields(event_id: ObjectId, fields: dict) -> None:
    with storage_guard('event update'):
        await db_mod.db.events.update_one({'_id': event_id}, {'$set': fields})


async def delete_event_document(event_id: ObjectId) -> int:
    """Remove the event and its saved-event bookmarks. Returns deleted bookmark count."""
    with storage_guard('event delete'):
        await db_mod.db.events.delete_one({'_id': event_id})
        res = await db_mod.db.saved_events.delete_many({'event_id': event_id})
    return res.deleted_count


# ---- users ----

async def get_user(user_id) -> dict:
    oid = to_object_id(user_id, 'user')
    with storage_guard('user lookup'):
        user = await db_mod.db.users.find_one({'_id': oid})
    if not user:
        raise NotFoundError('user', user_id)
    return user


async def find_user_by_email(email: str) -> Optional[dict]:
    with storage_guard('user lookup'):
        return await db_mod.db.users.find_one({'email': email.strip().lower()})


async def get_users_by_ids(user_ids: Iterable[ObjectId]) -> dict[ObjectId, dict]:
    ids = list(user_ids)
    if not ids:
        return {}
    with storage_guard('user lookup'):
        return {u['_id']: u async for u in db_mod.db.users.find({'_id': {'$in': ids}})}


async def insert_user(doc: dict) -> dict:
    """Insert a user; on an email collision return the existing record instead."""
    try:
        with storage_guard('user insert'):
            res = await db_mod.db.users.insert_one(doc)
    except DuplicateKeyError:
        existing = await find_user_by_email(doc['email'])
        if existing:
            return existing
        raise StorageError('user insert')
    doc['_id'] = res.inserted_id
    return doc


# ---- registrations ----

async def get_registration(registration_id) -> dict:
    oid = to_object_id(registration_id, 'registration')
    with storage_guard('registration lookup'):
        reg = await db_mod.db.registrations.find_one({'_id': oid})
    if not reg:
        raise NotFoundError('registration', registration_id)
    return reg


async def find_registration(event_id: ObjectId, user_id: ObjectId) -> Optional[dict]:
    with storage_guard('registration lookup'):
        return await db_mod.db.registrations.find_one({'event_id': event_id, 'user_id': user_id})


async def insert_registration(doc: dict) -> dict:
    try:
        with storage_guard('registration insert'):
            res = await db_mod.db.registrations.insert_one(doc)
    except DuplicateKeyError as exc:
        raise DuplicateError() from exc
    doc['_id'] = res.inserted_id
    return doc


async def discard_registration(registration_id: ObjectId) -> None:
    """Remove a registration that was refused right after its insert."""
    with storage_guard('registration discard'):
        await db_mod.db.registrations.delete_one({'_id': registration_id})


async def transition_registration(registration_id: ObjectId, expected_status: str, fields: dict,
                                  unset: Iterable[str] = ()) -> Optional[dict]:
    """Compare-and-set update: applies only while the stored status is `expected_status`.

    Returns the updated document, or None when another writer moved the
    registration first.
    """
    update: dict = {'$set': fields}
    unset = list(unset)
    if unset:
        update['$unset'] = {key: '' for key in unset}
    with storage_guard('registration transition'):
        return await db_mod.db.registrations.find_one_and_update(
            {'_id': registration_id, 'status': expected_status},
            update,
            return_document=ReturnDocument.AFTER,
        )


async def count_registrations(event_id: ObjectId, statuses: Optional[Iterable[str]] = None) -> int:
    query: dict = {'event_id': event_id}
    if statuses is not None:
        query['status'] = {'$in': list(statuses)}
    with storage_guard('registration count'):
        return await db_mod.db.registrations.count_documents(query)


async def list_registrations(query: dict, sort_key: str = 'registration_date', direction: int = -1) -> list[dict]:
    out: list[dict] = []
    with storage_guard('registration listing'):
        async for reg in db_mod.db.registrations.find(query).sort(sort_key, direction):
            out.append(reg)
    return out

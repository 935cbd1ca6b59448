"""MongoDB connection management and index creation."""
import os
import logging
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from motor.motor_asyncio import AsyncIOMotorClient
from bson.objectid import ObjectId

from .settings import get_settings

logger = logging.getLogger('db')

# ---------------- In-memory Fake DB (test mode) -----------------
if os.getenv('USE_FAKE_DB_FOR_TESTS'):
    import types
    import asyncio

    class _InsertOneResult:
        def __init__(self, inserted_id):
            self.inserted_id = inserted_id

    class _UpdateResult:
        def __init__(self, matched, modified, upserted_id=None):
            self.matched_count = matched
            self.modified_count = modified
            self.upserted_id = upserted_id

    def _compare(left, op, right):
        # Mongo never matches range operators against missing fields
        if left is None or right is None:
            return False
        try:
            if op == '$gt':
                return left > right
            if op == '$gte':
                return left >= right
            if op == '$lt':
                return left < right
            if op == '$lte':
                return left <= right
        except TypeError:
            return False
        raise ValueError(f'unsupported comparison {op}')

    class FakeCollection:
        def __init__(self, name, store):
            self._name = name
            self._store = store  # list of dicts
            self._unique_keys = []  # list of tuples of field names

        async def create_index(self, keys, unique=False, **kwargs):
            if isinstance(keys, str):
                fields = (keys,)
            else:
                fields = tuple(k for k, _direction in keys)
            if unique and fields not in self._unique_keys:
                self._unique_keys.append(fields)
            return '_'.join(fields)

        # ---- matching ----
        def _eval_expr(self, doc, expr):
            if isinstance(expr, str) and expr.startswith('$'):
                return doc.get(expr[1:])
            if not isinstance(expr, dict):
                return expr
            if '$ifNull' in expr:
                first, fallback = expr['$ifNull']
                val = self._eval_expr(doc, first)
                return val if val is not None else self._eval_expr(doc, fallback)
            if '$add' in expr:
                return sum((self._eval_expr(doc, part) or 0) for part in expr['$add'])
            for op in ('$gt', '$gte', '$lt', '$lte'):
                if op in expr:
                    left, right = expr[op]
                    return _compare(self._eval_expr(doc, left), op, self._eval_expr(doc, right))
            raise ValueError(f'unsupported $expr: {expr!r}')

        def _match_condition(self, value, cond):
            for op, arg in cond.items():
                if op == '$in':
                    if value not in arg:
                        return False
                elif op == '$nin':
                    if value in arg:
                        return False
                elif op == '$ne':
                    if value == arg:
                        return False
                elif op == '$exists':
                    if (value is not None) != bool(arg):
                        return False
                elif op in ('$gt', '$gte', '$lt', '$lte'):
                    if not _compare(value, op, arg):
                        return False
                else:
                    raise ValueError(f'unsupported operator {op}')
            return True

        def _match(self, doc, filt):
            for k, v in (filt or {}).items():
                if k == '$expr':
                    if not self._eval_expr(doc, v):
                        return False
                elif isinstance(v, dict) and v and all(str(key).startswith('$') for key in v):
                    if not self._match_condition(doc.get(k), v):
                        return False
                elif doc.get(k) != v:
                    return False
            return True

        # ---- writes ----
        def _check_unique(self, candidate, ignore=None):
            for fields in self._unique_keys:
                values = tuple(candidate.get(f) for f in fields)
                for existing in self._store:
                    if existing is ignore:
                        continue
                    if tuple(existing.get(f) for f in fields) == values:
                        raise DuplicateKeyError(
                            f"E11000 duplicate key error collection: {self._name} index: {'_'.join(fields)}",
                            code=11000,
                        )

        def _apply_update(self, doc, update):
            updated = dict(doc)
            for key, value in (update.get('$set') or {}).items():
                updated[key] = value
            for key in (update.get('$unset') or {}).keys():
                updated.pop(key, None)
            for key, value in (update.get('$inc') or {}).items():
                updated[key] = (updated.get(key) or 0) + value
            self._check_unique(updated, ignore=doc)
            doc.clear()
            doc.update(updated)

        async def insert_one(self, doc: dict):
            await asyncio.sleep(0)
            if '_id' not in doc:
                doc['_id'] = ObjectId()
            stored = dict(doc)
            self._check_unique(stored)
            self._store.append(stored)
            return _InsertOneResult(stored['_id'])

        async def update_one(self, filt: dict, update: dict, upsert: bool = False):
            await asyncio.sleep(0)
            for d in self._store:
                if self._match(d, filt):
                    self._apply_update(d, update)
                    return _UpdateResult(1, 1)
            if upsert:
                new_doc = {k: v for k, v in (filt or {}).items() if not k.startswith('$') and not isinstance(v, dict)}
                new_doc.update(update.get('$setOnInsert') or {})
                new_doc.setdefault('_id', ObjectId())
                self._apply_update(new_doc, update)
                self._store.append(new_doc)
                return _UpdateResult(0, 0, new_doc['_id'])
            return _UpdateResult(0, 0)

        async def update_many(self, filt: dict, update: dict):
            await asyncio.sleep(0)
            modified = 0
            for d in self._store:
                if self._match(d, filt):
                    self._apply_update(d, update)
                    modified += 1
            return _UpdateResult(modified, modified)

        async def find_one_and_update(self, filt: dict, update: dict, return_document=ReturnDocument.BEFORE, **kwargs):
            await asyncio.sleep(0)
            for d in self._store:
                if self._match(d, filt):
                    original = dict(d)
                    self._apply_update(d, update)
                    return dict(d) if return_document == ReturnDocument.AFTER else original
            return None

        async def delete_one(self, filt: dict):
            await asyncio.sleep(0)
            for idx, d in enumerate(self._store):
                if self._match(d, filt):
                    del self._store[idx]
                    return types.SimpleNamespace(deleted_count=1)
            return types.SimpleNamespace(deleted_count=0)

        async def delete_many(self, filt: dict):
            await asyncio.sleep(0)
            before = len(self._store)
            self._store[:] = [d for d in self._store if not self._match(d, filt)]
            return types.SimpleNamespace(deleted_count=before - len(self._store))

        # ---- reads ----
        async def find_one(self, filt: dict | None = None, projection=None, sort=None):
            await asyncio.sleep(0)
            matches = [d for d in self._store if self._match(d, filt)]
            if sort:
                matches = _sorted(matches, sort)
            return dict(matches[0]) if matches else None

        async def count_documents(self, filt: dict):
            await asyncio.sleep(0)
            return sum(1 for d in self._store if self._match(d, filt))

        def find(self, filt: dict | None = None, projection=None, sort=None):
            docs = [dict(d) for d in self._store if self._match(d, filt)]
            return _Cursor(_sorted(docs, sort) if sort else docs)

    def _sorted(docs, sort):
        for key, direction in reversed(list(sort)):
            present = [d for d in docs if d.get(key) is not None]
            missing = [d for d in docs if d.get(key) is None]
            present.sort(key=lambda x: x.get(key), reverse=int(direction) == -1)
            docs = present + missing
        return docs

    class _Cursor:
        def __init__(self, docs):
            self._docs = docs

        def sort(self, key, direction=1):
            spec = key if isinstance(key, list) else [(key, direction)]
            self._docs = _sorted(self._docs, spec)
            return self

        def limit(self, n):
            if n:
                self._docs = self._docs[:n]
            return self

        async def to_list(self, length=None):
            return list(self._docs if length is None else self._docs[:length])

        def __aiter__(self):
            self._iter = iter(self._docs)
            return self

        async def __anext__(self):
            try:
                return next(self._iter)
            except StopIteration:
                raise StopAsyncIteration

    class FakeDB:
        def __init__(self):
            self._collections = {}

        def __getattr__(self, item):
            if item.startswith('_'):
                raise AttributeError(item)
            if item not in self._collections:
                self._collections[item] = FakeCollection(item, [])
            return self._collections[item]

        def reset(self):
            """Drop all documents but keep declared unique indexes."""
            for coll in self._collections.values():
                coll._store.clear()

    _fake_db = FakeDB()


class MongoDB:
    """Wrapper managing a Motor client + DB plus test fake DB swap."""
    def __init__(self):
        self.client: AsyncIOMotorClient | None = None
        self.db = None
        self._connected = False

    async def connect(self):
        """Connect to MongoDB (or fake) and create indexes (idempotent)."""
        if self._connected:
            return

        settings = get_settings()
        if os.getenv('USE_FAKE_DB_FOR_TESTS'):
            self.client = None
            self.db = _fake_db  # type: ignore[name-defined]
        else:
            self.client = AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)
            self.db = self.client[settings.mongo_db]
        globals()['db'] = self.db

        try:
            await ensure_indexes(self.db)
        except PyMongoError as e:
            logger.warning("db.indexes.failed continuing startup: %s", e)

        self._connected = True
        logger.info('db.connected fake=%s', self.client is None)

    async def close(self):
        if self.client:
            self.client.close()
            logger.info('db.closed')
        self._connected = False


async def ensure_indexes(database) -> None:
    # USERS
    await database.users.create_index('email', unique=True)
    await database.users.create_index('role')

    # EVENTS
    await database.events.create_index('organizer_id')
    await database.events.create_index('status')
    await database.events.create_index('start_date')

    # REGISTRATIONS: the unique pair is the storage-level duplicate guard
    await database.registrations.create_index([('event_id', 1), ('user_id', 1)], unique=True)
    await database.registrations.create_index([('event_id', 1), ('status', 1)])
    await database.registrations.create_index([('user_id', 1), ('registration_date', -1)])

    # NOTIFICATIONS
    await database.notifications.create_index([('recipient_id', 1), ('is_read', 1)])

    # SAVED EVENTS
    await database.saved_events.create_index([('user_id', 1), ('event_id', 1)], unique=True)
    await database.saved_events.create_index('event_id')


mongo_db = MongoDB()


async def connect():
    """Module-level connect function used by the application lifespan."""
    await mongo_db.connect()


async def close():
    """Module-level close function used by the application lifespan."""
    await mongo_db.close()


# Set by connect(); modules do `from eventhub import db as db_mod` and use `db_mod.db.<collection>`.
db = None

"""
Shared fixtures: an in-memory stand-in for the Motor database.

Only the query and update operators the course code uses are supported
(equality, $ne, $gte, $set with the positional $, $inc, $push). Every
operation yields to the event loop once, so coroutines run with
asyncio.gather interleave the way concurrent requests do.

Transactions lock each document they write. A second transaction writing a
locked document, or one committed after it started, fails with a
WriteConflict carrying TransientTransactionError, as MongoDB does. Aborted
transactions restore the documents they wrote. Inserts into
course_enrollments enforce the unique (user_id, course_id) pair.
"""

import asyncio
import copy
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure


MISSING = object()


def get_path(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return MISSING
        value = value[part]
    return value


def set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target[int(part)] if isinstance(target, list) else target.setdefault(part, {})
    if isinstance(target, list):
        target[int(parts[-1])] = value
    else:
        target[parts[-1]] = value


def path_values(doc, path):
    """Every value a dotted path reaches, descending into arrays of documents"""
    values = [doc]
    for part in path.split("."):
        found = []
        for value in values:
            if isinstance(value, dict) and part in value:
                found.append(value[part])
            elif isinstance(value, list):
                found.extend(item[part] for item in value if isinstance(item, dict) and part in item)
        values = found
    return values


def matches(doc, query):
    for key, condition in query.items():
        values = path_values(doc, key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$ne":
                    if operand in (values or [None]):
                        return False
                elif op == "$gte":
                    if not any(v is not None and v >= operand for v in values):
                        return False
                else:
                    raise NotImplementedError(op)
        elif not any(v == condition or (isinstance(v, list) and condition in v) for v in values):
            return False
    return True


def resolve_positional(doc, query, path):
    """Replace "$" in an update path with the index the query matched"""
    if ".$" not in path:
        return path
    array_path, rest = path.split(".$", 1)
    for key, condition in query.items():
        if key.startswith(array_path + "."):
            field = key[len(array_path) + 1:]
            for index, item in enumerate(get_path(doc, array_path)):
                if isinstance(item, dict) and item.get(field) == condition:
                    return f"{array_path}.{index}{rest}"
    raise OperationFailure("The positional operator did not find the match needed from the query.", code=2)


def write_conflict():
    return OperationFailure(
        "WriteConflict error: this operation conflicted with another operation",
        code=112,
        details={"errorLabels": ["TransientTransactionError"]}
    )


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        present = [d for d in self._docs if get_path(d, key) not in (MISSING, None)]
        absent = [d for d in self._docs if get_path(d, key) in (MISSING, None)]
        present.sort(key=lambda d: get_path(d, key), reverse=direction < 0)
        self._docs = present + absent
        return self

    def limit(self, n):
        self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, name, unique_keys=None):
        self.name = name
        self.docs = []
        self.indexes = []
        self.calls = []
        self.unique_keys = unique_keys or []

    async def find_one(self, query, session=None):
        self.calls.append(("find_one", session))
        await asyncio.sleep(0)
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, session=None):
        self.calls.append(("find", session))
        return FakeCursor([d for d in self.docs if matches(d, query or {})])

    async def insert_one(self, doc, session=None):
        self.calls.append(("insert_one", session))
        await asyncio.sleep(0)
        for keys in self.unique_keys:
            if any(all(d.get(k) == doc.get(k) for k in keys) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}", code=11000)
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update, session=None, upsert=False):
        self.calls.append(("update_one", session))
        await asyncio.sleep(0)
        if self._update_first(query, update, session) is None:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

    async def find_one_and_update(self, query, update, session=None, return_document=ReturnDocument.BEFORE):
        self.calls.append(("find_one_and_update", session))
        await asyncio.sleep(0)
        before = next((copy.deepcopy(d) for d in self.docs if matches(d, query)), None)
        doc = self._update_first(query, update, session)
        if doc is None:
            return None
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before

    def _update_first(self, query, update, session):
        for doc in self.docs:
            if matches(doc, query):
                if session is not None and session.transaction is not None:
                    session.transaction.claim(doc)
                for path, value in update.get("$set", {}).items():
                    set_path(doc, resolve_positional(doc, query, path), copy.deepcopy(value))
                for path, delta in update.get("$inc", {}).items():
                    current = get_path(doc, path)
                    set_path(doc, path, (0 if current is MISSING else current) + delta)
                for path, value in update.get("$push", {}).items():
                    current = get_path(doc, path)
                    if current is MISSING:
                        set_path(doc, path, [])
                        current = get_path(doc, path)
                    current.append(copy.deepcopy(value))
                return doc
        return None

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return str(keys)


class FakeTransaction:
    def __init__(self, db, session, options):
        self.db = db
        self.session = session
        self.options = options
        self.undo = []

    def claim(self, doc):
        key = id(doc)
        owner = self.db.write_locks.get(key)
        if (owner is not None and owner is not self) or self.db.committed_at.get(key, 0) > self.started_at:
            self.db.conflicts += 1
            raise write_conflict()
        if owner is None:
            self.db.write_locks[key] = self
            self.undo.append((doc, copy.deepcopy(doc)))

    async def __aenter__(self):
        self.db.transactions_started += 1
        self.started_at = self.db.clock
        self.session.transaction = self
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.session.transaction = None
        if exc_type is None and self.db.commit_errors:
            self._rollback()
            raise self.db.commit_errors.pop(0)
        if exc_type is not None:
            self._rollback()
            return False
        self.db.clock += 1
        for doc, _ in self.undo:
            self.db.committed_at[id(doc)] = self.db.clock
        self._release()
        self.db.transactions_committed += 1
        return False

    def _rollback(self):
        for doc, before in reversed(self.undo):
            doc.clear()
            doc.update(before)
        self._release()

    def _release(self):
        for doc, _ in self.undo:
            self.db.write_locks.pop(id(doc), None)
        self.undo = []


class FakeSession:
    def __init__(self, db):
        self.db = db
        self.transaction = None

    def start_transaction(self, **options):
        return FakeTransaction(self.db, self, options)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeClient:
    def __init__(self, db):
        self.db = db

    async def start_session(self):
        return FakeSession(self.db)


class FakeDatabase:
    def __init__(self):
        self.collections = {
            "course_enrollments": FakeCollection("course_enrollments", unique_keys=[("user_id", "course_id")])
        }
        self.client = FakeClient(self)
        self.commit_errors = []
        self.transactions_started = 0
        self.transactions_committed = 0
        self.conflicts = 0
        self.clock = 0
        self.committed_at = {}
        self.write_locks = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]



@pytest.fixture
def db():
    return FakeDatabase()


def add_course(db, course_id="COURSE_1", total_lessons=4, stats=None):
    doc = {
        "course_id": course_id,
        "title": f"Course {course_id}",
        "total_lessons": total_lessons,
        "created_at": datetime(2024, 6, 1),
    }
    if stats is not None:
        doc["stats"] = stats
    db.courses.docs.append(doc)
    return doc


def add_enrollment(db, user_id, course_id="COURSE_1", rating=None, review=None,
                   lessons_seen=None, rated_at=None):
    doc = {
        "enrollment_id": f"ENR_{user_id}",
        "course_id": course_id,
        "user_id": user_id,
        "user_name": f"Name {user_id}",
        "user_email": f"{user_id}@example.com",
        "enrolled_at": datetime(2024, 6, 1),
        "lessons_seen": lessons_seen or [],
        "all_lessons_viewed": False,
    }
    if rating is not None:
        doc["rating"] = rating
        doc["review"] = review or ""
        doc["rated_at"] = rated_at or datetime(2024, 6, 2)
    db.course_enrollments.docs.append(doc)
    return doc


def add_profile(db, user_id, full_name=None, email=None):
    db.user_profiles.docs.append({"user_id": user_id, "full_name": full_name, "email": email})


def days(n):
    return datetime(2024, 6, 1) + timedelta(days=n)

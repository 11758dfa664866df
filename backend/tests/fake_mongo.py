"""
In-memory stand-in for the motor collections the credit services use.

Each operation yields to the event loop once and then runs to completion, so
asyncio.gather() interleaves callers between operations the way concurrent
requests interleave against a real server, while each single-document
operation stays atomic.

Supported: find_one, find (sort/skip/limit/to_list), insert_one, update_one,
find_one_and_update, delete_one, count_documents, create_index (unique keys
are enforced). Filters: equality (None matches missing), dotted paths, $gte,
$gt, $lte, $lt, $ne, $exists, $in. Updates: $set, $unset, $inc, $setOnInsert.
"""
import asyncio
import copy
import itertools
from decimal import Decimal
from types import SimpleNamespace

from bson.decimal128 import Decimal128
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

_MISSING = object()
_ids = itertools.count(1)


def _norm(value):
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return value


def _get_path(doc, path):
    current = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc, path, value):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _unset_path(doc, path):
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _match_operator(value, op, arg):
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$ne":
        current = None if value is _MISSING else _norm(value)
        return current != _norm(arg)
    if op == "$in":
        current = None if value is _MISSING else _norm(value)
        return current in [_norm(a) for a in arg]
    if value is _MISSING or value is None:
        return False
    current, arg = _norm(value), _norm(arg)
    if op == "$gte":
        return current >= arg
    if op == "$gt":
        return current > arg
    if op == "$lte":
        return current <= arg
    if op == "$lt":
        return current < arg
    raise NotImplementedError(f"fake_mongo does not support {op}")


def matches(doc, query):
    for key, cond in (query or {}).items():
        value = _get_path(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_match_operator(value, op, arg) for op, arg in cond.items()):
                return False
        elif cond is None:
            if value is not _MISSING and value is not None:
                return False
        elif value is _MISSING or _norm(value) != _norm(cond):
            return False
    return True


def _apply_inc(doc, path, delta):
    current = _get_path(doc, path)
    if current is _MISSING or current is None:
        current = 0
    total = _norm(current) + _norm(delta)
    if isinstance(current, Decimal128) or isinstance(delta, Decimal128):
        total = Decimal128(Decimal(total))
    _set_path(doc, path, total)


def apply_update(doc, update, inserting=False):
    for path, value in update.get("$set", {}).items():
        _set_path(doc, path, copy.deepcopy(value))
    for path in update.get("$unset", {}):
        _unset_path(doc, path)
    for path, delta in update.get("$inc", {}).items():
        _apply_inc(doc, path, delta)
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            _set_path(doc, path, copy.deepcopy(value))


def _project(doc, projection):
    out = copy.deepcopy(doc)
    if not projection:
        return out
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        out = {k: out[k] for k in included if k in out}
        if projection.get("_id", 1) and "_id" in doc:
            out["_id"] = doc["_id"]
    elif projection.get("_id", 1) == 0:
        out.pop("_id", None)
    return out


def _sort_key(field):
    def key(doc):
        value = _get_path(doc, field)
        missing = value is _MISSING or value is None
        return (missing, None if missing else _norm(value))
    return key


class FakeCursor:
    def __init__(self, docs, projection):
        self._docs = docs
        self._projection = projection
        self._skip = 0
        self._limit = 0

    def sort(self, field, direction=1):
        present = [d for d in self._docs if _get_path(d, field) not in (_MISSING, None)]
        absent = [d for d in self._docs if _get_path(d, field) in (_MISSING, None)]
        present.sort(key=_sort_key(field), reverse=direction < 0)
        self._docs = absent + present if direction > 0 else present + absent
        return self

    def skip(self, count):
        self._skip = count
        return self

    def limit(self, count):
        self._limit = count
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return [_project(d, self._projection) for d in docs]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_keys = set()

    async def create_index(self, keys, unique=False, **kwargs):
        if unique and isinstance(keys, str):
            self.unique_keys.add(keys)
        return keys if isinstance(keys, str) else "_".join(f"{k}_{d}" for k, d in keys)

    def _check_unique(self, doc, ignore=None):
        for key in self.unique_keys:
            value = _get_path(doc, key)
            if value is _MISSING:
                continue
            for other in self.docs:
                if other is not ignore and _get_path(other, key) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {key}")

    def _first(self, query):
        return next((d for d in self.docs if matches(d, query)), None)

    def _upsert_doc(self, query, update):
        doc = {
            k: copy.deepcopy(v)
            for k, v in query.items()
            if not k.startswith("$") and "." not in k and not isinstance(v, dict)
        }
        doc["_id"] = next(_ids)
        apply_update(doc, update, inserting=True)
        self._check_unique(doc)
        self.docs.append(doc)
        return doc

    async def find_one(self, query=None, projection=None, **kwargs):
        await asyncio.sleep(0)
        doc = self._first(query or {})
        return _project(doc, projection) if doc is not None else None

    def find(self, query=None, projection=None):
        return FakeCursor([d for d in self.docs if matches(d, query or {})], projection)

    async def count_documents(self, query):
        await asyncio.sleep(0)
        return sum(1 for d in self.docs if matches(d, query))

    async def insert_one(self, document, **kwargs):
        await asyncio.sleep(0)
        doc = copy.deepcopy(document)
        doc.setdefault("_id", next(_ids))
        self._check_unique(doc)
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update, upsert=False, **kwargs):
        await asyncio.sleep(0)
        doc = self._first(query)
        if doc is None:
            if upsert:
                created = self._upsert_doc(query, update)
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=created["_id"])
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        before = copy.deepcopy(doc)
        apply_update(doc, update)
        return SimpleNamespace(matched_count=1, modified_count=int(doc != before), upserted_id=None)

    async def find_one_and_update(
        self,
        query,
        update,
        projection=None,
        upsert=False,
        return_document=ReturnDocument.BEFORE,
        **kwargs,
    ):
        await asyncio.sleep(0)
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return None
            created = self._upsert_doc(query, update)
            return _project(created, projection) if return_document == ReturnDocument.AFTER else None
        before = _project(doc, projection)
        apply_update(doc, update)
        return _project(doc, projection) if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, query):
        await asyncio.sleep(0)
        doc = self._first(query)
        if doc is None:
            return SimpleNamespace(deleted_count=0)
        self.docs.remove(doc)
        return SimpleNamespace(deleted_count=1)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

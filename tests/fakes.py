"""In-memory stand-in for the MongoDB database used by the services.

Supports the query operators, update operators, unique indexes and
transaction rollback the order engine relies on. Sessions are accepted
and ignored.
"""

import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

_MISSING = object()


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "$in":
        if isinstance(value, list):
            return any(v in operand for v in value)
        return value in operand
    if op == "$ne":
        return value != operand
    if value is None:
        return False
    if op == "$lt":
        return value < operand
    if op == "$lte":
        return value <= operand
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    raise NotImplementedError(f"Unsupported operator {op}")


def matches(document: dict[str, Any], query: dict[str, Any] | None) -> bool:
    """Check a document against a flat query."""
    for key, condition in (query or {}).items():
        value = document.get(key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_compare(value, op, operand) for op, operand in condition.items()):
                return False
        elif isinstance(value, list) and not isinstance(condition, list):
            if condition not in value:
                return False
        elif value != condition:
            return False
    return True


def _project(document: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
    document = copy.deepcopy(document)
    if not projection:
        return document
    return {key: value for key, value in document.items() if key == "_id" or projection.get(key)}


def _apply_update(document: dict[str, Any], update: dict[str, Any], inserting: bool) -> None:
    for key, value in update.get("$set", {}).items():
        document[key] = copy.deepcopy(value)
    if inserting:
        for key, value in update.get("$setOnInsert", {}).items():
            document[key] = copy.deepcopy(value)
    for key, amount in update.get("$inc", {}).items():
        document[key] = (document.get(key) or 0) + amount
    for key, value in update.get("$addToSet", {}).items():
        current = document.setdefault(key, [])
        if value not in current:
            current.append(value)


class FakeCursor:
    """Cursor over a snapshot of matching documents."""

    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._documents.sort(
            key=lambda d: (d.get(key) is not None, d.get(key) if d.get(key) is not None else 0),
            reverse=direction < 0,
        )
        return self

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        return self._documents if length is None else self._documents[:length]


class FakeCollection:
    """A single collection held as a list of documents."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.unique_fields: set[str] = set()
        self._failures: dict[str, int] = {}

    def seed(self, *documents: dict[str, Any]) -> None:
        """Insert documents synchronously, e.g. from fixtures."""
        for document in documents:
            document.setdefault("_id", ObjectId())
            self._check_unique(document)
            self.documents.append(copy.deepcopy(document))

    def fail_on(self, method: str, times: int = 1) -> None:
        """Make the next `times` calls of `method` raise a driver error."""
        self._failures[method] = times

    def _maybe_fail(self, method: str) -> None:
        remaining = self._failures.get(method, 0)
        if remaining:
            self._failures[method] = remaining - 1
            raise PyMongoError(f"injected {method} failure on {self.name}")

    def _check_unique(self, candidate: dict[str, Any]) -> None:
        for field in self.unique_fields:
            value = candidate.get(field, _MISSING)
            if value is _MISSING:
                continue
            for existing in self.documents:
                if existing.get("_id") != candidate.get("_id") and existing.get(field, _MISSING) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}_1")

    async def create_index(self, keys: list[tuple[str, int]], unique: bool = False, **kwargs: Any) -> str:
        if unique and len(keys) == 1:
            self.unique_fields.add(keys[0][0])
        return "_".join(f"{field}_{direction}" for field, direction in keys)

    async def find_one(
        self,
        query: dict[str, Any] | None = None,
        projection: dict[str, int] | None = None,
        session: Any = None,
    ) -> dict[str, Any] | None:
        self._maybe_fail("find_one")
        for document in self.documents:
            if matches(document, query):
                return _project(document, projection)
        return None

    def find(
        self,
        query: dict[str, Any] | None = None,
        projection: dict[str, int] | None = None,
        session: Any = None,
    ) -> FakeCursor:
        self._maybe_fail("find")
        return FakeCursor([_project(d, projection) for d in self.documents if matches(d, query)])

    async def count_documents(self, query: dict[str, Any], session: Any = None) -> int:
        return sum(1 for d in self.documents if matches(d, query))

    async def insert_one(self, document: dict[str, Any], session: Any = None) -> SimpleNamespace:
        self._maybe_fail("insert_one")
        document.setdefault("_id", ObjectId())
        self._check_unique(document)
        self.documents.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    async def insert_many(self, documents: list[dict[str, Any]], session: Any = None) -> SimpleNamespace:
        self._maybe_fail("insert_many")
        ids = []
        for document in documents:
            result = await self.insert_one(document)
            ids.append(result.inserted_id)
        return SimpleNamespace(inserted_ids=ids)

    async def update_one(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
        session: Any = None,
    ) -> SimpleNamespace:
        self._maybe_fail("update_one")
        for index, document in enumerate(self.documents):
            if matches(document, query):
                updated = copy.deepcopy(document)
                _apply_update(updated, update, inserting=False)
                self._check_unique(updated)
                modified = updated != document
                self.documents[index] = updated
                return SimpleNamespace(matched_count=1, modified_count=int(modified), upserted_id=None)

        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        document = {
            key: value
            for key, value in query.items()
            if not (isinstance(value, dict) and any(k.startswith("$") for k in value))
        }
        document["_id"] = ObjectId()
        _apply_update(document, update, inserting=True)
        self._check_unique(document)
        self.documents.append(document)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=document["_id"])

    async def find_one_and_update(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        return_document: bool = ReturnDocument.BEFORE,
        session: Any = None,
    ) -> dict[str, Any] | None:
        self._maybe_fail("find_one_and_update")
        for index, document in enumerate(self.documents):
            if matches(document, query):
                updated = copy.deepcopy(document)
                _apply_update(updated, update, inserting=False)
                self._check_unique(updated)
                self.documents[index] = updated
                return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else document)
        return None

    async def find_one_and_delete(self, query: dict[str, Any], session: Any = None) -> dict[str, Any] | None:
        self._maybe_fail("find_one_and_delete")
        for index, document in enumerate(self.documents):
            if matches(document, query):
                return self.documents.pop(index)
        return None

    async def delete_one(self, query: dict[str, Any], session: Any = None) -> SimpleNamespace:
        self._maybe_fail("delete_one")
        for index, document in enumerate(self.documents):
            if matches(document, query):
                self.documents.pop(index)
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: dict[str, Any], session: Any = None) -> SimpleNamespace:
        self._maybe_fail("delete_many")
        kept = [d for d in self.documents if not matches(d, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase:
    """Collection registry with snapshot-based transactions."""

    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.healthy = True
        self.transactions_started = 0
        self.transactions_aborted = 0

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SimpleNamespace]:
        self.transactions_started += 1
        snapshot = {name: copy.deepcopy(c.documents) for name, c in self.collections.items()}
        try:
            yield SimpleNamespace(in_transaction=True)
        except BaseException:
            self.transactions_aborted += 1
            for name, collection in self.collections.items():
                collection.documents = snapshot.get(name, [])
            raise

    async def ping(self) -> None:
        if not self.healthy:
            raise PyMongoError("server selection timeout")

"""Shared fixtures: an in-memory store recording every call it receives."""

import copy
import itertools
from collections.abc import Callable
from typing import Any

import pytest

from collection_hooks import HookedCollection, HookSettings


class DuplicateKeyError(Exception):
    """Raised by the in-memory store when an identifier is reused."""


def _matches(document: dict, filter: dict | None) -> bool:
    for key, expected in (filter or {}).items():
        if key == "$and":
            if not all(_matches(document, part) for part in expected):
                return False
        elif key == "$or":
            if not any(_matches(document, part) for part in expected):
                return False
        elif isinstance(expected, dict) and any(op.startswith("$") for op in expected):
            value = document.get(key)
            for op, operand in expected.items():
                if op == "$in" and value not in operand:
                    return False
                if op == "$gt" and not (value is not None and value > operand):
                    return False
                if op == "$exists" and (key in document) != operand:
                    return False
        elif document.get(key) != expected:
            return False
    return True


def _project(document: dict, projection: dict | None) -> dict:
    if not projection:
        return copy.deepcopy(document)
    include = {key for key, value in projection.items() if value not in (0, False)}
    if include:
        projected = {key: copy.deepcopy(value) for key, value in document.items() if key in include}
        if projection.get("_id", 1) not in (0, False) and "_id" in document:
            projected["_id"] = document["_id"]
        return projected
    return {key: copy.deepcopy(value) for key, value in document.items() if key not in projection}


def _apply_update(document: dict, update: dict, inserting: bool = False) -> dict:
    if not any(key.startswith("$") for key in update):
        return {"_id": document["_id"], **copy.deepcopy(update)}
    updated = copy.deepcopy(document)
    updated.update(copy.deepcopy(update.get("$set", {})))
    if inserting:
        updated.update(copy.deepcopy(update.get("$setOnInsert", {})))
    for key, amount in update.get("$inc", {}).items():
        updated[key] = updated.get(key, 0) + amount
    for key in update.get("$unset", {}):
        updated.pop(key, None)
    return updated


class FakeCursor:
    """Lazy cursor; the store is only read on the first pull."""

    def __init__(self, store: "FakeStore", loader: Callable[[], list[dict]], filter: dict | None = None):
        self._store = store
        self._loader = loader
        self._filter = filter
        self._results: list[dict] | None = None
        self._position = 0
        self.closed = False

    def _load(self) -> list[dict]:
        if self._results is None:
            self._results = self._loader()
        return self._results

    async def next(self) -> dict | None:
        results = self._load()
        if self._position >= len(results):
            return None
        document = results[self._position]
        self._position += 1
        return document

    async def to_list(self) -> list[dict]:
        results = self._load()
        remaining = results[self._position :]
        self._position = len(results)
        return remaining

    def rewind(self) -> None:
        self._results = None
        self._position = 0

    async def close(self) -> None:
        self.closed = True

    async def count(self, **options: Any) -> int:
        return await self._store.count_documents(self._filter or {}, **options)


class FakeStore:
    """In-memory ``StoreCollection`` with a call log.

    ``calls`` holds ``(operation, args)`` tuples in the order the store was
    hit; cursor reads are logged when the cursor first loads.
    """

    def __init__(self, documents: list[dict] | None = None):
        self.documents: list[dict] = [copy.deepcopy(document) for document in documents or []]
        self.calls: list[tuple[str, tuple]] = []
        self._failures: dict[str, tuple[Callable[..., bool], Exception]] = {}
        self._ids = itertools.count(1)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    def fail(self, operation: str, error: Exception, when: Callable[..., bool] = lambda *args: True) -> None:
        """Make ``operation`` raise ``error`` whenever ``when(*args)`` is true."""
        self._failures[operation] = (when, error)

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        failure = self._failures.get(operation)
        if failure is not None and failure[0](*args):
            raise failure[1]

    def _matching(self, filter: dict | None) -> list[dict]:
        return [document for document in self.documents if _matches(document, filter)]

    def _insert(self, document: dict) -> Any:
        document = copy.deepcopy(document)
        document.setdefault("_id", f"id{next(self._ids)}")
        if any(existing["_id"] == document["_id"] for existing in self.documents):
            raise DuplicateKeyError(document["_id"])
        self.documents.append(document)
        return document["_id"]

    def _replace(self, old: dict, new: dict) -> None:
        self.documents[self.documents.index(old)] = new

    async def find_one(self, filter: dict, projection: dict | None = None, **options: Any) -> dict | None:
        self._record("find_one", filter, projection)
        matching = self._matching(filter)
        return _project(matching[0], projection) if matching else None

    def find(self, filter: dict, projection: dict | None = None, **options: Any) -> FakeCursor:
        def load() -> list[dict]:
            self._record("find", filter, projection)
            matching = [_project(document, projection) for document in self._matching(filter)]
            return matching[: options["limit"]] if options.get("limit") else matching

        return FakeCursor(self, load, filter)

    def aggregate(self, pipeline: list[dict], **options: Any) -> FakeCursor:
        def load() -> list[dict]:
            self._record("aggregate", pipeline)
            documents = [copy.deepcopy(document) for document in self.documents]
            for stage in pipeline:
                if "$match" in stage:
                    documents = [document for document in documents if _matches(document, stage["$match"])]
                elif "$limit" in stage:
                    documents = documents[: stage["$limit"]]
                elif "$project" in stage:
                    documents = [_project(document, stage["$project"]) for document in documents]
            return documents

        return FakeCursor(self, load)

    async def insert_one(self, document: dict, **options: Any) -> dict:
        self._record("insert_one", document)
        return {"acknowledged": True, "inserted_id": self._insert(document)}

    async def insert_many(self, documents: list[dict], **options: Any) -> dict:
        self._record("insert_many", documents)
        inserted_ids = [self._insert(document) for document in documents]
        return {"acknowledged": True, "inserted_ids": inserted_ids}

    async def update_one(self, filter: dict, update: dict, upsert: bool = False, **options: Any) -> dict:
        self._record("update_one", filter, update)
        return self._update(filter, update, upsert, many=False)

    async def update_many(self, filter: dict, update: dict, upsert: bool = False, **options: Any) -> dict:
        self._record("update_many", filter, update)
        return self._update(filter, update, upsert, many=True)

    async def replace_one(self, filter: dict, replacement: dict, upsert: bool = False, **options: Any) -> dict:
        self._record("replace_one", filter, replacement)
        return self._update(filter, replacement, upsert, many=False)

    def _update(self, filter: dict, update: dict, upsert: bool, many: bool) -> dict:
        matching = self._matching(filter)
        if not many:
            matching = matching[:1]
        if not matching and upsert:
            seed = {key: value for key, value in filter.items() if not key.startswith("$") and not isinstance(value, dict)}
            seed.setdefault("_id", f"id{next(self._ids)}")
            upserted_id = self._insert(_apply_update(seed, update, inserting=True))
            return {"acknowledged": True, "matched_count": 0, "modified_count": 0, "upserted_count": 1, "upserted_id": upserted_id}

        modified = 0
        for document in matching:
            updated = _apply_update(document, update)
            if updated != document:
                self._replace(document, updated)
                modified += 1
        return {"acknowledged": True, "matched_count": len(matching), "modified_count": modified, "upserted_count": 0, "upserted_id": None}

    async def delete_one(self, filter: dict, **options: Any) -> dict:
        self._record("delete_one", filter)
        matching = self._matching(filter)[:1]
        for document in matching:
            self.documents.remove(document)
        return {"acknowledged": True, "deleted_count": len(matching)}

    async def delete_many(self, filter: dict, **options: Any) -> dict:
        self._record("delete_many", filter)
        matching = self._matching(filter)
        for document in matching:
            self.documents.remove(document)
        return {"acknowledged": True, "deleted_count": len(matching)}

    async def count_documents(self, filter: dict, **options: Any) -> int:
        self._record("count_documents", filter)
        return len(self._matching(filter))

    async def estimated_document_count(self, **options: Any) -> int:
        self._record("estimated_document_count")
        return len(self.documents)

    async def distinct(self, key: str, filter: dict | None = None, **options: Any) -> list[Any]:
        self._record("distinct", key, filter)
        values: list[Any] = []
        for document in self._matching(filter):
            if key in document and document[key] not in values:
                values.append(document[key])
        return values


@pytest.fixture
def settings() -> HookSettings:
    return HookSettings(log_level="INFO", hook_batch_size=1000, ordered=True, id_field="_id")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(
        [
            {"_id": "a", "name": "alpha", "group": "x", "count": 1},
            {"_id": "b", "name": "beta", "group": "x", "count": 2},
            {"_id": "c", "name": "gamma", "group": "y", "count": 3},
        ]
    )


@pytest.fixture
def empty_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def collection(store: FakeStore, settings: HookSettings) -> HookedCollection:
    return HookedCollection(store, settings=settings)


@pytest.fixture
def empty_collection(empty_store: FakeStore, settings: HookSettings) -> HookedCollection:
    return HookedCollection(empty_store, settings=settings)


@pytest.fixture
def make_store() -> Callable[[list[dict]], FakeStore]:
    return FakeStore

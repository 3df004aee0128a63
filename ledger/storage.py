import copy
import threading
from collections.abc import Callable
from typing import Any, Optional

from .errors import PersistenceError


ACTORS = "actors"
ACCOUNTS = "accounts"
ENTRIES = "entries"
INVITES = "invites"

COLLECTIONS = (ACTORS, ACCOUNTS, ENTRIES, INVITES)


class InMemoryStorage:
    """Document store with per-document atomicity only.

    Every read hands back a copy, so callers work on snapshots exactly as they would
    against a remote document database. There are no multi-document transactions;
    ``compare_and_set`` is the one atomic read-modify-write primitive.
    """

    def __init__(self):
        self.collections: dict[str, dict[Any, dict]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> dict[Any, dict]:
        try:
            return self.collections[name]
        except KeyError:
            raise PersistenceError(f"Unknown collection {name!r}")

    @staticmethod
    def _matches(doc: dict, filters: dict) -> bool:
        return all(doc.get(key) == value for key, value in filters.items())

    def find_by_id(self, collection: str, doc_id: Any) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(
        self,
        collection: str,
        filters: Optional[dict] = None,
        predicate: Optional[Callable[[dict], bool]] = None,
    ) -> list[dict]:
        filters = filters or {}
        with self._lock:
            docs = [
                copy.deepcopy(doc) for doc in self._collection(collection).values()
                if self._matches(doc, filters)
            ]
        if predicate is not None:
            docs = [doc for doc in docs if predicate(doc)]
        return docs

    def find_one(self, collection: str, **filters) -> Optional[dict]:
        docs = self.find(collection, filters)
        return docs[0] if docs else None

    def insert(self, collection: str, doc_id: Any, doc: dict) -> dict:
        with self._lock:
            docs = self._collection(collection)
            if doc_id in docs:
                raise PersistenceError(f"Duplicate key {doc_id!r} in {collection}")
            docs[doc_id] = copy.deepcopy(doc)
            return copy.deepcopy(doc)

    def update(self, collection: str, doc_id: Any, changes: dict) -> bool:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                return False
            doc.update(copy.deepcopy(changes))
            return True

    def compare_and_set(self, collection: str, doc_id: Any, expected: dict, changes: dict) -> bool:
        """Apply ``changes`` only if every field in ``expected`` still holds."""
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None or not self._matches(doc, expected):
                return False
            doc.update(copy.deepcopy(changes))
            return True

    def delete(self, collection: str, doc_id: Any) -> bool:
        with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None

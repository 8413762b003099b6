"""Document stores backing the registry.

A store holds JSON-serializable documents keyed by (collection, key). Stores
are append-only from the registry's point of view: there is no delete.
"""

import copy
import json
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple


class DocumentStore:
    """Abstract key/document store."""

    def get(self, collection: str, key: str) -> Optional[Dict]:
        raise NotImplementedError

    def put(self, collection: str, key: str, document: Dict):
        self.put_many(collection, {key: document})

    def put_many(self, collection: str, documents: Dict[str, Dict]):
        """Write several documents in one atomic operation."""
        raise NotImplementedError

    def scan(self, collection: str) -> Iterator[Tuple[str, Dict]]:
        raise NotImplementedError

    def close(self):
        pass


class MemoryStore(DocumentStore):
    """In-process store; documents are deep-copied in and out."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict]] = {}
        self._lock = threading.Lock()

    def get(self, collection: str, key: str) -> Optional[Dict]:
        with self._lock:
            document = self._collections.get(collection, {}).get(key)
            return copy.deepcopy(document) if document is not None else None

    def put_many(self, collection: str, documents: Dict[str, Dict]):
        staged = {key: copy.deepcopy(doc) for key, doc in documents.items()}
        with self._lock:
            self._collections.setdefault(collection, {}).update(staged)

    def scan(self, collection: str) -> Iterator[Tuple[str, Dict]]:
        with self._lock:
            snapshot = list(self._collections.get(collection, {}).items())
        for key, document in snapshot:
            yield key, copy.deepcopy(document)


class SqliteStore(DocumentStore):
    """SQLite-backed store; each document is a JSON text column."""

    def __init__(self, db_path: str):
        """Open (and create if needed) the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        if db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    body TEXT NOT NULL,
                    PRIMARY KEY (collection, key)
                )
            """)

    def get(self, collection: str, key: str) -> Optional[Dict]:
        with self._lock:
            row = self._conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND key = ?",
                (collection, key)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def put_many(self, collection: str, documents: Dict[str, Dict]):
        rows = [(collection, key, json.dumps(doc)) for key, doc in documents.items()]
        with self._lock, self._conn:
            self._conn.executemany("""
                INSERT OR REPLACE INTO documents (collection, key, body)
                VALUES (?, ?, ?)
            """, rows)

    def scan(self, collection: str) -> Iterator[Tuple[str, Dict]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, body FROM documents WHERE collection = ? ORDER BY key",
                (collection,)
            ).fetchall()
        for key, body in rows:
            yield key, json.loads(body)

    def close(self):
        with self._lock:
            self._conn.close()


def open_store(path: str = None) -> DocumentStore:
    """Open a SQLite store at ``path``, or an in-memory store when no path is set."""
    if path:
        return SqliteStore(path)
    return MemoryStore()
